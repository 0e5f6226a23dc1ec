from promptweave.validators.base import Validator, FunctionValidator
from promptweave.validators.text import (
    RegexMatchValidator, RegexNoMatchValidator, KeywordValidator, LengthValidator,
)
from promptweave.validators.composite import AllValidator, AnyValidator
from promptweave.validators.schema import SchemaValidator, summarize_errors
