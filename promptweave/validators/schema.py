"""Validates that content is JSON conforming to a pydantic model."""
from __future__ import annotations

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from promptweave.models.schemas import ValidationResult
from promptweave.models.session import Session
from promptweave.validators.base import Validator


def summarize_errors(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)


class SchemaValidator(Validator):

    def __init__(self, model: type[BaseModel], description: str = ""):
        self.model = model
        self.description = description or f"Content must be JSON matching {model.__name__}"

    async def validate(self, content: str, session: Session) -> ValidationResult:
        try:
            self.model.model_validate_json(content)
        except PydanticValidationError as e:
            return ValidationResult.fail(f"{self.description} ({summarize_errors(e)})")
        return ValidationResult.ok()
