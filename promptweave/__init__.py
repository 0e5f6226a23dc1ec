"""
PromptWeave — composable orchestration of generative-model conversations.

Build an agent from templates, thread an immutable Session through it,
and let sources (literal, interactive, model-backed) fill in content
behind validation-gated retry and a middleware pipeline.
"""
from promptweave.errors import (
    PromptWeaveError, ValidationError, ConfigurationError, GenerationError,
    CallLimitExceeded, EmptyCompositeError,
)
from promptweave.models import (
    Message, MessageRole, ModelOutput, ToolCall, ToolResult, ValidationResult,
    GenerationOptions, ProviderConfig, ProviderType, ToolSpec, ToolChoice,
    StructuredOutputSpec, Session,
)
from promptweave.validators import (
    Validator, FunctionValidator, RegexMatchValidator, RegexNoMatchValidator,
    KeywordValidator, LengthValidator, AllValidator, AnyValidator, SchemaValidator,
)
from promptweave.middleware import (
    Middleware, MiddlewareContext, MiddlewarePipeline, RetryConfig,
    LoggingMiddleware, RateLimitMiddleware, TransformMiddleware,
    ValidationMiddleware, CacheMiddleware, calculate_backoff_delay,
)
from promptweave.backends import GenerationBackend, ScriptedBackend, ProviderBackend
from promptweave.sources import (
    Source, Sources, LiteralSource, ListSource, RandomSource, CallbackSource,
    CLISource, LlmSource, coerce_source,
)
from promptweave.templates import (
    Template, System, User, Assistant, Conditional, Transform,
    Sequence, Loop, Subroutine, Parallel, Agent,
    KeepAll, Best, CustomStrategy, JudgedBest,
    PatternRule, extract_pattern, extract_markdown,
)
from promptweave.config.settings import Settings, load_settings, get_settings, configure_logging

__version__ = "0.1.0"
