from promptweave.models.schemas import (
    MessageRole, ProviderType, ToolChoice,
    ToolCall, ToolResult, Message, ModelOutput, ValidationResult,
    ProviderConfig, ToolSpec, StructuredOutputSpec, GenerationOptions,
)
from promptweave.models.session import Session
