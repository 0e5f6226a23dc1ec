"""
Core data models for PromptWeave.
These are the value types shared by sessions, sources, middleware and backends.
"""
from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class ProviderType(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class ToolChoice(str, Enum):
    AUTO = "auto"
    REQUIRED = "required"
    NONE = "none"


# ──────────────────────────────────────────────────────────────
#  Tool invocations
# ──────────────────────────────────────────────────────────────

class ToolCall(BaseModel):
    """A tool invocation requested by the model."""
    model_config = ConfigDict(frozen=True)

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    id: str = Field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")


class ToolResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    result: Any = None


# ──────────────────────────────────────────────────────────────
#  Message — one entry in a conversation
# ──────────────────────────────────────────────────────────────

class Message(BaseModel):
    """
    A single conversation entry.

    Only assistant messages may carry tool calls or structured content;
    constructing any other role with them is rejected.
    """
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = ""
    attrs: dict[str, Any] = Field(default_factory=dict)
    tool_calls: Optional[list[ToolCall]] = None
    structured_content: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _only_assistant_carries_tools(self) -> "Message":
        if self.role != MessageRole.ASSISTANT:
            if self.tool_calls:
                raise ValueError(f"{self.role.value} messages cannot carry tool calls")
            if self.structured_content is not None:
                raise ValueError(f"{self.role.value} messages cannot carry structured content")
        return self

    @classmethod
    def system(cls, content: str, **attrs: Any) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content, attrs=attrs)

    @classmethod
    def user(cls, content: str, **attrs: Any) -> "Message":
        return cls(role=MessageRole.USER, content=content, attrs=attrs)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Optional[list[ToolCall]] = None,
        structured_content: Optional[dict[str, Any]] = None,
        **attrs: Any,
    ) -> "Message":
        return cls(
            role=MessageRole.ASSISTANT,
            content=content,
            attrs=attrs,
            tool_calls=tool_calls or None,
            structured_content=structured_content,
        )

    @classmethod
    def tool_result(cls, content: str, tool_call_id: str, **attrs: Any) -> "Message":
        return cls(
            role=MessageRole.TOOL_RESULT,
            content=content,
            attrs={"tool_call_id": tool_call_id, **attrs},
        )

    def with_content(self, content: str) -> "Message":
        return self.model_copy(update={"content": content})

    def with_attrs(self, **attrs: Any) -> "Message":
        return self.model_copy(update={"attrs": {**self.attrs, **attrs}})

    def with_structured_content(self, data: dict[str, Any]) -> "Message":
        return self.model_copy(update={"structured_content": data})


# ──────────────────────────────────────────────────────────────
#  Generation results
# ──────────────────────────────────────────────────────────────

class ModelOutput(BaseModel):
    """What a source hands back when it has more than plain text."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    content: str = ""
    role: MessageRole = MessageRole.ASSISTANT
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    structured_output: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    parsed: Any = Field(default=None, exclude=True)   # structured_output parsed into its schema model


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    instruction: Optional[str] = None              # corrective hint fed to the next attempt

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def fail(cls, instruction: str) -> "ValidationResult":
        return cls(is_valid=False, instruction=instruction)


# ──────────────────────────────────────────────────────────────
#  Generation options — what the backend receives
# ──────────────────────────────────────────────────────────────

class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ProviderType = ProviderType.ANTHROPIC
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: Optional[str] = None


class ToolSpec(BaseModel):
    """A tool the model may call. ``handler`` runs locally to produce a result."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: Optional[Callable[..., Any]] = Field(default=None, exclude=True)


class StructuredOutputSpec(BaseModel):
    """Schema the model must answer with, delivered as a forced tool call."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = "structured_output"
    json_schema: dict[str, Any]
    mode: str = "tool"                             # "tool" | "strict"
    model: Optional[type[BaseModel]] = Field(default=None, exclude=True)


class GenerationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    temperature: float = 0.7
    max_tokens: Optional[int] = 1024
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    tools: tuple[ToolSpec, ...] = ()
    tool_choice: Optional[ToolChoice] = None
    structured_output: Optional[StructuredOutputSpec] = None
    sdk_options: dict[str, Any] = Field(default_factory=dict)

    def evolve(self, **changes: Any) -> "GenerationOptions":
        return self.model_copy(update=changes)
