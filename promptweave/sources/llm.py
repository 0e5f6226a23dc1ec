"""
Model-backed source.

Every builder returns a new LlmSource; the original is never changed.
All sources derived from one another share a single CallLimiter, so a
debug call cap covers the whole lineage.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, Optional, Union

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from promptweave.backends.base import GenerationBackend
from promptweave.errors import GenerationError, PromptWeaveError
from promptweave.middleware.retry import DEFAULT_RETRY_CONFIG
from promptweave.models.schemas import (
    GenerationOptions, Message, MessageRole, ModelOutput, ProviderConfig, ProviderType,
    StructuredOutputSpec, ToolChoice, ToolSpec, ValidationResult,
)
from promptweave.models.session import Session
from promptweave.sources.base import Content, Source
from promptweave.utils.call_limit import CallLimiter
from promptweave.validators.schema import summarize_errors

logger = structlog.get_logger()


class LlmSource(Source):

    default_retry_config = DEFAULT_RETRY_CONFIG

    def __init__(
        self,
        options: Optional[GenerationOptions] = None,
        backend: Optional[GenerationBackend] = None,
        call_limiter: Optional[CallLimiter] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.options = options or GenerationOptions()
        self._backend = backend
        self.call_limiter = call_limiter or CallLimiter()

    @classmethod
    def from_settings(cls, settings, backend: Optional[GenerationBackend] = None) -> "LlmSource":
        """Build a source from a loaded Settings object."""
        return cls(
            options=GenerationOptions(
                provider=settings.provider_config(),
                temperature=settings.llm.temperature,
                max_tokens=settings.llm.max_tokens,
            ),
            backend=backend,
            call_limiter=CallLimiter(settings.call_limit),
            retry_config=settings.retry_config(),
        )

    @property
    def backend(self) -> GenerationBackend:
        if self._backend is None:
            from promptweave.backends.providers import ProviderBackend
            self._backend = ProviderBackend()
        return self._backend

    def generation_options(self) -> GenerationOptions:
        return self.options

    # ── Generation ────────────────────────────────────

    def _prepare_session(self, session: Session, feedback: Optional[str]) -> Session:
        if not feedback:
            return session
        # the corrective hint is for the model only, not for the echo stream
        return session.with_echo(False).add_message(Message.user(feedback))

    async def _generate(self, session: Session, feedback: Optional[str]) -> Content:
        self.call_limiter.acquire()
        try:
            output = await self.backend.generate(session, self.options)
        except PromptWeaveError:
            raise
        except Exception as e:
            raise GenerationError(f"{type(e).__name__}: {e}") from e

        if output.role != MessageRole.ASSISTANT:
            raise GenerationError(
                f"Backend returned a {output.role.value} message; expected assistant"
            )
        return output

    async def _intrinsic_check(self, candidate: Content) -> Optional[ValidationResult]:
        spec = self.options.structured_output
        if spec is None or not isinstance(candidate, ModelOutput):
            return None
        if candidate.structured_output is None:
            return ValidationResult.fail(
                f"Respond by calling {spec.name} with the required structure"
            )
        if spec.model is None:
            return ValidationResult.ok()
        try:
            candidate.parsed = spec.model.model_validate(candidate.structured_output)
        except PydanticValidationError as e:
            logger.info("structured_output_invalid", schema=spec.name, errors=e.error_count())
            return ValidationResult.fail(
                f"Structured output does not match {spec.name}: {summarize_errors(e)}"
            )
        return ValidationResult.ok()

    # ── Builders ──────────────────────────────────────

    def with_options(self, **changes: Any) -> "LlmSource":
        return self._replace(options=self.options.evolve(**changes))

    def _with_provider(self, **changes: Any) -> "LlmSource":
        provider = self.options.provider.model_copy(update=changes)
        return self.with_options(provider=provider)

    def openai(self, model: Optional[str] = None, api_key: Optional[str] = None) -> "LlmSource":
        changes: dict[str, Any] = {"type": ProviderType.OPENAI, "model": model or "gpt-4o-mini"}
        if api_key is not None:
            changes["api_key"] = api_key
        return self._with_provider(**changes)

    def anthropic(self, model: Optional[str] = None, api_key: Optional[str] = None) -> "LlmSource":
        changes: dict[str, Any] = {
            "type": ProviderType.ANTHROPIC,
            "model": model or "claude-sonnet-4-20250514",
        }
        if api_key is not None:
            changes["api_key"] = api_key
        return self._with_provider(**changes)

    def provider(self, config: ProviderConfig) -> "LlmSource":
        return self.with_options(provider=config)

    def model(self, name: str) -> "LlmSource":
        return self._with_provider(model=name)

    def api_key(self, key: str) -> "LlmSource":
        return self._with_provider(api_key=key)

    def temperature(self, value: float) -> "LlmSource":
        return self.with_options(temperature=value)

    def max_tokens(self, value: int) -> "LlmSource":
        return self.with_options(max_tokens=value)

    def top_p(self, value: float) -> "LlmSource":
        return self.with_options(top_p=value)

    def top_k(self, value: int) -> "LlmSource":
        return self.with_options(top_k=value)

    def with_tool(
        self,
        tool: Union[ToolSpec, str],
        description: str = "",
        parameters: Optional[dict[str, Any]] = None,
        handler: Optional[Callable[..., Any]] = None,
    ) -> "LlmSource":
        if isinstance(tool, str):
            fields: dict[str, Any] = {"name": tool, "description": description, "handler": handler}
            if parameters is not None:
                fields["parameters"] = parameters
            tool = ToolSpec(**fields)
        return self.with_options(tools=self.options.tools + (tool,))

    def with_tools(self, tools: Iterable[ToolSpec]) -> "LlmSource":
        return self.with_options(tools=self.options.tools + tuple(tools))

    def tool_choice(self, choice: Union[ToolChoice, str]) -> "LlmSource":
        return self.with_options(tool_choice=ToolChoice(choice))

    def with_schema(
        self,
        model: type[BaseModel],
        function_name: str = "structured_output",
        mode: str = "tool",
    ) -> "LlmSource":
        spec = StructuredOutputSpec(
            name=function_name,
            json_schema=model.model_json_schema(),
            mode=mode,
            model=model,
        )
        return self.with_options(structured_output=spec)

    def max_calls(self, limit: Optional[int]) -> "LlmSource":
        """Cap model calls for this source and everything derived from it."""
        return self._replace(call_limiter=CallLimiter(limit))

    def with_backend(self, backend: GenerationBackend) -> "LlmSource":
        return self._replace(_backend=backend)
