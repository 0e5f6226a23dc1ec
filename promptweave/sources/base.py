"""
Source — anything that produces content for a template.

A Source owns its validation policy. ``get_content`` runs the
validation-gated retry loop:

    generate → (no validator) return
             → validate → pass: return
                        → fail, attempts left: regenerate with the
                          corrective instruction as feedback
                        → fail, exhausted: raise ValidationError, or
                          return the last candidate when
                          ``raise_on_failure`` is off

Each generation goes through the source's middleware pipeline, which
handles transient-error retry separately from validation retry.
Sources never touch the session they are given.
"""
from __future__ import annotations

import abc
import copy
from typing import Any, Optional, Union

import structlog

from promptweave.errors import ConfigurationError, ValidationError
from promptweave.middleware.context import MiddlewareContext, RetryConfig
from promptweave.middleware.pipeline import FEEDBACK_KEY, Middleware, MiddlewarePipeline
from promptweave.models.schemas import GenerationOptions, ModelOutput, ValidationResult
from promptweave.models.session import Session
from promptweave.validators.base import Validator

logger = structlog.get_logger()

Content = Union[str, ModelOutput]


def content_text(content: Content) -> str:
    return content.content if isinstance(content, ModelOutput) else content


class Source(abc.ABC):

    # Non-model sources have nothing transient to retry
    default_retry_config: RetryConfig = RetryConfig(max_attempts=1)

    def __init__(
        self,
        validator: Optional[Validator] = None,
        max_attempts: int = 1,
        raise_on_failure: bool = True,
        pipeline: Optional[MiddlewarePipeline] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {max_attempts}")
        self.validator = validator
        self.max_attempts = max_attempts
        self.raise_on_failure = raise_on_failure
        self.pipeline = pipeline if pipeline is not None else MiddlewarePipeline()
        self.retry_config = retry_config or self.default_retry_config

    @abc.abstractmethod
    async def _generate(self, session: Session, feedback: Optional[str]) -> Content:
        """Produce one candidate. ``feedback`` is the last validator instruction."""

    def generation_options(self) -> Optional[GenerationOptions]:
        return None

    async def _intrinsic_check(self, candidate: Content) -> Optional[ValidationResult]:
        """Source-specific check run before the validator (e.g. schema parsing)."""
        return None

    # ── Validation-gated retry ────────────────────────

    async def get_content(self, session: Session) -> Content:
        feedback: Optional[str] = None
        last: Optional[Content] = None
        last_result: Optional[ValidationResult] = None

        for attempt in range(1, self.max_attempts + 1):
            ctx = self._request_context(session, feedback)
            candidate = await self._produce(ctx, feedback)

            result = await self._intrinsic_check(candidate)
            if (result is None or result.is_valid) and self.validator is not None:
                result = await self.validator.validate(content_text(candidate), session)
            if result is None or result.is_valid:
                return candidate

            await self.pipeline.run_content_rejected(ctx)
            last, last_result = candidate, result
            feedback = result.instruction
            if attempt < self.max_attempts:
                logger.info("validation_retry", source=type(self).__name__,
                            attempt=attempt, max_attempts=self.max_attempts,
                            instruction=result.instruction)

        instruction = last_result.instruction if last_result else None
        if self.raise_on_failure:
            raise ValidationError(
                f"Validation failed after {self.max_attempts} attempt(s): {instruction}",
                instruction=instruction,
                attempts=self.max_attempts,
            )
        logger.warning("validation_exhausted_returning_last", source=type(self).__name__,
                       attempts=self.max_attempts, instruction=instruction)
        return last

    def _prepare_session(self, session: Session, feedback: Optional[str]) -> Session:
        """The session the generator actually sees for this attempt."""
        return session

    def _request_context(self, session: Session, feedback: Optional[str]) -> MiddlewareContext:
        return MiddlewareContext(
            session=self._prepare_session(session, feedback),
            generation_options=self.generation_options(),
            aux={FEEDBACK_KEY: feedback} if feedback else {},
        )

    async def _produce(self, ctx: MiddlewareContext, feedback: Optional[str]) -> Content:
        async def call(attempt_ctx: MiddlewareContext) -> Content:
            return await self._generate(attempt_ctx.session, feedback)

        result = await self.pipeline.execute_with_retry(call, ctx, self.retry_config)
        text = content_text(result)
        transformed = await self.pipeline.transform_content(text, ctx)
        if isinstance(result, ModelOutput):
            if transformed == text:
                return result
            return result.model_copy(update={"content": transformed})
        return transformed

    # ── Immutable builders ────────────────────────────

    def _replace(self, **changes: Any) -> "Source":
        clone = copy.copy(self)
        for name, value in changes.items():
            setattr(clone, name, value)
        return clone

    def validate(self, validator: Validator) -> "Source":
        return self._replace(validator=validator)

    def with_max_attempts(self, max_attempts: int) -> "Source":
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {max_attempts}")
        return self._replace(max_attempts=max_attempts)

    def with_raise_on_failure(self, raise_on_failure: bool) -> "Source":
        return self._replace(raise_on_failure=raise_on_failure)

    def use(self, middleware: Middleware) -> "Source":
        return self._replace(pipeline=self.pipeline.clone().use(middleware))

    def with_retry(self, config: Optional[RetryConfig] = None, **overrides: Any) -> "Source":
        base = config or self.retry_config
        return self._replace(retry_config=base.evolve(**overrides) if overrides else base)

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(validator={self.validator!r}, "
                f"max_attempts={self.max_attempts}, raise_on_failure={self.raise_on_failure})")
