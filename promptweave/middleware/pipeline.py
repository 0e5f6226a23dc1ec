"""
Middleware pipeline — ordered interception around every generation call.

Middleware are sorted by ``priority`` (ascending, ties keep registration
order). For each attempt the pipeline runs:

    before_request   ascending
    → the call itself (skipped when a middleware planted a cached result)
    after_response   descending
    on_error         ascending, first non-None context recovers

Retries are driven by tenacity: recovered errors retry immediately,
retryable errors back off exponentially, everything else propagates.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from promptweave.errors import ConfigurationError
from promptweave.middleware.context import MiddlewareContext, RetryConfig
from promptweave.middleware.retry import (
    DEFAULT_RETRY_CONFIG, calculate_backoff_delay, is_retryable_error,
)

logger = structlog.get_logger()

T = TypeVar("T")

CACHED_RESPONSE_KEY = "cached_response"
USE_CACHE_KEY = "use_cache"
FEEDBACK_KEY = "feedback"               # corrective instruction of the validation retry


class Middleware:
    """
    Base class for pipeline middleware. Override only the hooks you need;
    the defaults pass everything through untouched.
    """
    name: str = "middleware"
    priority: int = 0

    async def before_request(self, ctx: MiddlewareContext) -> MiddlewareContext:
        return ctx

    async def after_response(self, ctx: MiddlewareContext) -> MiddlewareContext:
        return ctx

    async def on_error(
        self, ctx: MiddlewareContext, error: BaseException,
    ) -> Optional[MiddlewareContext]:
        return None

    async def transform_content(self, content: Any, ctx: MiddlewareContext) -> Any:
        return content

    async def on_content_rejected(self, ctx: MiddlewareContext) -> None:
        """Called when the source's validator rejected what this request produced."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class _Recovered(Exception):
    """Internal marker: a middleware handled the error and asked for another attempt."""

    def __init__(self, error: BaseException, ctx: MiddlewareContext):
        self.error = error
        self.ctx = ctx
        super().__init__(str(error))


class MiddlewarePipeline:

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self._middlewares: list[Middleware] = []
        self._sleep = sleep

    def use(self, middleware: Middleware) -> "MiddlewarePipeline":
        self._middlewares.append(middleware)
        # list.sort is stable, so equal priorities keep insertion order
        self._middlewares.sort(key=lambda m: m.priority)
        return self

    @property
    def middlewares(self) -> list[Middleware]:
        return list(self._middlewares)

    def __len__(self) -> int:
        return len(self._middlewares)

    def clone(self) -> "MiddlewarePipeline":
        copy = MiddlewarePipeline(sleep=self._sleep)
        copy._middlewares = list(self._middlewares)
        return copy

    def clear(self) -> "MiddlewarePipeline":
        self._middlewares = []
        return self

    # ── Hook runners ──────────────────────────────────

    async def run_before_request(self, ctx: MiddlewareContext) -> MiddlewareContext:
        for middleware in self._middlewares:
            ctx = await middleware.before_request(ctx)
        return ctx

    async def run_after_response(self, ctx: MiddlewareContext) -> MiddlewareContext:
        for middleware in reversed(self._middlewares):
            ctx = await middleware.after_response(ctx)
        return ctx

    async def run_error_handlers(
        self, ctx: MiddlewareContext, error: BaseException,
    ) -> Optional[MiddlewareContext]:
        for middleware in self._middlewares:
            recovered = await middleware.on_error(ctx, error)
            if recovered is not None:
                logger.info("middleware_recovered_error", middleware=middleware.name,
                            attempt=ctx.attempt_number, error=str(error))
                return recovered
        return None

    async def transform_content(self, content: Any, ctx: MiddlewareContext) -> Any:
        for middleware in self._middlewares:
            content = await middleware.transform_content(content, ctx)
        return content

    async def run_content_rejected(self, ctx: MiddlewareContext) -> None:
        for middleware in self._middlewares:
            await middleware.on_content_rejected(ctx)

    # ── Retry executor ────────────────────────────────

    async def execute_with_retry(
        self,
        fn: Callable[[MiddlewareContext], Awaitable[T]],
        ctx: MiddlewareContext,
        config: RetryConfig = DEFAULT_RETRY_CONFIG,
    ) -> T:
        """
        Run ``fn`` through the pipeline, retrying per ``config``.

        Raises ConfigurationError when ``config.max_attempts`` is not
        positive; otherwise re-raises the last underlying error once the
        attempts are used up or a non-retryable error occurs.
        """
        if config.max_attempts <= 0:
            raise ConfigurationError(
                f"max_attempts must be at least 1, got {config.max_attempts}"
            )

        def should_retry(error: BaseException) -> bool:
            if isinstance(error, _Recovered):
                return True
            return is_retryable_error(error, config)

        def wait(state: RetryCallState) -> float:
            error = state.outcome.exception() if state.outcome else None
            if isinstance(error, _Recovered):
                return 0.0
            return calculate_backoff_delay(state.attempt_number, config)

        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception()
            underlying = error.error if isinstance(error, _Recovered) else error
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.warning("generation_retry", attempt=state.attempt_number,
                           delay=round(delay, 3), error=str(underlying))
            if config.on_retry is not None:
                config.on_retry(underlying, state.attempt_number, delay)

        current = ctx
        last_error: Optional[BaseException] = None
        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.max_attempts),
            wait=wait,
            retry=retry_if_exception(should_retry),
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_ctx = current.evolve(
                        attempt_number=attempt.retry_state.attempt_number,
                        previous_error=last_error,
                    )
                    try:
                        return await self._attempt(fn, attempt_ctx)
                    except Exception as e:
                        last_error = e
                        recovered = await self.run_error_handlers(attempt_ctx, e)
                        if recovered is None:
                            raise
                        current = recovered
                        raise _Recovered(e, recovered) from e
        except _Recovered as final:
            raise final.error
        raise RuntimeError("retry loop completed without a result")

    async def _attempt(
        self, fn: Callable[[MiddlewareContext], Awaitable[T]], ctx: MiddlewareContext,
    ) -> T:
        before = await self.run_before_request(ctx)
        if before.aux.get(USE_CACHE_KEY):
            result = before.aux.get(CACHED_RESPONSE_KEY)
        else:
            result = await fn(before)
        await self.run_after_response(before.evolve(result=result))
        return result
