"""
Built-in middleware: logging, token-bucket rate limiting, content
transformation, validation reporting and TTL response caching.
"""
from __future__ import annotations

import asyncio
import hashlib
import inspect
import json
import time
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from promptweave.middleware.context import MiddlewareContext
from promptweave.middleware.pipeline import (
    CACHED_RESPONSE_KEY, FEEDBACK_KEY, USE_CACHE_KEY, Middleware,
)
from promptweave.models.schemas import ModelOutput, ValidationResult

logger = structlog.get_logger()


def _content_of(result: Any) -> str:
    if isinstance(result, ModelOutput):
        return result.content
    return "" if result is None else str(result)


# ══════════════════════════════════════════════════════════════
#  LOGGING
# ══════════════════════════════════════════════════════════════

class LoggingMiddleware(Middleware):
    """Logs every attempt, response and error. Never handles errors."""

    def __init__(
        self,
        name: str = "logging",
        log_requests: bool = True,
        log_responses: bool = True,
        log_errors: bool = True,
    ):
        self.name = name
        self.priority = -1000
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.log_errors = log_errors

    async def before_request(self, ctx: MiddlewareContext) -> MiddlewareContext:
        if self.log_requests:
            options = ctx.generation_options
            logger.info(
                "generation_request",
                middleware=self.name,
                attempt=ctx.attempt_number,
                messages=len(ctx.session.messages),
                model=options.provider.model if options else None,
            )
        return ctx

    async def after_response(self, ctx: MiddlewareContext) -> MiddlewareContext:
        if self.log_responses:
            logger.info(
                "generation_response",
                middleware=self.name,
                attempt=ctx.attempt_number,
                content_length=len(_content_of(ctx.result)),
            )
        return ctx

    async def on_error(self, ctx: MiddlewareContext, error: BaseException) -> None:
        if self.log_errors:
            logger.error("generation_error", middleware=self.name,
                         attempt=ctx.attempt_number, error=str(error))
        return None


# ══════════════════════════════════════════════════════════════
#  TOKEN BUCKET RATE LIMITING
# ══════════════════════════════════════════════════════════════

class RateLimitMiddleware(Middleware):
    """
    Token bucket in front of every request.
    Tokens refill at ``requests_per_second`` up to ``burst`` capacity;
    a request with no token available waits until one has accrued.
    """

    def __init__(
        self,
        requests_per_second: float,
        burst: Optional[int] = None,
        name: str = "rate_limit",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.priority = -500
        self.rate = requests_per_second
        self.burst = burst if burst is not None else max(1, int(requests_per_second))
        self._tokens: float = float(self.burst)
        self._clock = clock
        self._last_refill = clock()
        self._sleep = sleep
        self._lock = asyncio.Lock()

    async def before_request(self, ctx: MiddlewareContext) -> MiddlewareContext:
        async with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return ctx
            wait = (1.0 - self._tokens) / max(self.rate, 0.001)
            logger.debug("rate_limit_wait", middleware=self.name, wait=round(wait, 3))
            await self._sleep(wait)
            self._refill()
            self._tokens = max(0.0, self._tokens - 1.0)
        return ctx

    def _refill(self):
        now = self._clock()
        elapsed = now - self._last_refill
        self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
        self._last_refill = now


# ══════════════════════════════════════════════════════════════
#  CONTENT TRANSFORMATION
# ══════════════════════════════════════════════════════════════

ContentTransform = Callable[[str, MiddlewareContext], Union[str, Awaitable[str]]]


class TransformMiddleware(Middleware):
    """Applies ``fn(text, ctx)`` (sync or async) to the generated text."""

    def __init__(self, fn: ContentTransform, name: str = "transform", priority: int = 0):
        self.name = name
        self.priority = priority
        self._fn = fn

    async def transform_content(self, content: str, ctx: MiddlewareContext) -> str:
        out = self._fn(content, ctx)
        if inspect.isawaitable(out):
            out = await out
        return out


# ══════════════════════════════════════════════════════════════
#  VALIDATION (reporting only)
# ══════════════════════════════════════════════════════════════

class ValidationMiddleware(Middleware):
    """
    Runs a validator over generated content and reports failures.

    Content passes through unchanged and no retry is triggered; retrying
    on invalid content is the source's job.
    """

    def __init__(
        self,
        validator,
        on_failure: Optional[Callable[[ValidationResult, MiddlewareContext], Any]] = None,
        name: str = "validation",
        priority: int = 0,
    ):
        self.name = name
        self.priority = priority
        self.validator = validator
        self.on_failure = on_failure

    async def transform_content(self, content: Any, ctx: MiddlewareContext) -> Any:
        result = await self.validator.validate(_content_of(content), ctx.session)
        if not result.is_valid:
            logger.warning("middleware_validation_failed", middleware=self.name,
                           instruction=result.instruction)
            if self.on_failure is not None:
                self.on_failure(result, ctx)
        return content


# ══════════════════════════════════════════════════════════════
#  TTL CACHE
# ══════════════════════════════════════════════════════════════

def default_cache_key(ctx: MiddlewareContext) -> str:
    payload = {
        "session": ctx.session.to_dict(),
        "options": ctx.generation_options.model_dump(mode="json")
        if ctx.generation_options else None,
        "feedback": ctx.aux.get(FEEDBACK_KEY),
    }
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()


class CacheMiddleware(Middleware):
    """
    Reuses responses for identical requests within ``ttl`` seconds.

    On a hit the cached response is planted in ``ctx.aux`` and the
    pipeline skips the call; on a miss the result is stored after the
    response comes back. Content the source's validator rejects is
    evicted, so a validation retry always reaches the backend.
    """

    def __init__(
        self,
        ttl: float = 60.0,
        key_fn: Callable[[MiddlewareContext], str] = default_cache_key,
        storage: Optional[dict[str, tuple[Any, float]]] = None,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.priority = -100
        self.ttl = ttl
        self.key_fn = key_fn
        self.storage = storage if storage is not None else {}
        self._clock = clock

    async def before_request(self, ctx: MiddlewareContext) -> MiddlewareContext:
        key = self.key_fn(ctx)
        cached = self.storage.get(key)
        if cached is None:
            return ctx
        data, stored_at = cached
        if self._clock() - stored_at < self.ttl:
            logger.debug("cache_hit", middleware=self.name, key=key[:16])
            return ctx.with_aux(**{CACHED_RESPONSE_KEY: data, USE_CACHE_KEY: True})
        self.storage.pop(key, None)
        return ctx

    async def after_response(self, ctx: MiddlewareContext) -> MiddlewareContext:
        if not ctx.aux.get(USE_CACHE_KEY) and ctx.result is not None:
            now = self._clock()
            self._prune(now)
            self.storage[self.key_fn(ctx)] = (ctx.result, now)
        return ctx

    async def on_content_rejected(self, ctx: MiddlewareContext) -> None:
        if self.storage.pop(self.key_fn(ctx), None) is not None:
            logger.debug("cache_evicted_rejected", middleware=self.name)

    def _prune(self, now: float) -> None:
        expired = [k for k, (_, stored_at) in self.storage.items() if now - stored_at >= self.ttl]
        for key in expired:
            del self.storage[key]
