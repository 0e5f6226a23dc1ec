"""
Middleware pipeline for generation calls.

Ordered before/after/error/transform hooks plus a retry executor with
exponential backoff, and the built-in logging, rate limiting, transform,
validation and cache middleware.
"""
from promptweave.middleware.context import (
    MiddlewareContext, RetryConfig, DEFAULT_RETRYABLE_PATTERNS,
)
from promptweave.middleware.retry import (
    DEFAULT_RETRY_CONFIG, calculate_backoff_delay, is_retryable_error,
)
from promptweave.middleware.pipeline import Middleware, MiddlewarePipeline
from promptweave.middleware.builtin import (
    LoggingMiddleware, RateLimitMiddleware, TransformMiddleware,
    ValidationMiddleware, CacheMiddleware,
)
