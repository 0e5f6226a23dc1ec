"""Backoff arithmetic and retryability checks for the middleware retry executor."""
from __future__ import annotations

import random
import re

from promptweave.errors import (
    CallLimitExceeded, ConfigurationError, PromptWeaveError, ValidationError,
)
from promptweave.middleware.context import RetryConfig

DEFAULT_RETRY_CONFIG = RetryConfig()

_NEVER_RETRY = (ConfigurationError, CallLimitExceeded, ValidationError)


def calculate_backoff_delay(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> float:
    """
    Delay before the attempt that follows ``attempt`` (1-based).

    ``min(base_delay * backoff_factor ** (attempt - 1), max_delay)``,
    optionally spread by up to 25% either way.
    """
    exponential = config.base_delay * config.backoff_factor ** (attempt - 1)
    delay = min(exponential, config.max_delay)
    if config.jitter:
        spread = delay * 0.25
        delay = max(0.0, delay + random.uniform(-spread, spread))
    return delay


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


def is_retryable_error(error: BaseException, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> bool:
    if isinstance(error, _NEVER_RETRY):
        return False
    if isinstance(error, PromptWeaveError) and error.retryable:
        return True
    if getattr(error, "retryable", False) is True:
        return True
    if config.retryable_patterns is None:
        return True

    text = _describe(error)
    for pattern in config.retryable_patterns:
        if isinstance(pattern, re.Pattern):
            if pattern.search(text):
                return True
        elif pattern in text:
            return True
    return False
