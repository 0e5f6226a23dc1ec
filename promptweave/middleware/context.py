"""Request context and retry configuration passed through the middleware pipeline."""
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Union

from promptweave.models.schemas import GenerationOptions
from promptweave.models.session import Session

# Transient failures worth another attempt when no patterns are configured
DEFAULT_RETRYABLE_PATTERNS: tuple[Union[str, re.Pattern], ...] = (
    re.compile(r"rate.?limit", re.IGNORECASE),
    re.compile(r"timeout", re.IGNORECASE),
    re.compile(r"timed out", re.IGNORECASE),
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"connection", re.IGNORECASE),
    re.compile(r"\b50[234]\b"),
    "ECONNRESET",
    "ETIMEDOUT",
)


@dataclass(frozen=True)
class MiddlewareContext:
    """
    Per-attempt view of a generation request.

    ``aux`` is the scratch area middleware use to talk to each other
    (e.g. the cache marks a hit there so the call is skipped).
    """
    session: Session
    generation_options: Optional[GenerationOptions] = None
    attempt_number: int = 1
    previous_error: Optional[BaseException] = None
    aux: dict[str, Any] = field(default_factory=dict)
    result: Any = None                  # populated for after_response hooks

    def evolve(self, **changes: Any) -> "MiddlewareContext":
        return replace(self, **changes)

    def with_aux(self, **values: Any) -> "MiddlewareContext":
        return replace(self, aux={**self.aux, **values})


OnRetry = Callable[[BaseException, int, float], Any]


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0             # seconds
    max_delay: float = 10.0             # seconds
    backoff_factor: float = 2.0
    jitter: bool = True
    # None means every error is retryable; an empty list means none are
    retryable_patterns: Optional[list[Union[str, re.Pattern]]] = field(
        default_factory=lambda: list(DEFAULT_RETRYABLE_PATTERNS)
    )
    on_retry: Optional[OnRetry] = None  # (error, attempt, delay) before each sleep

    def evolve(self, **changes: Any) -> "RetryConfig":
        return replace(self, **changes)
