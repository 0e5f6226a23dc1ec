"""Shared model-call counter used to cap runaway generation in debug runs."""
from __future__ import annotations

import threading
from typing import Optional

import structlog

from promptweave.errors import CallLimitExceeded

logger = structlog.get_logger()


class CallLimiter:
    """
    Counts model calls against an optional ceiling.

    One instance is handed to every clone of a source, so copies made by
    ``with_*`` builders draw from the same budget.
    """

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        return self._count

    def acquire(self) -> int:
        with self._lock:
            if self.limit is not None and self._count >= self.limit:
                logger.error("llm_call_limit_exceeded", count=self._count, limit=self.limit)
                raise CallLimitExceeded(self._count + 1, self.limit)
            self._count += 1
            return self._count

    def reset(self) -> None:
        with self._lock:
            self._count = 0
