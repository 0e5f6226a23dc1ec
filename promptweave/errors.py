"""
Error hierarchy for PromptWeave.

Every error carries a ``retryable`` flag that the middleware retry
executor consults before falling back to message pattern matching.
"""
from __future__ import annotations

from typing import Optional


class PromptWeaveError(Exception):
    """Base exception for all orchestration failures."""

    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class ValidationError(PromptWeaveError):
    """Generated content was rejected after all attempts were used."""

    def __init__(self, message: str, instruction: Optional[str] = None, attempts: int = 0):
        self.instruction = instruction
        self.attempts = attempts
        super().__init__(message, retryable=False)


class ConfigurationError(PromptWeaveError):
    """Invalid setup: bad retry config, missing credentials, empty source list."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class GenerationError(PromptWeaveError):
    """The generation backend failed or returned an unusable response."""


class CallLimitExceeded(PromptWeaveError):
    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(
            f"Model call limit exceeded: {count} calls (limit {limit})",
            retryable=False,
        )


class EmptyCompositeError(PromptWeaveError):
    """A composite that requires children was executed without any."""

    def __init__(self, template: str):
        self.template = template
        super().__init__(f"{template} has no child templates", retryable=False)
