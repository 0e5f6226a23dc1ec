"""Text-level validators: regex, keywords and length bounds."""
from __future__ import annotations

import re
from typing import Iterable, Optional, Union

from promptweave.errors import ConfigurationError
from promptweave.models.schemas import ValidationResult
from promptweave.models.session import Session
from promptweave.validators.base import Validator


def _compile(pattern: Union[str, re.Pattern], flags: int = 0) -> re.Pattern:
    if isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern, flags)


class RegexMatchValidator(Validator):
    def __init__(self, pattern: Union[str, re.Pattern], description: str = "", flags: int = 0):
        self.pattern = _compile(pattern, flags)
        self.description = description or f"Content must match pattern: {self.pattern.pattern}"

    async def validate(self, content: str, session: Session) -> ValidationResult:
        if self.pattern.search(content):
            return ValidationResult.ok()
        return ValidationResult.fail(self.description)


class RegexNoMatchValidator(Validator):
    def __init__(self, pattern: Union[str, re.Pattern], description: str = "", flags: int = 0):
        self.pattern = _compile(pattern, flags)
        self.description = description or f"Content must not match pattern: {self.pattern.pattern}"

    async def validate(self, content: str, session: Session) -> ValidationResult:
        if self.pattern.search(content):
            return ValidationResult.fail(self.description)
        return ValidationResult.ok()


class KeywordValidator(Validator):
    """
    Requires every ``include`` keyword and forbids every ``exclude`` keyword.
    Matching is case-insensitive unless ``case_sensitive`` is set.
    """

    def __init__(
        self,
        include: Iterable[str] = (),
        exclude: Iterable[str] = (),
        case_sensitive: bool = False,
        description: str = "",
    ):
        self.include = list(include)
        self.exclude = list(exclude)
        if not self.include and not self.exclude:
            raise ConfigurationError("KeywordValidator needs include or exclude keywords")
        self.case_sensitive = case_sensitive
        self.description = description

    def _norm(self, text: str) -> str:
        return text if self.case_sensitive else text.lower()

    async def validate(self, content: str, session: Session) -> ValidationResult:
        haystack = self._norm(content)
        missing = [k for k in self.include if self._norm(k) not in haystack]
        if missing:
            return ValidationResult.fail(
                self.description or f"Content must include: {', '.join(missing)}"
            )
        found = [k for k in self.exclude if self._norm(k) in haystack]
        if found:
            return ValidationResult.fail(
                self.description or f"Content must not include: {', '.join(found)}"
            )
        return ValidationResult.ok()


class LengthValidator(Validator):
    def __init__(self, min_length: Optional[int] = None, max_length: Optional[int] = None,
                 description: str = ""):
        if min_length is None and max_length is None:
            raise ConfigurationError("LengthValidator needs min_length or max_length")
        if min_length is not None and max_length is not None and min_length > max_length:
            raise ConfigurationError(
                f"min_length ({min_length}) exceeds max_length ({max_length})"
            )
        self.min_length = min_length
        self.max_length = max_length
        self.description = description

    async def validate(self, content: str, session: Session) -> ValidationResult:
        n = len(content)
        if self.min_length is not None and n < self.min_length:
            return ValidationResult.fail(
                self.description
                or f"Content is too short ({n} chars); use at least {self.min_length}"
            )
        if self.max_length is not None and n > self.max_length:
            return ValidationResult.fail(
                self.description
                or f"Content is too long ({n} chars); use at most {self.max_length}"
            )
        return ValidationResult.ok()
