"""Validator contract and the callable-backed custom validator."""
from __future__ import annotations

import abc
import inspect
from typing import Any, Awaitable, Callable, Union

from promptweave.models.schemas import ValidationResult
from promptweave.models.session import Session


class Validator(abc.ABC):
    """Judges a piece of generated content in the context of a session."""

    description: str = ""

    @abc.abstractmethod
    async def validate(self, content: str, session: Session) -> ValidationResult:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r})"


ValidatorFn = Callable[
    [str, Session],
    Union[ValidationResult, bool, Awaitable[Union[ValidationResult, bool]]],
]


class FunctionValidator(Validator):
    """
    Wraps a plain function ``fn(content, session)``.

    The function may be sync or async and may return a ValidationResult
    or a bool; ``False`` becomes a failure carrying ``description``.
    """

    def __init__(self, fn: ValidatorFn, description: str = "Custom validation failed"):
        self._fn = fn
        self.description = description

    async def validate(self, content: str, session: Session) -> ValidationResult:
        out: Any = self._fn(content, session)
        if inspect.isawaitable(out):
            out = await out
        if isinstance(out, ValidationResult):
            return out
        return ValidationResult.ok() if out else ValidationResult.fail(self.description)
