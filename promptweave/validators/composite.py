"""Validators that combine other validators."""
from __future__ import annotations

from typing import Iterable

from promptweave.errors import ConfigurationError
from promptweave.models.schemas import ValidationResult
from promptweave.models.session import Session
from promptweave.validators.base import Validator


class AllValidator(Validator):
    """Passes only when every child passes; reports the first failure."""

    def __init__(self, validators: Iterable[Validator], description: str = ""):
        self.validators = list(validators)
        if not self.validators:
            raise ConfigurationError("AllValidator needs at least one validator")
        self.description = description or "All validations must pass"

    async def validate(self, content: str, session: Session) -> ValidationResult:
        for validator in self.validators:
            result = await validator.validate(content, session)
            if not result.is_valid:
                return result
        return ValidationResult.ok()


class AnyValidator(Validator):
    """Passes when at least one child passes."""

    def __init__(self, validators: Iterable[Validator], description: str = ""):
        self.validators = list(validators)
        if not self.validators:
            raise ConfigurationError("AnyValidator needs at least one validator")
        self.description = description or "At least one validation must pass"

    async def validate(self, content: str, session: Session) -> ValidationResult:
        instructions = []
        for validator in self.validators:
            result = await validator.validate(content, session)
            if result.is_valid:
                return result
            if result.instruction:
                instructions.append(result.instruction)
        detail = "; ".join(instructions)
        return ValidationResult.fail(f"{self.description}: {detail}" if detail else self.description)
