"""
Content sources for templates.

Templates accept either a Source or a shorthand that is resolved once,
when the template is built:

    "text"          → LiteralSource (with {{var}} interpolation)
    ["a", "b"]      → ListSource
    fn(session)     → CallbackSource
"""
from __future__ import annotations

from typing import Any, Optional

from promptweave.errors import ConfigurationError
from promptweave.sources.base import Content, Source, content_text
from promptweave.sources.text import CallbackSource, ListSource, LiteralSource, RandomSource
from promptweave.sources.interactive import (
    CLISource, ConsolePrompter, InputPrompter, ScriptedPrompter,
)
from promptweave.sources.llm import LlmSource


def coerce_source(value: Any) -> Optional[Source]:
    if value is None or isinstance(value, Source):
        return value
    if isinstance(value, str):
        return LiteralSource(value)
    if isinstance(value, (list, tuple)):
        return ListSource(value)
    if callable(value):
        return CallbackSource(value)
    raise ConfigurationError(f"Cannot use {type(value).__name__} as a content source")


class Sources:
    """Factory shorthands: ``Sources.llm().openai().temperature(0.2)``."""

    @staticmethod
    def literal(content: str, **kwargs: Any) -> LiteralSource:
        return LiteralSource(content, **kwargs)

    @staticmethod
    def list(items, loop: bool = False, **kwargs: Any) -> ListSource:
        return ListSource(items, loop=loop, **kwargs)

    @staticmethod
    def random(items, seed: Optional[int] = None, **kwargs: Any) -> RandomSource:
        return RandomSource(items, seed=seed, **kwargs)

    @staticmethod
    def callback(fn, **kwargs: Any) -> CallbackSource:
        return CallbackSource(fn, **kwargs)

    @staticmethod
    def cli(prompt: str = "Your input: ", default: Optional[str] = None, **kwargs: Any) -> CLISource:
        return CLISource(prompt, default=default, **kwargs)

    @staticmethod
    def llm(**kwargs: Any) -> LlmSource:
        return LlmSource(**kwargs)

    @staticmethod
    def schema(model, function_name: str = "structured_output", **kwargs: Any) -> LlmSource:
        return LlmSource(**kwargs).with_schema(model, function_name=function_name)
