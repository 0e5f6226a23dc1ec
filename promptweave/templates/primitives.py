"""
Primitive templates: each appends at most one message (plus tool results)
or reshapes the session without talking to a source.
"""
from __future__ import annotations

import inspect
import json
from typing import Any, Callable, Optional, Sequence as SequenceT, Union

from promptweave.errors import ConfigurationError
from promptweave.models.schemas import Message, MessageRole, ModelOutput
from promptweave.models.session import Session
from promptweave.sources import coerce_source
from promptweave.sources.base import Content, Source
from promptweave.templates.base import (
    SessionPredicate, Template, default_assistant_source, default_user_source,
    evaluate_predicate,
)

ContentInput = Union[str, SequenceT[str], Callable[[Session], Any], Source, None]


def _as_output(content: Content) -> ModelOutput:
    if isinstance(content, ModelOutput):
        return content
    return ModelOutput(content=content)


def append_output(session: Session, content: Content) -> Session:
    """Append an assistant reply plus one tool-result message per tool result."""
    output = _as_output(content)
    session = session.add_message(Message(
        role=MessageRole.ASSISTANT,
        content=output.content,
        attrs=dict(output.metadata),
        tool_calls=list(output.tool_calls) or None,
        structured_content=output.structured_output,
    ))
    for result in output.tool_results:
        body = result.result if isinstance(result.result, str) else json.dumps(
            result.result, default=str,
        )
        session = session.add_message(Message.tool_result(body, result.tool_call_id))
    return session


# ──────────────────────────────────────────────────────────────
#  Message primitives
# ──────────────────────────────────────────────────────────────

class System(Template):

    def __init__(self, content: ContentInput):
        self.source = coerce_source(content)
        if self.source is None:
            raise ConfigurationError("System template requires content or a source")

    async def _run(self, session: Session) -> Session:
        content = await self.source.get_content(session)
        return session.add_message(Message.system(_as_output(content).content))


class User(Template):
    """Appends a user message from its source, or the inherited default."""

    def __init__(self, content: ContentInput = None):
        self.source = coerce_source(content)

    async def _run(self, session: Session) -> Session:
        source = self.source or default_user_source()
        if source is None:
            raise ConfigurationError("User template has no source and no default user source")
        content = await source.get_content(session)
        return session.add_message(Message.user(_as_output(content).content))


ExtractSpec = Union[bool, SequenceT[str], dict[str, str], None]


class Assistant(Template):
    """
    Appends the assistant reply, then one tool-result message per tool
    result the source produced.

    ``extract_to_vars`` copies structured output into session vars:
    ``True`` copies every field, a list copies the named fields, and a
    mapping copies ``field → var name``.
    """

    def __init__(self, content: ContentInput = None, extract_to_vars: ExtractSpec = None):
        self.source = coerce_source(content)
        self.extract_to_vars = extract_to_vars

    async def _run(self, session: Session) -> Session:
        source = self.source or default_assistant_source()
        if source is None:
            raise ConfigurationError(
                "Assistant template has no source and no default assistant source"
            )
        output = _as_output(await source.get_content(session))
        session = append_output(session, output)

        if self.extract_to_vars and output.structured_output is not None:
            session = session.with_vars(self._extract(output.structured_output))
        return session

    def _extract(self, data: dict[str, Any]) -> dict[str, Any]:
        spec = self.extract_to_vars
        if spec is True:
            return dict(data)
        if isinstance(spec, dict):
            return {var: data[field] for field, var in spec.items() if field in data}
        return {field: data[field] for field in spec if field in data}


# ──────────────────────────────────────────────────────────────
#  Control / reshaping primitives
# ──────────────────────────────────────────────────────────────

class Conditional(Template):
    """Routes to ``then`` when the predicate holds, else to ``otherwise`` (or no-op)."""

    def __init__(
        self,
        condition: SessionPredicate,
        then: Template,
        otherwise: Optional[Template] = None,
    ):
        self.condition = condition
        self.then = then
        self.otherwise = otherwise

    async def _run(self, session: Session) -> Session:
        if await evaluate_predicate(self.condition, session):
            return await self.then.execute(session)
        if self.otherwise is not None:
            return await self.otherwise.execute(session)
        return session


SessionTransform = Callable[[Session], Any]


class Transform(Template):
    """Applies one or more session functions (sync or async) in order."""

    def __init__(self, fn: Union[SessionTransform, SequenceT[SessionTransform]]):
        self.fns = list(fn) if isinstance(fn, (list, tuple)) else [fn]
        if not self.fns:
            raise ConfigurationError("Transform needs at least one function")

    async def _run(self, session: Session) -> Session:
        for fn in self.fns:
            out = fn(session)
            if inspect.isawaitable(out):
                out = await out
            if not isinstance(out, Session):
                raise ConfigurationError(
                    f"Transform function returned {type(out).__name__}, expected Session"
                )
            session = out
        return session
