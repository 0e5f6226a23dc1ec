"""
Template contract and default-source scoping.

Composites can declare default User/Assistant sources for children that
were built without one. The defaults live in a context variable scoped
to the composite's execution, so nesting works naturally: the innermost
composite that declares a default wins, and children are never mutated.
"""
from __future__ import annotations

import abc
import inspect
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Iterator, Optional, Union

from promptweave.models.session import Session
from promptweave.sources.base import Source

SessionPredicate = Callable[[Session], Union[bool, Awaitable[bool]]]

_default_sources: ContextVar[tuple[Optional[Source], Optional[Source]]] = ContextVar(
    "promptweave_default_sources", default=(None, None),
)


@contextmanager
def default_sources(
    user: Optional[Source] = None, assistant: Optional[Source] = None,
) -> Iterator[None]:
    outer_user, outer_assistant = _default_sources.get()
    token = _default_sources.set((user or outer_user, assistant or outer_assistant))
    try:
        yield
    finally:
        _default_sources.reset(token)


def default_user_source() -> Optional[Source]:
    return _default_sources.get()[0]


def default_assistant_source() -> Optional[Source]:
    return _default_sources.get()[1]


def rejoin(original: Session, merged: Session) -> Session:
    """
    Restore ``original``'s echo settings on a session built from a quiet
    copy of it, echoing only the messages ``merged`` added on top.
    """
    count = len(original.messages)
    if merged.messages[:count] != original.messages:
        return merged.with_echo(original.echo, original.observer)
    added = merged.messages[count:]
    if not added and merged.vars == original.vars and merged.attrs == original.attrs:
        return original
    base = merged.with_echo(original.echo, original.observer)
    return base.model_copy(update={"messages": original.messages}).add_messages(added)


async def evaluate_predicate(predicate: SessionPredicate, session: Session) -> bool:
    out: Any = predicate(session)
    if inspect.isawaitable(out):
        out = await out
    return bool(out)


class Template(abc.ABC):
    """A node in an agent program: takes a session, returns a new one."""

    async def execute(self, session: Optional[Session] = None) -> Session:
        return await self._run(session if session is not None else Session())

    @abc.abstractmethod
    async def _run(self, session: Session) -> Session:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
