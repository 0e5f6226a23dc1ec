"""
Composite templates: Sequence, Loop and Subroutine.

A composite runs its children in order, threading the session through
them. Any composite may declare default User/Assistant sources that
children without their own source pick up while it runs.
"""
from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import structlog

from promptweave.errors import EmptyCompositeError
from promptweave.models.session import Session
from promptweave.sources import coerce_source
from promptweave.templates.base import (
    SessionPredicate, Template, default_sources, evaluate_predicate, rejoin,
)
from promptweave.templates.primitives import (
    Assistant, Conditional, ContentInput, ExtractSpec, System, Transform, User,
)

logger = structlog.get_logger()

MAX_ITERATIONS = 100  # ceiling for loops that never satisfy their exit predicate

Body = Union[Template, Iterable[Template], None]


def _as_list(body: Body) -> list[Template]:
    if body is None:
        return []
    if isinstance(body, Template):
        return [body]
    return list(body)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Composite(Template):

    def __init__(
        self,
        templates: Body = None,
        default_user_source: ContentInput = None,
        default_assistant_source: ContentInput = None,
    ):
        self.templates: list[Template] = _as_list(templates)
        self.default_user_source = coerce_source(default_user_source)
        self.default_assistant_source = coerce_source(default_assistant_source)

    async def _run(self, session: Session) -> Session:
        with default_sources(self.default_user_source, self.default_assistant_source):
            return await self._run_body(session)

    async def _run_body(self, session: Session) -> Session:
        return await self._run_children(session)

    async def _run_children(self, session: Session) -> Session:
        for template in self.templates:
            session = await template.execute(session)
        return session

    # ── Builder helpers ───────────────────────────────

    def add(self, template: Template) -> "Composite":
        self.templates.append(template)
        return self

    def add_system(self, content: ContentInput) -> "Composite":
        return self.add(System(content))

    def add_user(self, content: ContentInput = None) -> "Composite":
        return self.add(User(content))

    def add_assistant(
        self, content: ContentInput = None, extract_to_vars: ExtractSpec = None,
    ) -> "Composite":
        return self.add(Assistant(content, extract_to_vars=extract_to_vars))

    def add_transform(self, fn) -> "Composite":
        return self.add(Transform(fn))

    def add_if(
        self,
        condition: SessionPredicate,
        then: Template,
        otherwise: Optional[Template] = None,
    ) -> "Composite":
        return self.add(Conditional(condition, then, otherwise))

    def add_loop(
        self,
        body: Body,
        until: Optional[SessionPredicate] = None,
        max_iterations: int = MAX_ITERATIONS,
    ) -> "Composite":
        return self.add(Loop(body, until=until, max_iterations=max_iterations))

    def add_subroutine(self, body: Body, **options: Any) -> "Composite":
        return self.add(Subroutine(body, **options))

    def add_parallel(self, parallel: Template) -> "Composite":
        return self.add(parallel)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({len(self.templates)} children)"


class Sequence(Composite):
    """Runs children in order. An empty sequence returns its input."""


class Loop(Composite):
    """
    Repeats the body until ``until(session)`` holds.

    The predicate sees the current session before every iteration. After
    ``max_iterations`` the loop logs a warning and exits without raising.
    With no predicate the body runs exactly once.
    """

    def __init__(
        self,
        body: Body = None,
        until: Optional[SessionPredicate] = None,
        max_iterations: int = MAX_ITERATIONS,
        **kwargs: Any,
    ):
        super().__init__(body, **kwargs)
        self.until = until
        self.max_iterations = max_iterations

    async def _run_body(self, session: Session) -> Session:
        if not self.templates:
            raise EmptyCompositeError("Loop")

        if self.until is None:
            logger.warning("loop_without_exit_condition", action="executing_once")
            return await self._run_children(session)

        iteration = 0
        while iteration < self.max_iterations:
            if await evaluate_predicate(self.until, session):
                return session
            session = await self._run_children(session)
            iteration += 1

        if not await evaluate_predicate(self.until, session):
            logger.warning("loop_max_iterations_reached", max_iterations=self.max_iterations)
        return session


InitFn = Callable[[Session], Union[Session, Awaitable[Session]]]
SquashFn = Callable[[Session, Session], Union[Session, Awaitable[Session]]]


def inherit_parent(parent: Session) -> Session:
    """Start the child as a copy of the parent (messages, vars and attrs)."""
    return parent


def append_new_messages(parent: Session, child: Session) -> Session:
    """Squash for children started with ``inherit_parent``: keep what the child added."""
    merged = parent
    for message in child.messages[len(parent.messages):]:
        merged = merged.add_message(message)
    return merged.with_vars(child.vars)


def append_child_messages(parent: Session, child: Session) -> Session:
    """Squash for children started fresh: append every child message."""
    merged = parent
    for message in child.messages:
        merged = merged.add_message(message)
    return merged


class Subroutine(Composite):
    """
    Runs the body against a separate child session.

    ``init_with(parent)`` builds the child (default: a fresh empty
    session). ``squash_with(parent, child)`` folds the outcome back
    (default: the parent, untouched).
    The child never echoes; messages the squash appends to the parent do.
    """

    def __init__(
        self,
        body: Body = None,
        init_with: Optional[InitFn] = None,
        squash_with: Optional[SquashFn] = None,
        **kwargs: Any,
    ):
        super().__init__(body, **kwargs)
        self.init_with = init_with
        self.squash_with = squash_with

    async def _run_body(self, parent: Session) -> Session:
        if self.init_with is not None:
            child = await _maybe_await(self.init_with(parent))
        else:
            child = Session.create()

        # the child runs quiet; squash decides which messages the parent echoes
        child = await self._run_children(child.with_echo(False))

        if self.squash_with is None:
            return parent
        merged = await _maybe_await(self.squash_with(parent, child))
        if merged.echo == parent.echo and merged.observer is parent.observer:
            return merged
        return rejoin(parent, merged)
