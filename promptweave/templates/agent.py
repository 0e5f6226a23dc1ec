"""
Agent — fluent builder over a root Sequence.

    agent = (
        Agent.create()
        .system("You are a helpful assistant.")
        .loop(lambda a: a.user().assistant(), until=lambda s: s.get_var("done"))
    )
    session = await agent.execute()

Nested bodies are described with builder callbacks that receive a fresh
Agent; the callback may return it or just mutate it.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from promptweave.models.session import Session
from promptweave.templates.base import SessionPredicate, Template
from promptweave.templates.composite import (
    MAX_ITERATIONS, InitFn, Loop, Sequence, SquashFn, Subroutine,
)
from promptweave.templates.primitives import (
    Assistant, Conditional, ContentInput, ExtractSpec, System, Transform, User,
)

BuilderFn = Callable[["Agent"], Optional["Agent"]]


class Agent(Template):

    def __init__(
        self,
        default_user_source: ContentInput = None,
        default_assistant_source: ContentInput = None,
        max_iterations: int = MAX_ITERATIONS,
    ):
        self.root = Sequence(
            default_user_source=default_user_source,
            default_assistant_source=default_assistant_source,
        )
        self.max_iterations = max_iterations

    @classmethod
    def create(cls, settings=None, **kwargs: Any) -> "Agent":
        """New empty agent. ``settings`` supplies the default loop ceiling."""
        if settings is not None:
            kwargs.setdefault("max_iterations", settings.loop_max_iterations)
        return cls(**kwargs)

    def _sub_agent(self) -> "Agent":
        return Agent(max_iterations=self.max_iterations)

    def _build_body(self, builder: BuilderFn) -> Template:
        inner = self._sub_agent()
        built = builder(inner)
        return (built or inner).build()

    # ── Primitives ────────────────────────────────────

    def add(self, template: Template) -> "Agent":
        self.root.add(template)
        return self

    def system(self, content: ContentInput) -> "Agent":
        return self.add(System(content))

    def user(self, content: ContentInput = None) -> "Agent":
        return self.add(User(content))

    def assistant(
        self, content: ContentInput = None, extract_to_vars: ExtractSpec = None,
    ) -> "Agent":
        return self.add(Assistant(content, extract_to_vars=extract_to_vars))

    def transform(self, fn) -> "Agent":
        return self.add(Transform(fn))

    def parallel(self, template: Template) -> "Agent":
        return self.add(template)

    # ── Builder-callback composites ───────────────────

    def loop(
        self,
        builder: BuilderFn,
        until: Optional[SessionPredicate] = None,
        max_iterations: Optional[int] = None,
    ) -> "Agent":
        return self.add(Loop(
            self._build_body(builder),
            until=until,
            max_iterations=self.max_iterations if max_iterations is None else max_iterations,
        ))

    def conditional(
        self,
        condition: SessionPredicate,
        then: BuilderFn,
        otherwise: Optional[BuilderFn] = None,
    ) -> "Agent":
        return self.add(Conditional(
            condition,
            self._build_body(then),
            self._build_body(otherwise) if otherwise is not None else None,
        ))

    def subroutine(
        self,
        builder: BuilderFn,
        init_with: Optional[InitFn] = None,
        squash_with: Optional[SquashFn] = None,
    ) -> "Agent":
        return self.add(Subroutine(
            self._build_body(builder), init_with=init_with, squash_with=squash_with,
        ))

    def sequence(self, builder: BuilderFn) -> "Agent":
        return self.add(self._build_body(builder))

    # ── Execution ─────────────────────────────────────

    def build(self) -> Sequence:
        return self.root

    async def _run(self, session: Session) -> Session:
        return await self.root.execute(session)

    def __repr__(self) -> str:
        return f"Agent({len(self.root.templates)} steps)"
