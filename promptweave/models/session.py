"""
Session — the immutable conversation state threaded through every template.

A Session holds the ordered message history, a ``vars`` mapping for
interpolation and control flow, and an ``attrs`` mapping for metadata.
Every mutator returns a new Session; the receiver is never changed, so
parallel branches can share one input safely.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from promptweave.errors import ValidationError
from promptweave.models.schemas import Message, MessageRole

logger = structlog.get_logger()

MessageObserver = Callable[[Message], None]


def _log_message(message: Message) -> None:
    logger.info(
        "session_message",
        role=message.role.value,
        content=message.content,
        tool_calls=len(message.tool_calls or []),
    )


class Session(BaseModel):
    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...] = ()
    vars: dict[str, Any] = Field(default_factory=dict)
    attrs: dict[str, Any] = Field(default_factory=dict)
    echo: bool = False
    observer: Optional[MessageObserver] = Field(default=None, exclude=True)

    @classmethod
    def create(
        cls,
        messages: Iterable[Message] = (),
        vars: Optional[dict[str, Any]] = None,
        attrs: Optional[dict[str, Any]] = None,
        echo: bool = False,
        observer: Optional[MessageObserver] = None,
    ) -> "Session":
        return cls(
            messages=tuple(messages),
            vars=dict(vars or {}),
            attrs=dict(attrs or {}),
            echo=echo,
            observer=observer,
        )

    def _evolve(self, **update: Any) -> "Session":
        # model_copy is shallow; every copy gets its own vars and attrs dicts
        update.setdefault("vars", dict(self.vars))
        update.setdefault("attrs", dict(self.attrs))
        return self.model_copy(update=update)

    # ── Messages ──────────────────────────────────────

    def add_message(self, message: Message) -> "Session":
        """Return a new Session with ``message`` appended."""
        if self.echo:
            self._notify(message)
        return self._evolve(messages=self.messages + (message,))

    def add_messages(self, messages: Iterable[Message]) -> "Session":
        session = self
        for message in messages:
            session = session.add_message(message)
        return session

    def _notify(self, message: Message) -> None:
        try:
            (self.observer or _log_message)(message)
        except Exception as e:
            logger.warning("session_observer_failed", error=str(e))

    def get_last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def get_messages_by_type(self, role: MessageRole | str) -> list[Message]:
        try:
            role = MessageRole(role)
        except ValueError:
            return []
        return [m for m in self.messages if m.role == role]

    # ── Vars / attrs ──────────────────────────────────

    def with_var(self, key: str, value: Any) -> "Session":
        return self._evolve(vars={**self.vars, key: value})

    def with_vars(self, values: Optional[dict[str, Any]] = None, **kwargs: Any) -> "Session":
        return self._evolve(vars={**self.vars, **(values or {}), **kwargs})

    def get_var(self, key: str, default: Any = None) -> Any:
        return self.vars.get(key, default)

    def with_attr(self, key: str, value: Any) -> "Session":
        return self._evolve(attrs={**self.attrs, key: value})

    def with_attrs(self, values: Optional[dict[str, Any]] = None, **kwargs: Any) -> "Session":
        return self._evolve(attrs={**self.attrs, **(values or {}), **kwargs})

    def with_context(
        self,
        vars: Optional[dict[str, Any]] = None,
        attrs: Optional[dict[str, Any]] = None,
    ) -> "Session":
        """Merge new vars and attrs in one step."""
        return self._evolve(
            vars={**self.vars, **(vars or {})},
            attrs={**self.attrs, **(attrs or {})},
        )

    def with_echo(self, echo: bool = True, observer: Optional[MessageObserver] = None) -> "Session":
        return self._evolve(echo=echo, observer=observer or self.observer)

    def vars_dict(self) -> dict[str, Any]:
        return dict(self.vars)

    # ── Checks / serialization ────────────────────────

    def validate_messages(self) -> None:
        """
        Check structural sanity of the history.

        Raises ValidationError when the session is empty, a message has
        empty content, or a system message appears anywhere but first.
        """
        if not self.messages:
            raise ValidationError("Session must contain at least one message")
        for i, message in enumerate(self.messages):
            if not message.content and not message.tool_calls:
                raise ValidationError(f"Message {i} has empty content")
        system_positions = [
            i for i, m in enumerate(self.messages) if m.role == MessageRole.SYSTEM
        ]
        if len(system_positions) > 1:
            raise ValidationError("Only one system message is allowed")
        if system_positions and system_positions[0] != 0:
            raise ValidationError("System message must be at the beginning")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        return cls.model_validate(data)
