"""Static and computed text sources."""
from __future__ import annotations

import inspect
import random
import threading
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from promptweave.errors import ConfigurationError, GenerationError
from promptweave.models.session import Session
from promptweave.sources.base import Content, Source
from promptweave.utils.interpolation import interpolate


class LiteralSource(Source):
    """Fixed text, with ``{{var}}`` placeholders filled from the session."""

    def __init__(self, content: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.content = content

    async def _generate(self, session: Session, feedback: Optional[str]) -> Content:
        return interpolate(self.content, session)


class ListSource(Source):
    """
    Hands out items in order, one per call.

    With ``loop`` the cursor wraps to the start; without it, asking past
    the end raises GenerationError. Clones made by the builders get their
    own cursor, starting where the original stood.
    """

    def __init__(self, items: Iterable[str], loop: bool = False, **kwargs: Any):
        super().__init__(**kwargs)
        self.items = list(items)
        if not self.items:
            raise ConfigurationError("ListSource requires at least one item")
        self.loop = loop
        self._index = 0
        self._lock = threading.Lock()

    @property
    def index(self) -> int:
        return self._index

    @property
    def at_end(self) -> bool:
        return not self.loop and self._index >= len(self.items)

    def _replace(self, **changes: Any) -> "ListSource":
        clone = super()._replace(**changes)
        clone._lock = threading.Lock()
        return clone

    async def _generate(self, session: Session, feedback: Optional[str]) -> Content:
        with self._lock:
            if self._index >= len(self.items):
                if not self.loop:
                    raise GenerationError(
                        f"ListSource exhausted after {len(self.items)} item(s)"
                    )
                self._index = 0
            item = self.items[self._index]
            self._index += 1
        return item

    def reset(self) -> None:
        with self._lock:
            self._index = 0


class RandomSource(Source):

    def __init__(self, items: Iterable[str], seed: Optional[int] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.items = list(items)
        if not self.items:
            raise ConfigurationError("RandomSource requires at least one item")
        self._rng = random.Random(seed)

    async def _generate(self, session: Session, feedback: Optional[str]) -> Content:
        return self._rng.choice(self.items)


SessionCallback = Callable[[Session], Union[Content, Awaitable[Content]]]


class CallbackSource(Source):
    """Computes content from the session with a sync or async function."""

    def __init__(self, fn: SessionCallback, **kwargs: Any):
        super().__init__(**kwargs)
        self.fn = fn

    async def _generate(self, session: Session, feedback: Optional[str]) -> Content:
        out = self.fn(session)
        if inspect.isawaitable(out):
            out = await out
        return out
