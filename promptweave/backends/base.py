"""
Generation backend contract and the scripted backend used for offline runs.
"""
from __future__ import annotations

import abc
import inspect
import threading
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import structlog

from promptweave.errors import ConfigurationError
from promptweave.models.schemas import GenerationOptions, ModelOutput
from promptweave.models.session import Session

logger = structlog.get_logger()


class GenerationBackend(abc.ABC):
    """Anything that turns a session plus options into model output."""

    @abc.abstractmethod
    async def generate(self, session: Session, options: GenerationOptions) -> ModelOutput:
        ...


ScriptedResponse = Union[str, ModelOutput, BaseException]
ScriptedCallback = Callable[
    [Session, GenerationOptions],
    Union[ScriptedResponse, Awaitable[ScriptedResponse]],
]


class ScriptedBackend(GenerationBackend):
    """
    Replays canned responses in order, cycling when they run out.

    A response that is an exception instance is raised instead of
    returned. With ``callback`` the response is computed per call.
    Every call is recorded in ``calls`` as ``(session, options)``.
    """

    def __init__(
        self,
        responses: Optional[Iterable[ScriptedResponse]] = None,
        callback: Optional[ScriptedCallback] = None,
    ):
        self.responses = list(responses or [])
        self.callback = callback
        if not self.responses and callback is None:
            raise ConfigurationError("ScriptedBackend needs responses or a callback")
        self.calls: list[tuple[Session, GenerationOptions]] = []
        self._index = 0
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _next_response(self) -> ScriptedResponse:
        with self._lock:
            response = self.responses[self._index % len(self.responses)]
            self._index += 1
            return response

    async def generate(self, session: Session, options: GenerationOptions) -> ModelOutput:
        self.calls.append((session, options))
        if self.callback is not None:
            response: Any = self.callback(session, options)
            if inspect.isawaitable(response):
                response = await response
        else:
            response = self._next_response()

        if isinstance(response, BaseException):
            raise response
        if isinstance(response, ModelOutput):
            return response
        return ModelOutput(content=str(response))

    def reset(self) -> None:
        with self._lock:
            self._index = 0
            self.calls.clear()
