"""Shared test fixtures for PromptWeave."""
import pytest

from promptweave.backends.base import ScriptedBackend
from promptweave.middleware.pipeline import MiddlewarePipeline
from promptweave.models.schemas import Message
from promptweave.models.session import Session
from promptweave.sources.text import CallbackSource
from promptweave.templates.primitives import Assistant
from promptweave.validators.base import FunctionValidator


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fast_pipeline(sleep_recorder) -> MiddlewarePipeline:
    return MiddlewarePipeline(sleep=sleep_recorder)


@pytest.fixture
def session() -> Session:
    return Session.create(
        [Message.system("You are a helpful assistant."), Message.user("Hello")],
        vars={"name": "Ada", "order": {"status": "shipped"}},
    )


@pytest.fixture
def empty_session() -> Session:
    return Session()


@pytest.fixture
def no_bad_validator() -> FunctionValidator:
    """Rejects any content containing the substring 'bad'."""
    return FunctionValidator(lambda content, s: "bad" not in content,
                             description="Content must not contain 'bad'")


@pytest.fixture
def scripted_backend() -> ScriptedBackend:
    return ScriptedBackend(["first reply", "second reply", "third reply"])


@pytest.fixture
def tick():
    """A template that appends one assistant message per execution."""
    return Assistant(CallbackSource(lambda s: f"tick {len(s.messages) + 1}"))
