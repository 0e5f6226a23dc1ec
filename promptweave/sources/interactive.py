"""
Interactive sources: content typed by a person at the terminal.
"""
from __future__ import annotations

import abc
from typing import Any, Iterable, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout

from promptweave.errors import ConfigurationError
from promptweave.models.session import Session
from promptweave.sources.base import Content, Source
from promptweave.utils.interpolation import interpolate


class InputPrompter(abc.ABC):
    """Capability: show ``text`` and return what the person entered."""

    @abc.abstractmethod
    async def prompt(self, text: str, default: Optional[str] = None) -> str:
        ...


class ConsolePrompter(InputPrompter):
    """Reads a line from the terminal via prompt_toolkit."""

    def __init__(self) -> None:
        self._session: Optional[PromptSession[str]] = None

    async def prompt(self, text: str, default: Optional[str] = None) -> str:
        if self._session is None:
            self._session = PromptSession()
        with patch_stdout(raw=True):
            answer = await self._session.prompt_async(text)
        if not answer.strip() and default is not None:
            return default
        return answer


class ScriptedPrompter(InputPrompter):
    """Answers prompts from a fixed list; records every prompt shown."""

    def __init__(self, answers: Iterable[str]):
        self.answers = list(answers)
        self.prompts: list[str] = []

    async def prompt(self, text: str, default: Optional[str] = None) -> str:
        self.prompts.append(text)
        if not self.answers:
            if default is not None:
                return default
            raise ConfigurationError("ScriptedPrompter ran out of answers")
        answer = self.answers.pop(0)
        if not answer and default is not None:
            return default
        return answer


class CLISource(Source):
    """
    Asks the person for input. A validator instruction from a rejected
    attempt is shown above the prompt on the next try.
    """

    def __init__(
        self,
        prompt: str = "Your input: ",
        default: Optional[str] = None,
        prompter: Optional[InputPrompter] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.prompt = prompt
        self.default = default
        self.prompter = prompter or ConsolePrompter()

    async def _generate(self, session: Session, feedback: Optional[str]) -> Content:
        text = interpolate(self.prompt, session)
        if feedback:
            text = f"{feedback}\n{text}"
        return await self.prompter.prompt(text, self.default)
