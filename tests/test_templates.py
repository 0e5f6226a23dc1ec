"""Tests for primitive templates and default-source inheritance."""
import json

import pytest

from promptweave.backends.base import ScriptedBackend
from promptweave.errors import ConfigurationError, ValidationError
from promptweave.models.schemas import MessageRole, ModelOutput, ToolCall, ToolResult
from promptweave.models.session import Session
from promptweave.sources import ListSource, LlmSource
from promptweave.templates import (
    Assistant, Conditional, Loop, Sequence, System, Transform, User,
)
from promptweave.validators import LengthValidator


class TestMessagePrimitives:

    @pytest.mark.asyncio
    async def test_system_user_assistant(self):
        program = Sequence([
            System("You are {{persona}}."),
            User("Hi"),
            Assistant("Hello!"),
        ])
        result = await program.execute(Session().with_var("persona", "a pirate"))
        assert [m.role for m in result.messages] == [
            MessageRole.SYSTEM, MessageRole.USER, MessageRole.ASSISTANT,
        ]
        assert result.messages[0].content == "You are a pirate."

    @pytest.mark.asyncio
    async def test_execute_without_session_starts_empty(self):
        result = await User("first").execute()
        assert len(result.messages) == 1

    def test_system_requires_content(self):
        with pytest.raises(ConfigurationError):
            System(None)

    @pytest.mark.asyncio
    async def test_user_without_source_fails(self):
        with pytest.raises(ConfigurationError):
            await User().execute(Session())

    @pytest.mark.asyncio
    async def test_validation_failure_propagates(self):
        tmpl = User(ListSource(["x"], validator=LengthValidator(min_length=5)))
        with pytest.raises(ValidationError):
            await tmpl.execute(Session())

    @pytest.mark.asyncio
    async def test_validation_failure_degrades_when_allowed(self):
        tmpl = User(ListSource(["x"], validator=LengthValidator(min_length=5),
                               raise_on_failure=False))
        result = await tmpl.execute(Session())
        assert result.get_last_message().content == "x"


class TestAssistantOutputs:

    @pytest.mark.asyncio
    async def test_tool_results_become_messages(self):
        output = ModelOutput(
            content="Let me check.",
            tool_calls=[ToolCall(id="call_1", name="weather", arguments={"city": "Oslo"})],
            tool_results=[ToolResult(tool_call_id="call_1", result={"temp": 3})],
        )
        tmpl = Assistant(LlmSource(backend=ScriptedBackend([output])))
        result = await tmpl.execute(Session())
        assistant, tool = result.messages
        assert assistant.tool_calls[0].name == "weather"
        assert tool.role == MessageRole.TOOL_RESULT
        assert tool.attrs["tool_call_id"] == "call_1"
        assert json.loads(tool.content) == {"temp": 3}

    @pytest.mark.asyncio
    async def test_extract_all_structured_fields(self):
        output = ModelOutput(structured_output={"city": "Oslo", "temp": 3})
        tmpl = Assistant(LlmSource(backend=ScriptedBackend([output])), extract_to_vars=True)
        result = await tmpl.execute(Session())
        assert result.get_var("city") == "Oslo"
        assert result.get_last_message().structured_content == {"city": "Oslo", "temp": 3}

    @pytest.mark.asyncio
    async def test_extract_selected_and_renamed(self):
        output = ModelOutput(structured_output={"city": "Oslo", "temp": 3})
        backend = ScriptedBackend([output])
        picked = await Assistant(LlmSource(backend=backend),
                                 extract_to_vars=["temp"]).execute(Session())
        assert picked.vars == {"temp": 3}
        renamed = await Assistant(LlmSource(backend=backend),
                                  extract_to_vars={"city": "location"}).execute(Session())
        assert renamed.vars == {"location": "Oslo"}


class TestConditional:

    @pytest.mark.asyncio
    async def test_true_routes_to_then(self, session):
        tmpl = Conditional(lambda s: s.get_var("name") == "Ada",
                           Assistant("then"), Assistant("else"))
        result = await tmpl.execute(session)
        assert result.get_last_message().content == "then"

    @pytest.mark.asyncio
    async def test_false_routes_to_else(self, session):
        tmpl = Conditional(lambda s: False, Assistant("then"), Assistant("else"))
        result = await tmpl.execute(session)
        assert result.get_last_message().content == "else"

    @pytest.mark.asyncio
    async def test_false_without_else_is_identity(self, session):
        result = await Conditional(lambda s: False, Assistant("then")).execute(session)
        assert result.messages == session.messages

    @pytest.mark.asyncio
    async def test_async_predicate(self, session):
        async def ready(s):
            return True

        result = await Conditional(ready, Assistant("yes")).execute(session)
        assert result.get_last_message().content == "yes"


class TestTransform:

    @pytest.mark.asyncio
    async def test_chain_of_functions(self):
        async def count(s):
            return s.with_var("count", len(s.messages))

        tmpl = Transform([lambda s: s.with_var("seen", True), count])
        result = await tmpl.execute(Session())
        assert result.vars == {"seen": True, "count": 0}

    @pytest.mark.asyncio
    async def test_must_return_session(self):
        with pytest.raises(ConfigurationError):
            await Transform(lambda s: "oops").execute(Session())


class TestDefaultSources:

    @pytest.mark.asyncio
    async def test_children_inherit_defaults(self):
        program = Sequence(
            [User(), Assistant()],
            default_user_source=ListSource(["question"]),
            default_assistant_source=ListSource(["answer"]),
        )
        result = await program.execute(Session())
        assert [m.content for m in result.messages] == ["question", "answer"]

    @pytest.mark.asyncio
    async def test_innermost_default_wins(self):
        inner = Sequence([User()], default_user_source="inner")
        outer = Sequence([User(), inner], default_user_source=ListSource(["outer"], loop=True))
        result = await outer.execute(Session())
        assert [m.content for m in result.messages] == ["outer", "inner"]

    @pytest.mark.asyncio
    async def test_explicit_source_beats_default(self):
        program = Sequence([User("explicit")], default_user_source="default")
        result = await program.execute(Session())
        assert result.get_last_message().content == "explicit"

    @pytest.mark.asyncio
    async def test_defaults_reach_loop_bodies(self):
        program = Sequence(
            [Loop([User()], until=lambda s: len(s.messages) >= 2)],
            default_user_source=ListSource(["a", "b"]),
        )
        result = await program.execute(Session())
        assert [m.content for m in result.messages] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_defaults_do_not_leak_after_execution(self):
        await Sequence([User()], default_user_source="scoped").execute(Session())
        with pytest.raises(ConfigurationError):
            await User().execute(Session())
