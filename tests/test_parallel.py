"""Tests for Parallel fan-out and aggregation strategies."""
import asyncio

import pytest

from promptweave.errors import ConfigurationError
from promptweave.models.schemas import Message, MessageRole, ModelOutput, ToolCall, ToolResult
from promptweave.models.session import Session
from promptweave.sources import CallbackSource, ListSource, LiteralSource
from promptweave.templates import (
    Best, JudgedBest, KeepAll, Parallel, build_evaluation_prompt, heuristic_score,
)


def _failing(session):
    raise RuntimeError("branch exploded")


class TestFanOut:

    @pytest.mark.asyncio
    async def test_keep_all_in_issue_order(self, session):
        parallel = (
            Parallel()
            .with_source(LiteralSource("A"))
            .with_source(LiteralSource("B"))
        )
        result = await parallel.execute(session)
        new = result.messages[len(session.messages):]
        assert [m.content for m in new] == ["A", "B"]
        assert all(m.role == MessageRole.ASSISTANT for m in new)

    @pytest.mark.asyncio
    async def test_repetitions(self, empty_session):
        parallel = Parallel().with_source(ListSource(["1", "2", "3"]), repetitions=3)
        result = await parallel.execute(empty_session)
        assert sorted(m.content for m in result.messages) == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_branches_run_concurrently(self, empty_session):
        started = []
        gate = asyncio.Event()

        async def slow(s):
            started.append(True)
            if len(started) == 2:
                gate.set()
            await asyncio.wait_for(gate.wait(), timeout=1)
            return "done"

        parallel = Parallel().with_source(CallbackSource(slow), repetitions=2)
        result = await parallel.execute(empty_session)
        assert len(result.messages) == 2

    @pytest.mark.asyncio
    async def test_no_sources_returns_input(self, session):
        assert await Parallel().execute(session) is session

    def test_repetitions_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            Parallel().with_source(LiteralSource("x"), repetitions=0)

    @pytest.mark.asyncio
    async def test_failed_branch_does_not_cancel_siblings(self, session):
        parallel = (
            Parallel()
            .with_source(LiteralSource("ok"))
            .with_source(CallbackSource(_failing))
        )
        result = await parallel.execute(session)
        assert len(result.messages) == len(session.messages) + 1
        assert result.get_last_message().content == "ok"

    def test_unknown_strategy(self):
        with pytest.raises(ConfigurationError):
            Parallel(strategy="majority_vote")


class TestBest:

    @pytest.mark.asyncio
    async def test_scorer_picks_highest(self, empty_session):
        parallel = (
            Parallel(strategy="best", scoring_function=lambda s: len(s.get_last_message().content))
            .with_source(LiteralSource("x" * 5))
            .with_source(LiteralSource("y" * 50))
            .with_source(LiteralSource("z" * 12))
        )
        result = await parallel.execute(empty_session)
        assert len(result.messages) == 1
        assert result.get_last_message().content == "y" * 50

    @pytest.mark.asyncio
    async def test_ties_keep_first(self, empty_session):
        parallel = (
            Parallel()
            .with_scoring_function(lambda s: 1.0)
            .with_source(LiteralSource("first"))
            .with_source(LiteralSource("second"))
        )
        result = await parallel.execute(empty_session)
        assert result.get_last_message().content == "first"

    @pytest.mark.asyncio
    async def test_async_scorer(self, empty_session):
        async def score(s):
            return -len(s.get_last_message().content)

        parallel = (
            Parallel(strategy="best", scoring_function=score)
            .with_source(LiteralSource("longer"))
            .with_source(LiteralSource("tiny"))
        )
        result = await parallel.execute(empty_session)
        assert result.get_last_message().content == "tiny"

    @pytest.mark.asyncio
    async def test_failed_branches_are_not_candidates(self, session):
        parallel = (
            Parallel(strategy="best", scoring_function=lambda s: 0.0)
            .with_source(CallbackSource(_failing))
            .with_source(LiteralSource("survivor"))
        )
        result = await parallel.execute(session)
        assert result.get_last_message().content == "survivor"

    @pytest.mark.asyncio
    async def test_all_failed_returns_input(self, session):
        parallel = Parallel(strategy="best").with_source(CallbackSource(_failing), repetitions=2)
        assert await parallel.execute(session) is session

    @pytest.mark.asyncio
    async def test_heuristic_prefers_richer_text(self, empty_session):
        rich = ("Photosynthesis converts light into chemical energy. Plants absorb "
                "carbon dioxide. Chlorophyll captures sunlight. Oxygen is released.")
        parallel = (
            Parallel(strategy="best")
            .with_source(LiteralSource("ok ok ok"))
            .with_source(LiteralSource(rich))
        )
        result = await parallel.execute(empty_session)
        assert result.get_last_message().content == rich


class TestHeuristicScore:

    def test_empty_scores_zero(self):
        assert heuristic_score(Session()) == 0.0
        assert heuristic_score(Session().add_message(Message.assistant("   "))) == 0.0

    def test_bounded(self):
        text = "Distinct words everywhere. " * 100
        score = heuristic_score(Session().add_message(Message.assistant(text)))
        assert 0.0 < score <= 1.0

    def test_repetition_lowers_score(self):
        varied = Session().add_message(Message.assistant("alpha beta gamma delta"))
        repeated = Session().add_message(Message.assistant("alpha alpha alpha alpha"))
        assert heuristic_score(varied) > heuristic_score(repeated)


class TestCustomAndKeepAll:

    @pytest.mark.asyncio
    async def test_custom_function(self, empty_session):
        def pick_last(outcomes):
            return outcomes[-1]

        parallel = (
            Parallel(strategy=pick_last)
            .with_source(LiteralSource("one"))
            .with_source(LiteralSource("two"))
        )
        result = await parallel.execute(empty_session)
        assert result.get_last_message().content == "two"

    @pytest.mark.asyncio
    async def test_keep_all_skips_failed(self, empty_session):
        outcomes = [
            empty_session.add_message(Message.assistant("kept")),
            empty_session,
        ]
        merged = await KeepAll().aggregate(empty_session, outcomes)
        assert [m.content for m in merged.messages] == ["kept"]

    @pytest.mark.asyncio
    async def test_with_strategy_switches(self, empty_session):
        parallel = Parallel().with_strategy(Best(lambda s: 0.0))
        assert isinstance(parallel.strategy, Best)


class TestJudgedBest:

    @pytest.fixture
    def outcomes(self, session):
        return [
            session.add_message(Message.assistant("Answer one")),
            session.add_message(Message.assistant("Answer two")),
            session.add_message(Message.assistant("Answer three")),
        ]

    @pytest.mark.asyncio
    async def test_judge_index_selects(self, session, outcomes):
        seen = []

        def judge(s):
            seen.append(s.get_last_message().content)
            return "2"

        result = await JudgedBest(CallbackSource(judge)).aggregate(session, outcomes)
        assert result.get_last_message().content == "Answer two"
        assert "--- Response 3 ---" in seen[0]

    @pytest.mark.asyncio
    async def test_unusable_answer_falls_back(self, session, outcomes):
        judge = CallbackSource(lambda s: "I cannot decide")
        result = await JudgedBest(judge).aggregate(session, outcomes)
        assert result in outcomes

    @pytest.mark.asyncio
    async def test_out_of_range_falls_back(self, session, outcomes):
        result = await JudgedBest(LiteralSource("7")).aggregate(session, outcomes)
        assert result in outcomes

    @pytest.mark.asyncio
    async def test_single_candidate_skips_judge(self, session):
        calls = []
        only = session.add_message(Message.assistant("alone"))
        judge = CallbackSource(lambda s: calls.append(s) or "1")
        result = await JudgedBest(judge).aggregate(session, [only, session])
        assert result is only
        assert calls == []

    @pytest.mark.asyncio
    async def test_inside_parallel(self, session):
        parallel = (
            Parallel(strategy=JudgedBest(LiteralSource("Response 1 is best")))
            .with_source(LiteralSource("first"))
            .with_source(LiteralSource("second"))
        )
        result = await parallel.execute(session)
        assert result.get_last_message().content == "first"


class TestEvaluationPrompt:

    def test_layout(self, session):
        outcomes = [
            session.add_message(Message.assistant("Hi there")),
            session.add_message(Message.assistant("Greetings")),
        ]
        prompt = build_evaluation_prompt(session, outcomes)
        assert prompt.startswith("You are an expert evaluator")
        assert "System Context: You are a helpful assistant." in prompt
        assert "User Query: Hello" in prompt
        assert "--- Response 1 ---\nHi there" in prompt
        assert "--- Response 2 ---\nGreetings" in prompt
        assert prompt.endswith("Return only the number (1-based index) of the best response.")

    def test_without_context_messages(self, empty_session):
        outcomes = [empty_session.add_message(Message.assistant("x"))]
        prompt = build_evaluation_prompt(empty_session, outcomes)
        assert "System Context" not in prompt
        assert "User Query" not in prompt


class TestEcho:

    @pytest.mark.asyncio
    async def test_keep_all_echoes_each_message_once(self, session):
        seen = []
        echoing = session.with_echo(True, lambda m: seen.append(m.content))
        parallel = (
            Parallel()
            .with_source(LiteralSource("A"))
            .with_source(LiteralSource("B"))
        )
        result = await parallel.execute(echoing)
        assert seen == ["A", "B"]
        assert result.echo is True

    @pytest.mark.asyncio
    async def test_best_echoes_only_the_winner(self, session):
        seen = []
        echoing = session.with_echo(True, lambda m: seen.append(m.content))
        parallel = (
            Parallel(strategy="best", scoring_function=lambda s: len(s.get_last_message().content))
            .with_source(LiteralSource("short"))
            .with_source(LiteralSource("much longer"))
        )
        await parallel.execute(echoing)
        assert seen == ["much longer"]

    @pytest.mark.asyncio
    async def test_all_failed_echoes_nothing(self, session):
        seen = []
        echoing = session.with_echo(True, lambda m: seen.append(m.content))
        parallel = Parallel().with_source(CallbackSource(_failing))
        assert await parallel.execute(echoing) is echoing
        assert seen == []


class TestToolResults:

    @pytest.mark.asyncio
    async def test_branch_keeps_tool_results(self, empty_session):
        output = ModelOutput(
            content="",
            tool_calls=[ToolCall(id="call_1", name="lookup")],
            tool_results=[ToolResult(tool_call_id="call_1", result={"temp": 21})],
        )
        parallel = Parallel().with_source(CallbackSource(lambda s: output))
        result = await parallel.execute(empty_session)
        assert [m.role for m in result.messages] == [
            MessageRole.ASSISTANT, MessageRole.TOOL_RESULT,
        ]
        assert result.messages[1].attrs["tool_call_id"] == "call_1"
        assert result.messages[1].content == '{"temp": 21}'
