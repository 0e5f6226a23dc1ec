"""Tests for text/interactive sources and the validation-gated retry loop."""
import pytest

from promptweave.errors import ConfigurationError, GenerationError, ValidationError
from promptweave.middleware.builtin import TransformMiddleware
from promptweave.models.session import Session
from promptweave.sources import (
    CallbackSource, CLISource, ListSource, LiteralSource, RandomSource,
    ScriptedPrompter, Sources, coerce_source,
)
from promptweave.validators import FunctionValidator, LengthValidator


class TestValidationRetry:

    @pytest.mark.asyncio
    async def test_retries_until_valid(self, no_bad_validator, empty_session):
        source = ListSource(["bad-1", "bad-2", "good"], validator=no_bad_validator,
                            max_attempts=3)
        assert await source.get_content(empty_session) == "good"

    @pytest.mark.asyncio
    async def test_exhausted_raises(self, no_bad_validator, empty_session):
        source = ListSource(["bad-1", "bad-2", "good"], validator=no_bad_validator,
                            max_attempts=2, raise_on_failure=True)
        with pytest.raises(ValidationError) as exc:
            await source.get_content(empty_session)
        assert exc.value.attempts == 2
        assert exc.value.instruction == "Content must not contain 'bad'"

    @pytest.mark.asyncio
    async def test_exhausted_returns_last_candidate(self, no_bad_validator, empty_session):
        source = ListSource(["bad-1", "bad-2", "good"], validator=no_bad_validator,
                            max_attempts=2, raise_on_failure=False)
        assert await source.get_content(empty_session) == "bad-2"

    @pytest.mark.asyncio
    async def test_no_validator_returns_first(self, empty_session):
        assert await ListSource(["bad-1", "good"]).get_content(empty_session) == "bad-1"

    @pytest.mark.asyncio
    async def test_generation_errors_are_not_degraded(self, empty_session):
        def boom(session):
            raise RuntimeError("backend down")

        source = CallbackSource(boom, raise_on_failure=False)
        with pytest.raises(RuntimeError):
            await source.get_content(empty_session)

    @pytest.mark.asyncio
    async def test_source_does_not_mutate_session(self, no_bad_validator, session):
        before = session.to_dict()
        source = ListSource(["bad", "fine"], validator=no_bad_validator, max_attempts=2)
        await source.get_content(session)
        assert session.to_dict() == before

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            LiteralSource("x", max_attempts=0)


class TestBuilders:

    @pytest.mark.asyncio
    async def test_builders_return_new_instances(self, no_bad_validator, empty_session):
        base = ListSource(["bad", "ok"])
        strict = base.validate(no_bad_validator).with_max_attempts(2)
        assert base.validator is None
        assert base.max_attempts == 1
        assert strict.max_attempts == 2
        assert await strict.get_content(empty_session) == "ok"

    @pytest.mark.asyncio
    async def test_with_raise_on_failure(self, empty_session):
        source = LiteralSource("tiny").validate(LengthValidator(min_length=10))
        lenient = source.with_raise_on_failure(False)
        assert await lenient.get_content(empty_session) == "tiny"
        with pytest.raises(ValidationError):
            await source.get_content(empty_session)

    @pytest.mark.asyncio
    async def test_use_middleware_does_not_touch_original(self, empty_session):
        base = LiteralSource("hello")
        shouting = base.use(TransformMiddleware(lambda content, ctx: content.upper()))
        assert await shouting.get_content(empty_session) == "HELLO"
        assert await base.get_content(empty_session) == "hello"
        assert len(base.pipeline) == 0

    def test_with_retry_overrides(self):
        source = LiteralSource("x").with_retry(max_attempts=4, jitter=False)
        assert source.retry_config.max_attempts == 4
        assert source.retry_config.jitter is False


class TestTextSources:

    @pytest.mark.asyncio
    async def test_literal_interpolates(self, session):
        source = LiteralSource("Hi {{name}}, order is {{order.status}} {{missing}}")
        assert await source.get_content(session) == "Hi Ada, order is shipped {{missing}}"

    @pytest.mark.asyncio
    async def test_list_exhaustion(self, empty_session):
        source = ListSource(["a"])
        assert await source.get_content(empty_session) == "a"
        assert source.at_end
        with pytest.raises(GenerationError):
            await source.get_content(empty_session)

    @pytest.mark.asyncio
    async def test_list_loop(self, empty_session):
        source = ListSource(["a", "b"], loop=True)
        got = [await source.get_content(empty_session) for _ in range(5)]
        assert got == ["a", "b", "a", "b", "a"]

    def test_list_requires_items(self):
        with pytest.raises(ConfigurationError):
            ListSource([])

    @pytest.mark.asyncio
    async def test_random_source_seeded(self, empty_session):
        items = ["x", "y", "z"]
        a = RandomSource(items, seed=7)
        b = RandomSource(items, seed=7)
        seq_a = [await a.get_content(empty_session) for _ in range(5)]
        seq_b = [await b.get_content(empty_session) for _ in range(5)]
        assert seq_a == seq_b
        assert set(seq_a) <= set(items)

    @pytest.mark.asyncio
    async def test_async_callback(self, session):
        async def reply(s: Session) -> str:
            return f"{len(s.messages)} messages so far"

        assert await CallbackSource(reply).get_content(session) == "2 messages so far"


class TestCLISource:

    @pytest.mark.asyncio
    async def test_reads_answer(self, empty_session):
        prompter = ScriptedPrompter(["typed text"])
        source = CLISource("Say something: ", prompter=prompter)
        assert await source.get_content(empty_session) == "typed text"
        assert prompter.prompts == ["Say something: "]

    @pytest.mark.asyncio
    async def test_default_on_empty(self, empty_session):
        source = CLISource(default="fallback", prompter=ScriptedPrompter([""]))
        assert await source.get_content(empty_session) == "fallback"

    @pytest.mark.asyncio
    async def test_reprompt_shows_instruction(self, empty_session):
        prompter = ScriptedPrompter(["no", "yes please"])
        source = CLISource(
            "Answer: ",
            prompter=prompter,
            validator=FunctionValidator(lambda c, s: "yes" in c, description="Say yes"),
            max_attempts=2,
        )
        assert await source.get_content(empty_session) == "yes please"
        assert prompter.prompts[1].startswith("Say yes")


class TestCoercion:

    def test_shorthands(self):
        assert isinstance(coerce_source("text"), LiteralSource)
        assert isinstance(coerce_source(["a", "b"]), ListSource)
        assert isinstance(coerce_source(lambda s: "x"), CallbackSource)
        assert coerce_source(None) is None
        src = LiteralSource("x")
        assert coerce_source(src) is src

    def test_rejects_unknown(self):
        with pytest.raises(ConfigurationError):
            coerce_source(42)

    def test_factory_namespace(self):
        assert isinstance(Sources.literal("x"), LiteralSource)
        assert Sources.list(["a"], loop=True).loop is True
        assert isinstance(Sources.cli(prompter=ScriptedPrompter([])), CLISource)
