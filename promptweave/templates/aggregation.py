"""
Aggregation strategies for parallel fan-out.

Each strategy receives the input session and the per-branch outcome
sessions (in issue order) and reduces them to one session. A branch
that failed contributes its input session unchanged.
"""
from __future__ import annotations

import abc
import inspect
import re
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from promptweave.errors import ConfigurationError
from promptweave.models.schemas import Message, MessageRole
from promptweave.models.session import Session
from promptweave.sources.base import Source, content_text

logger = structlog.get_logger()

Scorer = Callable[[Session], Union[float, Awaitable[float]]]
AggregateFn = Callable[[list[Session]], Union[Session, Awaitable[Session]]]


def _new_messages(original: Session, outcome: Session) -> tuple[Message, ...]:
    return outcome.messages[len(original.messages):]


def _succeeded(original: Session, outcomes: list[Session]) -> list[Session]:
    return [o for o in outcomes if _new_messages(original, o)]


# ──────────────────────────────────────────────────────────────
#  Heuristic scoring
# ──────────────────────────────────────────────────────────────

LENGTH_WEIGHT = 0.4
DIVERSITY_WEIGHT = 0.3
SENTENCE_WEIGHT = 0.3
LENGTH_SATURATION = 500      # chars at which length stops adding score
SENTENCE_SATURATION = 5


def heuristic_score(session: Session) -> float:
    """
    Quality guess for the last message: normalized length, lexical
    diversity (distinct words / words) and sentence count, each in [0, 1].
    """
    last = session.get_last_message()
    text = last.content if last else ""
    if not text.strip():
        return 0.0
    words = re.findall(r"\w+", text.lower())
    length_score = min(len(text) / LENGTH_SATURATION, 1.0)
    diversity_score = len(set(words)) / len(words) if words else 0.0
    sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
    sentence_score = min(len(sentences) / SENTENCE_SATURATION, 1.0)
    return (
        LENGTH_WEIGHT * length_score
        + DIVERSITY_WEIGHT * diversity_score
        + SENTENCE_WEIGHT * sentence_score
    )


# ──────────────────────────────────────────────────────────────
#  Strategies
# ──────────────────────────────────────────────────────────────

class AggregationStrategy(abc.ABC):

    @abc.abstractmethod
    async def aggregate(self, original: Session, outcomes: list[Session]) -> Session:
        ...


class KeepAll(AggregationStrategy):
    """Appends every branch's new messages to the input, in issue order."""

    async def aggregate(self, original: Session, outcomes: list[Session]) -> Session:
        merged = original
        for outcome in outcomes:
            for message in _new_messages(original, outcome):
                merged = merged.add_message(message)
        return merged


class Best(AggregationStrategy):
    """
    Keeps the highest-scoring successful outcome. Ties go to the
    earliest. Without a scorer the heuristic score is used.
    """

    def __init__(self, scorer: Optional[Scorer] = None):
        self.scorer = scorer

    async def _score(self, session: Session) -> float:
        if self.scorer is None:
            return heuristic_score(session)
        out = self.scorer(session)
        if inspect.isawaitable(out):
            out = await out
        return float(out)

    async def aggregate(self, original: Session, outcomes: list[Session]) -> Session:
        candidates = _succeeded(original, outcomes)
        if not candidates:
            return original
        best = candidates[0]
        best_score = await self._score(best)
        for candidate in candidates[1:]:
            score = await self._score(candidate)
            if score > best_score:
                best, best_score = candidate, score
        logger.debug("parallel_best_selected", score=best_score, candidates=len(candidates))
        return best


class CustomStrategy(AggregationStrategy):
    """Delegates to ``fn(outcomes)``, sync or async."""

    def __init__(self, fn: AggregateFn):
        self.fn = fn

    async def aggregate(self, original: Session, outcomes: list[Session]) -> Session:
        out = self.fn(outcomes)
        if inspect.isawaitable(out):
            out = await out
        return out


# ──────────────────────────────────────────────────────────────
#  Model-judged ranking
# ──────────────────────────────────────────────────────────────

_EVALUATION_CRITERIA = (
    "Relevance to the user's query",
    "Accuracy and correctness",
    "Completeness of the answer",
    "Clarity and coherence",
    "Helpfulness and practical value",
)


def build_evaluation_prompt(original: Session, outcomes: list[Session]) -> str:
    """Prompt asking a judge model for the 1-based index of the best response."""
    lines = [
        "You are an expert evaluator of AI responses. Your task is to analyze and "
        "rank the following responses based on their quality, relevance, "
        "completeness, and accuracy.",
        "",
        "Context:",
    ]
    system = original.get_messages_by_type(MessageRole.SYSTEM)
    if system:
        lines.append(f"System Context: {system[0].content}")
    users = original.get_messages_by_type(MessageRole.USER)
    if users:
        lines.append(f"User Query: {users[-1].content}")
    lines += ["", "Responses to evaluate:"]
    for i, outcome in enumerate(outcomes, start=1):
        last = outcome.get_last_message()
        lines.append(f"--- Response {i} ---")
        lines.append(last.content if last else "")
        lines.append("")
    lines.append("Please evaluate these responses based on the following criteria:")
    lines += [f"{i}. {c}" for i, c in enumerate(_EVALUATION_CRITERIA, start=1)]
    lines += ["", "Return only the number (1-based index) of the best response."]
    return "\n".join(lines)


class JudgedBest(AggregationStrategy):
    """
    Asks ``judge`` (usually a model-backed source) which outcome is best.
    An answer that is not a valid index falls back to the heuristic.
    """

    def __init__(self, judge: Source):
        self.judge = judge

    async def aggregate(self, original: Session, outcomes: list[Session]) -> Session:
        candidates = _succeeded(original, outcomes)
        if len(candidates) <= 1:
            return candidates[0] if candidates else original

        prompt = build_evaluation_prompt(original, candidates)
        answer = content_text(
            await self.judge.get_content(Session.create([Message.user(prompt)]))
        )
        match = re.search(r"\d+", answer)
        if match and 1 <= int(match.group(0)) <= len(candidates):
            return candidates[int(match.group(0)) - 1]

        logger.warning("judge_answer_unusable", answer=answer[:80], fallback="heuristic")
        return await Best().aggregate(original, candidates)


def resolve_strategy(
    strategy: Union[str, AggregationStrategy, AggregateFn],
    scoring_function: Optional[Scorer] = None,
) -> AggregationStrategy:
    if isinstance(strategy, AggregationStrategy):
        return strategy
    if strategy == "keep_all":
        return KeepAll()
    if strategy == "best":
        return Best(scoring_function)
    if callable(strategy):
        return CustomStrategy(strategy)
    raise ConfigurationError(f"Unknown aggregation strategy: {strategy!r}")
