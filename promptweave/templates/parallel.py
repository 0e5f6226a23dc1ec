"""
Parallel — concurrent generation attempts over one input session.

Every configured source runs ``repetitions`` times against the same
input; all calls are awaited together. A failing branch is logged and
contributes its input unchanged, so siblings are never cancelled. The
aggregation strategy then reduces the outcomes to one session.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from promptweave.errors import ConfigurationError
from promptweave.models.session import Session
from promptweave.sources.base import Source
from promptweave.templates.aggregation import (
    AggregateFn, AggregationStrategy, Scorer, resolve_strategy,
)
from promptweave.templates.base import Template, rejoin
from promptweave.templates.primitives import append_output

logger = structlog.get_logger()


@dataclass(frozen=True)
class ParallelSourceConfig:
    source: Source
    repetitions: int = 1


class Parallel(Template):

    def __init__(
        self,
        sources: Optional[list[ParallelSourceConfig]] = None,
        strategy: Union[str, AggregationStrategy, AggregateFn] = "keep_all",
        scoring_function: Optional[Scorer] = None,
    ):
        self.sources: list[ParallelSourceConfig] = list(sources or [])
        self.scoring_function = scoring_function
        self.strategy = resolve_strategy(strategy, scoring_function)

    def with_source(self, source: Source, repetitions: int = 1) -> "Parallel":
        if repetitions < 1:
            raise ConfigurationError(f"repetitions must be at least 1, got {repetitions}")
        self.sources.append(ParallelSourceConfig(source, repetitions))
        return self

    def with_strategy(
        self,
        strategy: Union[str, AggregationStrategy, AggregateFn],
        scoring_function: Optional[Scorer] = None,
    ) -> "Parallel":
        if scoring_function is not None:
            self.scoring_function = scoring_function
        self.strategy = resolve_strategy(strategy, self.scoring_function)
        return self

    def with_scoring_function(self, scorer: Scorer) -> "Parallel":
        self.scoring_function = scorer
        return self.with_strategy("best", scorer)

    async def _run(self, session: Session) -> Session:
        if not self.sources:
            return session

        # branches run quiet; only the messages the strategy keeps are echoed
        quiet = session.with_echo(False)
        tasks = [
            self._run_branch(config.source, quiet, index)
            for index, config in enumerate(self._issue_order())
        ]
        outcomes = await asyncio.gather(*tasks)
        merged = await self.strategy.aggregate(quiet, list(outcomes))
        return rejoin(session, merged)

    def _issue_order(self) -> list[ParallelSourceConfig]:
        return [c for c in self.sources for _ in range(c.repetitions)]

    async def _run_branch(self, source: Source, session: Session, index: int) -> Session:
        try:
            content = await source.get_content(session)
        except Exception as e:
            logger.warning("parallel_branch_failed", branch=index,
                           source=type(source).__name__, error=str(e))
            return session
        return append_output(session, content)
