"""
Composable conversation templates.

Templates are executable programs over an immutable Session:
  - Primitives append one message (System, User, Assistant) or reshape
    the session (Transform), or route on state (Conditional)
  - Composites sequence children (Sequence), repeat them until a goal
    holds (Loop), or run them in an isolated child session (Subroutine)
  - Parallel fans one session out to many sources and aggregates
  - Agent is the fluent builder that ties them together
  - Extractors copy regex matches and markdown sections into vars
"""
from promptweave.templates.base import Template, default_sources
from promptweave.templates.primitives import (
    System, User, Assistant, Conditional, Transform,
)
from promptweave.templates.composite import (
    Composite, Sequence, Loop, Subroutine, MAX_ITERATIONS,
    inherit_parent, append_new_messages, append_child_messages,
)
from promptweave.templates.parallel import Parallel, ParallelSourceConfig
from promptweave.templates.aggregation import (
    AggregationStrategy, KeepAll, Best, CustomStrategy, JudgedBest,
    build_evaluation_prompt, heuristic_score, resolve_strategy,
)
from promptweave.templates.extractors import PatternRule, extract_pattern, extract_markdown
from promptweave.templates.agent import Agent
