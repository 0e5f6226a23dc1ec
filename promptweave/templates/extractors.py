"""
Session transforms that pull values out of message text into vars.

Both factories return a plain ``(Session) -> Session`` function, so they
plug straight into ``Transform``, ``Composite.add_transform`` or
``Agent.transform``:

    agent.transform(extract_pattern(r"Answer:\\s*(\\w+)", "answer"))
    agent.transform(extract_markdown(headings={"Summary": "summary"},
                                     code_blocks={"python": "code"}))
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

import structlog

from promptweave.errors import ConfigurationError
from promptweave.models.schemas import Message, MessageRole
from promptweave.models.session import Session

logger = structlog.get_logger()

RoleSpec = Iterable[Union[MessageRole, str]]

_UNSET = object()

_HEADING_RE = re.compile(r"##\s+([^\n]+)\n([\s\S]*?)(?=\n##\s+|\n```|\s*\Z)")
_CODE_BLOCK_RE = re.compile(r"```(\w+)\n([\s\S]*?)```")


def _roles(roles: RoleSpec) -> frozenset[MessageRole]:
    try:
        return frozenset(MessageRole(r) for r in roles)
    except ValueError as e:
        raise ConfigurationError(f"Unknown message role: {e}") from e


def _messages(session: Session, roles: frozenset[MessageRole]) -> list[Message]:
    return [m for m in session.messages if m.role in roles]


# ══════════════════════════════════════════════════════════════
#  PATTERN EXTRACTION
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PatternRule:
    """
    One regex → var rule.

    The first matching message (oldest first) wins. Group 1 is stored
    when the pattern has a group, the whole match otherwise. ``transform``
    post-processes the match; ``default`` is stored when nothing matches.
    """
    pattern: Union[str, re.Pattern]
    key: str
    roles: tuple[Union[MessageRole, str], ...] = (MessageRole.ASSISTANT,)
    transform: Optional[Callable[[str], Any]] = None
    default: Any = _UNSET

    def compiled(self) -> re.Pattern:
        if isinstance(self.pattern, str):
            return re.compile(self.pattern)
        return self.pattern

    def find(self, session: Session) -> Any:
        regex = self.compiled()
        for message in _messages(session, _roles(self.roles)):
            match = regex.search(message.content)
            if match is None:
                continue
            value = match.group(1) if regex.groups else match.group(0)
            return self.transform(value) if self.transform else value
        return _UNSET


def extract_pattern(
    rules: Union[str, re.Pattern, PatternRule, Iterable[PatternRule]],
    key: Optional[str] = None,
    *,
    roles: RoleSpec = (MessageRole.ASSISTANT,),
    transform: Optional[Callable[[str], Any]] = None,
    default: Any = _UNSET,
) -> Callable[[Session], Session]:
    """
    Build a transform that stores regex matches in session vars.

    Pass a pattern and a ``key`` for a single rule, or one or more
    ``PatternRule`` objects. All values found are written in one step;
    a rule with no match and no default leaves its var alone.
    """
    if isinstance(rules, (str, re.Pattern)):
        if not key:
            raise ConfigurationError("extract_pattern needs a key when given a bare pattern")
        rule_list = [PatternRule(rules, key, tuple(roles), transform, default)]
    elif isinstance(rules, PatternRule):
        rule_list = [rules]
    else:
        rule_list = list(rules)
    if not rule_list:
        raise ConfigurationError("extract_pattern needs at least one rule")
    for rule in rule_list:
        rule.compiled()
        _roles(rule.roles)

    def apply(session: Session) -> Session:
        found: dict[str, Any] = {}
        for rule in rule_list:
            value = rule.find(session)
            if value is _UNSET:
                value = rule.default
            if value is not _UNSET:
                found[rule.key] = value
        if not found:
            return session
        logger.debug("pattern_extracted", keys=sorted(found))
        return session.with_vars(found)

    return apply


# ══════════════════════════════════════════════════════════════
#  MARKDOWN EXTRACTION
# ══════════════════════════════════════════════════════════════

def extract_markdown(
    headings: Optional[dict[str, str]] = None,
    code_blocks: Optional[dict[str, str]] = None,
    roles: RoleSpec = (MessageRole.ASSISTANT,),
) -> Callable[[Session], Session]:
    """
    Build a transform that stores ``## Heading`` sections and fenced code
    blocks in session vars.

    ``headings`` maps a heading title to a var name, ``code_blocks`` maps
    a fence language to a var name. Messages are scanned oldest first, so
    a later message overwrites what an earlier one set.
    """
    heading_map = dict(headings or {})
    code_map = dict(code_blocks or {})
    if not heading_map and not code_map:
        raise ConfigurationError("extract_markdown needs headings or code_blocks")
    wanted = _roles(roles)

    def apply(session: Session) -> Session:
        found: dict[str, Any] = {}
        for message in _messages(session, wanted):
            text = message.content
            if heading_map:
                for match in _HEADING_RE.finditer(text):
                    key = heading_map.get(match.group(1).strip())
                    if key:
                        found[key] = match.group(2).strip()
            if code_map:
                for match in _CODE_BLOCK_RE.finditer(text):
                    key = code_map.get(match.group(1))
                    if key:
                        found[key] = match.group(2).strip()
        if not found:
            return session
        logger.debug("markdown_extracted", keys=sorted(found))
        return session.with_vars(found)

    return apply
