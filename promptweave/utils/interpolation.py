"""
Variable interpolation for literal template content.

``{{name}}`` and ``{{order.status}}`` placeholders resolve against the
session's vars; unresolved placeholders are left in place.
"""
from __future__ import annotations

import re
from typing import Any, Mapping

from promptweave.models.session import Session

_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")


def get_nested_value(data: Mapping[str, Any], field: str) -> Any:
    """Get a value from nested mappings using dot notation. e.g. 'order.status'"""
    current: Any = data
    for part in field.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        elif hasattr(current, part):
            current = getattr(current, part)
        else:
            return None
    return current


def interpolate_vars(template: str, values: Mapping[str, Any]) -> str:
    if not template:
        return ""

    def replacer(match: re.Match) -> str:
        key = match.group(1).strip()
        val = get_nested_value(values, key)
        if val is None:
            return match.group(0)
        return str(val)

    return _PLACEHOLDER.sub(replacer, template)


def interpolate(template: str, session: Session) -> str:
    """Replace {{variable}} placeholders with values from the session vars."""
    return interpolate_vars(template, session.vars)


def has_placeholders(template: str) -> bool:
    return bool(template) and _PLACEHOLDER.search(template) is not None
