"""Dot-path resolution, ``{{placeholder}}`` interpolation and guard evaluation.

Everything that reads values out of a running execution goes through
:func:`resolve_path`.  A path's first segment is looked up in the variable
bag first; failing that it may name one of the context namespaces
(``executionId``, ``workflowId``, ``triggerData``, ``variables``).  Lookups
that fall off the data yield :data:`MISSING` and never raise.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Final

from conduit.workflows.models import Condition, ConditionOperator

_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


@dataclass
class ExecutionContext:
    """State visible to conditions and placeholders during one run."""

    execution_id: str
    workflow_id: str
    trigger_data: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)

    def namespaces(self) -> dict[str, Any]:
        return {
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "triggerData": self.trigger_data,
            "variables": self.variables,
        }


def _step(value: Any, key: str) -> Any:
    if isinstance(value, dict):
        return value.get(key, MISSING)
    if isinstance(value, list | tuple):
        try:
            return value[int(key)]
        except (ValueError, IndexError):
            return MISSING
    return MISSING


def resolve_path(path: str, context: ExecutionContext) -> Any:
    """Navigate ``a.b.c`` through the context; :data:`MISSING` when absent."""
    segments = [segment.strip() for segment in path.strip().split(".")]
    if not segments or not segments[0]:
        return MISSING

    head, rest = segments[0], segments[1:]
    if head in context.variables:
        value = context.variables[head]
    else:
        value = context.namespaces().get(head, MISSING)

    for segment in rest:
        if value is MISSING or value is None:
            return MISSING
        value = _step(value, segment)
    return value


def stringify(value: Any) -> str:
    """String form used for interpolation and ``contains`` checks."""
    if value is MISSING or value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


def interpolate(text: str, context: ExecutionContext) -> str:
    """Replace each ``{{path}}`` in *text*; unresolved paths become ``""``."""
    if "{{" not in text:
        return text
    return _PLACEHOLDER.sub(lambda m: stringify(resolve_path(m.group(1), context)), text)


def interpolate_values(value: Any, context: ExecutionContext) -> Any:
    """Interpolate strings, recursing through dicts; lists pass through verbatim."""
    if isinstance(value, str):
        return interpolate(value, context)
    if isinstance(value, dict):
        return {key: interpolate_values(item, context) for key, item in value.items()}
    return value


def to_number(value: Any) -> float:
    """Numeric coercion for ordering comparisons; NaN when not numeric."""
    if value is MISSING:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return 0.0
        try:
            return float(stripped)
        except ValueError:
            return math.nan
    return math.nan


def strict_equals(actual: Any, expected: Any) -> bool:
    if actual is MISSING:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    if isinstance(actual, int | float) and isinstance(expected, int | float):
        return actual == expected
    if type(actual) is not type(expected):
        return False
    return actual == expected


def _contains_text(value: Any) -> str:
    # Absent and null values render as their literal names.
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    return stringify(value)


def evaluate_condition(condition: Condition, context: ExecutionContext) -> bool:
    actual = resolve_path(condition.field, context)
    expected = condition.value

    match condition.operator:
        case ConditionOperator.EQUALS:
            return strict_equals(actual, expected)
        case ConditionOperator.NOT_EQUALS:
            return not strict_equals(actual, expected)
        case ConditionOperator.CONTAINS:
            return _contains_text(expected) in _contains_text(actual)
        case ConditionOperator.GREATER_THAN:
            return to_number(actual) > to_number(expected)
        case ConditionOperator.LESS_THAN:
            return to_number(actual) < to_number(expected)
    return False
