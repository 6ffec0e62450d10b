"""Tests for dot-path resolution, interpolation and condition evaluation."""

from __future__ import annotations

import pytest

from conduit.workflows.models import Condition, ConditionOperator
from conduit.workflows.templating import (
    MISSING,
    ExecutionContext,
    evaluate_condition,
    interpolate,
    interpolate_values,
    resolve_path,
    stringify,
)

pytestmark = pytest.mark.unit


def _context(**variables) -> ExecutionContext:
    return ExecutionContext(
        execution_id="exec-1",
        workflow_id="wf-1",
        trigger_data={"source": "trigger"},
        variables=variables,
    )


def _condition(field: str, operator: str, value) -> Condition:
    return Condition(field=field, operator=ConditionOperator(operator), value=value)


class TestResolvePath:
    def test_nested_variable(self):
        assert resolve_path("a.b", _context(a={"b": "x"})) == "x"

    def test_list_index(self):
        assert resolve_path("items.1.name", _context(items=[{"name": "a"}, {"name": "b"}])) == "b"

    def test_missing_segment(self):
        assert resolve_path("a.c", _context(a={"b": "x"})) is MISSING

    def test_traversing_none_is_missing(self):
        assert resolve_path("a.b", _context(a=None)) is MISSING

    def test_traversing_scalar_is_missing(self):
        assert resolve_path("a.b", _context(a="text")) is MISSING

    def test_context_namespaces(self):
        ctx = _context()
        assert resolve_path("executionId", ctx) == "exec-1"
        assert resolve_path("workflowId", ctx) == "wf-1"
        assert resolve_path("triggerData.source", ctx) == "trigger"

    def test_variables_shadow_namespaces(self):
        ctx = _context(workflowId="shadowed")
        assert resolve_path("workflowId", ctx) == "shadowed"

    def test_variables_namespace(self):
        assert resolve_path("variables.a", _context(a=1)) == 1

    def test_blank_path(self):
        assert resolve_path("  ", _context()) is MISSING


class TestInterpolate:
    def test_replaces_placeholder(self):
        assert interpolate("{{a.b}}", _context(a={"b": "x"})) == "x"

    def test_unresolved_is_empty(self):
        assert interpolate("Hi {{nobody.here}}!", _context()) == "Hi !"

    def test_plain_string_unchanged(self):
        assert interpolate("no placeholders", _context()) == "no placeholders"

    def test_whitespace_inside_braces(self):
        assert interpolate("Follow up with {{ firstName }}", _context(firstName="Ada")) == (
            "Follow up with Ada"
        )

    def test_multiple_placeholders_and_scalars(self):
        ctx = _context(n=3, paid=True, total=10.0)
        text = interpolate("{{n}} items, paid={{paid}}, total={{total}}", ctx)
        assert text == "3 items, paid=true, total=10"

    def test_none_renders_empty(self):
        assert interpolate("[{{value}}]", _context(value=None)) == "[]"

    def test_values_recurse_through_dicts_not_lists(self):
        ctx = _context(name="Ada")
        value = {
            "title": "Hi {{name}}",
            "nested": {"inner": "{{name}}"},
            "tags": ["{{name}}"],
            "count": 2,
        }
        assert interpolate_values(value, ctx) == {
            "title": "Hi Ada",
            "nested": {"inner": "Ada"},
            "tags": ["{{name}}"],
            "count": 2,
        }

    def test_stringify_dict_is_json(self):
        assert stringify({"a": 1}) == '{"a": 1}'


class TestEvaluateCondition:
    @pytest.mark.parametrize(
        ("operator", "actual", "expected", "result"),
        [
            ("equals", "won", "won", True),
            ("equals", "won", "lost", False),
            ("equals", 5, 5.0, True),
            ("equals", "5", 5, False),
            ("equals", True, 1, False),
            ("not_equals", "won", "lost", True),
            ("not_equals", "won", "won", False),
            ("contains", "hello world", "world", True),
            ("contains", "hello", "bye", False),
            ("contains", 10, 1, True),
            ("greater_than", 10, 5, True),
            ("greater_than", "10", "5", True),
            ("greater_than", 5, 10, False),
            ("greater_than", "abc", 1, False),
            ("less_than", 1, 2, True),
            ("less_than", 2, 1, False),
        ],
    )
    def test_operator(self, operator, actual, expected, result):
        ctx = _context(field=actual)
        assert evaluate_condition(_condition("field", operator, expected), ctx) is result

    def test_unresolved_field(self):
        ctx = _context()
        assert evaluate_condition(_condition("missing", "equals", None), ctx) is False
        assert evaluate_condition(_condition("missing", "not_equals", "x"), ctx) is True
        assert evaluate_condition(_condition("missing", "contains", "x"), ctx) is False
        assert evaluate_condition(_condition("missing", "greater_than", 0), ctx) is False
        assert evaluate_condition(_condition("missing", "less_than", 0), ctx) is False

    def test_contains_without_value_is_not_a_wildcard(self):
        ctx = _context(field="hello", note="nothing to see", unset=None)
        without_value = Condition(field="field", operator=ConditionOperator.CONTAINS)
        assert evaluate_condition(without_value, ctx) is False
        assert evaluate_condition(_condition("field", "contains", None), ctx) is False
        assert evaluate_condition(_condition("note", "contains", "null"), ctx) is False
        assert evaluate_condition(_condition("unset", "contains", "null"), ctx) is True

    def test_null_field_coerces_to_zero(self):
        ctx = _context(field=None)
        assert evaluate_condition(_condition("field", "less_than", 1), ctx) is True
        assert evaluate_condition(_condition("field", "equals", None), ctx) is True

    def test_nested_field(self):
        ctx = _context(deal={"stage": "WON", "value": 1200})
        assert evaluate_condition(_condition("deal.stage", "equals", "WON"), ctx)
        assert evaluate_condition(_condition("deal.value", "greater_than", 1000), ctx)
