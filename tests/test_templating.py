"""Tests for template resolution and condition evaluation."""

import math

import pytest

from stepflow.core.conditions import evaluate, evaluate_expression, parse_condition
from stepflow.core.templating import (
    MISSING,
    canonical_number,
    format_number,
    format_value,
    get_nested_value,
    json_escape,
    parse_float,
    parse_int,
    resolve,
    strip_code_fence,
)
from stepflow.models.core import ExecutionContext


class TestResolve:
    """Test cases for placeholder resolution."""

    def test_plain_text_unchanged(self):
        assert resolve("no placeholders here", {}) == "no placeholders here"
        assert resolve("", {}) == ""

    def test_undefined_left_in_place(self):
        assert resolve("{{x}}", ExecutionContext()) == "{{x}}"
        assert resolve("a {{missing.path}} b", {"missing": "nope"}) == "a {{missing.path}} b"

    def test_simple_variables(self):
        context = ExecutionContext({"name": "World", "count": 3, "ratio": 2.5})

        assert resolve("Hello {{name}}!", context) == "Hello World!"
        assert resolve("{{count}}/{{ratio}}", context) == "3/2.5"

    def test_json_path(self):
        context = ExecutionContext({"data": '{"items":[{"name":"a"},{"name":"b"}]}'})

        assert resolve("{{data.items[1].name}}", context) == "b"
        assert resolve("{{data.items}}", context) == '[{"name":"a"},{"name":"b"}]'

    def test_index_from_variable(self):
        context = ExecutionContext({
            "data": '{"items":[{"id":10},{"id":20}]}',
            "idx": 1,
        })

        assert resolve("{{data.items[idx].id}}", context) == "20"

    def test_root_array_index(self):
        context = ExecutionContext({"rows": '[{"id":"first"},{"id":"second"}]'})

        assert resolve("{{rows[0].id}}", context) == "first"
        assert resolve("{{rows[5].id}}", context) == "{{rows[5].id}}"

    def test_fenced_json_is_navigable(self):
        context = ExecutionContext({"reply": '```json\n{"ok": true}\n```'})

        assert resolve("{{reply.ok}}", context) == "true"

    def test_json_suffix_escapes(self):
        context = ExecutionContext({"text": 'say "hi"\nbye'})

        assert resolve('{"msg":"{{text:json}}"}', context) == '{"msg":"say \\"hi\\"\\nbye"}'

    def test_nested_resolution_passes(self):
        context = ExecutionContext({"outer": "{{inner}}", "inner": "done"})

        assert resolve("{{outer}}", context) == "done"

    def test_pass_limit(self):
        context = ExecutionContext({"loop": "{{loop}}x"})

        result = resolve("{{loop}}", context, max_passes=3)
        assert result == "{{loop}}xxx"


class TestNumbers:

    def test_parse_float_is_lenient(self):
        assert parse_float("12abc") == 12.0
        assert parse_float("  -3.5e2") == -350.0
        assert parse_float("abc") is None
        assert parse_float("Infinity") == math.inf

    def test_parse_int(self):
        assert parse_int("42px") == 42
        assert parse_int("x") is None
        assert parse_int(7.9) == 7

    def test_format_number(self):
        assert format_number(5.0) == "5"
        assert format_number(0.1 + 0.2) == "0.30000000000000004"
        assert format_number(math.nan) == "NaN"
        assert format_number(1e21) == "1e+21"

    def test_canonical_number(self):
        assert canonical_number("5") == 5
        assert canonical_number("-2.5") == -2.5
        assert canonical_number("05") == "05"
        assert canonical_number("5.0") == "5.0"
        assert canonical_number("abc") == "abc"

    def test_format_value(self):
        assert format_value(True) == "true"
        assert format_value({"a": 1.0}) == '{"a":1}'
        assert format_value("x") == "x"


class TestHelpers:

    def test_get_nested_value(self):
        data = {"a": {"b": [1, {"c": "deep"}]}}

        assert get_nested_value(data, "a.b[1].c") == "deep"
        assert get_nested_value(data, "a.b.0") == 1
        assert get_nested_value(data, "a.x") is MISSING

    def test_strip_code_fence(self):
        assert strip_code_fence("```json\n[1]\n```") == "[1]"
        assert strip_code_fence("  plain ") == "plain"

    def test_json_escape(self):
        assert json_escape('a"b') == 'a\\"b'


class TestConditions:
    """Test cases for condition parsing and evaluation."""

    def test_parse_prefers_two_character_operators(self):
        condition = parse_condition("{{a}} <= 10")

        assert condition.operator == "<="
        assert condition.left == "{{a}}"
        assert condition.right == "10"

    def test_parse_rejects_ambiguous(self):
        assert parse_condition("no operator") is None
        assert parse_condition("a == b == c") is None

    def test_numeric_comparison(self):
        assert evaluate_expression("5 <= 10", {}) is True
        assert evaluate_expression("10 < 9", {}) is False
        assert evaluate_expression("{{n}} > 2", ExecutionContext({"n": 3})) is True

    def test_string_comparison(self):
        context = ExecutionContext({"status": "done"})

        assert evaluate_expression('{{status}} == "done"', context) is True
        assert evaluate_expression("'abc' != 'abd'", context) is True
        assert evaluate_expression("b > a", context) is True

    def test_contains(self):
        assert evaluate_expression('"abc" contains "b"', {}) is True
        context = ExecutionContext({"tags": '["red","blue"]'})
        assert evaluate_expression("{{tags}} contains blue", context) is True
        assert evaluate_expression("{{tags}} contains bl", context) is False

    def test_invalid_expression(self):
        with pytest.raises(ValueError, match="Invalid condition format"):
            evaluate_expression("nothing to compare", {})

    def test_evaluate_parsed(self):
        condition = parse_condition("{{x}} == 1")

        assert evaluate(condition, {"x": 1}) is True
        assert evaluate(condition, {"x": "1.0"}) is True
