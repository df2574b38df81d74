"""Expression and template resolution: paths, templates, safe evaluation."""

import pytest

from canvasflow.engine.context import ExecutionContext
from canvasflow.exceptions import ExpressionError
from canvasflow.expressions import (
    UNDEFINED,
    evaluate_expression,
    lookup_path,
    resolve_template,
    resolve_value,
    split_path,
    stringify,
)


@pytest.fixture
def ctx():
    c = ExecutionContext(variables={"x": 2, "name": "Ada"})
    c.record_result("1", {"items": ["a", "b", "c"], "user": {"email": "ada@example.com"}}, "Loop")
    c.record_result("form-1", {"data": {"first_name": "Grace"}}, "Signup Form")
    return c


# ── Paths ────────────────────────────────────────────────────────────────────

def test_split_path_handles_brackets_and_quotes():
    assert split_path("$.a.b[0]['c d']") == ["a", "b", 0, "c d"]


def test_split_path_rejects_non_root():
    assert split_path("a.b") is None


def test_direct_path_returns_raw_list(ctx):
    assert resolve_value("$.Loop#1.items", ctx) == ["a", "b", "c"]


def test_path_by_id_ignores_display_name(ctx):
    assert resolve_value("$.Anything#1.items[1]", ctx) == "b"


def test_path_by_display_name_with_spaces(ctx):
    assert lookup_path("$.Signup Form.data.first_name", ctx) == "Grace"


def test_variable_takes_precedence(ctx):
    assert resolve_value("$.x", ctx) == 2


def test_missing_path_is_undefined(ctx):
    assert resolve_value("$.Loop#1.nope", ctx) is UNDEFINED
    assert resolve_value("$.Nobody#zz", ctx) is UNDEFINED


def test_length_pseudo_property(ctx):
    assert lookup_path("$.Loop#1.items.length", ctx) == 3


# ── Templates ────────────────────────────────────────────────────────────────

def test_whole_template_returns_raw_value(ctx):
    assert resolve_value("{{ $.Loop#1.items }}", ctx) == ["a", "b", "c"]


def test_mixed_template_interpolates_to_string(ctx):
    assert resolve_value("Hi {{ $.name }}, you have {{ $.Loop#1.items.length }} items", ctx) == (
        "Hi Ada, you have 3 items"
    )


def test_template_with_missing_value_renders_empty(ctx):
    assert resolve_template("[{{ $.nothing.here }}]", ctx) == "[]"


def test_template_renders_structures_as_json(ctx):
    assert resolve_template("{{ $.Loop#1.user }}", ctx) == '{"email": "ada@example.com"}'


def test_non_string_passes_through(ctx):
    assert resolve_value(42, ctx) == 42
    assert resolve_value(["x"], ctx) == ["x"]


# ── Expressions ──────────────────────────────────────────────────────────────

def test_arithmetic_and_comparison(ctx):
    assert evaluate_expression("$.x * 3 > 5", ctx) is True


def test_js_operator_aliases(ctx):
    assert evaluate_expression("$.x === 2 && !false", ctx) is True
    assert evaluate_expression("$.x !== 2 || false", ctx) is False


def test_operators_inside_string_literals_untouched(ctx):
    assert evaluate_expression("'a && b'", ctx) == "a && b"


def test_whitelisted_helpers(ctx):
    assert evaluate_expression("upper($.name)", ctx) == "ADA"
    assert evaluate_expression("len($.Loop#1.items)", ctx) == 3


def test_split_helper(ctx):
    assert resolve_value("{{ split('billing, api,,') }}", ctx) == ["billing", "api"]
    assert evaluate_expression("split($.Loop#1.items)", ctx) == ["a", "b", "c"]


def test_bare_names_resolve_variables(ctx):
    assert evaluate_expression("x + 1", ctx) == 3


def test_dunder_access_is_data_only(ctx):
    assert evaluate_expression("name.__class__", ctx) is UNDEFINED


def test_disallowed_calls_raise(ctx):
    with pytest.raises(ExpressionError):
        evaluate_expression("__import__('os')", ctx)


def test_syntax_error_raises(ctx):
    with pytest.raises(ExpressionError):
        evaluate_expression("1 +", ctx)


def test_lenient_resolution_never_raises(ctx):
    assert resolve_value("{{ 1 + }}", ctx) is UNDEFINED


def test_evaluation_does_not_mutate_context(ctx):
    before = ctx.snapshot()
    evaluate_expression("$.Loop#1.items[0] == 'a'", ctx)
    assert ctx.snapshot() == before


# ── stringify ────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("value,expected", [
    (None, ""),
    (UNDEFINED, ""),
    (True, "true"),
    (3.0, "3"),
    (2.5, "2.5"),
    ([1, 2], "[1, 2]"),
])
def test_stringify(value, expected):
    assert stringify(value) == expected
