from __future__ import annotations

import pytest

from tagscript.errors import MissingVariableError, PatternError
from tagscript.expressions import MISSING, evaluate_expression, is_truthy, resolve_path, split_path


@pytest.mark.parametrize(
    ("source", "variables", "expected"),
    [
        ("a.b[0] * 2", {"a": {"b": [3]}}, 6),
        ("(1 + 2) * 3", {}, 9),
        ("10 / 4", {}, 2.5),
        ("8 / 4", {}, 2),
        ("7 % 4", {}, 3),
        ("-x + 1", {"x": 3}, -2),
        ("'x' + 1", {}, "x1"),
        ("items.length > 1 && ready", {"items": [1, 2], "ready": True}, True),
        ("!done", {"done": False}, True),
        ("a and not b", {"a": 1, "b": 0}, True),
        ("null || 'fallback'", {}, "fallback"),
        ("x == '5'", {"x": 5}, True),
        ('meta["first name"]', {"meta": {"first name": "Ada"}}, "Ada"),
        ("items[i]", {"items": ["a", "b"], "i": 1}, "b"),
    ],
)
def test_evaluate_expression(source, variables, expected) -> None:
    assert evaluate_expression(source, variables) == expected


def test_missing_variable_raises() -> None:
    with pytest.raises(MissingVariableError) as excinfo:
        evaluate_expression("missing + 1", {})

    assert excinfo.value.name == "missing"


def test_missing_nested_path_names_full_path() -> None:
    with pytest.raises(MissingVariableError) as excinfo:
        evaluate_expression("a.b.c", {"a": {"b": {}}})

    assert excinfo.value.name == "a.b.c"


def test_division_by_zero_is_a_pattern_error() -> None:
    with pytest.raises(PatternError, match="Division by zero"):
        evaluate_expression("1 / 0", {})


def test_arithmetic_needs_numbers() -> None:
    with pytest.raises(PatternError, match="needs numbers"):
        evaluate_expression("name * 2", {"name": "Ada"})


def test_calls_are_not_part_of_the_grammar() -> None:
    with pytest.raises(PatternError, match="Unexpected"):
        evaluate_expression("f(1)", {"f": "x"})


def test_python_attributes_are_not_reachable() -> None:
    with pytest.raises(MissingVariableError):
        evaluate_expression("obj.__class__", {"obj": object()})


def test_unexpected_character_is_rejected() -> None:
    with pytest.raises(PatternError, match="Unexpected character"):
        evaluate_expression("a ; b", {"a": 1, "b": 2})


def test_split_and_resolve_path() -> None:
    variables = {"a": {"b": [{"c d": 1}]}}

    assert split_path('a.b[0]["c d"]') == ["a", "b", 0, "c d"]
    assert resolve_path(variables, 'a.b[0]["c d"]') == 1
    assert resolve_path(variables, "a.b.length") == 1
    assert resolve_path(variables, "a.x") is MISSING
    assert resolve_path(variables, "a.b[5]") is MISSING


@pytest.mark.parametrize(
    ("value", "expected"),
    [("false", False), ("0", False), ("null", False), ("", False), ("no", True), ([], False), ([0], True), (None, False)],
)
def test_is_truthy(value, expected) -> None:
    assert is_truthy(value) is expected
