"""Small expression language used inside ``{{ ... }}`` placeholders.

Placeholders that are not plain variable tokens (``{{count + 1}}``,
``{{items.length > 0 && ready}}``) are evaluated here. The evaluator is a
recursive-descent parser over a closed grammar:

- literals: numbers, quoted strings, ``true``/``false``/``null``
- variable paths with dot and bracket access (``a.b[0]["c"]``)
- arithmetic ``+ - * / %``, comparisons ``== != < > <= >=``
- boolean ``&& || !`` (or ``and or not``) and parentheses

Nothing else is reachable: there are no calls and no attribute access on
Python objects, only lookups into mappings and sequences.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from .errors import MissingVariableError, PatternError
from .utils import parse_literal, to_template_text


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

_PATH_SEGMENT = re.compile(r"\[(\d+)\]|\[(['\"])(.*?)\2\]|([^.\[\]]+)")
_FALSY_WORDS = frozenset({"", "false", "0", "null", "undefined"})


def split_path(path: str) -> list[str | int]:
    """Split ``a.b[0]["c d"]`` into ``["a", "b", 0, "c d"]``."""
    segments: list[str | int] = []
    for match in _PATH_SEGMENT.finditer(path):
        index, _, quoted, name = match.groups()
        if index is not None:
            segments.append(int(index))
        elif quoted is not None:
            segments.append(quoted)
        else:
            segments.append(name.strip())
    return segments


def lookup(current: Any, segment: str | int) -> Any:
    """Read one path segment from ``current`` without modifying it."""
    if current is None or current is MISSING:
        return MISSING
    if isinstance(current, Mapping):
        if segment in current:
            return current[segment]
        if isinstance(segment, int) and str(segment) in current:
            return current[str(segment)]
        return MISSING
    if isinstance(current, (str, bytes)):
        if segment == "length":
            return len(current)
        return MISSING
    if isinstance(current, Sequence):
        if segment == "length":
            return len(current)
        if isinstance(segment, str) and segment.isdigit():
            segment = int(segment)
        if isinstance(segment, int) and 0 <= segment < len(current):
            return current[segment]
        return MISSING
    return MISSING


def resolve_path(variables: Mapping[str, Any], path: str) -> Any:
    """Resolve a dot/bracket path against the variables, or return ``MISSING``."""
    current: Any = variables
    for segment in split_path(path):
        current = lookup(current, segment)
        if current is MISSING:
            return MISSING
    return current


def is_truthy(value: Any) -> bool:
    if value is None or value is MISSING:
        return False
    if isinstance(value, str):
        return value.strip().lower() not in _FALSY_WORDS
    return bool(value)


def to_number(value: Any) -> float | int | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        parsed = parse_literal(value)
        if isinstance(parsed, (int, float)) and not isinstance(parsed, bool):
            return parsed
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that treats ``5`` and ``"5"`` as the same value."""
    if left == right:
        return True
    left_number, right_number = to_number(left), to_number(right)
    if left_number is not None and right_number is not None:
        return left_number == right_number
    return to_template_text(left) == to_template_text(right)


def compare(left: Any, operator: str, right: Any) -> bool:
    if operator == "==":
        return loose_equals(left, right)
    if operator == "!=":
        return not loose_equals(left, right)
    left_number, right_number = to_number(left), to_number(right)
    if left_number is None or right_number is None:
        # Non-numeric ordering never holds
        return False
    if operator == ">":
        return left_number > right_number
    if operator == "<":
        return left_number < right_number
    if operator == ">=":
        return left_number >= right_number
    if operator == "<=":
        return left_number <= right_number
    raise PatternError(f"Unknown comparison operator '{operator}'")


_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>&&|\|\||==|!=|>=|<=|[-+*/%<>!().\[\]])
    """,
    re.VERBOSE,
)

_KEYWORD_OPS = {"and": "&&", "or": "||", "not": "!"}
_CONSTANTS = {"true": True, "false": False, "null": None, "undefined": None}


def _tokenize(source: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    position = 0
    while position < len(source):
        match = _TOKEN_RE.match(source, position)
        if match is None:
            raise PatternError(f"Unexpected character {source[position]!r} in expression: {source}")
        position = match.end()
        kind = match.lastgroup or ""
        text = match.group(kind)
        if kind == "space":
            continue
        if kind == "name" and text in _KEYWORD_OPS:
            tokens.append(("op", _KEYWORD_OPS[text]))
            continue
        tokens.append((kind, text))
    return tokens


class _Evaluator:
    def __init__(self, source: str, variables: Mapping[str, Any]) -> None:
        self.source = source
        self.variables = variables
        self.tokens = _tokenize(source)
        self.position = 0

    def evaluate(self) -> Any:
        value = self._or()
        if self.position != len(self.tokens):
            raise PatternError(f"Unexpected '{self.tokens[self.position][1]}' in expression: {self.source}")
        return value

    def _peek(self) -> tuple[str, str] | None:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return None

    def _accept(self, *operators: str) -> str | None:
        token = self._peek()
        if token is not None and token[0] == "op" and token[1] in operators:
            self.position += 1
            return token[1]
        return None

    def _expect(self, operator: str) -> None:
        if self._accept(operator) is None:
            raise PatternError(f"Expected '{operator}' in expression: {self.source}")

    def _or(self) -> Any:
        value = self._and()
        while self._accept("||"):
            right = self._and()
            value = value if is_truthy(value) else right
        return value

    def _and(self) -> Any:
        value = self._not()
        while self._accept("&&"):
            right = self._not()
            value = right if is_truthy(value) else value
        return value

    def _not(self) -> Any:
        if self._accept("!"):
            return not is_truthy(self._not())
        return self._comparison()

    def _comparison(self) -> Any:
        left = self._additive()
        operator = self._accept("==", "!=", ">=", "<=", ">", "<")
        if operator is None:
            return left
        return compare(left, operator, self._additive())

    def _additive(self) -> Any:
        value = self._term()
        while True:
            operator = self._accept("+", "-")
            if operator is None:
                return value
            right = self._term()
            if operator == "+" and (isinstance(value, str) or isinstance(right, str)):
                value = to_template_text(value) + to_template_text(right)
            else:
                value = self._arithmetic(value, operator, right)

    def _term(self) -> Any:
        value = self._unary()
        while True:
            operator = self._accept("*", "/", "%")
            if operator is None:
                return value
            value = self._arithmetic(value, operator, self._unary())

    def _unary(self) -> Any:
        if self._accept("-"):
            return self._arithmetic(0, "-", self._unary())
        return self._postfix()

    def _postfix(self) -> Any:
        value, label = self._primary()
        while True:
            if self._accept("."):
                token = self._peek()
                if token is None or token[0] not in ("name", "number"):
                    raise PatternError(f"Expected a property name after '.' in expression: {self.source}")
                self.position += 1
                segment: str | int = token[1]
                label = f"{label}.{token[1]}"
            elif self._accept("["):
                index = self._or()
                self._expect("]")
                segment = int(index) if isinstance(index, (int, float)) and not isinstance(index, bool) else str(index)
                label = f"{label}[{index}]"
            else:
                return value
            value = lookup(value, segment)
            if value is MISSING:
                raise MissingVariableError(label)

    def _primary(self) -> tuple[Any, str]:
        token = self._peek()
        if token is None:
            raise PatternError(f"Unexpected end of expression: {self.source}")
        kind, text = token
        self.position += 1
        if kind == "number":
            return (float(text) if "." in text else int(text)), text
        if kind == "string":
            return _unquote(text), text
        if kind == "name":
            if text in _CONSTANTS:
                return _CONSTANTS[text], text
            if text not in self.variables:
                raise MissingVariableError(text)
            return self.variables[text], text
        if kind == "op" and text == "(":
            value = self._or()
            self._expect(")")
            return value, "(...)"
        raise PatternError(f"Unexpected '{text}' in expression: {self.source}")

    def _arithmetic(self, left: Any, operator: str, right: Any) -> Any:
        left_number, right_number = to_number(left), to_number(right)
        if left_number is None or right_number is None:
            raise PatternError(f"Operator '{operator}' needs numbers in expression: {self.source}")
        if operator == "+":
            return left_number + right_number
        if operator == "-":
            return left_number - right_number
        if operator == "*":
            return left_number * right_number
        if right_number == 0:
            raise PatternError(f"Division by zero in expression: {self.source}")
        if operator == "%":
            return left_number % right_number
        result = left_number / right_number
        return int(result) if result == int(result) else result


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def evaluate_expression(source: str, variables: Mapping[str, Any]) -> Any:
    """Evaluate an expression against the variables.

    Raises:
        MissingVariableError: when a referenced variable or path does not exist
        PatternError: on syntax errors or invalid operands
    """
    return _Evaluator(source, variables).evaluate()
