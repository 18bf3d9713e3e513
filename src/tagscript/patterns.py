"""Template tokenizer, value extraction, interpolation and conditions.

Token grammar inside ``{{ ... }}``:

- ``{{name}}`` simple capture, ``{{name?}}`` optional capture
- ``{{name+}}`` list split on spaces, ``{{name+:<delim>}}`` list split on ``<delim>``
- ``{{name*}}`` greedy capture
- ``{{name:<regex>}}`` capture validated by a regular expression
- ``{{cursor}}`` reserved insertion marker, passed through by :func:`interpolate`

Any other placeholder body is an expression handled by
:mod:`tagscript.expressions`.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import MissingVariableError, PatternError, UnterminatedPlaceholderError
from .expressions import MISSING, compare, evaluate_expression, is_truthy, resolve_path
from .utils import parse_literal, to_template_text

__all__ = [
    "CURSOR_MARKER",
    "MISSING",
    "TOKEN_KINDS",
    "ExtractionResult",
    "PatternToken",
    "clean_template",
    "evaluate_condition",
    "extract_values",
    "has_pattern_tokens",
    "interpolate",
    "parse_pattern",
    "referenced_variables",
    "resolve_path",
    "strip_cursor_marker",
]

CURSOR_MARKER = "{{cursor}}"
TOKEN_KINDS = ("simple", "list", "greedy", "regex", "optional")

_OPEN = "{{"
_CLOSE = "}}"
_TOKEN_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*(?:\[\d+\][A-Za-z0-9_.]*)*")
_COMPARISON = re.compile(r"^(.+?)\s*(==|!=|>=|<=|>|<)\s*(.+)$", re.DOTALL)
_HAS_PLACEHOLDER = re.compile(r"\{\{.+?\}\}", re.DOTALL)
_MODIFIER_KINDS = {"+": "list", "*": "greedy", ":": "regex", "?": "optional"}


@dataclass(frozen=True)
class PatternToken:
    name: str
    kind: str
    raw: str
    delimiter: str | None = None
    validator: str | None = None
    optional: bool = False


@dataclass(frozen=True)
class _Placeholder:
    raw: str
    inner: str
    position: int

    @property
    def body(self) -> str:
        return self.inner.strip()


@dataclass
class ExtractionResult:
    success: bool
    values: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


_Segment = str | _Placeholder


def _scan(template: str) -> list[_Segment]:
    """Split a template into literal text and placeholders.

    Raises UnterminatedPlaceholderError when an opening ``{{`` is never closed.
    """
    segments: list[_Segment] = []
    position = 0
    while True:
        start = template.find(_OPEN, position)
        if start == -1:
            if position < len(template):
                segments.append(template[position:])
            return segments
        end = template.find(_CLOSE, start + len(_OPEN))
        if end == -1:
            raise UnterminatedPlaceholderError(template, start)
        if start > position:
            segments.append(template[position:start])
        raw = template[start : end + len(_CLOSE)]
        segments.append(_Placeholder(raw=raw, inner=template[start + len(_OPEN) : end], position=start))
        position = end + len(_CLOSE)


def _as_token(placeholder: _Placeholder) -> PatternToken | None:
    """Interpret a placeholder as a pattern token, or ``None`` for an expression."""
    body = placeholder.inner.lstrip()
    match = _TOKEN_NAME.match(body)
    if match is None:
        return None
    name = match.group(0)
    rest = body[match.end() :]
    if not rest.strip():
        return PatternToken(name=name, kind="simple", raw=placeholder.raw)
    kind = _MODIFIER_KINDS.get(rest[0])
    if kind is None:
        return None
    # The list delimiter is kept verbatim, surrounding spaces included
    extra = rest[1:]
    if kind == "list":
        if extra.startswith(":"):
            return PatternToken(name=name, kind=kind, raw=placeholder.raw, delimiter=extra[1:] or " ")
        if extra.strip():
            return None
        return PatternToken(name=name, kind=kind, raw=placeholder.raw, delimiter=" ")
    extra = extra.strip()
    if kind == "regex":
        if not extra:
            return None
        try:
            re.compile(extra)
        except re.error as exc:
            raise PatternError(f"Invalid regex in {placeholder.raw}: {exc}") from exc
        return PatternToken(name=name, kind=kind, raw=placeholder.raw, validator=extra)
    if extra:
        return None
    return PatternToken(name=name, kind=kind, raw=placeholder.raw, optional=kind == "optional")


def parse_pattern(template: str) -> list[PatternToken]:
    """Return the pattern tokens of ``template`` in left-to-right order."""
    tokens: list[PatternToken] = []
    for segment in _scan(template):
        if isinstance(segment, str):
            continue
        token = _as_token(segment)
        if token is None:
            raise PatternError(f"Placeholder {segment.raw} is not a valid pattern token")
        tokens.append(token)
    return tokens


def _capture_for(token: PatternToken, group: str, next_literal: str) -> str:
    if token.kind == "regex":
        return f"(?P<{group}>(?:{token.validator}))"
    if token.kind in ("greedy", "list"):
        return f"(?P<{group}>.+?)" if next_literal else f"(?P<{group}>.+)"
    if token.optional:
        return f"(?P<{group}>.*?)" if next_literal else f"(?P<{group}>.*)"
    if next_literal:
        return f"(?P<{group}>.+?)"
    # Trailing required token: at least one non-space character, then the rest
    return f"(?P<{group}>\\S.*)"


def extract_values(text: str, pattern: str) -> ExtractionResult:
    """Match ``text`` against ``pattern`` and return the captured token values."""
    try:
        segments = _scan(pattern)
        tokens: list[PatternToken] = []
        parts: list[str] = []
        for index, segment in enumerate(segments):
            if isinstance(segment, str):
                parts.append(re.escape(segment))
                continue
            token = _as_token(segment)
            if token is None:
                raise PatternError(f"Placeholder {segment.raw} is not a valid pattern token")
            following = segments[index + 1] if index + 1 < len(segments) else ""
            next_literal = following if isinstance(following, str) else ""
            parts.append(_capture_for(token, f"t{len(tokens)}", next_literal))
            tokens.append(token)
    except PatternError as exc:
        return ExtractionResult(success=False, error=str(exc))

    if not tokens:
        if text.strip() == pattern.strip():
            return ExtractionResult(success=True)
        return ExtractionResult(success=False, error="Text does not match pattern")

    try:
        regex = re.compile("".join(parts), re.DOTALL)
    except re.error as exc:
        return ExtractionResult(success=False, error=f"Failed to build extraction regex: {exc}")

    match = regex.fullmatch(text)
    if match is None:
        if all(token.optional for token in tokens):
            return ExtractionResult(success=True)
        return ExtractionResult(success=False, error=f"Text does not match pattern. Expected format: {pattern}")

    values: dict[str, Any] = {}
    for index, token in enumerate(tokens):
        captured = (match.group(f"t{index}") or "").strip()
        if not captured:
            if token.optional:
                continue
            return ExtractionResult(success=False, values=values, error=f"Required value for '{token.name}' not found")
        if token.kind == "list":
            values[token.name] = [item.strip() for item in captured.split(token.delimiter or " ") if item.strip()]
            continue
        if token.kind == "regex" and re.fullmatch(token.validator or "", captured) is None:
            return ExtractionResult(
                success=False,
                values=values,
                error=f"Value '{captured}' for '{token.name}' does not match required format",
            )
        values[token.name] = captured
    return ExtractionResult(success=True, values=values)


def _placeholder_value(placeholder: _Placeholder, variables: Mapping[str, Any], strict: bool) -> Any:
    token = _as_token(placeholder)
    if token is None:
        try:
            return evaluate_expression(placeholder.body, variables)
        except MissingVariableError:
            if strict:
                raise
            return None
    value = resolve_path(variables, token.name)
    if value is MISSING:
        if strict and not token.optional:
            raise MissingVariableError(token.name)
        return None
    if token.kind == "list" and isinstance(value, (list, tuple)):
        return (token.delimiter or " ").join(to_template_text(item) for item in value)
    return value


def interpolate(
    template: str,
    variables: Mapping[str, Any],
    *,
    strict: bool = True,
    escape: Callable[[str], str] | None = None,
) -> str:
    """Substitute every placeholder in ``template`` with its value.

    With ``strict`` (the default) an unresolvable required token raises
    :class:`MissingVariableError`; otherwise it renders as an empty string.
    ``escape`` is applied to each substituted value, never to literal text.
    """
    if not template:
        return template
    parts: list[str] = []
    for segment in _scan(template):
        if isinstance(segment, str):
            parts.append(segment)
            continue
        if segment.body == "cursor":
            parts.append(CURSOR_MARKER)
            continue
        rendered = to_template_text(_placeholder_value(segment, variables, strict))
        parts.append(escape(rendered) if escape is not None else rendered)
    return "".join(parts)


def evaluate_condition(expression: str, variables: Mapping[str, Any]) -> bool:
    """Evaluate a condition such as ``{{count}} > 3`` or ``{{enabled}}``.

    Missing values read as empty. At most one comparison operator is
    recognized; without one the interpolated text is tested for truthiness,
    where ``false``, ``0``, ``null``, ``undefined`` and empty text are false.
    """
    text = interpolate(expression, variables, strict=False).strip()
    match = _COMPARISON.match(text)
    if match:
        left, operator, right = match.groups()
        return compare(parse_literal(left.strip()), operator, parse_literal(right.strip()))
    return is_truthy(parse_literal(text))


def has_pattern_tokens(text: str) -> bool:
    return bool(text) and _HAS_PLACEHOLDER.search(text) is not None


def referenced_variables(template: str) -> list[str]:
    names: list[str] = []
    for segment in _scan(template):
        if isinstance(segment, str) or segment.body == "cursor":
            continue
        token = _as_token(segment)
        if token is not None and token.name not in names:
            names.append(token.name)
    return names


def clean_template(template: str | None) -> str:
    """Strip the backticks that wrap authored values."""
    if not template:
        return ""
    text = template.strip()
    if text.startswith("`"):
        text = text[1:]
    if text.endswith("`"):
        text = text[:-1]
    return text.strip()


def strip_cursor_marker(text: str) -> tuple[str, int | None]:
    """Remove the first ``{{cursor}}`` marker and return its offset."""
    index = text.find(CURSOR_MARKER)
    if index == -1:
        return text, None
    return text[:index] + text[index + len(CURSOR_MARKER) :], index
