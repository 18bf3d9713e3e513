"""Actions that compute variables: ``build``, ``set``, ``match``, ``extract``, ``filter``, ``map`` and ``date``."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from ..context import ExecutionContext
from ..errors import ActionError, PatternError
from ..expressions import to_number
from ..nodes import BuildNode, DateNode, ExtractNode, FilterNode, MapNode, MatchNode, SetNode
from ..patterns import evaluate_condition, extract_values, interpolate
from ..utils import parse_literal
from .base import ExecuteChild, render, resolve_items

REGEX_LITERAL = re.compile(r"^/(.+)/([a-z]*)$", re.DOTALL)
_FLAG_BITS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}

# Epoch numbers above this are taken as milliseconds
_EPOCH_MS_THRESHOLD = 1e11
_DATE_INPUT_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d.%m.%Y", "%Y-%m-%d %H:%M", "%Y-%m-%d %H:%M:%S")


def _build_object(properties: tuple[tuple[str, Any], ...], context: ExecutionContext) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in properties:
        if isinstance(value, tuple):
            result[key] = _build_object(value, context)
        else:
            result[key] = parse_literal(render(str(value), context))
    return result


async def build_action(node: BuildNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    context.set(node.name, _build_object(node.properties, context))
    return context


async def set_action(node: SetNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    if node.pattern:
        result = extract_values(render(node.source, context), node.pattern)
        if not result.success:
            raise PatternError(result.error or "Pattern did not match")
        context.update(result.values)
        if node.name in result.values:
            return context
    context.set(node.name, parse_literal(render(node.value, context)))
    return context


async def match_action(node: MatchNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    result = extract_values(render(node.source, context), node.pattern)
    if not result.success:
        raise PatternError(result.error or "Pattern did not match")
    context.update(result.values)
    return context


def compile_regex(source: str) -> tuple[re.Pattern[str], bool]:
    """Compile ``/pattern/flags`` (or a bare pattern) and report whether it is global."""
    literal = REGEX_LITERAL.match(source.strip())
    if literal is None:
        pattern, flags = source, "g"
    else:
        pattern, flags = literal.groups()
    bits = 0
    for flag in flags:
        bits |= _FLAG_BITS.get(flag, 0)
    try:
        return re.compile(pattern, bits), "g" in flags
    except re.error as exc:
        raise ActionError(f"Invalid regular expression '{source}': {exc}") from exc


async def extract_action(node: ExtractNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    regex, is_global = compile_regex(node.pattern)
    text = render(node.source, context)
    first = regex.search(text)
    if is_global:
        matches: list[Any] = [match.group(0) for match in regex.finditer(text)]
    elif first is not None:
        matches = [first.group(0), *first.groups()]
    else:
        matches = []
    context.set(node.store_as, matches)
    if first is not None:
        context.update({name: value for name, value in first.groupdict().items() if value is not None})
    return context


def _item_scope(context: ExecutionContext, name: str, item: Any, index: int) -> dict[str, Any]:
    scope = dict(context.variables)
    scope[name] = item
    scope[f"{name}_index"] = index
    return scope


async def filter_action(node: FilterNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    items = resolve_items(node.items, context)
    kept = [
        item
        for index, item in enumerate(items)
        if evaluate_condition(node.where, _item_scope(context, node.item_name, item, index))
    ]
    context.set(node.store_as, kept)
    return context


async def map_action(node: MapNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    items = resolve_items(node.items, context)
    mapped = [
        parse_literal(interpolate(node.template, _item_scope(context, node.item_name, item, index)))
        for index, item in enumerate(items)
    ]
    context.set(node.store_as, mapped)
    return context


def parse_date(raw: str) -> datetime:
    """Parse epoch numbers (seconds or milliseconds), ISO 8601 and a few common date layouts."""
    text = raw.strip()
    if not text:
        raise ActionError("Cannot parse an empty date")
    number = to_number(text)
    if number is not None:
        seconds = number / 1000 if abs(number) > _EPOCH_MS_THRESHOLD else number
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    iso = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        moment: datetime | None = datetime.fromisoformat(iso)
    except ValueError:
        moment = None
    if moment is None:
        for layout in _DATE_INPUT_FORMATS:
            try:
                moment = datetime.strptime(text, layout)
                break
            except ValueError:
                continue
    if moment is None:
        raise ActionError(f"Could not parse date '{raw}'")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def format_date(moment: datetime, layout: str) -> Any:
    utc = moment.astimezone(timezone.utc)
    if layout == "epoch":
        return int(utc.timestamp() * 1000)
    if layout == "unix":
        return int(utc.timestamp())
    if layout == "date":
        return utc.strftime("%Y-%m-%d")
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def date_action(node: DateNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    if node.mode == "parse":
        moment = parse_date(render(node.source, context))
    else:
        moment = datetime.now(timezone.utc)
    context.set(node.store_as, format_date(moment, node.format))
    return context
