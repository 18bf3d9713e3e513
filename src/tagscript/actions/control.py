"""Control flow and side channels: ``if``, ``foreach``, ``return``, ``validate``, ``delay``, ``log`` and ``notify``."""

from __future__ import annotations

import asyncio
import logging
import re

from ..context import ExecutionContext
from ..errors import DurationError, ValidationFailedError
from ..nodes import DelayNode, ForeachNode, IfNode, LogNode, NotifyNode, ReturnNode, ValidateNode
from ..patterns import evaluate_condition
from ..utils import parse_literal
from .base import ExecuteChild, move_cursor, render, require, resolve_items

LOGGER = logging.getLogger(__name__)

DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0}
_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_duration(text: str) -> float:
    """``500`` / ``500ms`` / ``2s`` / ``1m`` -> seconds. Bare numbers are milliseconds."""
    match = DURATION.match(text)
    if match is None:
        raise DurationError(f"Invalid duration '{text}'; use a number with an optional ms, s or m suffix")
    amount, unit = match.groups()
    return float(amount) * _UNIT_SECONDS[unit or "ms"]


async def if_action(node: IfNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    branch = node.then if evaluate_condition(node.condition, context.variables) else node.otherwise
    if not branch:
        return context
    return await execute_child(branch, context)


async def foreach_action(node: ForeachNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    items = resolve_items(node.items, context)
    index_name = node.index_variable
    anchor = context.cursor
    if anchor is None and context.buffer is not None:
        anchor = context.buffer.get_cursor()
    final = anchor
    try:
        for index, item in enumerate(items):
            context.set(node.item_name, item)
            context.set(index_name, index)
            # Each iteration edits relative to the line the loop started on
            if anchor is not None:
                move_cursor(context, anchor)
            context = await execute_child(node.body, context)
            final = context.cursor
            if context.should_return:
                break
    finally:
        context.unset(node.item_name, index_name)
    if final is not None:
        move_cursor(context, final)
    return context


async def return_action(node: ReturnNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    if node.value:
        context.return_value = parse_literal(render(node.value, context))
    context.should_return = True
    return context


async def validate_action(node: ValidateNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    if evaluate_condition(node.condition, context.variables):
        return context
    message = render(node.message, context, strict=False) if node.message else ""
    raise ValidationFailedError(message or f"Validation failed: {node.condition}")


async def delay_action(node: DelayNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    seconds = parse_duration(render(node.duration, context))
    LOGGER.debug("Delaying %s for %gs", context.tag, seconds)
    await asyncio.sleep(seconds)
    return context


async def log_action(node: LogNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    level = _LOG_LEVELS.get(node.level.lower(), logging.INFO)
    LOGGER.log(level, "[%s] %s", context.tag or "script", render(node.message, context))
    return context


async def notify_action(node: NotifyNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    notifier = require(context.services.notifier, "notifier")
    details = context.describe()
    await notifier.notify(render(node.message, context), duration_ms=node.duration_ms, context=details)
    return context
