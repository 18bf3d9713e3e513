from __future__ import annotations

from typing import Any, Awaitable, Callable, Sequence, TypeVar

from ..context import ExecutionContext
from ..errors import ActionError
from ..expressions import MISSING, resolve_path
from ..outline import block_end
from ..patterns import interpolate
from ..services import CursorPosition, TextBuffer
from ..utils import leading_whitespace

ExecuteChild = Callable[[Sequence[Any], ExecutionContext], Awaitable[ExecutionContext]]
ActionHandler = Callable[[Any, ExecutionContext, ExecuteChild], Awaitable[ExecutionContext]]

T = TypeVar("T")


def require(service: T | None, description: str) -> T:
    if service is None:
        raise ActionError(f"No {description} available")
    return service


def render(template: str | None, context: ExecutionContext, **options: Any) -> str:
    if not template:
        return ""
    return interpolate(template, context.variables, **options)


def resolve_items(reference: str, context: ExecutionContext) -> list[Any]:
    """Resolve ``items`` / ``{{items}}`` to a list variable."""
    name = reference.strip()
    if name.startswith("{{") and name.endswith("}}"):
        name = name[2:-2].strip()
    value = resolve_path(context.variables, name)
    if value is MISSING or not isinstance(value, (list, tuple)):
        raise ActionError(f"Variable '{name}' is not an array")
    return list(value)


def current_cursor(context: ExecutionContext) -> CursorPosition:
    if context.cursor is not None:
        return context.cursor
    if context.buffer is not None:
        return context.buffer.get_cursor()
    return CursorPosition(0, 0)


def move_cursor(context: ExecutionContext, position: CursorPosition) -> None:
    context.cursor = position
    if context.buffer is not None:
        context.buffer.set_cursor(position)


def buffer_lines(buffer: TextBuffer) -> list[str]:
    return [buffer.get_line(index) for index in range(buffer.line_count())]


def insert_below(context: ExecutionContext, entries: Sequence[tuple[int, str]], *, bullet: str = "-") -> None:
    """Insert ``(depth, text)`` bullets after the block of the cursor line and move the cursor to the last one."""
    buffer = require(context.buffer, "text buffer")
    anchor = current_cursor(context).line
    lines = buffer_lines(buffer)
    base = leading_whitespace(lines[anchor])
    unit = context.settings.indent_unit
    rendered = [f"{base}{unit * depth}{bullet} {text}" for depth, text in entries]
    if not rendered:
        return
    end = block_end(lines, anchor)
    buffer.insert_lines(end, rendered)
    move_cursor(context, CursorPosition(end + len(rendered), len(rendered[-1])))
