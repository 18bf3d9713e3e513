"""Actions that edit the work item or the text buffer: ``transform``, ``append`` and ``task``."""

from __future__ import annotations

import logging
from typing import Sequence

from ..context import ExecutionContext
from ..errors import ActionError
from ..nodes import AppendNode, TaskNode, TransformChild, TransformNode
from ..outline import STATUS_MARKERS, strip_list_prefix
from ..patterns import CURSOR_MARKER, strip_cursor_marker
from ..services import ChildLine, CursorPosition, TaskUpdate
from ..utils import leading_whitespace
from .base import ExecuteChild, current_cursor, insert_below, move_cursor, render, require

LOGGER = logging.getLogger(__name__)

HUMAN_BULLET = "-"
GENERATED_BULLETS = "+*"


def _item_children(children: Sequence[TransformChild], context: ExecutionContext) -> list[ChildLine]:
    lines: list[ChildLine] = []
    for child in children:
        text = render(child.template, context).strip()
        if not text or text == CURSOR_MARKER:
            continue
        lines.append(ChildLine(text=text.replace(CURSOR_MARKER, "").strip(), indent=child.indent))
        lines.extend(_item_children(child.children, context))
    return lines


def _buffer_children(
    children: Sequence[TransformChild], context: ExecutionContext, shift: int = 0
) -> list[tuple[int, str]]:
    lines: list[tuple[int, str]] = []
    for child in children:
        text = render(child.template, context).strip()
        if text:
            lines.append((child.indent + 1 - shift, text))
        lines.extend(_buffer_children(child.children, context, shift))
    return lines


def _edited_line(current: str, text: str, mode: str) -> str:
    parsed = strip_list_prefix(current)
    if mode == "append":
        return f"{current.rstrip()} {text}"
    if mode == "prepend":
        prefix = current[: len(current) - len(parsed.content)]
        return f"{prefix}{text} {parsed.content}"
    return f"{parsed.indent}- {text}"


async def _transform_item(node: TransformNode, context: ExecutionContext) -> None:
    tasks = require(context.services.tasks, "task editor")
    update = TaskUpdate()
    if node.template:
        text = render(node.template, context).replace(CURSOR_MARKER, "").strip()
        if node.mode == "append":
            update.append = text
        elif node.mode == "prepend":
            update.prepend = text
        else:
            update.replace = text
    if node.children:
        update.append_children = _item_children(node.children, context)
    await tasks.update(context.item, update)
    if node.template:
        context.line = context.item.text
        context.set("line", context.line)


def _transform_buffer(node: TransformNode, context: ExecutionContext) -> None:
    buffer = context.buffer
    cursor = current_cursor(context)
    current = buffer.get_line(cursor.line)
    indent = leading_whitespace(current)
    unit = context.settings.indent_unit

    children = list(node.children)
    entries: list[tuple[int, str]] = []
    if node.template:
        first = _edited_line(current, render(node.template, context).strip(), node.mode)
    elif children:
        head = children.pop(0)
        first = f"{indent}- {render(head.template, context).strip()}"
        entries.extend(_buffer_children(head.children, context, shift=1))
    else:
        first = current
    entries.extend(_buffer_children(children, context))

    block = "\n".join([first] + [f"{indent}{unit * depth}- {text}" for depth, text in entries])
    block, offset = strip_cursor_marker(block)
    block = block.replace(CURSOR_MARKER, "")
    new_lines = block.split("\n")
    buffer.replace_lines(cursor.line, cursor.line, new_lines)

    if offset is not None:
        before = block[:offset]
        position = CursorPosition(cursor.line + before.count("\n"), len(before.rsplit("\n", 1)[-1]))
    else:
        position = CursorPosition(cursor.line + len(new_lines) - 1, len(new_lines[-1]))
    move_cursor(context, position)
    context.line = new_lines[0]
    context.set("line", context.line)


async def transform_action(node: TransformNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    if context.item is not None:
        await _transform_item(node, context)
    elif context.buffer is not None:
        _transform_buffer(node, context)
    else:
        raise ActionError("transform needs a work item or a text buffer")
    return context


async def append_action(node: AppendNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    text = render(node.template, context).strip()
    if context.item is not None:
        tasks = require(context.services.tasks, "task editor")
        child = ChildLine(text=text, indent=max(node.indent - 1, 0), marker=HUMAN_BULLET)
        await tasks.update(context.item, TaskUpdate(append_children=[child]))
    elif context.buffer is not None:
        insert_below(context, [(node.indent, text)])
    else:
        raise ActionError("append needs a work item or a text buffer")
    return context


async def task_action(node: TaskNode, context: ExecutionContext, execute_child: ExecuteChild) -> ExecutionContext:
    if context.item is None:
        raise ActionError("task needs a work item")
    tasks = require(context.services.tasks, "task editor")
    item = context.item

    if node.op == "clear":
        if HUMAN_BULLET in node.bullets:
            raise ActionError("task clear never removes '-' bullets")
        await tasks.update(item, TaskUpdate(remove_children_by_marker=node.bullets))
    elif node.op == "status":
        status = node.to_status if node.to_status is not None else " "
        if status not in STATUS_MARKERS:
            raise ActionError(f"Unknown status marker '{status}'; expected one of {', '.join(repr(s) for s in STATUS_MARKERS)}")
        await tasks.set_status(item, status)
        item.status = status
        context.set("task", item.metadata())
    elif node.op == "append":
        if node.bullet not in GENERATED_BULLETS:
            raise ActionError(f"task append only writes generated bullets ({GENERATED_BULLETS}), got '{node.bullet}'")
        text = render(node.template, context).strip()
        child = ChildLine(text=text, indent=max(node.indent - 1, 0), marker=node.bullet)
        await tasks.update(item, TaskUpdate(append_children=[child]))
    else:
        raise ActionError(f"Unknown task operation '{node.op}'")
    return context
