"""Nested bullet-list reading and line helpers."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Sequence

from .utils import leading_whitespace, to_template_text

TAB_WIDTH = 4
STATUS_MARKERS = ("x", "!", "/", "-", " ")

LIST_ITEM = re.compile(r"^(?P<indent>\s*)(?P<bullet>[-*+])\s+(?P<rest>.*)$")
TASK_ITEM = re.compile(r"^(?P<indent>\s*)(?P<bullet>[-*+])\s+\[(?P<status>.)\]\s?(?P<text>.*)$")


@dataclass(slots=True)
class RawItem:
    text: str
    children: list["RawItem"] = field(default_factory=list)
    line: int | None = None


@dataclass(slots=True)
class ListLine:
    indent: str
    bullet: str | None
    status: str | None
    content: str


def indent_width(line: str) -> int:
    return len(leading_whitespace(line).expandtabs(TAB_WIDTH))


def strip_list_prefix(line: str) -> ListLine:
    """Split ``  - [x] text`` into indent, bullet, status and content."""
    task = TASK_ITEM.match(line)
    if task:
        return ListLine(task.group("indent"), task.group("bullet"), task.group("status"), task.group("text"))
    item = LIST_ITEM.match(line)
    if item:
        return ListLine(item.group("indent"), item.group("bullet"), None, item.group("rest"))
    return ListLine(leading_whitespace(line), None, None, line.strip())


def block_end(lines: Sequence[str], index: int) -> int:
    """Index of the last line of the indented block that starts at ``index``."""
    base = indent_width(lines[index])
    end = index
    for position in range(index + 1, len(lines)):
        line = lines[position]
        if line.strip() and indent_width(line) <= base:
            break
        if line.strip():
            end = position
    return end


def parse_outline(text: str) -> list[RawItem]:
    """Build a tree of items from an indented bullet list.

    Bullet markers are dropped from the item text; non-bullet lines become
    items too, so headings and ``key: value`` lines keep their place.
    Blank lines are skipped.
    """
    roots: list[RawItem] = []
    stack: list[tuple[int, RawItem]] = []
    for number, line in enumerate(text.splitlines()):
        if not line.strip():
            continue
        width = indent_width(line)
        parsed = LIST_ITEM.match(line)
        content = parsed.group("rest").strip() if parsed else line.strip()
        item = RawItem(text=content, line=number)
        while stack and stack[-1][0] >= width:
            stack.pop()
        if stack:
            stack[-1][1].children.append(item)
        else:
            roots.append(item)
        stack.append((width, item))
    return roots


def from_data(value: Any) -> list[RawItem]:
    """Convert YAML-style data into items.

    Strings become leaf items, ``{"text": ..., "children": [...]}`` mappings
    keep their structure, and other mappings become ``key: value`` items.
    """
    if value is None:
        return []
    if isinstance(value, RawItem):
        return [value]
    if isinstance(value, str):
        return [RawItem(text=value)]
    if isinstance(value, Mapping):
        if "text" in value:
            return [RawItem(text=str(value["text"]), children=from_data(value.get("children")))]
        items: list[RawItem] = []
        for key, child in value.items():
            if isinstance(child, (Mapping, list, tuple)):
                items.append(RawItem(text=f"{key}:", children=from_data(child)))
            elif child is None:
                items.append(RawItem(text=f"{key}:"))
            else:
                items.append(RawItem(text=f"{key}: `{to_template_text(child)}`"))
        return items
    if isinstance(value, (list, tuple)):
        items = []
        for entry in value:
            items.extend(from_data(entry))
        return items
    return [RawItem(text=str(value))]


def render_items(items: Sequence[RawItem], *, indent_unit: str = "  ", bullet: str = "-", depth: int = 0) -> list[str]:
    lines: list[str] = []
    for item in items:
        lines.append(f"{indent_unit * depth}{bullet} {item.text}")
        lines.extend(render_items(item.children, indent_unit=indent_unit, bullet=bullet, depth=depth + 1))
    return lines
