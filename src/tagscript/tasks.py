"""Work-item editing and tag queries over plain-text documents.

Every edit is a read-modify-write of the whole document. Edits to the same
document are serialized per path within the process.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import re
from collections.abc import Mapping
from typing import Any, Sequence

from .errors import ActionError
from .outline import STATUS_MARKERS, TASK_ITEM, block_end, indent_width, strip_list_prefix
from .services import ChildLine, DocumentStore, TaskUpdate, WorkItem
from .utils import leading_whitespace

LOGGER = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"(?<![\w#])#[\w/-]+")


def find_tags(text: str) -> tuple[str, ...]:
    return tuple(TAG_PATTERN.findall(text))


def work_item_from_line(line: str, path: str, index: int) -> WorkItem | None:
    """Build a WorkItem from a ``- [ ] text`` line, or ``None`` for other lines."""
    match = TASK_ITEM.match(line)
    if match is None:
        return None
    text = match.group("text")
    return WorkItem(
        text=text,
        path=path,
        line=index,
        status=match.group("status"),
        tags=find_tags(text),
        indent=match.group("indent"),
    )


def _split(text: str) -> tuple[list[str], bool]:
    return text.split("\n"), text.endswith("\n")


def _join(lines: Sequence[str], trailing_newline: bool) -> str:
    text = "\n".join(lines)
    if trailing_newline and not text.endswith("\n"):
        text += "\n"
    return text


def _remove_marked(lines: list[str], markers: str) -> list[str]:
    """Drop child lines whose bullet is one of ``markers``, with everything nested below them."""
    kept: list[str] = []
    skip_deeper_than: int | None = None
    for line in lines:
        width = indent_width(line)
        if skip_deeper_than is not None:
            if not line.strip() or width > skip_deeper_than:
                continue
            skip_deeper_than = None
        parsed = strip_list_prefix(line)
        if parsed.bullet is not None and parsed.bullet in markers:
            skip_deeper_than = width
            continue
        kept.append(line)
    return kept


class DocumentTaskEditor:
    """TaskEditor that rewrites the document lines holding the work item."""

    def __init__(self, store: DocumentStore, *, indent_unit: str = "  ") -> None:
        self.store = store
        self.indent_unit = indent_unit
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, path: str) -> asyncio.Lock:
        if path not in self._locks:
            self._locks[path] = asyncio.Lock()
        return self._locks[path]

    def _locate(self, lines: Sequence[str], item: WorkItem) -> int:
        if 0 <= item.line < len(lines) and strip_list_prefix(lines[item.line]).content == item.text:
            return item.line
        for index, line in enumerate(lines):
            if strip_list_prefix(line).content == item.text:
                LOGGER.debug("Work item moved from line %s to %s in %s", item.line, index, item.path)
                item.line = index
                return index
        raise ActionError(f"Work item not found in {item.path}: {item.text}")

    def _render_child(self, base: str, child: ChildLine) -> str:
        return f"{base}{self.indent_unit * (child.indent + 1)}{child.marker} {child.text}"

    async def update(self, item: WorkItem, update: TaskUpdate) -> None:
        async with self._lock(item.path):
            lines, trailing = _split(await self.store.read(item.path))
            index = self._locate(lines, item)
            end = block_end(lines, index)
            line = lines[index]
            base = leading_whitespace(line)
            children = lines[index + 1 : end + 1]

            parsed = strip_list_prefix(line)
            prefix = line[: len(line) - len(parsed.content)]
            content = parsed.content
            if update.replace is not None:
                content = update.replace(content) if callable(update.replace) else update.replace
            if update.prepend:
                content = f"{update.prepend} {content}"
            if update.append:
                content = f"{content} {update.append}"

            if update.remove_all_children:
                children = []
            if update.remove_children_by_marker:
                children = _remove_marked(children, update.remove_children_by_marker)
            if update.remove_children_by_offset:
                dropped = {offset - 1 for offset in update.remove_children_by_offset}
                children = [child for position, child in enumerate(children) if position not in dropped]
            if update.replace_children is not None:
                children = [self._render_child(base, child) for child in update.replace_children]
            if update.inject_children_at_offset is not None:
                offset, injected = update.inject_children_at_offset
                position = min(max(offset - 1, 0), len(children))
                children[position:position] = [self._render_child(base, child) for child in injected]
            if update.prepend_children:
                children = [self._render_child(base, child) for child in update.prepend_children] + children
            if update.append_children:
                children = children + [self._render_child(base, child) for child in update.append_children]

            lines[index : end + 1] = [prefix + content, *children]
            await self.store.write(item.path, _join(lines, trailing))
            item.text = content
            item.tags = find_tags(content)

    async def set_status(self, item: WorkItem, status: str) -> None:
        if status not in STATUS_MARKERS:
            raise ActionError(f"Unknown status marker '{status}'")
        async with self._lock(item.path):
            lines, trailing = _split(await self.store.read(item.path))
            index = self._locate(lines, item)
            match = TASK_ITEM.match(lines[index])
            if match is None:
                raise ActionError(f"Line {index + 1} of {item.path} is not a task")
            start, stop = match.span("status")
            lines[index] = lines[index][:start] + status + lines[index][stop:]
            await self.store.write(item.path, _join(lines, trailing))
            item.status = status

    async def children(self, item: WorkItem) -> list[ChildLine]:
        lines, _ = _split(await self.store.read(item.path))
        index = self._locate(lines, item)
        base = indent_width(lines[index])
        unit = len(self.indent_unit.expandtabs(4)) or 1
        result: list[ChildLine] = []
        for line in lines[index + 1 : block_end(lines, index) + 1]:
            if not line.strip():
                continue
            parsed = strip_list_prefix(line)
            depth = max((indent_width(line) - base) // unit - 1, 0)
            result.append(ChildLine(text=parsed.content, indent=depth, marker=parsed.bullet or ""))
        return result


class DocumentQueryService:
    """Finds list items carrying a tag across every document of a store.

    Options: ``status`` (marker or list of markers), ``path`` (glob),
    ``limit`` and ``children`` (include child lines, default true).
    """

    def __init__(self, store: Any) -> None:
        self.store = store

    async def query(self, identifier: str, options: Mapping[str, Any]) -> list[dict[str, Any]]:
        tag = identifier.strip()
        if not tag:
            raise ActionError("Query identifier must not be empty")
        if not tag.startswith("#"):
            tag = f"#{tag}"
        tag_pattern = re.compile(rf"(?<![\w#]){re.escape(tag)}(?![\w/-])")

        statuses = options.get("status")
        if isinstance(statuses, str):
            statuses = [statuses]
        path_glob = options.get("path")
        limit = options.get("limit")
        with_children = options.get("children", True) not in (False, "false")

        results: list[dict[str, Any]] = []
        for path in self.store.documents():
            if path_glob and not fnmatch.fnmatch(path, str(path_glob)):
                continue
            lines = (await self.store.read(path)).split("\n")
            for index, line in enumerate(lines):
                parsed = strip_list_prefix(line)
                if parsed.bullet is None or not tag_pattern.search(parsed.content):
                    continue
                if statuses is not None and parsed.status not in statuses:
                    continue
                entry: dict[str, Any] = {
                    "text": parsed.content,
                    "path": path,
                    "line": index,
                    "status": parsed.status,
                    "tags": list(find_tags(parsed.content)),
                }
                if with_children:
                    entry["children"] = [
                        strip_list_prefix(child).content
                        for child in lines[index + 1 : block_end(lines, index) + 1]
                        if child.strip()
                    ]
                results.append(entry)
                if limit is not None and len(results) >= int(limit):
                    return results
        LOGGER.debug("Query %s matched %d item(s)", tag, len(results))
        return results
