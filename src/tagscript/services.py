"""Collaborator contracts consumed by the actions.

The engine never edits documents, issues HTTP requests or looks up tagged
items itself. It talks to the capabilities bundled in :class:`Services`;
filesystem-backed implementations live in :mod:`tagscript.documents`,
:mod:`tagscript.tasks`, :mod:`tagscript.buffer` and
:mod:`tagscript.notifications`.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence


@dataclass(frozen=True, slots=True)
class CursorPosition:
    line: int
    ch: int


@dataclass(frozen=True, slots=True)
class DocumentRef:
    path: str
    name: str
    basename: str
    extension: str

    @classmethod
    def from_path(cls, path: str | Path) -> "DocumentRef":
        pure = Path(path)
        return cls(
            path=pure.as_posix(),
            name=pure.name,
            basename=pure.stem,
            extension=pure.suffix.lstrip("."),
        )

    def metadata(self) -> dict[str, str]:
        return {"path": self.path, "name": self.name, "basename": self.basename, "extension": self.extension}


@dataclass(slots=True)
class WorkItem:
    """A tracked line: ``- [status] text`` at ``line`` of the document at ``path``."""

    text: str
    path: str
    line: int
    status: str = " "
    tags: tuple[str, ...] = ()
    indent: str = ""

    @property
    def completed(self) -> bool:
        return self.status in ("x", "X")

    def metadata(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "path": self.path,
            "line": self.line,
            "status": self.status,
            "completed": self.completed,
            "tags": list(self.tags),
        }


@dataclass(frozen=True, slots=True)
class ChildLine:
    """A child bullet below a work item. ``indent`` is relative (0 = direct child)."""

    text: str
    indent: int = 0
    marker: str = "-"


@dataclass(slots=True)
class TaskUpdate:
    """One edit of a work item and its children, applied atomically by a TaskEditor."""

    append: str | None = None
    prepend: str | None = None
    replace: str | Callable[[str], str] | None = None
    append_children: Sequence[ChildLine] = ()
    prepend_children: Sequence[ChildLine] = ()
    replace_children: Sequence[ChildLine] | None = None
    remove_all_children: bool = False
    remove_children_by_marker: str | None = None
    remove_children_by_offset: Sequence[int] = ()
    inject_children_at_offset: tuple[int, Sequence[ChildLine]] | None = None


@dataclass(slots=True)
class HttpResponse:
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""

    def json(self) -> Any:
        return json.loads(self.text)


class TaskEditor(Protocol):
    async def update(self, item: WorkItem, update: TaskUpdate) -> None:
        ...

    async def set_status(self, item: WorkItem, status: str) -> None:
        ...

    async def children(self, item: WorkItem) -> list[ChildLine]:
        ...


class QueryService(Protocol):
    async def query(self, identifier: str, options: Mapping[str, Any]) -> list[dict[str, Any]]:
        ...


class HttpClient(Protocol):
    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        body: str | None,
        timeout: float,
    ) -> HttpResponse:
        ...


class Notifier(Protocol):
    async def notify(self, message: str, *, duration_ms: int = 4000, context: Mapping[str, Any] | None = None) -> None:
        ...


class DocumentStore(Protocol):
    root: Path

    async def read(self, path: str) -> str:
        ...

    async def read_bytes(self, path: str) -> bytes:
        ...

    async def write(self, path: str, text: str) -> None:
        ...

    def resolve(self, reference: str, source: str | None = None) -> DocumentRef | None:
        ...

    def describe(self, path: str) -> DocumentRef:
        ...


class TextBuffer(Protocol):
    def line_count(self) -> int:
        ...

    def get_line(self, index: int) -> str:
        ...

    def get_cursor(self) -> CursorPosition:
        ...

    def set_cursor(self, position: CursorPosition) -> None:
        ...

    def get_selection(self) -> str:
        ...

    def replace_lines(self, start: int, end: int, lines: Sequence[str]) -> None:
        """Replace lines ``start..end`` (inclusive) with ``lines``."""

    def insert_lines(self, after: int, lines: Sequence[str]) -> None:
        """Insert ``lines`` below line ``after``."""


@dataclass(slots=True)
class Services:
    documents: DocumentStore | None = None
    tasks: TaskEditor | None = None
    query: QueryService | None = None
    http: HttpClient | None = None
    notifier: Notifier | None = None
