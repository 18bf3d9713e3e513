from __future__ import annotations

from typing import Sequence

from .services import CursorPosition


class MemoryBuffer:
    """In-memory TextBuffer for line-completion scripts run outside an editor."""

    def __init__(self, text: str = "", *, cursor: CursorPosition | None = None, selection: str = "") -> None:
        self._lines: list[str] = text.split("\n")
        self._cursor = cursor or CursorPosition(0, 0)
        self._selection = selection

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    @property
    def text(self) -> str:
        return "\n".join(self._lines)

    def line_count(self) -> int:
        return len(self._lines)

    def get_line(self, index: int) -> str:
        if not 0 <= index < len(self._lines):
            raise IndexError(f"Line {index} is outside the buffer (0..{len(self._lines) - 1})")
        return self._lines[index]

    def get_cursor(self) -> CursorPosition:
        return self._cursor

    def set_cursor(self, position: CursorPosition) -> None:
        line = min(max(position.line, 0), len(self._lines) - 1)
        ch = min(max(position.ch, 0), len(self._lines[line]))
        self._cursor = CursorPosition(line, ch)

    def get_selection(self) -> str:
        return self._selection

    def replace_lines(self, start: int, end: int, lines: Sequence[str]) -> None:
        self._lines[start : end + 1] = list(lines)

    def insert_lines(self, after: int, lines: Sequence[str]) -> None:
        self._lines[after + 1 : after + 1] = list(lines)
