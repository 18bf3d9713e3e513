from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .config import EngineSettings
from .services import CursorPosition, DocumentRef, Services, TextBuffer, WorkItem


@dataclass
class ExecutionContext:
    """Mutable state threaded through one trigger invocation.

    ``variables`` is what templates see. ``line``, ``file`` and ``task`` are
    seeded from the invocation and may be overwritten by later actions.
    """

    variables: dict[str, Any] = field(default_factory=dict)
    line: str = ""
    document: DocumentRef | None = None
    item: WorkItem | None = None
    buffer: TextBuffer | None = None
    response: Any = None
    error: BaseException | None = None
    cursor: CursorPosition | None = None
    should_return: bool = False
    return_value: Any = None
    trigger_kind: str | None = None
    tag: str | None = None
    services: Services = field(default_factory=Services)
    settings: EngineSettings = field(default_factory=EngineSettings)

    def set(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def update(self, values: dict[str, Any]) -> None:
        self.variables.update(values)

    def get(self, name: str, default: Any = None) -> Any:
        return self.variables.get(name, default)

    def unset(self, *names: str) -> None:
        for name in names:
            self.variables.pop(name, None)

    def describe(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "trigger": self.trigger_kind,
            "document": self.document.path if self.document else None,
            "line": self.line,
        }
