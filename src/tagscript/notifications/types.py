from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class NotificationEvent:
    message: str
    duration_ms: int = 4000
    tag: str | None = None
    trigger: str | None = None
    document: str | None = None
    line: str | None = None
    level: str = "info"
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationTarget:
    name: str = "target"
    _enabled: bool = True

    def set_enabled(self, value: bool) -> None:
        self._enabled = bool(value)

    def enabled(self) -> bool:
        return self._enabled

    def send(self, event: NotificationEvent) -> None:
        raise NotImplementedError
