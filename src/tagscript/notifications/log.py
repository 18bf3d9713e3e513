from __future__ import annotations

import logging

from .types import NotificationEvent, NotificationTarget

LOGGER = logging.getLogger(__name__)

_LEVELS = {"info": logging.INFO, "success": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


class LogTarget(NotificationTarget):
    """Writes notifications to the ``tagscript.notifications`` logger."""

    name = "log"

    def send(self, event: NotificationEvent) -> None:
        prefix = f"[{event.tag}] " if event.tag else ""
        LOGGER.log(_LEVELS.get(event.level, logging.INFO), "%s%s", prefix, event.message)
