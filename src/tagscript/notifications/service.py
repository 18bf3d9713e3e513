from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Sequence

from ..config import NotificationSettings
from .discord import DiscordTarget
from .log import LogTarget
from .types import NotificationEvent, NotificationTarget
from .webhook import GenericWebhookTarget

LOGGER = logging.getLogger(__name__)


class NotificationService:
    """Delivers ``notify`` messages to every configured target.

    Without configured targets messages go to the log. Delivery runs in a
    worker thread so blocking webhook calls never stall the event loop; a
    failing target is logged and never fails the calling script.
    """

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        *,
        targets: Sequence[NotificationTarget] | None = None,
    ) -> None:
        self._settings = settings or NotificationSettings()
        if targets is not None:
            self._targets = list(targets)
        else:
            self._targets = self._build_targets(self._settings.targets)
        if not self._targets:
            self._targets = [LogTarget()]

    @property
    def targets(self) -> list[NotificationTarget]:
        return list(self._targets)

    async def notify(
        self,
        message: str,
        *,
        duration_ms: int = 4000,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        details = dict(context or {})
        event = NotificationEvent(
            message=message,
            duration_ms=duration_ms,
            tag=details.pop("tag", None),
            trigger=details.pop("trigger", None),
            document=details.pop("document", None),
            line=details.pop("line", None),
            level=details.pop("level", None) or "info",
            details=details,
        )
        await asyncio.to_thread(self.dispatch, event)

    def dispatch(self, event: NotificationEvent) -> None:
        successes: list[str] = []
        for target in self._targets:
            if not target.enabled():
                continue
            try:
                target.send(event)
            except Exception as exc:
                LOGGER.warning("Notification target %s failed: %s", target.name, exc)
            else:
                successes.append(target.name)
        if successes:
            LOGGER.debug("Notification dispatched | tag=%s targets=%s", event.tag, ", ".join(successes))
        else:
            LOGGER.debug("Notification for %s reached no target", event.tag)

    def _build_targets(self, targets_raw: list[dict[str, Any]]) -> list[NotificationTarget]:
        targets: list[NotificationTarget] = []
        for entry in targets_raw:
            target_type = str(entry.get("type", "")).lower()
            target: NotificationTarget | None = None
            if target_type == "log":
                target = LogTarget()
            elif target_type == "discord":
                webhook = entry.get("webhook_url") or entry.get("url")
                if webhook:
                    target = DiscordTarget(webhook, username=entry.get("username"))
                else:
                    LOGGER.warning("Skipped Discord target because webhook_url was not provided.")
            elif target_type == "webhook":
                url = entry.get("url")
                if url:
                    target = GenericWebhookTarget(
                        url,
                        method=entry.get("method", "POST"),
                        headers=entry.get("headers"),
                        template=entry.get("template"),
                    )
                else:
                    LOGGER.warning("Skipped webhook target because url was not provided.")
            else:
                LOGGER.warning("Unknown notification target type '%s'", target_type or "<missing>")

            if target is not None:
                target.set_enabled(entry.get("enabled", True))
                targets.append(target)
        return targets


class LoggingNotifier(NotificationService):
    """Notifier that only writes to the log."""

    def __init__(self) -> None:
        super().__init__(targets=[LogTarget()])
