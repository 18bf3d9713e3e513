from __future__ import annotations

import logging
from typing import Any

import requests
from requests.exceptions import RequestException

from .types import NotificationEvent, NotificationTarget

LOGGER = logging.getLogger(__name__)

# Discord rejects message content longer than this
DISCORD_CONTENT_LIMIT = 2000

_LEVEL_COLORS = {"info": 0x5865F2, "success": 0x57F287, "warning": 0xFEE75C, "error": 0xED4245}


def _trim(value: str, limit: int) -> str:
    stripped = value.strip()
    if len(stripped) <= limit:
        return stripped
    return stripped[: max(limit - 3, 0)] + "..."


class DiscordTarget(NotificationTarget):
    """Discord webhook target posting one embed per notification."""

    name = "discord"

    def __init__(self, webhook_url: str | None, *, username: str | None = None, timeout: float = 10.0) -> None:
        self.webhook_url = webhook_url.strip() if isinstance(webhook_url, str) else None
        self.username = username
        self.timeout = timeout

    def enabled(self) -> bool:
        return super().enabled() and bool(self.webhook_url)

    def send(self, event: NotificationEvent) -> None:
        if not self.enabled():
            return
        try:
            response = requests.post(self.webhook_url, json=self._build_payload(event), timeout=self.timeout)
        except RequestException as exc:
            LOGGER.warning("Failed to send Discord notification: %s", exc)
            return
        if response.status_code >= 400:
            LOGGER.warning("Discord webhook responded with %s: %s", response.status_code, response.text)

    def _build_payload(self, event: NotificationEvent) -> dict[str, Any]:
        embed: dict[str, Any] = {
            "description": _trim(event.message, DISCORD_CONTENT_LIMIT),
            "color": _LEVEL_COLORS.get(event.level, _LEVEL_COLORS["info"]),
            "timestamp": event.timestamp.isoformat(),
        }
        if event.tag:
            embed["title"] = event.tag
        fields = []
        if event.trigger:
            fields.append({"name": "Trigger", "value": event.trigger, "inline": True})
        if event.document:
            fields.append({"name": "Document", "value": _trim(event.document, 1024), "inline": True})
        if fields:
            embed["fields"] = fields
        payload: dict[str, Any] = {"embeds": [embed]}
        if self.username:
            payload["username"] = self.username
        return payload
