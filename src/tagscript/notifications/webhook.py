from __future__ import annotations

import logging
import re
from typing import Any

import requests
from requests.exceptions import RequestException

from ..errors import PatternError
from ..expressions import MISSING, resolve_path
from ..patterns import interpolate
from .types import NotificationEvent, NotificationTarget

LOGGER = logging.getLogger(__name__)

_WHOLE_PLACEHOLDER = re.compile(r"^\{\{\s*([A-Za-z_][A-Za-z0-9_.\[\]]*)\s*\}\}$")


def event_payload(event: NotificationEvent) -> dict[str, Any]:
    """Default webhook body: the message plus the script that raised it."""
    script = {
        key: value
        for key, value in (
            ("tag", event.tag),
            ("trigger", event.trigger),
            ("document", event.document),
            ("line", event.line),
        )
        if value is not None
    }
    payload: dict[str, Any] = {
        "message": event.message,
        "level": event.level,
        "duration_ms": event.duration_ms,
        "timestamp": event.timestamp.isoformat(),
        "script": script,
    }
    if event.details:
        payload["details"] = dict(event.details)
    return payload


def template_values(event: NotificationEvent) -> dict[str, Any]:
    """Names available to payload templates.

    Script fields are reachable both flat (``{{tag}}``) and nested
    (``{{script.tag}}``); script variables passed as details sit under
    ``details`` and, when they do not clash, at the top level.
    """
    payload = event_payload(event)
    values: dict[str, Any] = dict(payload.get("details", {}))
    values.update(payload["script"])
    values.update(payload)
    values.setdefault("details", {})
    return values


def render_payload(template: Any, values: dict[str, Any]) -> Any:
    """Fill ``{{name}}`` placeholders throughout a template structure.

    A string holding a single placeholder is replaced by the raw value, so
    lists and mappings keep their JSON shape.
    """
    if isinstance(template, dict):
        return {key: render_payload(value, values) for key, value in template.items()}
    if isinstance(template, list):
        return [render_payload(value, values) for value in template]
    if not isinstance(template, str):
        return template
    whole = _WHOLE_PLACEHOLDER.match(template)
    if whole:
        value = resolve_path(values, whole.group(1))
        return None if value is MISSING else value
    try:
        return interpolate(template, values, strict=False)
    except PatternError as exc:
        LOGGER.debug("Leaving webhook template value unrendered: %s", exc)
        return template


class GenericWebhookTarget(NotificationTarget):
    """Posts script notifications to an arbitrary HTTP endpoint.

    Without a template the body is :func:`event_payload`. ``GET`` requests
    carry the top-level scalar fields as query parameters instead of a body.
    """

    name = "webhook"

    def __init__(
        self,
        url: str | None,
        *,
        method: str = "POST",
        headers: dict[str, str] | None = None,
        template: Any | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.url = url.strip() if isinstance(url, str) else None
        self.method = method.upper()
        self.headers = {str(k): str(v) for k, v in (headers or {}).items()}
        self.template = template
        self.timeout = timeout

    def enabled(self) -> bool:
        return super().enabled() and bool(self.url)

    def build_payload(self, event: NotificationEvent) -> Any:
        if self.template is None:
            return event_payload(event)
        return render_payload(self.template, template_values(event))

    def send(self, event: NotificationEvent) -> None:
        if not self.enabled():
            return
        payload = self.build_payload(event)
        options: dict[str, Any] = {"headers": self.headers or None, "timeout": self.timeout}
        if self.method == "GET":
            source = payload if isinstance(payload, dict) else {}
            options["params"] = {
                key: value for key, value in source.items() if isinstance(value, (str, int, float, bool))
            }
        else:
            options["json"] = payload
        try:
            response = requests.request(self.method, self.url, **options)
        except RequestException as exc:
            LOGGER.warning("Failed to send webhook notification for %s: %s", event.tag or "script", exc)
            return

        if response.status_code >= 400:
            LOGGER.warning("Webhook %s responded with %s: %s", self.url, response.status_code, response.text)
