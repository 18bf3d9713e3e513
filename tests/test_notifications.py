from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError

from tagscript.config import NotificationSettings
from tagscript.notifications import (
    DiscordTarget,
    GenericWebhookTarget,
    LoggingNotifier,
    LogTarget,
    NotificationEvent,
    NotificationService,
    NotificationTarget,
)


class FakeResponse:
    def __init__(self, status_code: int, payload: Dict[str, Any] | None = None):
        self.status_code = status_code
        self.text = json.dumps(payload) if payload is not None else ""


class RecordingTarget(NotificationTarget):
    name = "recording"

    def __init__(self) -> None:
        self.events: List[NotificationEvent] = []

    def send(self, event: NotificationEvent) -> None:
        self.events.append(event)


class BrokenTarget(NotificationTarget):
    name = "broken"

    def send(self, event: NotificationEvent) -> None:
        raise RuntimeError("target down")


def _event(**overrides: Any) -> NotificationEvent:
    values: Dict[str, Any] = {"message": "hi", "tag": "#demo", "trigger": "onTrigger", "document": "inbox.md"}
    values.update(overrides)
    return NotificationEvent(**values)


def test_webhook_renders_template(monkeypatch) -> None:
    calls: List[Dict[str, Any]] = []

    def fake_request(method, url, json=None, headers=None, timeout=None):
        calls.append({"method": method, "url": url, "json": json, "headers": headers})
        return FakeResponse(204)

    monkeypatch.setattr("tagscript.notifications.webhook.requests.request", fake_request)
    target = GenericWebhookTarget(
        "https://hooks.test/notify",
        method="put",
        headers={"X-Token": "abc"},
        template={"text": "{{tag}}: {{message}}", "meta": ["{{document}}", 1]},
    )

    target.send(_event())

    assert calls == [
        {
            "method": "PUT",
            "url": "https://hooks.test/notify",
            "json": {"text": "#demo: hi", "meta": ["inbox.md", 1]},
            "headers": {"X-Token": "abc"},
        }
    ]


def test_webhook_without_template_groups_script_fields(monkeypatch) -> None:
    payloads: List[Any] = []

    def fake_request(method, url, json=None, headers=None, timeout=None):
        payloads.append(json)
        return FakeResponse(200)

    monkeypatch.setattr("tagscript.notifications.webhook.requests.request", fake_request)

    GenericWebhookTarget("https://hooks.test/notify").send(_event(details={"extra": 1}))

    payload = payloads[0]
    assert payload["message"] == "hi"
    assert payload["script"] == {"tag": "#demo", "trigger": "onTrigger", "document": "inbox.md"}
    assert payload["details"] == {"extra": 1}


def test_webhook_template_keeps_structured_values() -> None:
    target = GenericWebhookTarget(
        "https://hooks.test/notify",
        template={"items": "{{details.items}}", "where": "{{script.document}}", "run": "run {{run}}", "gone": "{{nope}}"},
    )

    payload = target.build_payload(_event(details={"items": ["a", "b"], "run": 3}))

    assert payload == {"items": ["a", "b"], "where": "inbox.md", "run": "run 3", "gone": None}


def test_webhook_get_sends_query_parameters(monkeypatch) -> None:
    calls: List[Dict[str, Any]] = []

    def fake_request(method, url, **kwargs):
        calls.append({"method": method, **kwargs})
        return FakeResponse(200)

    monkeypatch.setattr("tagscript.notifications.webhook.requests.request", fake_request)

    GenericWebhookTarget("https://hooks.test/ping", method="get").send(_event())

    assert calls[0]["method"] == "GET"
    assert "json" not in calls[0]
    assert calls[0]["params"]["message"] == "hi"
    assert "script" not in calls[0]["params"]


def test_webhook_failures_are_logged_not_raised(monkeypatch, caplog) -> None:
    def fake_request(*args, **kwargs):
        raise RequestsConnectionError("unreachable")

    monkeypatch.setattr("tagscript.notifications.webhook.requests.request", fake_request)

    with caplog.at_level(logging.WARNING, logger="tagscript"):
        GenericWebhookTarget("https://hooks.test/notify").send(_event())

    assert "Failed to send webhook notification" in caplog.text


def test_discord_payload(monkeypatch) -> None:
    posted: List[Dict[str, Any]] = []

    def fake_post(url, json=None, timeout=None):
        posted.append(json)
        return FakeResponse(204)

    monkeypatch.setattr("tagscript.notifications.discord.requests.post", fake_post)

    DiscordTarget("https://discord.test/webhook", username="bot").send(_event(message="x" * 2500, level="error"))

    embed = posted[0]["embeds"][0]
    assert posted[0]["username"] == "bot"
    assert embed["title"] == "#demo"
    assert len(embed["description"]) == 2000
    assert embed["description"].endswith("...")
    assert embed["fields"][0] == {"name": "Trigger", "value": "onTrigger", "inline": True}


def test_service_builds_targets_from_settings() -> None:
    settings = NotificationSettings(
        targets=[
            {"type": "discord", "webhook_url": "https://discord.test/webhook"},
            {"type": "webhook", "url": "https://hooks.test/notify", "enabled": False},
            {"type": "webhook"},
            {"type": "bogus"},
        ]
    )

    service = NotificationService(settings)

    assert [target.name for target in service.targets] == ["discord", "webhook"]
    assert [target.enabled() for target in service.targets] == [True, False]


def test_service_without_targets_falls_back_to_log() -> None:
    assert [type(target) for target in NotificationService().targets] == [LogTarget]
    assert [type(target) for target in LoggingNotifier().targets] == [LogTarget]


@pytest.mark.asyncio
async def test_notify_fans_out_and_survives_broken_targets(caplog) -> None:
    recording = RecordingTarget()
    disabled = RecordingTarget()
    disabled.set_enabled(False)
    service = NotificationService(targets=[BrokenTarget(), recording, disabled])

    with caplog.at_level(logging.WARNING, logger="tagscript"):
        await service.notify(
            "Done",
            duration_ms=1500,
            context={"tag": "#demo", "trigger": "onDone", "document": "inbox.md", "line": "Ship", "run": 3},
        )

    event = recording.events[0]
    assert (event.message, event.duration_ms, event.tag, event.trigger) == ("Done", 1500, "#demo", "onDone")
    assert event.details == {"run": 3}
    assert disabled.events == []
    assert "Notification target broken failed: target down" in caplog.text
