"""
Notification delivery for the ``notify`` action.

Public API:
    - NotificationEvent: Dataclass representing one notification
    - NotificationTarget: Base class for notification targets
    - NotificationService: Notifier fanning out to the configured targets
    - LoggingNotifier: Notifier writing to the log only (engine default)
    - LogTarget: Logging target
    - DiscordTarget: Discord webhook notification target
    - GenericWebhookTarget: Generic HTTP webhook target
"""

from __future__ import annotations

from .types import NotificationEvent, NotificationTarget

from .discord import DiscordTarget
from .log import LogTarget
from .webhook import GenericWebhookTarget

from .service import LoggingNotifier, NotificationService

__all__ = [
    "NotificationEvent",
    "NotificationTarget",
    "DiscordTarget",
    "LogTarget",
    "GenericWebhookTarget",
    "NotificationService",
    "LoggingNotifier",
]
