"""Notification delivery: dispatcher protocol and adapters."""

from beacon.notifications.base import DeliveryResult, NotificationDispatcher
from beacon.notifications.console import ConsoleDispatcher
from beacon.notifications.webhook import WebhookDispatcher

__all__ = [
    "ConsoleDispatcher",
    "DeliveryResult",
    "NotificationDispatcher",
    "WebhookDispatcher",
]
