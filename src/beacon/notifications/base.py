"""Notification dispatcher interface.

A dispatcher delivers rendered text to a channel. Reporting a failed
delivery (``DeliveryResult.failed``) is distinct from raising: both make the
dispatch path roll the stage back, but only exceptions carry a traceback.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a single send."""

    success: bool
    message_id: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, message_id: str | None = None) -> "DeliveryResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(cls, error: str) -> "DeliveryResult":
        return cls(success=False, error=error)


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Delivers a message to a channel, highlighting the given identifiers."""

    async def send(
        self,
        channel_id: str,
        text: str,
        highlight_ids: Sequence[str] = (),
    ) -> DeliveryResult: ...
