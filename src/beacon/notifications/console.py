"""Dispatcher that prints notifications to the terminal."""

from collections.abc import Sequence
from uuid import uuid4

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from beacon.notifications.base import DeliveryResult


class ConsoleDispatcher:
    """Prints each notification as a panel; useful for local runs."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    async def send(
        self,
        channel_id: str,
        text: str,
        highlight_ids: Sequence[str] = (),
    ) -> DeliveryResult:
        subtitle = ", ".join(highlight_ids) if highlight_ids else None
        self._console.print(
            Panel(Text(text), title=Text(channel_id), subtitle=subtitle, expand=False)
        )
        return DeliveryResult.ok(message_id=uuid4().hex[:8])
