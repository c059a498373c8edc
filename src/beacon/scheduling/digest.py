"""Recurring digest trigger.

Fires at fixed wall-clock times (cron expressions evaluated in a configured
timezone), computes a snapshot per channel and sends the non-empty ones.
Nothing is persisted between firings: a trigger missed while the process
was down is skipped, not retried.
"""

import itertools
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, time, timedelta
from enum import StrEnum
from typing import Protocol
from zoneinfo import ZoneInfo

from croniter import croniter

from beacon.notifications.base import NotificationDispatcher
from beacon.scheduling.offsets import OffsetPolicy
from beacon.scheduling.render import render_daily_digest
from beacon.scheduling.store import StageStore
from beacon.scheduling.timers import TimerEngine, TimerKey
from beacon.scheduling.types import Clock, utc_now

logger = logging.getLogger(__name__)

DIGEST_TIMER_OWNER = "digest"


@dataclass(frozen=True)
class DigestSnapshot:
    """Rendered digest for a single channel."""

    channel_id: str
    text: str
    item_count: int
    highlight_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return self.item_count == 0


class DigestSource(Protocol):
    """Computes the current aggregate view, one snapshot per channel."""

    async def snapshot(self, now: datetime) -> list[DigestSnapshot]: ...


class UpcomingEventsDigestSource:
    """Active events whose target falls on the current day in ``timezone``."""

    def __init__(
        self,
        store: StageStore,
        timezone: str = "UTC",
        *,
        policy: OffsetPolicy | None = None,
    ) -> None:
        self._store = store
        self._timezone = timezone
        self._offsets = [o.offset for o in (policy or OffsetPolicy()).offsets]

    def day_bounds(self, now: datetime) -> tuple[datetime, datetime]:
        """UTC bounds of the local calendar day containing ``now``."""
        tz = ZoneInfo(self._timezone)
        local_day = now.astimezone(tz).date()
        start = datetime.combine(local_day, time.min, tzinfo=tz)
        end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)
        return start.astimezone(UTC), end.astimezone(UTC)

    async def snapshot(self, now: datetime) -> list[DigestSnapshot]:
        start, end = self.day_bounds(now)
        events = await self._store.list_active_between(start, end)

        snapshots = []
        for channel_id, group in itertools.groupby(events, key=lambda e: e.group_id):
            channel_events = list(group)
            snapshots.append(
                DigestSnapshot(
                    channel_id=channel_id,
                    text=render_daily_digest(
                        channel_events, now, self._timezone, offsets=self._offsets
                    ),
                    item_count=len(channel_events),
                )
            )
        return snapshots


class DigestState(StrEnum):
    IDLE = "idle"
    FIRING = "firing"


class RecurringDigestTrigger:
    """Sends a digest snapshot at each configured wall-clock time.

    Uses the shared timer engine: one timer per cron expression, re-armed
    for the next occurrence after every firing.

    Example:
        trigger = RecurringDigestTrigger(
            ["5 8 * * *", "30 21 * * *"], source, dispatcher, timers,
            timezone="Asia/Kuwait",
        )
        trigger.start()
    """

    def __init__(
        self,
        cron_specs: Sequence[str],
        source: DigestSource,
        dispatcher: NotificationDispatcher,
        timers: TimerEngine,
        *,
        timezone: str = "UTC",
        clock: Clock = utc_now,
    ) -> None:
        self._cron_specs = list(dict.fromkeys(cron_specs))
        self._source = source
        self._dispatcher = dispatcher
        self._timers = timers
        self._tz = ZoneInfo(timezone)
        self._clock = clock
        self._state = DigestState.IDLE
        self._started = False

    @property
    def state(self) -> DigestState:
        return self._state

    @property
    def cron_specs(self) -> list[str]:
        return list(self._cron_specs)

    def next_fire_time(self, cron: str, after: datetime) -> datetime:
        """Next occurrence of ``cron`` strictly after ``after``, in UTC."""
        base = after.astimezone(self._tz)
        return croniter(cron, base).get_next(datetime).astimezone(UTC)

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        for cron in self._cron_specs:
            self._arm(cron)
        logger.info(
            "digest_trigger_started",
            extra={"digest.schedule": self._cron_specs, "digest.timezone": str(self._tz)},
        )

    def stop(self) -> None:
        self._started = False
        self._timers.cancel_all(DIGEST_TIMER_OWNER)

    async def fire(self) -> int:
        """Compute the snapshot now and send every non-empty channel digest.

        Failed deliveries are logged and not retried.

        Returns:
            Number of digests delivered.
        """
        if self._state == DigestState.FIRING:
            logger.info("digest_already_firing")
            return 0

        self._state = DigestState.FIRING
        try:
            snapshots = await self._source.snapshot(self._clock())
            pending = [s for s in snapshots if not s.is_empty]
            if not pending:
                logger.info("digest_skipped_empty")
                return 0

            delivered = 0
            for snapshot in pending:
                try:
                    result = await self._dispatcher.send(
                        snapshot.channel_id, snapshot.text, snapshot.highlight_ids
                    )
                except Exception as e:
                    logger.warning(
                        "digest_delivery_error",
                        exc_info=True,
                        extra={
                            "messaging.channel_id": snapshot.channel_id,
                            "error.message": str(e),
                        },
                    )
                    continue
                if result.success:
                    delivered += 1
                else:
                    logger.warning(
                        "digest_delivery_failed",
                        extra={
                            "messaging.channel_id": snapshot.channel_id,
                            "error.message": result.error,
                        },
                    )
            logger.info(
                "digest_sent",
                extra={"digest.channel_count": len(pending), "digest.delivered": delivered},
            )
            return delivered
        finally:
            self._state = DigestState.IDLE

    def _arm(self, cron: str) -> None:
        key: TimerKey = (DIGEST_TIMER_OWNER, cron)
        fire_at = self.next_fire_time(cron, self._clock())
        # An occurrence inside the timer tolerance is skipped for the next one
        while not self._timers.schedule(key, fire_at, lambda: self._on_trigger(cron)):
            fire_at = self.next_fire_time(cron, fire_at)

    async def _on_trigger(self, cron: str) -> None:
        try:
            await self.fire()
        finally:
            if self._started:
                self._arm(cron)
