"""Event lifecycle manager: the public API for scheduled events.

Persists events through the stage store and keeps the timer engine in
step with it. The store is authoritative; timers are re-derived from it
on create, reschedule and startup priming.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from functools import partial
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from beacon.scheduling.dispatch import StageDispatchPath
from beacon.scheduling.offsets import OffsetPolicy
from beacon.scheduling.store import StageStore
from beacon.scheduling.timers import TimerEngine
from beacon.scheduling.types import (
    Clock,
    EventFilter,
    EventStatus,
    ScheduledEvent,
    dedupe_ids,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_RECENT_DAYS = 7


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware")


class EventLifecycleManager:
    """Create, cancel, reschedule and list scheduled events.

    Example:
        manager = EventLifecycleManager(store, timers, dispatch_path, policy)
        event = await manager.create(
            group_id="team", title="Standup", target_at=target
        )
        await manager.cancel(event.id)
    """

    def __init__(
        self,
        store: StageStore,
        timers: TimerEngine,
        dispatch_path: StageDispatchPath,
        policy: OffsetPolicy | None = None,
        *,
        default_timezone: str = "UTC",
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._timers = timers
        self._dispatch_path = dispatch_path
        self._policy = policy or OffsetPolicy()
        self._default_timezone = default_timezone
        self._clock = clock

    @property
    def policy(self) -> OffsetPolicy:
        return self._policy

    async def create(
        self,
        *,
        group_id: str,
        title: str,
        target_at: datetime,
        owner_id: str | None = None,
        recipients: Sequence[str] = (),
        display_timezone: str | None = None,
    ) -> ScheduledEvent:
        """Persist a new active event and prime timers for its future stages.

        Stages already due at creation time are persisted as pending and
        left for the next sweep tick.

        Raises:
            ValueError: On an empty title or group, a naive target time,
                or an unknown display timezone.
        """
        title = title.strip()
        if not title:
            raise ValueError("title must not be empty")
        if not group_id:
            raise ValueError("group_id must not be empty")
        _require_aware(target_at, "target_at")

        timezone = display_timezone or self._default_timezone
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {timezone!r}") from e

        event = await self._store.create_event(
            group_id=group_id,
            owner_id=owner_id,
            title=title,
            recipients=dedupe_ids(recipients),
            target_at=target_at,
            display_timezone=timezone,
            stages=self._policy.plan(target_at),
        )
        primed = self.prime(event)
        logger.info(
            "event_created",
            extra={
                "event.id": event.id,
                "messaging.channel_id": group_id,
                "event.target_at": target_at.isoformat(),
                "timer.count": primed,
            },
        )
        return event

    async def cancel(self, event_id: str) -> bool:
        """Cancel an active event and drop its outstanding timers.

        Returns:
            False if the event does not exist or is already terminal.
        """
        cancelled = await self._store.set_status(event_id, EventStatus.CANCELLED)
        if not cancelled:
            logger.info("event_cancel_noop", extra={"event.id": event_id})
            return False
        self._timers.cancel_all(event_id)
        logger.info("event_cancelled", extra={"event.id": event_id})
        return True

    async def reschedule(
        self,
        event_id: str,
        *,
        target_at: datetime | None = None,
        title: str | None = None,
    ) -> ScheduledEvent | None:
        """Move an active event and/or change its title.

        Recomputes every stage from its stored offset, resets future stages
        to pending and re-primes timers.

        Returns:
            The updated event, or None if it is missing or terminal.

        Raises:
            ValueError: If nothing would change or the input is malformed.
        """
        if target_at is None and title is None:
            raise ValueError("reschedule requires a new target time or title")
        if target_at is not None:
            _require_aware(target_at, "target_at")
        if title is not None:
            title = title.strip()
            if not title:
                raise ValueError("title must not be empty")

        event = await self._store.reschedule_event(
            event_id, target_at=target_at, title=title
        )
        if event is None:
            logger.info("event_reschedule_noop", extra={"event.id": event_id})
            return None

        self._timers.cancel_all(event_id)
        primed = self.prime(event)
        logger.info(
            "event_rescheduled",
            extra={
                "event.id": event_id,
                "event.target_at": event.target_at.isoformat(),
                "timer.count": primed,
            },
        )
        return event

    async def get(self, event_id: str) -> ScheduledEvent | None:
        return await self._store.get_event(event_id)

    async def list_active(
        self, group_id: str, event_filter: EventFilter | None = None
    ) -> list[ScheduledEvent]:
        return await self._store.list_events(
            group_id, status=EventStatus.ACTIVE, event_filter=event_filter
        )

    async def list_recent_completed(
        self, group_id: str, days: int = DEFAULT_RECENT_DAYS
    ) -> list[ScheduledEvent]:
        since = self._clock() - timedelta(days=days)
        return await self._store.list_recent_completed(group_id, since)

    def prime(self, event: ScheduledEvent) -> int:
        """Register timers for the event's pending future stages.

        Returns:
            Number of timers registered.
        """
        if not event.is_active:
            return 0
        primed = 0
        for stage in event.pending_stages:
            callback = partial(self._dispatch_path.dispatch, event.id, stage.label)
            if self._timers.schedule((event.id, stage.label), stage.fire_at, callback):
                primed += 1
        return primed

    async def prime_all(self) -> int:
        """Rebuild timers from the store after a restart.

        Past-due stages get no timer; the sweep delivers them.
        """
        events = await self._store.load_active_events()
        primed = sum(self.prime(event) for event in events)
        logger.info(
            "timers_primed",
            extra={"event.count": len(events), "timer.count": primed},
        )
        return primed
