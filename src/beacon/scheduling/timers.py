"""Timer engine: cancellable delayed callbacks on the asyncio loop.

Timers are a best-effort, in-memory cache derived from the stage store.
They are lost on restart; the reconciliation sweep is the durability
guarantee. Keys are ``(owner_id, name)`` pairs, e.g. ``(event_id, label)``
for event stages or ``("digest", cron)`` for the recurring digest.
"""

import asyncio
import logging
from datetime import datetime

from beacon.scheduling.types import Clock, TimerCallback, utc_now

logger = logging.getLogger(__name__)

TimerKey = tuple[str, str]


class TimerEngine:
    """Maps keys to delayed callbacks.

    Example:
        timers = TimerEngine(immediate_fire_tolerance=2.0)
        timers.schedule((event.id, "1h"), fire_at, lambda: dispatch(event.id, "1h"))
        timers.cancel_all(event.id)
    """

    def __init__(
        self,
        *,
        immediate_fire_tolerance: float = 2.0,
        clock: Clock = utc_now,
    ) -> None:
        self._tolerance = immediate_fire_tolerance
        self._clock = clock
        self._handles: dict[TimerKey, asyncio.TimerHandle] = {}
        self._fire_times: dict[TimerKey, datetime] = {}
        self._running: set[asyncio.Task] = set()

    def __contains__(self, key: object) -> bool:
        return key in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    @property
    def keys(self) -> list[TimerKey]:
        return list(self._handles)

    def fire_time(self, key: TimerKey) -> datetime | None:
        return self._fire_times.get(key)

    def schedule(
        self, key: TimerKey, fire_at: datetime, callback: TimerCallback
    ) -> bool:
        """Register a timer for ``key``, replacing any existing one.

        Fire times in the past or within the immediate-fire tolerance are not
        scheduled; the sweep picks them up.

        Returns:
            True if a timer was registered.
        """
        self.cancel(key)

        delay = (fire_at - self._clock()).total_seconds()
        if delay <= self._tolerance:
            logger.debug(
                "timer_left_to_sweep",
                extra={"timer.key": key, "timer.delay_seconds": round(delay, 3)},
            )
            return False

        loop = asyncio.get_running_loop()
        self._handles[key] = loop.call_later(delay, self._fire, key, callback)
        self._fire_times[key] = fire_at
        logger.debug(
            "timer_scheduled",
            extra={"timer.key": key, "timer.fire_at": fire_at.isoformat()},
        )
        return True

    def cancel(self, key: TimerKey) -> bool:
        """Cancel the timer for ``key`` if one is outstanding."""
        handle = self._handles.pop(key, None)
        self._fire_times.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self, owner_id: str) -> int:
        """Cancel every outstanding timer whose key belongs to ``owner_id``."""
        cancelled = 0
        for key in [k for k in self._handles if k[0] == owner_id]:
            if self.cancel(key):
                cancelled += 1
        if cancelled:
            logger.debug(
                "timers_cancelled",
                extra={"timer.owner": owner_id, "timer.count": cancelled},
            )
        return cancelled

    async def shutdown(self) -> None:
        """Cancel all timers and wait for running callbacks to finish."""
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._fire_times.clear()

        tasks = list(self._running)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _fire(self, key: TimerKey, callback: TimerCallback) -> None:
        self._handles.pop(key, None)
        self._fire_times.pop(key, None)
        task = asyncio.create_task(self._run(key, callback))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, key: TimerKey, callback: TimerCallback) -> None:
        try:
            await callback()
        except Exception as e:
            logger.exception(
                "timer_callback_failed",
                extra={"timer.key": key, "error.message": str(e)},
            )
