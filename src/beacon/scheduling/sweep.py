"""Reconciliation sweep: periodically delivers anything timers missed.

Timers are lost on restart, and fire times inside the immediate-fire
tolerance are never given one. The sweep queries the store for due,
unsent stages and pushes each through the shared dispatch path, so every
stage is eventually delivered within roughly one sweep interval.
"""

import asyncio
import logging
from datetime import timedelta

from beacon.scheduling.dispatch import DispatchOutcome, StageDispatchPath
from beacon.scheduling.store import StageStore
from beacon.scheduling.types import Clock, utc_now

logger = logging.getLogger(__name__)


class ReconciliationSweep:
    """Polls the stage store and dispatches due stages.

    Example:
        sweep = ReconciliationSweep(store, dispatch_path, interval=60.0)
        await sweep.start()
        ...
        await sweep.stop()
    """

    def __init__(
        self,
        store: StageStore,
        dispatch_path: StageDispatchPath,
        *,
        interval: float = 60.0,
        lookahead_slack: float = 5.0,
        stale_claim_timeout: float = 600.0,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._dispatch_path = dispatch_path
        self._interval = interval
        self._lookahead = timedelta(seconds=lookahead_slack)
        self._stale_claim_timeout = timedelta(seconds=stale_claim_timeout)
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None
        self._tick_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_count(self) -> int:
        return self._tick_count

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info(
            "sweep_started", extra={"sweep.interval_seconds": self._interval}
        )
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _poll_loop(self) -> None:
        # Heartbeat every 60 ticks (~1 hour at the default interval)
        heartbeat_interval = 60
        while self._running:
            try:
                self._tick_count += 1
                if self._tick_count % heartbeat_interval == 0:
                    logger.info(
                        "sweep_heartbeat", extra={"sweep.tick_count": self._tick_count}
                    )
                await self.tick()
            except Exception as e:
                logger.error("sweep_tick_failed", extra={"error.message": str(e)})
            await asyncio.sleep(self._interval)

    async def tick(self) -> int:
        """Run one reconciliation pass.

        Returns:
            Number of stages delivered during this pass.
        """
        released = await self._store.release_stale_claims(self._stale_claim_timeout)
        if released:
            logger.warning("stale_claims_released", extra={"stage.count": released})

        due = await self._store.find_due_unsent_stages(self._clock() + self._lookahead)
        logger.debug("sweep_tick", extra={"stage.due_count": len(due)})

        sent = 0
        for stage in due:
            outcome = await self._dispatch_path.dispatch(stage.event_id, stage.label)
            if outcome == DispatchOutcome.SENT:
                sent += 1
        return sent
