"""Runtime wiring for the notification scheduler."""

from __future__ import annotations

import logging

from beacon.config import BeaconConfig
from beacon.db import Database
from beacon.notifications import (
    ConsoleDispatcher,
    NotificationDispatcher,
    WebhookDispatcher,
)
from beacon.scheduling.digest import RecurringDigestTrigger, UpcomingEventsDigestSource
from beacon.scheduling.dispatch import StageDispatchPath
from beacon.scheduling.lifecycle import EventLifecycleManager
from beacon.scheduling.store import StageStore
from beacon.scheduling.sweep import ReconciliationSweep
from beacon.scheduling.timers import TimerEngine
from beacon.scheduling.types import Clock, utc_now

logger = logging.getLogger(__name__)


def create_database(config: BeaconConfig) -> Database:
    if config.database.url:
        return Database(database_url=config.database.url)
    return Database(database_path=config.database.path)


def create_dispatcher(
    config: BeaconConfig, *, console: bool = False
) -> NotificationDispatcher:
    """Webhook dispatcher when configured, otherwise print to the terminal."""
    if config.webhook and not console:
        return WebhookDispatcher(
            config.webhook.url,
            token=config.webhook.token,
            timeout=config.webhook.timeout,
        )
    return ConsoleDispatcher()


class NotificationRuntime:
    """Owns the store, timers, sweep, lifecycle manager and digest trigger.

    The dispatcher is injected at construction; nothing is wired in later.

    Example:
        runtime = NotificationRuntime(config, ConsoleDispatcher())
        await runtime.start()
        event = await runtime.lifecycle.create(...)
        await runtime.stop()
    """

    def __init__(
        self,
        config: BeaconConfig,
        dispatcher: NotificationDispatcher,
        *,
        database: Database | None = None,
        clock: Clock = utc_now,
    ) -> None:
        scheduler = config.scheduler
        policy = scheduler.offset_policy()
        self.config = config
        self.database = database or create_database(config)
        self.dispatcher = dispatcher
        self.store = StageStore(self.database, clock=clock)
        self.timers = TimerEngine(
            immediate_fire_tolerance=scheduler.immediate_fire_tolerance, clock=clock
        )
        self.dispatch_path = StageDispatchPath(
            self.store,
            dispatcher,
            claim_slack=scheduler.lookahead_slack,
            clock=clock,
        )
        self.sweep = ReconciliationSweep(
            self.store,
            self.dispatch_path,
            interval=scheduler.sweep_interval,
            lookahead_slack=scheduler.lookahead_slack,
            stale_claim_timeout=scheduler.stale_claim_timeout,
            clock=clock,
        )
        self.lifecycle = EventLifecycleManager(
            self.store,
            self.timers,
            self.dispatch_path,
            policy,
            default_timezone=config.timezone,
            clock=clock,
        )
        self.digest = RecurringDigestTrigger(
            config.digest.cron_specs,
            UpcomingEventsDigestSource(
                self.store,
                config.digest.timezone,
                policy=policy,
            ),
            dispatcher,
            self.timers,
            timezone=config.digest.timezone,
            clock=clock,
        )
        self._started = False

    async def open(self) -> None:
        """Connect the database and make sure the schema exists."""
        if not self.database.is_connected:
            await self.database.connect()
        await self.database.init_schema()

    async def start(self) -> None:
        """Open the store, rebuild timers and start the background loops."""
        if self._started:
            return
        await self.open()
        primed = await self.lifecycle.prime_all()
        await self.sweep.start()
        if self.config.digest.enabled:
            self.digest.start()
        self._started = True
        logger.info(
            "runtime_started",
            extra={
                "timer.count": primed,
                "digest.enabled": self.config.digest.enabled,
            },
        )

    async def stop(self) -> None:
        """Stop loops, drop timers and close the database."""
        if self._started:
            self.digest.stop()
            await self.sweep.stop()
            self._started = False
            logger.info("runtime_stopped")
        await self.timers.shutdown()
        if self.database.is_connected:
            await self.database.disconnect()
