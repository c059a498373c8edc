"""Scheduling subsystem: deferred multi-stage notifications.

Public API:
- EventLifecycleManager: create/cancel/reschedule/list scheduled events
- StageStore: SQLAlchemy-backed event and stage state
- TimerEngine: In-memory delayed callbacks on the asyncio loop
- ReconciliationSweep: Periodic backstop delivering due, unsent stages
- StageDispatchPath: claim -> render -> deliver -> commit/rollback
- RecurringDigestTrigger: Cron-style digest sends sharing the timer engine

Types:
- ScheduledEvent, Stage: An event and its notification stages
- OffsetPolicy, StageOffset: Configured offsets and fire-time planning
"""

from beacon.scheduling.digest import (
    DigestSnapshot,
    DigestSource,
    RecurringDigestTrigger,
    UpcomingEventsDigestSource,
)
from beacon.scheduling.dispatch import DispatchOutcome, StageDispatchPath
from beacon.scheduling.lifecycle import EventLifecycleManager
from beacon.scheduling.offsets import (
    OffsetPolicy,
    StageOffset,
    format_offset,
    parse_duration,
)
from beacon.scheduling.store import StageStore
from beacon.scheduling.sweep import ReconciliationSweep
from beacon.scheduling.timers import TimerEngine
from beacon.scheduling.types import (
    DueStage,
    EventFilter,
    EventStatus,
    ScheduledEvent,
    Stage,
    StageStatus,
)

__all__ = [
    "DigestSnapshot",
    "DigestSource",
    "DispatchOutcome",
    "DueStage",
    "EventFilter",
    "EventLifecycleManager",
    "EventStatus",
    "OffsetPolicy",
    "ReconciliationSweep",
    "RecurringDigestTrigger",
    "ScheduledEvent",
    "Stage",
    "StageDispatchPath",
    "StageOffset",
    "StageStatus",
    "StageStore",
    "TimerEngine",
    "UpcomingEventsDigestSource",
    "format_offset",
    "parse_duration",
]
