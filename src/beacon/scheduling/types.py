"""Scheduling types.

Public types:
- ScheduledEvent: An event with a target time and its notification stages
- Stage: One offset-before-target notification point of an event
- PlannedStage: A stage fire time computed by the offset policy
- DueStage: A due-but-unsent stage returned by the store
- EventFilter: Read-only filter for listing events
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum

# Returns the current time as a timezone-aware UTC datetime.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class EventStatus(StrEnum):
    """Lifecycle status of a scheduled event."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not EventStatus.ACTIVE


class StageStatus(StrEnum):
    """Delivery status of a single stage.

    pending -> in_flight is the atomic claim; in_flight resolves to sent on
    delivery or back to pending on failure. An advance stage claimed after
    its event's target time resolves to expired without being delivered.
    """

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SENT = "sent"
    EXPIRED = "expired"


@dataclass(frozen=True)
class PlannedStage:
    """A stage fire time computed from a target time and an offset."""

    label: str
    offset: timedelta
    fire_at: datetime

    @property
    def is_final(self) -> bool:
        return self.offset == timedelta(0)


@dataclass
class Stage:
    """A persisted notification stage."""

    label: str
    offset: timedelta
    fire_at: datetime
    status: StageStatus = StageStatus.PENDING
    sent_at: datetime | None = None
    claimed_at: datetime | None = None

    @property
    def is_final(self) -> bool:
        return self.offset == timedelta(0)

    @property
    def is_sent(self) -> bool:
        return self.status == StageStatus.SENT

    @property
    def is_pending(self) -> bool:
        return self.status == StageStatus.PENDING


@dataclass
class ScheduledEvent:
    """An event whose stages are delivered ahead of and at its target time."""

    id: str
    group_id: str
    title: str
    target_at: datetime
    display_timezone: str
    owner_id: str | None = None
    recipients: list[str] = field(default_factory=list)
    status: EventStatus = EventStatus.ACTIVE
    stages: list[Stage] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == EventStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def final_stage(self) -> Stage | None:
        for stage in self.stages:
            if stage.is_final:
                return stage
        return None

    @property
    def pending_stages(self) -> list[Stage]:
        return [s for s in self.stages if s.is_pending]

    def get_stage(self, label: str) -> Stage | None:
        for stage in self.stages:
            if stage.label == label:
                return stage
        return None


@dataclass(frozen=True)
class DueStage:
    """A stage that is due (or overdue) and not yet sent."""

    event_id: str
    label: str
    fire_at: datetime


@dataclass
class EventFilter:
    """Optional constraints for listing events of a group."""

    owner_id: str | None = None
    starts_after: datetime | None = None
    starts_before: datetime | None = None
    limit: int | None = None


# Zero-argument coroutine factory run when a timer fires.
TimerCallback = Callable[[], Awaitable[object]]


def dedupe_ids(ids: Iterable[str]) -> list[str]:
    """Remove duplicates and blanks while preserving first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for raw in ids:
        value = raw.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result
