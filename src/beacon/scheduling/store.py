"""Stage store backed by async SQLAlchemy.

The store is the single source of truth for events and stage state. Every
state transition that must be race-free is expressed as a conditional
UPDATE, so it stays correct with several dispatchers on one database.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any, cast

from sqlalchemy import select, update
from sqlalchemy.engine import CursorResult

from beacon.db.engine import Database
from beacon.db.models import EventRecord, StageRecord
from beacon.scheduling.types import (
    Clock,
    DueStage,
    EventFilter,
    EventStatus,
    PlannedStage,
    ScheduledEvent,
    Stage,
    StageStatus,
    utc_now,
)

logger = logging.getLogger(__name__)


def _new_event_id() -> str:
    return uuid.uuid4().hex[:12]


def _rowcount(result: Any) -> int:
    return cast(CursorResult[Any], result).rowcount


class StageStore:
    """Durable table of events and their per-stage delivery state."""

    def __init__(self, database: Database, *, clock: Clock = utc_now) -> None:
        self._db = database
        self._clock = clock

    @property
    def database(self) -> Database:
        return self._db

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_event(self, event_id: str) -> ScheduledEvent | None:
        async with self._db.session() as session:
            record = await session.get(EventRecord, event_id)
            return _to_event(record) if record else None

    async def load_active_events(self) -> list[ScheduledEvent]:
        """Active events with at least one outstanding stage."""
        stmt = (
            select(EventRecord)
            .where(EventRecord.status == EventStatus.ACTIVE.value)
            .where(
                EventRecord.stages.any(
                    StageRecord.status.in_(
                        (StageStatus.PENDING.value, StageStatus.IN_FLIGHT.value)
                    )
                )
            )
            .order_by(EventRecord.target_at)
        )
        async with self._db.session() as session:
            records = (await session.scalars(stmt)).all()
            return [_to_event(r) for r in records]

    async def list_events(
        self,
        group_id: str,
        *,
        status: EventStatus | None = EventStatus.ACTIVE,
        event_filter: EventFilter | None = None,
    ) -> list[ScheduledEvent]:
        """List events of a group ordered by target time."""
        stmt = select(EventRecord).where(EventRecord.group_id == group_id)
        if status is not None:
            stmt = stmt.where(EventRecord.status == status.value)
        if event_filter is not None:
            if event_filter.owner_id is not None:
                stmt = stmt.where(EventRecord.owner_id == event_filter.owner_id)
            if event_filter.starts_after is not None:
                stmt = stmt.where(EventRecord.target_at >= event_filter.starts_after)
            if event_filter.starts_before is not None:
                stmt = stmt.where(EventRecord.target_at < event_filter.starts_before)
        stmt = stmt.order_by(EventRecord.target_at, EventRecord.created_at)
        if event_filter is not None and event_filter.limit is not None:
            stmt = stmt.limit(event_filter.limit)

        async with self._db.session() as session:
            records = (await session.scalars(stmt)).all()
            return [_to_event(r) for r in records]

    async def list_active_between(
        self, start: datetime, end: datetime
    ) -> list[ScheduledEvent]:
        """Active events across all groups whose target falls in [start, end)."""
        stmt = (
            select(EventRecord)
            .where(EventRecord.status == EventStatus.ACTIVE.value)
            .where(EventRecord.target_at >= start)
            .where(EventRecord.target_at < end)
            .order_by(EventRecord.group_id, EventRecord.target_at)
        )
        async with self._db.session() as session:
            records = (await session.scalars(stmt)).all()
            return [_to_event(r) for r in records]

    async def list_recent_completed(
        self, group_id: str, since: datetime
    ) -> list[ScheduledEvent]:
        stmt = (
            select(EventRecord)
            .where(EventRecord.group_id == group_id)
            .where(EventRecord.status == EventStatus.COMPLETED.value)
            .where(EventRecord.completed_at >= since)
            .order_by(EventRecord.completed_at.desc())
        )
        async with self._db.session() as session:
            records = (await session.scalars(stmt)).all()
            return [_to_event(r) for r in records]

    async def find_due_unsent_stages(self, until: datetime) -> list[DueStage]:
        """Pending stages of active events with ``fire_at <= until``."""
        stmt = (
            select(StageRecord.event_id, StageRecord.label, StageRecord.fire_at)
            .join(EventRecord, EventRecord.id == StageRecord.event_id)
            .where(StageRecord.status == StageStatus.PENDING.value)
            .where(EventRecord.status == EventStatus.ACTIVE.value)
            .where(StageRecord.fire_at <= until)
            .order_by(StageRecord.fire_at, StageRecord.position)
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).all()
            return [
                DueStage(event_id=row.event_id, label=row.label, fire_at=row.fire_at)
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def create_event(
        self,
        *,
        group_id: str,
        title: str,
        target_at: datetime,
        display_timezone: str,
        stages: Sequence[PlannedStage],
        owner_id: str | None = None,
        recipients: Sequence[str] = (),
    ) -> ScheduledEvent:
        now = self._clock()
        record = EventRecord(
            id=_new_event_id(),
            group_id=group_id,
            owner_id=owner_id,
            title=title,
            recipients=list(recipients),
            target_at=target_at,
            display_timezone=display_timezone,
            status=EventStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        record.stages = [
            StageRecord(
                label=planned.label,
                position=position,
                offset_seconds=int(planned.offset.total_seconds()),
                is_final=planned.is_final,
                fire_at=planned.fire_at,
                status=StageStatus.PENDING.value,
            )
            for position, planned in enumerate(stages)
        ]
        async with self._db.session() as session:
            session.add(record)
            await session.flush()
            return _to_event(record)

    async def claim_stage(
        self, event_id: str, label: str, *, due_by: datetime | None = None
    ) -> bool:
        """Atomically move a stage from pending to in_flight.

        Only succeeds while the owning event is active and the stage's stored
        fire time is at or before ``due_by`` (default: now). Returns False
        when another caller already claimed it, it was sent, it is not due
        yet, or the event is terminal.
        """
        now = self._clock()
        active_event = (
            select(EventRecord.id)
            .where(EventRecord.id == event_id)
            .where(EventRecord.status == EventStatus.ACTIVE.value)
            .exists()
        )
        stmt = (
            update(StageRecord)
            .where(StageRecord.event_id == event_id)
            .where(StageRecord.label == label)
            .where(StageRecord.status == StageStatus.PENDING.value)
            .where(StageRecord.fire_at <= (due_by or now))
            .where(active_event)
            .values(status=StageStatus.IN_FLIGHT.value, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return _rowcount(result) == 1

    async def commit_stage(self, event_id: str, label: str) -> bool:
        """Mark a claimed stage as sent.

        Sending the final stage also completes the event. Returns False when
        the stage was no longer in_flight (e.g. reset by a reschedule).
        """
        now = self._clock()
        async with self._db.session() as session:
            result = await session.execute(
                update(StageRecord)
                .where(StageRecord.event_id == event_id)
                .where(StageRecord.label == label)
                .where(StageRecord.status == StageStatus.IN_FLIGHT.value)
                .values(status=StageStatus.SENT.value, sent_at=now, claimed_at=None)
                .execution_options(synchronize_session=False)
            )
            if _rowcount(result) != 1:
                return False

            is_final = await session.scalar(
                select(StageRecord.is_final)
                .where(StageRecord.event_id == event_id)
                .where(StageRecord.label == label)
            )
            if is_final:
                await session.execute(
                    update(EventRecord)
                    .where(EventRecord.id == event_id)
                    .where(EventRecord.status == EventStatus.ACTIVE.value)
                    .values(
                        status=EventStatus.COMPLETED.value,
                        completed_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
            return True

    async def rollback_stage(self, event_id: str, label: str) -> bool:
        """Return a claimed stage to pending so a later sweep retries it."""
        stmt = (
            update(StageRecord)
            .where(StageRecord.event_id == event_id)
            .where(StageRecord.label == label)
            .where(StageRecord.status == StageStatus.IN_FLIGHT.value)
            .values(status=StageStatus.PENDING.value, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return _rowcount(result) == 1

    async def expire_stage(self, event_id: str, label: str) -> bool:
        """Resolve a claimed stage as expired; it will not be delivered."""
        stmt = (
            update(StageRecord)
            .where(StageRecord.event_id == event_id)
            .where(StageRecord.label == label)
            .where(StageRecord.status == StageStatus.IN_FLIGHT.value)
            .values(status=StageStatus.EXPIRED.value, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return _rowcount(result) == 1

    async def release_stale_claims(self, older_than: timedelta) -> int:
        """Release in_flight claims older than ``older_than`` back to pending."""
        cutoff = self._clock() - older_than
        stmt = (
            update(StageRecord)
            .where(StageRecord.status == StageStatus.IN_FLIGHT.value)
            .where(StageRecord.claimed_at < cutoff)
            .values(status=StageStatus.PENDING.value, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return _rowcount(result)

    async def set_status(
        self,
        event_id: str,
        status: EventStatus,
        *,
        expected: EventStatus = EventStatus.ACTIVE,
    ) -> bool:
        """Conditionally move an event from ``expected`` to ``status``."""
        now = self._clock()
        values: dict[str, Any] = {"status": status.value, "updated_at": now}
        if status == EventStatus.CANCELLED:
            values["cancelled_at"] = now
        elif status == EventStatus.COMPLETED:
            values["completed_at"] = now

        stmt = (
            update(EventRecord)
            .where(EventRecord.id == event_id)
            .where(EventRecord.status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return _rowcount(result) == 1

    async def reschedule_event(
        self,
        event_id: str,
        *,
        target_at: datetime | None = None,
        title: str | None = None,
    ) -> ScheduledEvent | None:
        """Move an active event and recompute its stage fire times.

        Stages whose new fire time lies in the future are reset to pending,
        even if already sent. Returns None when the event is missing or no
        longer active.
        """
        now = self._clock()
        values: dict[str, Any] = {"updated_at": now}
        if target_at is not None:
            values["target_at"] = target_at
        if title is not None:
            values["title"] = title

        async with self._db.session() as session:
            # Conditional write first so a concurrent cancel cannot interleave.
            result = await session.execute(
                update(EventRecord)
                .where(EventRecord.id == event_id)
                .where(EventRecord.status == EventStatus.ACTIVE.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if _rowcount(result) != 1:
                return None

            record = await session.get(EventRecord, event_id, populate_existing=True)
            if record is None:
                return None

            reset = 0
            for stage in record.stages:
                fire_at = record.target_at - timedelta(seconds=stage.offset_seconds)
                stage.fire_at = fire_at
                if fire_at > now:
                    if stage.status != StageStatus.PENDING.value:
                        reset += 1
                    stage.status = StageStatus.PENDING.value
                    stage.sent_at = None
                    stage.claimed_at = None
            await session.flush()
            logger.debug(
                "event_stages_recomputed",
                extra={"event.id": event_id, "stage.reset_count": reset},
            )
            return _to_event(record)


def _to_event(record: EventRecord) -> ScheduledEvent:
    return ScheduledEvent(
        id=record.id,
        group_id=record.group_id,
        owner_id=record.owner_id,
        title=record.title,
        recipients=list(record.recipients or []),
        target_at=record.target_at,
        display_timezone=record.display_timezone,
        status=EventStatus(record.status),
        created_at=record.created_at,
        updated_at=record.updated_at,
        stages=[
            Stage(
                label=s.label,
                offset=timedelta(seconds=s.offset_seconds),
                fire_at=s.fire_at,
                status=StageStatus(s.status),
                sent_at=s.sent_at,
                claimed_at=s.claimed_at,
            )
            for s in sorted(record.stages, key=lambda s: s.position)
        ],
    )
