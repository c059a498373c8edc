"""SQLAlchemy ORM models."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Stores datetimes as naive UTC and returns them timezone-aware.

    SQLite has no timezone support; every instant is normalized to UTC on
    the way in so comparisons in queries stay correct.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSON,
        datetime: UTCDateTime,
    }


class EventRecord(Base):
    """A scheduled event.

    Status is one of active, completed, cancelled. Rows are never deleted by
    the scheduler; retention is an external housekeeping concern.
    """

    __tablename__ = "scheduled_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    group_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    owner_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    recipients: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    target_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    display_timezone: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="active", index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    stages: Mapped[list["StageRecord"]] = relationship(
        "StageRecord",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="StageRecord.position",
        lazy="selectin",
    )

    __table_args__ = (Index("ix_scheduled_events_group_target", "group_id", "target_at"),)


class StageRecord(Base):
    """One notification stage of an event, keyed by (event_id, label).

    Status is one of pending, in_flight, sent. The pending -> in_flight
    transition is the atomic claim that makes delivery at-most-once.
    """

    __tablename__ = "event_stages"

    event_id: Mapped[str] = mapped_column(
        String, ForeignKey("scheduled_events.id"), primary_key=True
    )
    label: Mapped[str] = mapped_column(String, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    offset_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    is_final: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fire_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    event: Mapped["EventRecord"] = relationship("EventRecord", back_populates="stages")

    __table_args__ = (Index("ix_event_stages_status_fire_at", "status", "fire_at"),)
