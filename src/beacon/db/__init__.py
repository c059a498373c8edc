"""Database layer."""

from beacon.db.engine import Database
from beacon.db.models import Base, EventRecord, StageRecord, UTCDateTime

__all__ = [
    # Engine
    "Database",
    # Models
    "Base",
    "EventRecord",
    "StageRecord",
    "UTCDateTime",
]
