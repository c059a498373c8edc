"""Offset policy: maps a target time onto ordered stage fire times.

The policy is pure. Offsets are validated once when the policy is built
(configuration load), never per event.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from beacon.scheduling.types import PlannedStage

_DURATION_RE = re.compile(r"(?:\d+\s*[wdhms]\s*)+")
_DURATION_PART_RE = re.compile(r"(\d+)\s*([wdhms])")
_UNIT_SECONDS = {"w": 604800, "d": 86400, "h": 3600, "m": 60, "s": 1}


def parse_duration(value: str | int | float) -> timedelta:
    """Parse a duration such as "24h", "90m", "1d2h" or "0".

    Bare numbers are seconds.

    Raises:
        ValueError: If the value is not a valid non-negative duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, int | float):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return timedelta(seconds=value)

    text = value.strip().lower()
    if text in ("now", "0"):
        return timedelta(0)
    if text.isdigit():
        return timedelta(seconds=int(text))
    if not _DURATION_RE.fullmatch(text):
        raise ValueError(f"Invalid duration: {value!r}")

    seconds = sum(
        int(amount) * _UNIT_SECONDS[unit]
        for amount, unit in _DURATION_PART_RE.findall(text)
    )
    return timedelta(seconds=seconds)


def format_offset(offset: timedelta) -> str:
    """Format an offset for humans, e.g. "24 hours" or "1 hour 30 minutes"."""
    total = int(offset.total_seconds())
    if total <= 0:
        return "now"

    def plural(amount: int, unit: str) -> str:
        return f"{amount} {unit}{'s' if amount != 1 else ''}"

    # Whole days above 24h read better as days ("2 days"), otherwise hours.
    if total > 86400 and total % 86400 == 0:
        return plural(total // 86400, "day")
    if total < 60:
        return plural(total, "second")

    hours, remainder = divmod(total, 3600)
    minutes = remainder // 60
    parts = []
    if hours:
        parts.append(plural(hours, "hour"))
    if minutes:
        parts.append(plural(minutes, "minute"))
    return " ".join(parts)


@dataclass(frozen=True)
class StageOffset:
    """A configured stage: fire ``offset`` before the target time."""

    label: str
    offset: timedelta

    @property
    def is_final(self) -> bool:
        return self.offset == timedelta(0)


DEFAULT_OFFSETS: tuple[StageOffset, ...] = (
    StageOffset("24h", timedelta(hours=24)),
    StageOffset("1h", timedelta(hours=1)),
    StageOffset("now", timedelta(0)),
)


def validate_offsets(offsets: Sequence[StageOffset]) -> None:
    """Validate an offset list.

    Offsets must be strictly decreasing (largest first), labels unique and
    non-empty, and the list must end with the single zero offset.

    Raises:
        ValueError: Describing the first problem found.
    """
    if not offsets:
        raise ValueError("At least one offset is required")

    labels: set[str] = set()
    previous: timedelta | None = None
    for item in offsets:
        if not item.label or not item.label.strip():
            raise ValueError("Offset labels must not be empty")
        if item.label in labels:
            raise ValueError(f"Duplicate offset label: {item.label!r}")
        labels.add(item.label)
        if item.offset < timedelta(0):
            raise ValueError(f"Offset {item.label!r} must not be negative")
        if previous is not None and item.offset >= previous:
            raise ValueError(
                "Offsets must be strictly decreasing (largest first); "
                f"{item.label!r} is out of order"
            )
        previous = item.offset

    if not offsets[-1].is_final:
        raise ValueError("Offsets must end with a zero offset")


class OffsetPolicy:
    """Computes stage fire times for a target time."""

    def __init__(self, offsets: Sequence[StageOffset] = DEFAULT_OFFSETS) -> None:
        validate_offsets(offsets)
        self._offsets = tuple(offsets)

    @property
    def offsets(self) -> tuple[StageOffset, ...]:
        return self._offsets

    @property
    def final_label(self) -> str:
        return self._offsets[-1].label

    def plan(self, target_at: datetime) -> list[PlannedStage]:
        """Return ``(label, fire_at)`` pairs ordered by fire time.

        Fire times already in the past are included; the sweep delivers them.
        """
        if target_at.tzinfo is None:
            raise ValueError("target_at must be timezone-aware")
        return [
            PlannedStage(label=o.label, offset=o.offset, fire_at=target_at - o.offset)
            for o in self._offsets
        ]
