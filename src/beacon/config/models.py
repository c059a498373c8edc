"""Configuration models using Pydantic."""

import logging
import re
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from beacon.config.paths import get_database_path, get_system_timezone
from beacon.scheduling.offsets import (
    OffsetPolicy,
    StageOffset,
    parse_duration,
    validate_offsets,
)

logger = logging.getLogger(__name__)

_CLOCK_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def _validate_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {value!r}") from e
    return value


def to_cron(spec: str) -> str:
    """Normalize a digest trigger spec ("HH:MM" or a cron expression) to cron.

    Raises:
        ValueError: If the spec is neither a clock time nor valid cron.
    """
    from croniter import croniter

    spec = spec.strip()
    if match := _CLOCK_TIME_RE.match(spec):
        hour, minute = int(match.group(1)), int(match.group(2))
        return f"{minute} {hour} * * *"
    if not croniter.is_valid(spec):
        raise ValueError(f"Invalid digest schedule: {spec!r}")
    return spec


class OffsetConfig(BaseModel):
    """One configured notification stage."""

    label: str
    before: str | int = 0

    def to_stage_offset(self) -> StageOffset:
        return StageOffset(label=self.label, offset=parse_duration(self.before))


def _default_offsets() -> list[OffsetConfig]:
    return [
        OffsetConfig(label="24h", before="24h"),
        OffsetConfig(label="1h", before="1h"),
        OffsetConfig(label="now", before=0),
    ]


class SchedulerConfig(BaseModel):
    """Configuration for the timer engine and reconciliation sweep.

    All intervals are in seconds.
    """

    sweep_interval: float = Field(default=60.0, gt=0)
    # Forward slack applied to the sweep's due query
    lookahead_slack: float = Field(default=5.0, ge=0)
    # Fire times closer than this are left to the sweep instead of a timer
    immediate_fire_tolerance: float = Field(default=2.0, ge=0)
    # Stages stuck in_flight longer than this are released back to pending
    stale_claim_timeout: float = Field(default=600.0, gt=0)
    offsets: list[OffsetConfig] = Field(default_factory=_default_offsets)

    @field_validator("offsets")
    @classmethod
    def _check_offsets(cls, value: list[OffsetConfig]) -> list[OffsetConfig]:
        validate_offsets([item.to_stage_offset() for item in value])
        return value

    @model_validator(mode="after")
    def _check_lookahead(self) -> "SchedulerConfig":
        if self.lookahead_slack >= self.sweep_interval:
            raise ValueError("lookahead_slack must be below sweep_interval")
        return self

    def offset_policy(self) -> OffsetPolicy:
        return OffsetPolicy([item.to_stage_offset() for item in self.offsets])


class DigestConfig(BaseModel):
    """Configuration for the recurring digest trigger."""

    enabled: bool = True
    # Clock times ("08:05") or cron expressions, evaluated in `timezone`
    schedule: list[str] = Field(default_factory=lambda: ["08:05", "21:30"])
    timezone: str = "UTC"

    @field_validator("schedule")
    @classmethod
    def _check_schedule(cls, value: list[str]) -> list[str]:
        for spec in value:
            to_cron(spec)
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        return _validate_timezone(value)

    @property
    def cron_specs(self) -> list[str]:
        return [to_cron(spec) for spec in self.schedule]


class DatabaseConfig(BaseModel):
    """Configuration for the stage store database."""

    path: Path = Field(default_factory=get_database_path)
    # Full SQLAlchemy async URL; takes precedence over `path`
    url: str | None = None


class WebhookConfig(BaseModel):
    """Configuration for the webhook notification dispatcher."""

    url: str
    token: SecretStr | None = None
    timeout: float = 10.0


class ConfigError(Exception):
    """Configuration error."""

    pass


class BeaconConfig(BaseModel):
    """Root configuration model."""

    # Default display timezone for new events
    timezone: str = Field(default_factory=get_system_timezone)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    digest: DigestConfig = Field(default_factory=DigestConfig)
    webhook: WebhookConfig | None = None

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            return _validate_timezone(value)
        except ValueError:
            logger.warning("Unknown system timezone %r, using UTC", value)
            return "UTC"
