"""Shared test fixtures and factories."""

from collections.abc import AsyncGenerator, Iterator, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from beacon.config.models import BeaconConfig, DatabaseConfig, DigestConfig
from beacon.config.paths import ENV_VAR, get_beacon_home
from beacon.db.engine import Database
from beacon.notifications.base import DeliveryResult
from beacon.scheduling.dispatch import StageDispatchPath
from beacon.scheduling.lifecycle import EventLifecycleManager
from beacon.scheduling.offsets import OffsetPolicy
from beacon.scheduling.store import StageStore
from beacon.scheduling.sweep import ReconciliationSweep
from beacon.scheduling.timers import TimerEngine

# Monday, 2 March 2026, 09:00 UTC
START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


# =============================================================================
# Environment
# =============================================================================


@pytest.fixture(autouse=True)
def beacon_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point BEACON_HOME at a temporary directory for every test."""
    home = tmp_path / "beacon-home"
    monkeypatch.setenv(ENV_VAR, str(home))
    monkeypatch.delenv("BEACON_WEBHOOK_TOKEN", raising=False)
    get_beacon_home.cache_clear()
    yield home
    get_beacon_home.cache_clear()


# =============================================================================
# Clock and Dispatcher Fakes
# =============================================================================


class MutableClock:
    """Settable clock for simulated-time tests."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    """Dispatcher that records sends and can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.failures: list[DeliveryResult | Exception] = []

    def fail_next(self, failure: DeliveryResult | Exception | None = None) -> None:
        self.failures.append(failure or DeliveryResult.failed("channel offline"))

    async def send(
        self,
        channel_id: str,
        text: str,
        highlight_ids: Sequence[str] = (),
    ) -> DeliveryResult:
        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return failure
        self.sent.append(
            {
                "channel_id": channel_id,
                "text": text,
                "highlight_ids": list(highlight_ids),
            }
        )
        return DeliveryResult.ok(message_id=f"msg-{len(self.sent)}")


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def beacon_config(tmp_path: Path) -> BeaconConfig:
    """Configuration pointing at a temporary database."""
    return BeaconConfig(
        timezone="Asia/Kuwait",
        database=DatabaseConfig(path=tmp_path / "cli.db"),
        digest=DigestConfig(timezone="Asia/Kuwait"),
    )


@pytest.fixture
def config_toml_content(tmp_path: Path) -> str:
    """Valid TOML config content."""
    return f"""
timezone = "Asia/Kuwait"

[database]
path = "{tmp_path / "cli.db"}"

[scheduler]
sweep_interval = 30
offsets = [
    {{ label = "1d", before = "1d" }},
    {{ label = "30m", before = "30m" }},
    {{ label = "now", before = 0 }},
]

[digest]
schedule = ["08:05", "30 21 * * *"]
timezone = "Asia/Kuwait"
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(config_toml_content)
    return config_path


# =============================================================================
# Database and Scheduling Fixtures
# =============================================================================


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Create a temporary test database."""
    db = Database(database_path=tmp_path / "test.db")
    await db.connect()
    await db.init_schema()

    yield db

    await db.disconnect()


@pytest.fixture
def store(database: Database, clock: MutableClock) -> StageStore:
    return StageStore(database, clock=clock)


@pytest.fixture
async def timers(clock: MutableClock) -> AsyncGenerator[TimerEngine, None]:
    engine = TimerEngine(immediate_fire_tolerance=2.0, clock=clock)
    yield engine
    await engine.shutdown()


@pytest.fixture
def dispatch_path(
    store: StageStore, dispatcher: RecordingDispatcher, clock: MutableClock
) -> StageDispatchPath:
    return StageDispatchPath(store, dispatcher, clock=clock)


@pytest.fixture
def sweep(
    store: StageStore, dispatch_path: StageDispatchPath, clock: MutableClock
) -> ReconciliationSweep:
    return ReconciliationSweep(
        store,
        dispatch_path,
        interval=60.0,
        lookahead_slack=5.0,
        stale_claim_timeout=600.0,
        clock=clock,
    )


@pytest.fixture
def lifecycle(
    store: StageStore,
    timers: TimerEngine,
    dispatch_path: StageDispatchPath,
    clock: MutableClock,
) -> EventLifecycleManager:
    return EventLifecycleManager(
        store,
        timers,
        dispatch_path,
        OffsetPolicy(),
        default_timezone="Asia/Kuwait",
        clock=clock,
    )


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})
