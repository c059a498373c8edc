"""Centralized path management for Beacon.

All state (config, database, logs) is stored under a single base directory.
The base directory can be overridden with the BEACON_HOME environment variable.

Default locations:
- Linux/macOS: ~/.beacon
- Windows: %USERPROFILE%\\.beacon
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "BEACON_HOME"


def get_system_timezone() -> str:
    """Detect system timezone, falling back to UTC.

    Resolution order:
    1. TZ environment variable (if set)
    2. /etc/timezone file (Debian/Ubuntu)
    3. /etc/localtime symlink target (most Linux distros)
    4. Fallback to UTC

    Returns:
        IANA timezone name (e.g., "Asia/Kuwait", "Europe/London", "UTC").
    """
    if tz := os.environ.get("TZ"):
        return tz

    try:
        tz = Path("/etc/timezone").read_text().strip()
        if tz:
            return tz
    except (FileNotFoundError, PermissionError):
        pass

    try:
        link = Path("/etc/localtime").resolve()
        parts = str(link).split("zoneinfo/")
        if len(parts) > 1:
            return parts[1]
    except (FileNotFoundError, PermissionError):
        pass

    return "UTC"


@lru_cache(maxsize=1)
def get_beacon_home() -> Path:
    """Get the base directory for all Beacon data.

    Resolution order:
    1. BEACON_HOME environment variable (if set)
    2. Platform default (~/.beacon)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".beacon"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_beacon_home() / "config.toml"


def get_database_path() -> Path:
    """Get the default SQLite database path."""
    return get_beacon_home() / "beacon.db"


def get_logs_path() -> Path:
    """Get the default logs directory path."""
    return get_beacon_home() / "logs"


def get_all_paths() -> dict[str, Path]:
    """Get all standard paths for debugging/display."""
    return {
        "home": get_beacon_home(),
        "config": get_config_path(),
        "database": get_database_path(),
        "logs": get_logs_path(),
    }
