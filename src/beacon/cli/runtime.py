"""Shared runtime bootstrap helpers for CLI entrypoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import typer

from beacon.cli.console import dim, error
from beacon.config import BeaconConfig, ConfigError, get_default_config, load_config
from beacon.notifications import NotificationDispatcher
from beacon.runtime import NotificationRuntime, create_dispatcher


def load_cli_config(path: Path | None = None) -> BeaconConfig:
    """Load config for a CLI command, falling back to defaults.

    An explicit ``path`` that does not exist is an error; a missing default
    config file is not.
    """
    try:
        return load_config(path)
    except FileNotFoundError as e:
        if path is not None:
            error(str(e))
            raise typer.Exit(1) from None
        dim("No config file found, using defaults")
        return get_default_config()
    except ConfigError as e:
        error(str(e))
        raise typer.Exit(1) from None


@asynccontextmanager
async def open_runtime(
    config: BeaconConfig,
    dispatcher: NotificationDispatcher | None = None,
) -> AsyncIterator[NotificationRuntime]:
    """Open the store without starting the sweep or digest loops."""
    runtime = NotificationRuntime(
        config, dispatcher or create_dispatcher(config, console=True)
    )
    await runtime.open()
    try:
        yield runtime
    finally:
        await runtime.stop()
