"""Digest commands."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from beacon.cli.console import dim, success, warning

app = typer.Typer(
    name="digest",
    help="Daily digest commands.",
    no_args_is_help=True,
)


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="digest")


@app.command("send")
def send_cmd(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    console_only: Annotated[
        bool,
        typer.Option("--console", help="Print instead of using the webhook"),
    ] = False,
) -> None:
    """Send today's digest now, regardless of the schedule."""
    delivered = asyncio.run(_digest_send(config, console_only))
    if delivered:
        success(f"Sent {delivered} digest(s)")
    else:
        warning("Nothing to send")


async def _digest_send(config_path: Path | None, console_only: bool) -> int:
    from beacon.cli.runtime import load_cli_config, open_runtime
    from beacon.runtime import create_dispatcher

    config = load_cli_config(config_path)
    dispatcher = create_dispatcher(config, console=console_only)
    try:
        async with open_runtime(config, dispatcher) as runtime:
            dim(f"Digest timezone: {config.digest.timezone}")
            return await runtime.digest.fire()
    finally:
        if aclose := getattr(dispatcher, "aclose", None):
            await aclose()
