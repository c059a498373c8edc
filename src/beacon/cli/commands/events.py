"""Scheduled event management commands."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import typer

from beacon.cli.console import console, create_table, error, success, warning
from beacon.cli.runtime import load_cli_config, open_runtime

if TYPE_CHECKING:
    from beacon.scheduling import ScheduledEvent

app = typer.Typer(
    name="events",
    help="Manage scheduled events.",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to configuration file"),
]


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="events")


def _run(coro) -> None:
    """Run an async event operation with ValueError handling."""
    try:
        asyncio.run(coro)
    except ValueError as e:
        error(str(e))
        raise typer.Exit(1) from None


def _parse_time(value: str, timezone: str) -> datetime:
    """Parse ISO 8601; naive values are read in ``timezone``."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"invalid ISO 8601 time: {value!r}") from None
    if parsed.tzinfo is None:
        try:
            parsed = parsed.replace(tzinfo=ZoneInfo(timezone))
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {timezone!r}") from None
    return parsed.astimezone(UTC)


def _format_local(instant: datetime, timezone: str) -> str:
    return instant.astimezone(ZoneInfo(timezone)).strftime("%Y-%m-%d %H:%M %Z")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


@app.command("list")
def list_cmd(
    group: Annotated[str, typer.Option("--group", "-g", help="Channel/group ID")],
    owner: Annotated[
        str | None, typer.Option("--owner", "-o", help="Filter by owner ID")
    ] = None,
    recent: Annotated[
        bool, typer.Option("--recent", help="Show events completed in the last 7 days")
    ] = False,
    limit: Annotated[
        int | None, typer.Option("--limit", "-n", help="Maximum events to show")
    ] = None,
    config: ConfigOption = None,
) -> None:
    """List active (or recently completed) events of a group."""
    _run(_events_list(config, group=group, owner=owner, recent=recent, limit=limit))


@app.command("show")
def show_cmd(
    event_id: Annotated[str, typer.Argument(help="Event ID")],
    config: ConfigOption = None,
) -> None:
    """Show an event and the state of each stage."""
    _run(_events_show(config, event_id))


@app.command("create")
def create_cmd(
    group: Annotated[str, typer.Option("--group", "-g", help="Channel/group ID")],
    title: Annotated[str, typer.Option("--title", "-t", help="Event title")],
    at: Annotated[
        str, typer.Option("--at", help="Target time (ISO 8601, e.g. 2025-06-01T18:00)")
    ],
    tz: Annotated[
        str | None,
        typer.Option("--tz", help="Display timezone; also applied to a naive --at"),
    ] = None,
    owner: Annotated[
        str | None, typer.Option("--owner", "-o", help="Owner ID")
    ] = None,
    recipients: Annotated[
        list[str] | None,
        typer.Option("--recipient", "-r", help="Recipient ID to highlight (repeatable)"),
    ] = None,
    config: ConfigOption = None,
) -> None:
    """Schedule a new event."""
    _run(
        _events_create(
            config,
            group=group,
            title=title,
            at=at,
            tz=tz,
            owner=owner,
            recipients=recipients or [],
        )
    )


@app.command("cancel")
def cancel_cmd(
    event_id: Annotated[str, typer.Argument(help="Event ID")],
    config: ConfigOption = None,
) -> None:
    """Cancel an active event."""
    _run(_events_cancel(config, event_id))


@app.command("reschedule")
def reschedule_cmd(
    event_id: Annotated[str, typer.Argument(help="Event ID")],
    at: Annotated[
        str | None, typer.Option("--at", help="New target time (ISO 8601)")
    ] = None,
    title: Annotated[
        str | None, typer.Option("--title", "-t", help="New title")
    ] = None,
    config: ConfigOption = None,
) -> None:
    """Move an event and/or rename it."""
    if at is None and title is None:
        error("at least one of --at or --title is required")
        raise typer.Exit(1)
    _run(_events_reschedule(config, event_id, at=at, title=title))


# ---------------------------------------------------------------------------
# Async implementations
# ---------------------------------------------------------------------------


def _print_events(title: str, events: list[ScheduledEvent]) -> None:
    table = create_table(
        title,
        [
            ("ID", "dim"),
            ("Title", ""),
            ("When", ""),
            ("Stages", ""),
            ("Owner", "dim"),
        ],
    )
    for event in events:
        sent = sum(1 for s in event.stages if s.is_sent)
        name = event.title[:50] + "..." if len(event.title) > 50 else event.title
        table.add_row(
            event.id,
            name,
            _format_local(event.target_at, event.display_timezone),
            f"{sent}/{len(event.stages)} sent",
            event.owner_id or "[dim]-[/dim]",
        )
    console.print(table)
    console.print(f"\n[dim]Total: {len(events)} event(s)[/dim]")


async def _events_list(
    config_path: Path | None,
    *,
    group: str,
    owner: str | None,
    recent: bool,
    limit: int | None,
) -> None:
    from beacon.scheduling import EventFilter

    config = load_cli_config(config_path)
    async with open_runtime(config) as runtime:
        if recent:
            events = await runtime.lifecycle.list_recent_completed(group)
            if owner is not None:
                events = [e for e in events if e.owner_id == owner]
            if limit is not None:
                events = events[:limit]
            heading = "Recently completed"
        else:
            events = await runtime.lifecycle.list_active(
                group, EventFilter(owner_id=owner, limit=limit)
            )
            heading = "Active events"

    if not events:
        warning("No events found")
        return
    _print_events(heading, events)


async def _events_show(config_path: Path | None, event_id: str) -> None:
    config = load_cli_config(config_path)
    async with open_runtime(config) as runtime:
        event = await runtime.lifecycle.get(event_id)

    if event is None:
        error(f"No event found with ID {event_id}")
        raise typer.Exit(1)

    console.print(f"[bold]{event.title}[/bold] [dim]({event.id})[/dim]")
    console.print(f"Group: {event.group_id}")
    console.print(f"When: {_format_local(event.target_at, event.display_timezone)}")
    console.print(f"Status: {event.status.value}")
    if event.recipients:
        console.print(f"Recipients: {', '.join(event.recipients)}")

    table = create_table(
        "Stages", [("Stage", ""), ("Fires", ""), ("Status", ""), ("Sent", "dim")]
    )
    for stage in event.stages:
        table.add_row(
            stage.label,
            _format_local(stage.fire_at, event.display_timezone),
            stage.status.value,
            _format_local(stage.sent_at, event.display_timezone)
            if stage.sent_at
            else "-",
        )
    console.print(table)


async def _events_create(
    config_path: Path | None,
    *,
    group: str,
    title: str,
    at: str,
    tz: str | None,
    owner: str | None,
    recipients: list[str],
) -> None:
    config = load_cli_config(config_path)
    timezone = tz or config.timezone
    target_at = _parse_time(at, timezone)

    async with open_runtime(config) as runtime:
        event = await runtime.lifecycle.create(
            group_id=group,
            title=title,
            target_at=target_at,
            owner_id=owner,
            recipients=recipients,
            display_timezone=timezone,
        )

    success(f"Scheduled {event.id}: {event.title}")
    for stage in event.stages:
        console.print(
            f"  {stage.label}: {_format_local(stage.fire_at, event.display_timezone)}"
        )


async def _events_cancel(config_path: Path | None, event_id: str) -> None:
    config = load_cli_config(config_path)
    async with open_runtime(config) as runtime:
        cancelled = await runtime.lifecycle.cancel(event_id)

    if not cancelled:
        error(f"No active event with ID {event_id}")
        raise typer.Exit(1)
    success(f"Cancelled {event_id}")


async def _events_reschedule(
    config_path: Path | None,
    event_id: str,
    *,
    at: str | None,
    title: str | None,
) -> None:
    config = load_cli_config(config_path)
    async with open_runtime(config) as runtime:
        target_at = None
        if at is not None:
            existing = await runtime.lifecycle.get(event_id)
            timezone = existing.display_timezone if existing else config.timezone
            target_at = _parse_time(at, timezone)
        event = await runtime.lifecycle.reschedule(
            event_id, target_at=target_at, title=title
        )

    if event is None:
        error(f"No active event with ID {event_id}")
        raise typer.Exit(1)
    success(
        f"Rescheduled {event.id} to "
        f"{_format_local(event.target_at, event.display_timezone)}"
    )
