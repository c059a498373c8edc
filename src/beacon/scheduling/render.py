"""Message rendering for stage notifications and digests.

All scheduling happens in UTC; the display timezone is only applied here.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from beacon.scheduling.offsets import format_offset
from beacon.scheduling.types import ScheduledEvent, Stage, dedupe_ids

# Channel-specific suffixes stripped from identifiers for display
DISPLAY_ID_SUFFIXES = ("@lid", "@s.whatsapp.net", "@c.us")


def clean_display_id(identifier: str) -> str:
    """Strip channel addressing suffixes, e.g. ``"965123@lid" -> "965123"``."""
    for suffix in DISPLAY_ID_SUFFIXES:
        if identifier.endswith(suffix):
            return identifier[: -len(suffix)]
    return identifier


def highlight_ids(event: ScheduledEvent) -> list[str]:
    """Recipients to highlight, with the owner appended if missing."""
    ids = list(event.recipients)
    if event.owner_id:
        ids.append(event.owner_id)
    return dedupe_ids(ids)


def _format_time(local: datetime) -> str:
    return local.strftime("%I:%M %p").lstrip("0")


def to_local(instant: datetime, timezone: str) -> datetime:
    return instant.astimezone(ZoneInfo(timezone))


def stage_heading(stage: Stage) -> str:
    if stage.is_final:
        return "🔔 *REMINDER NOW!*"
    return f"⏰ *Reminder in {format_offset(stage.offset)}!*"


def render_mentions(ids: Sequence[str]) -> str:
    return "\n".join(f"> @{clean_display_id(i)}" for i in ids)


def render_stage_message(event: ScheduledEvent, stage: Stage) -> str:
    """Render the notification body for one stage of an event."""
    local = to_local(event.target_at, event.display_timezone)
    lines = [
        stage_heading(stage),
        "",
        "*Event Schedule*",
        "",
        f"Date: {local.day} {local:%B %Y}",
        f"Day: {local:%A}",
        f"Time: {_format_time(local)}",
        f"Event: {event.title}",
    ]
    text = "\n".join(lines)

    mentions = highlight_ids(event)
    if mentions:
        text += "\n\n" + render_mentions(mentions)
    return text


def _greeting(local_now: datetime) -> str:
    if local_now.hour < 12:
        return "📅 *Good morning!*"
    if local_now.hour < 18:
        return "📅 *Good afternoon!*"
    return "📅 *Good evening!*"


def digest_footer(offsets: Sequence[timedelta]) -> str | None:
    """Footer naming the closest advance warning, if any is configured."""
    advance = [o for o in offsets if o > timedelta(0)]
    if not advance:
        return None
    return (
        f"_You'll receive a notification {format_offset(min(advance))} "
        "before each reminder._"
    )


def render_daily_digest(
    events: Sequence[ScheduledEvent],
    now: datetime,
    timezone: str,
    *,
    offsets: Sequence[timedelta] = (),
) -> str:
    """Render the list of today's upcoming events for one channel.

    ``offsets`` are the configured stage offsets; the smallest non-zero one
    is announced in the footer.
    """
    local_now = to_local(now, timezone)
    lines = [
        _greeting(local_now),
        "",
        f"Here are your reminders for *{local_now:%A, %B} {local_now.day}, {local_now:%Y}*:",
        "",
    ]
    for event in events:
        local = to_local(event.target_at, event.display_timezone)
        lines.append(f"- *{event.title}*")
        lines.append(f"    {_format_time(local)}")
        lines.append("")
    if footer := digest_footer(offsets):
        lines.append(footer)
    return "\n".join(lines).rstrip()
