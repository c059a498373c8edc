"""Tests for notification message rendering."""

from datetime import UTC, datetime, timedelta

from beacon.scheduling.render import (
    clean_display_id,
    digest_footer,
    highlight_ids,
    render_daily_digest,
    render_stage_message,
    stage_heading,
)
from beacon.scheduling.types import ScheduledEvent, Stage


def _event(**kwargs) -> ScheduledEvent:
    target = datetime(2026, 3, 5, 15, 30, tzinfo=UTC)  # 18:30 in Kuwait
    defaults = {
        "id": "abc123",
        "group_id": "team@g.us",
        "title": "Board meeting",
        "target_at": target,
        "display_timezone": "Asia/Kuwait",
        "stages": [
            Stage("24h", timedelta(hours=24), target - timedelta(hours=24)),
            Stage("1h", timedelta(hours=1), target - timedelta(hours=1)),
            Stage("now", timedelta(0), target),
        ],
    }
    defaults.update(kwargs)
    return ScheduledEvent(**defaults)


class TestDisplayIds:
    """Tests for identifier cleanup and highlight lists."""

    def test_clean_display_id(self):
        assert clean_display_id("96551234@lid") == "96551234"
        assert clean_display_id("96551234@s.whatsapp.net") == "96551234"
        assert clean_display_id("plain") == "plain"

    def test_owner_appended_to_highlights(self):
        event = _event(recipients=["a", "b"], owner_id="owner")
        assert highlight_ids(event) == ["a", "b", "owner"]

    def test_owner_not_duplicated(self):
        event = _event(recipients=["owner", "b"], owner_id="owner")
        assert highlight_ids(event) == ["owner", "b"]


class TestStageMessage:
    """Tests for render_stage_message."""

    def test_headings(self):
        event = _event()
        assert stage_heading(event.stages[0]) == "⏰ *Reminder in 24 hours!*"
        assert stage_heading(event.stages[1]) == "⏰ *Reminder in 1 hour!*"
        assert stage_heading(event.stages[2]) == "🔔 *REMINDER NOW!*"

    def test_body_uses_display_timezone(self):
        event = _event(recipients=["96550000@lid"], owner_id="96551111@s.whatsapp.net")
        text = render_stage_message(event, event.stages[1])

        assert "Date: 5 March 2026" in text
        assert "Day: Thursday" in text
        assert "Time: 6:30 PM" in text
        assert "Event: Board meeting" in text
        assert "> @96550000" in text
        assert "> @96551111" in text
        assert "@lid" not in text

    def test_no_mentions_section_without_ids(self):
        text = render_stage_message(_event(), _event().stages[2])
        assert "> @" not in text


class TestDailyDigest:
    """Tests for render_daily_digest."""

    def test_lists_events(self):
        now = datetime(2026, 3, 5, 5, 5, tzinfo=UTC)  # 08:05 Kuwait
        events = [_event(), _event(id="def456", title="Dinner")]

        text = render_daily_digest(events, now, "Asia/Kuwait")

        assert text.startswith("📅 *Good morning!*")
        assert "Here are your reminders for *Thursday, March 5, 2026*:" in text
        assert "- *Board meeting*" in text
        assert "- *Dinner*" in text
        assert "6:30 PM" in text

    def test_evening_greeting(self):
        now = datetime(2026, 3, 5, 18, 30, tzinfo=UTC)  # 21:30 Kuwait
        text = render_daily_digest([_event()], now, "Asia/Kuwait")
        assert text.startswith("📅 *Good evening!*")

    def test_footer_names_closest_advance_warning(self):
        now = datetime(2026, 3, 5, 5, 5, tzinfo=UTC)
        text = render_daily_digest(
            [_event()],
            now,
            "Asia/Kuwait",
            offsets=[timedelta(hours=24), timedelta(hours=1), timedelta(0)],
        )
        assert text.endswith(
            "_You'll receive a notification 1 hour before each reminder._"
        )

    def test_no_footer_without_advance_stages(self):
        now = datetime(2026, 3, 5, 5, 5, tzinfo=UTC)
        text = render_daily_digest([_event()], now, "Asia/Kuwait")
        assert "You'll receive" not in text
        assert digest_footer([timedelta(0)]) is None

    def test_footer_uses_configured_offsets(self):
        footer = digest_footer([timedelta(days=2), timedelta(minutes=30), timedelta(0)])
        assert footer == "_You'll receive a notification 30 minutes before each reminder._"
