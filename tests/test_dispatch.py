"""Tests for the claim -> deliver -> commit/rollback dispatch path."""

import asyncio
from datetime import timedelta

import pytest

from beacon.notifications.base import DeliveryResult
from beacon.scheduling.dispatch import DispatchOutcome, StageDispatchPath
from beacon.scheduling.offsets import OffsetPolicy
from beacon.scheduling.types import EventStatus, StageStatus


@pytest.fixture
async def event(store, clock):
    target = clock() + timedelta(hours=25)
    return await store.create_event(
        group_id="team@g.us",
        title="Launch",
        target_at=target,
        display_timezone="Asia/Kuwait",
        stages=OffsetPolicy().plan(target),
        owner_id="965111@s.whatsapp.net",
        recipients=["965222@lid"],
    )


class TestStageDispatchPath:
    """Tests for StageDispatchPath.dispatch."""

    @pytest.mark.asyncio
    async def test_delivers_and_commits(
        self, dispatch_path, dispatcher, store, clock, event
    ):
        clock.advance(hours=1)
        outcome = await dispatch_path.dispatch(event.id, "24h")

        assert outcome == DispatchOutcome.SENT
        assert len(dispatcher.sent) == 1
        sent = dispatcher.sent[0]
        assert sent["channel_id"] == "team@g.us"
        assert "Reminder in 24 hours" in sent["text"]
        assert "Event: Launch" in sent["text"]
        assert sent["highlight_ids"] == ["965222@lid", "965111@s.whatsapp.net"]

        loaded = await store.get_event(event.id)
        assert loaded.get_stage("24h").status == StageStatus.SENT

    @pytest.mark.asyncio
    async def test_second_dispatch_is_skipped(
        self, dispatch_path, dispatcher, clock, event
    ):
        clock.advance(hours=1)
        await dispatch_path.dispatch(event.id, "24h")
        outcome = await dispatch_path.dispatch(event.id, "24h")

        assert outcome == DispatchOutcome.SKIPPED
        assert len(dispatcher.sent) == 1

    @pytest.mark.asyncio
    async def test_racing_dispatches_deliver_once(
        self, dispatch_path, dispatcher, clock, event
    ):
        clock.advance(hours=24)
        outcomes = await asyncio.gather(
            dispatch_path.dispatch(event.id, "1h"),
            dispatch_path.dispatch(event.id, "1h"),
        )

        assert sorted(outcomes) == sorted(
            [DispatchOutcome.SENT, DispatchOutcome.SKIPPED]
        )
        assert len(dispatcher.sent) == 1

    @pytest.mark.asyncio
    async def test_final_stage_completes_event(
        self, dispatch_path, dispatcher, store, clock, event
    ):
        clock.advance(hours=25)
        await dispatch_path.dispatch(event.id, "now")

        loaded = await store.get_event(event.id)
        assert loaded.status == EventStatus.COMPLETED
        assert "REMINDER NOW!" in dispatcher.sent[0]["text"]

    @pytest.mark.asyncio
    async def test_failed_delivery_rolls_back_then_retries(
        self, dispatch_path, dispatcher, store, clock, event
    ):
        clock.advance(hours=1)
        dispatcher.fail_next(DeliveryResult.failed("rate limited"))

        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.FAILED
        loaded = await store.get_event(event.id)
        assert loaded.get_stage("24h").status == StageStatus.PENDING
        assert loaded.status == EventStatus.ACTIVE

        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.SENT
        loaded = await store.get_event(event.id)
        assert loaded.get_stage("24h").status == StageStatus.SENT

    @pytest.mark.asyncio
    async def test_delivery_exception_rolls_back(
        self, dispatch_path, dispatcher, store, clock, event
    ):
        clock.advance(hours=1)
        dispatcher.fail_next(ConnectionError("socket closed"))

        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.FAILED
        loaded = await store.get_event(event.id)
        assert loaded.get_stage("24h").status == StageStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancelled_delivery_rolls_back(self, store, clock, event):
        clock.advance(hours=1)
        started = asyncio.Event()

        class HangingDispatcher:
            async def send(self, channel_id, text, highlight_ids=()):
                started.set()
                await asyncio.sleep(3600)

        path = StageDispatchPath(store, HangingDispatcher(), clock=clock)
        task = asyncio.create_task(path.dispatch(event.id, "24h"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        loaded = await store.get_event(event.id)
        assert loaded.get_stage("24h").status == StageStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancelled_event_is_skipped(
        self, dispatch_path, dispatcher, store, clock, event
    ):
        clock.advance(hours=1)
        await store.set_status(event.id, EventStatus.CANCELLED)

        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.SKIPPED
        assert dispatcher.sent == []


class TestNotYetDue:
    """A dispatch before the stored fire time must not deliver."""

    @pytest.mark.asyncio
    async def test_stage_not_due_is_skipped(
        self, dispatch_path, dispatcher, store, event
    ):
        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.SKIPPED
        assert dispatcher.sent == []

        loaded = await store.get_event(event.id)
        assert loaded.get_stage("24h").status == StageStatus.PENDING

    @pytest.mark.asyncio
    async def test_claim_slack_allows_nearly_due(
        self, dispatch_path, dispatcher, clock, event
    ):
        clock.advance(hours=1, seconds=-3)
        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.SENT

    @pytest.mark.asyncio
    async def test_timer_from_old_schedule_cannot_deliver_early(
        self, dispatch_path, dispatcher, store, clock, event
    ):
        # Another process moves the event a day later; this process still
        # holds a timer for the old 24h fire time.
        await store.reschedule_event(
            event.id, target_at=event.target_at + timedelta(days=1)
        )
        clock.advance(hours=1)

        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.SKIPPED
        assert dispatcher.sent == []
        loaded = await store.get_event(event.id)
        stage = loaded.get_stage("24h")
        assert stage.status == StageStatus.PENDING

        clock.now = stage.fire_at
        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.SENT
        assert len(dispatcher.sent) == 1


class TestExpiredStages:
    """Advance stages of an event that already started are not delivered."""

    @pytest.mark.asyncio
    async def test_advance_stage_after_target_expires(
        self, dispatch_path, dispatcher, store, clock, event
    ):
        clock.advance(hours=26)

        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.EXPIRED
        assert await dispatch_path.dispatch(event.id, "24h") == DispatchOutcome.SKIPPED
        assert dispatcher.sent == []

        loaded = await store.get_event(event.id)
        assert loaded.get_stage("24h").status == StageStatus.EXPIRED
        assert loaded.status == EventStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_final_stage_still_delivered_late(
        self, dispatch_path, dispatcher, store, clock, event
    ):
        clock.advance(hours=26)

        assert await dispatch_path.dispatch(event.id, "now") == DispatchOutcome.SENT
        assert "REMINDER NOW!" in dispatcher.sent[0]["text"]
        loaded = await store.get_event(event.id)
        assert loaded.status == EventStatus.COMPLETED
