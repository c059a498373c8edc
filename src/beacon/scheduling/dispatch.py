"""Dispatch path shared by the timer engine and the reconciliation sweep.

claim -> render -> deliver -> commit, or rollback on failure. The claim is
a compare-and-set in the store, so when a timer and a sweep tick notice the
same due stage only one of them delivers it. The claim also checks the
stored fire time, so a timer left over from before a reschedule cannot
deliver a stage early.
"""

import asyncio
import logging
from datetime import timedelta
from enum import StrEnum

from beacon.notifications.base import NotificationDispatcher
from beacon.scheduling.render import highlight_ids, render_stage_message
from beacon.scheduling.store import StageStore
from beacon.scheduling.types import Clock, utc_now

logger = logging.getLogger(__name__)


class DispatchOutcome(StrEnum):
    """Result of one dispatch attempt."""

    SENT = "sent"
    # Claim lost: in flight elsewhere, already resolved, not due yet, or
    # event no longer active
    SKIPPED = "skipped"
    # Delivery failed; the stage was rolled back to pending
    FAILED = "failed"
    # Advance stage whose event already started; resolved without sending
    EXPIRED = "expired"


class StageDispatchPath:
    """Delivers a single stage exactly once across competing callers."""

    def __init__(
        self,
        store: StageStore,
        dispatcher: NotificationDispatcher,
        *,
        claim_slack: float = 5.0,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        # Stages due within this many seconds may be claimed early
        self._claim_slack = timedelta(seconds=claim_slack)
        self._clock = clock

    async def dispatch(self, event_id: str, label: str) -> DispatchOutcome:
        due_by = self._clock() + self._claim_slack
        if not await self._store.claim_stage(event_id, label, due_by=due_by):
            logger.debug(
                "stage_claim_lost",
                extra={"event.id": event_id, "stage.label": label},
            )
            return DispatchOutcome.SKIPPED

        try:
            outcome = await self._deliver(event_id, label)
        except asyncio.CancelledError:
            await self._store.rollback_stage(event_id, label)
            raise
        except Exception as e:
            logger.warning(
                "stage_delivery_error",
                exc_info=True,
                extra={
                    "event.id": event_id,
                    "stage.label": label,
                    "error.message": str(e),
                },
            )
            outcome = DispatchOutcome.FAILED

        if outcome == DispatchOutcome.FAILED:
            await self._store.rollback_stage(event_id, label)
            return outcome
        if outcome == DispatchOutcome.EXPIRED:
            await self._store.expire_stage(event_id, label)
            return outcome

        if not await self._store.commit_stage(event_id, label):
            # Reset underneath us by a reschedule; the new fire time applies.
            logger.info(
                "stage_commit_superseded",
                extra={"event.id": event_id, "stage.label": label},
            )
        return DispatchOutcome.SENT

    async def _deliver(self, event_id: str, label: str) -> DispatchOutcome:
        event = await self._store.get_event(event_id)
        stage = event.get_stage(label) if event else None
        if event is None or stage is None:
            logger.warning(
                "stage_not_found",
                extra={"event.id": event_id, "stage.label": label},
            )
            return DispatchOutcome.FAILED

        if not stage.is_final and event.target_at <= self._clock():
            logger.info(
                "stage_expired",
                extra={
                    "event.id": event_id,
                    "stage.label": label,
                    "event.target_at": event.target_at.isoformat(),
                },
            )
            return DispatchOutcome.EXPIRED

        text = render_stage_message(event, stage)
        result = await self._dispatcher.send(
            event.group_id, text, highlight_ids(event)
        )
        if not result.success:
            logger.warning(
                "stage_delivery_failed",
                extra={
                    "event.id": event_id,
                    "stage.label": label,
                    "messaging.channel_id": event.group_id,
                    "error.message": result.error,
                },
            )
            return DispatchOutcome.FAILED

        lateness = (self._clock() - stage.fire_at).total_seconds()
        logger.info(
            "stage_delivered",
            extra={
                "event.id": event_id,
                "stage.label": label,
                "messaging.channel_id": event.group_id,
                "messaging.message_id": result.message_id,
                "stage.lateness_seconds": round(max(lateness, 0.0), 1),
            },
        )
        return DispatchOutcome.SENT
