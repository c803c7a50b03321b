"""Tests for webhook dedup and dispatch.

Tests cover:
- Replays of completed events
- Failed events and retries on redelivery
- In-flight and abandoned claims
- Ignored, echoed and stale events
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import update

from menubill.src.billing.crud.crud_webhook_event import webhook_event_dao
from menubill.src.billing.domain.webhook_event import (
    InboundEvent,
    ReconcileOutcome,
    WebhookEventStatus,
    WebhookSource,
)
from menubill.src.billing.model import WebhookEventRecord
from menubill.src.billing.shared.config import BillingPolicy
from menubill.src.billing.webhooks.reconciler import WebhookReconciler
from menubill.utils.timezone import timezone


def make_handler(result: str = "done"):
    handler = MagicMock()
    handler.handles.return_value = True
    handler.handle = AsyncMock(return_value=result)
    return handler


def crm_event(event_id: str = "evt-1", **overrides) -> InboundEvent:
    values = dict(
        event_id=event_id,
        source=WebhookSource.CRM,
        event_type="deal.updated",
        payload={"data": {"id": 42}},
        subject_id="42",
    )
    values.update(overrides)
    return InboundEvent(**values)


@pytest.fixture
def crm_handler():
    return make_handler("Checkout link written")


@pytest.fixture
def reconciler(session_factory, crm_handler, notifier, policy):
    return WebhookReconciler(session_factory, {WebhookSource.CRM: crm_handler}, notifier, policy)


async def stored_status(session_factory, event_id: str) -> WebhookEventStatus:
    async with session_factory() as db:
        record = await webhook_event_dao.get(db, event_id)
    return WebhookEventStatus(record.status)


class TestDedup:
    """Tests for at-most-once processing."""

    @pytest.mark.asyncio
    async def test_event_processed_once(self, reconciler, crm_handler, session_factory):
        """Test a replayed event is reported as duplicate and not re-applied."""
        first = await reconciler.handle(crm_event())
        replay = await reconciler.handle(crm_event())

        assert first.outcome == ReconcileOutcome.PROCESSED
        assert first.detail == "Checkout link written"
        assert replay.outcome == ReconcileOutcome.DUPLICATE
        crm_handler.handle.assert_awaited_once()
        assert await stored_status(session_factory, "evt-1") == WebhookEventStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_event_retried_on_redelivery(self, reconciler, crm_handler, sink, session_factory):
        """Test a handler failure marks the event failed and a redelivery processes it."""
        crm_handler.handle.side_effect = RuntimeError("CRM timeout")

        with pytest.raises(RuntimeError):
            await reconciler.handle(crm_event())

        async with session_factory() as db:
            record = await webhook_event_dao.get(db, "evt-1")
        assert record.status == WebhookEventStatus.FAILED.value
        assert record.error_message.startswith("RuntimeError: CRM timeout")
        sink.send.assert_awaited_once()

        crm_handler.handle.side_effect = None
        retry = await reconciler.handle(crm_event())

        assert retry.outcome == ReconcileOutcome.PROCESSED
        assert crm_handler.handle.await_count == 2
        assert await stored_status(session_factory, "evt-1") == WebhookEventStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_in_flight_event_not_processed_twice(self, reconciler, crm_handler, session_factory):
        async with session_factory() as db:
            can_process, _, _ = await webhook_event_dao.claim(db, crm_event())
        assert can_process is True

        result = await reconciler.handle(crm_event())

        assert result.outcome == ReconcileOutcome.IN_PROGRESS
        crm_handler.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_abandoned_claim_is_retried(self, reconciler, crm_handler, session_factory):
        """Test a processing claim older than the lock window no longer blocks redelivery."""
        async with session_factory() as db:
            await webhook_event_dao.claim(db, crm_event())
            await db.execute(
                update(WebhookEventRecord)
                .where(WebhookEventRecord.event_id == "evt-1")
                .values(received_at=timezone.now() - timedelta(minutes=10))
            )
            await db.commit()

        result = await reconciler.handle(crm_event())

        assert result.outcome == ReconcileOutcome.PROCESSED
        crm_handler.handle.assert_awaited_once()


class TestSkips:
    """Tests for events that are acknowledged without being applied."""

    @pytest.mark.asyncio
    async def test_unhandled_type_ignored(self, reconciler, crm_handler):
        crm_handler.handles.return_value = False

        result = await reconciler.handle(crm_event(event_type="person.updated"))

        assert result.outcome == ReconcileOutcome.IGNORED
        crm_handler.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignored_event_still_deduplicated(self, reconciler, crm_handler):
        crm_handler.handles.return_value = False

        await reconciler.handle(crm_event(event_type="person.updated"))
        replay = await reconciler.handle(crm_event(event_type="person.updated"))

        assert replay.outcome == ReconcileOutcome.DUPLICATE

    @pytest.mark.asyncio
    async def test_own_api_write_ignored(self, reconciler, crm_handler):
        """Test CRM events caused by our own field writes are dropped."""
        result = await reconciler.handle(crm_event(change_source="api"))

        assert result.outcome == ReconcileOutcome.IGNORED
        crm_handler.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_source_without_handler_ignored(self, reconciler):
        event = InboundEvent(
            event_id="evt_stripe_1",
            source=WebhookSource.STRIPE,
            event_type="invoice.paid",
        )

        result = await reconciler.handle(event)

        assert result.outcome == ReconcileOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_stale_event_skipped_when_enabled(self, session_factory, crm_handler, notifier, clock):
        """Test an event older than the newest applied one for the same deal is skipped."""
        reconciler = WebhookReconciler(
            session_factory,
            {WebhookSource.CRM: crm_handler},
            notifier,
            BillingPolicy(skip_stale_crm_events=True),
        )
        await reconciler.handle(crm_event("evt-new", occurred_at=clock.now))

        result = await reconciler.handle(crm_event("evt-old", occurred_at=clock.now - timedelta(minutes=5)))

        assert result.outcome == ReconcileOutcome.STALE
        crm_handler.handle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_out_of_order_events_applied_by_default(self, reconciler, crm_handler, clock):
        await reconciler.handle(crm_event("evt-new", occurred_at=clock.now))

        result = await reconciler.handle(crm_event("evt-old", occurred_at=clock.now - timedelta(minutes=5)))

        assert result.outcome == ReconcileOutcome.PROCESSED
        assert crm_handler.handle.await_count == 2
