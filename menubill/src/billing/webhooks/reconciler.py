"""
Webhook Reconciler

Applies each inbound webhook event at most once.

    claim event id -> skip echoes / irrelevant / stale -> dispatch -> mark completed
                                                   \\-> handler error -> mark failed, re-raise

A completed event id is never re-applied; its replay reports ``duplicate``.
A failed event is retried when the sender redelivers it.
"""

import logging
from typing import Awaitable, Dict, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menubill.src.billing.crud.crud_webhook_event import CRUDWebhookEvent, webhook_event_dao
from menubill.src.billing.domain.webhook_event import (
    InboundEvent,
    ReconcileOutcome,
    ReconcileResult,
    WebhookEventStatus,
    WebhookSource,
)
from menubill.src.billing.notifications import formatters
from menubill.src.billing.notifications.fanout import NotificationFanout
from menubill.src.billing.shared.config import CRM_SELF_CHANGE_SOURCE, BillingPolicy

logger = logging.getLogger(__name__)


class EventHandler(Protocol):
    def handles(self, event_type: str) -> bool: ...

    def handle(self, event: InboundEvent) -> Awaitable[str]: ...


class WebhookReconciler:
    """
    Dedup, dispatch and bookkeeping for inbound webhooks.

    Args:
        session_factory: Async session factory for the billing database
        handlers: One handler per webhook source
        notifier: Failure notifications
        policy: Lock window and stale-event policy
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        handlers: Dict[WebhookSource, EventHandler],
        notifier: NotificationFanout,
        policy: BillingPolicy,
        events: CRUDWebhookEvent = webhook_event_dao,
    ):
        self._sessions = session_factory
        self._handlers = handlers
        self._notifier = notifier
        self._policy = policy
        self._events = events

    async def handle(self, event: InboundEvent) -> ReconcileResult:
        """
        Process one verified event.

        Returns:
            The outcome; ``duplicate`` and ``in_progress`` mean nothing was done

        Raises:
            Exception: whatever the handler raised, after the event is marked failed
        """
        async with self._sessions() as db:
            can_process, blocking, reason = await self._events.claim(
                db, event, lock_window_seconds=self._policy.webhook_lock_window_seconds
            )

        if not can_process:
            outcome = (
                ReconcileOutcome.DUPLICATE if blocking == WebhookEventStatus.COMPLETED
                else ReconcileOutcome.IN_PROGRESS
            )
            logger.info(f"[WEBHOOK] Skipping {event.source.value} event {event.event_id}: {reason}")
            return ReconcileResult(event.event_id, outcome, reason)

        try:
            skipped = await self._skip_reason(event)
            if skipped is not None:
                outcome, detail = skipped
            else:
                logger.info(f"[WEBHOOK] Processing {event.source.value} {event.event_type} (ID: {event.event_id})")
                detail = await self._handlers[event.source].handle(event)
                outcome = ReconcileOutcome.PROCESSED
        except Exception as e:
            error_message = f"{type(e).__name__}: {str(e)[:500]}"
            logger.error(f"[WEBHOOK] Event {event.event_id} failed: {error_message}", exc_info=True)
            async with self._sessions() as db:
                await self._events.mark_failed(db, event.event_id, error_message)
            await self._notifier.notify(formatters.webhook_failed(event, error_message))
            raise

        async with self._sessions() as db:
            await self._events.mark_completed(db, event.event_id)
        if outcome != ReconcileOutcome.PROCESSED:
            logger.info(f"[WEBHOOK] {outcome.value} {event.source.value} event {event.event_id}: {detail}")
        return ReconcileResult(event.event_id, outcome, detail)

    async def _skip_reason(self, event: InboundEvent) -> Optional[tuple]:
        if event.source == WebhookSource.CRM and event.change_source == CRM_SELF_CHANGE_SOURCE:
            return ReconcileOutcome.IGNORED, "Triggered by our own API update"

        handler = self._handlers.get(event.source)
        if handler is None or not handler.handles(event.event_type):
            return ReconcileOutcome.IGNORED, f"Event type {event.event_type} not handled"

        if (
            self._policy.skip_stale_crm_events
            and event.source == WebhookSource.CRM
            and event.subject_id
            and event.occurred_at
        ):
            async with self._sessions() as db:
                newest = await self._events.latest_completed_timestamp(
                    db, event.source.value, event.subject_id, exclude_event_id=event.event_id
                )
            if newest is not None and event.occurred_at < newest:
                return ReconcileOutcome.STALE, f"Older than applied event at {newest.isoformat()}"

        return None
