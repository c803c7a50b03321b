"""
Webhook Dedup Store

Tracks delivered webhook events and their processing status so each
event id is applied at most once, even with several workers receiving
redeliveries of the same event.

Status flow:
    (new) -> processing -> completed
                       \\-> failed -> processing (retry)
    processing older than the lock window is treated as abandoned.
"""

import logging

from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from menubill.src.billing.domain.webhook_event import InboundEvent, WebhookEventStatus
from menubill.src.billing.model.webhook_event import WebhookEventRecord
from menubill.utils.timezone import timezone

logger = logging.getLogger(__name__)


class CRUDWebhookEvent(CRUDPlus[WebhookEventRecord]):
    """CRUD operations for WebhookEventRecord."""

    async def get(self, db: AsyncSession, event_id: str) -> Optional[WebhookEventRecord]:
        result = await db.execute(select(WebhookEventRecord).where(WebhookEventRecord.event_id == event_id))
        return result.scalar_one_or_none()

    async def claim(
        self,
        db: AsyncSession,
        event: InboundEvent,
        lock_window_seconds: int = 300,
    ) -> Tuple[bool, WebhookEventStatus | None, str]:
        """
        Check if an event can be processed and mark it as in-progress.

        Args:
            db: Database session
            event: Verified inbound event
            lock_window_seconds: Age after which a processing claim is abandoned

        Returns:
            Tuple of (can_process, blocking status or None, reason)
        """
        now = timezone.now()
        existing = await self.get(db, event.event_id)

        if existing is None:
            db.add(
                WebhookEventRecord(
                    event_id=event.event_id,
                    source=event.source.value,
                    event_type=event.event_type,
                    subject_id=event.subject_id,
                    event_timestamp=event.occurred_at,
                    received_at=now,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                # Another worker inserted the same event id first
                await db.rollback()
                logger.info(f"[WEBHOOK LOCK] Event {event.event_id} claimed concurrently")
                return False, WebhookEventStatus.PROCESSING, "Event currently being processed"
            return True, None, "Processing"

        status = WebhookEventStatus(existing.status)
        if status == WebhookEventStatus.COMPLETED:
            return False, status, "Event already processed"
        if status == WebhookEventStatus.PROCESSING:
            age = (now - existing.received_at).total_seconds()
            if age < lock_window_seconds:
                return False, status, "Event currently being processed"
            logger.warning(f"[WEBHOOK LOCK] Event {event.event_id} stuck in processing, allowing retry")
        else:
            logger.info(f"[WEBHOOK LOCK] Retrying failed event {event.event_id}")

        # Re-claim only if nobody else moved the row since we read it
        result = await db.execute(
            update(WebhookEventRecord)
            .where(
                WebhookEventRecord.event_id == event.event_id,
                WebhookEventRecord.status == existing.status,
                WebhookEventRecord.received_at == existing.received_at,
            )
            .values(status=WebhookEventStatus.PROCESSING.value, received_at=now, error_message=None)
        )
        await db.commit()
        if result.rowcount != 1:
            return False, WebhookEventStatus.PROCESSING, "Event currently being processed"
        return True, None, "Processing"

    async def mark_completed(self, db: AsyncSession, event_id: str) -> None:
        await db.execute(
            update(WebhookEventRecord)
            .where(WebhookEventRecord.event_id == event_id)
            .values(status=WebhookEventStatus.COMPLETED.value, processed_at=timezone.now(), error_message=None)
        )
        await db.commit()
        logger.debug(f"[WEBHOOK LOCK] Marked event {event_id} as completed")

    async def mark_failed(self, db: AsyncSession, event_id: str, error_message: str) -> None:
        """Leave the event unprocessed so a redelivery retries it."""
        await db.execute(
            update(WebhookEventRecord)
            .where(WebhookEventRecord.event_id == event_id)
            .values(
                status=WebhookEventStatus.FAILED.value,
                error_message=error_message[:1000],  # Truncate long errors
                processed_at=None,
            )
        )
        await db.commit()
        logger.warning(f"[WEBHOOK LOCK] Marked event {event_id} as failed: {error_message[:100]}")

    async def latest_completed_timestamp(
        self,
        db: AsyncSession,
        source: str,
        subject_id: str,
        exclude_event_id: str,
    ) -> Optional[datetime]:
        """Newest sender timestamp already applied for one subject (e.g. one deal)."""
        result = await db.execute(
            select(func.max(WebhookEventRecord.event_timestamp)).where(
                WebhookEventRecord.source == source,
                WebhookEventRecord.subject_id == subject_id,
                WebhookEventRecord.status == WebhookEventStatus.COMPLETED.value,
                WebhookEventRecord.event_id != exclude_event_id,
            )
        )
        value = result.scalar_one_or_none()
        return timezone.from_datetime(value) if value is not None else None


webhook_event_dao: CRUDWebhookEvent = CRUDWebhookEvent(WebhookEventRecord)
