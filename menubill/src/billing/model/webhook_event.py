"""Webhook dedup table.

One row per delivered event id. A ``completed`` row is never re-applied.
"""

from datetime import datetime

import sqlalchemy as sa

from sqlalchemy.orm import Mapped, mapped_column

from menubill.common.model import DataClassBase, TimeZone
from menubill.utils.timezone import timezone


class WebhookEventRecord(DataClassBase):
    """Processed webhook event"""

    __tablename__ = 'processed_webhook_events'

    event_id: Mapped[str] = mapped_column(sa.String(128), primary_key=True)
    source: Mapped[str] = mapped_column(sa.String(16), comment='crm / stripe')
    event_type: Mapped[str] = mapped_column(sa.String(64))
    status: Mapped[str] = mapped_column(sa.String(16), default='processing', comment='processing / completed / failed')
    subject_id: Mapped[str | None] = mapped_column(sa.String(64), default=None, index=True)
    event_timestamp: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    error_message: Mapped[str | None] = mapped_column(sa.Text, default=None)
    received_at: Mapped[datetime] = mapped_column(TimeZone, default_factory=timezone.now)
    processed_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)

    __table_args__ = (
        sa.Index('ix_processed_webhook_events_subject', 'source', 'subject_id', 'status'),
        {'comment': 'Webhook dedup store'},
    )
