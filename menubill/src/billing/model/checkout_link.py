"""Checkout link table.

Rows are never deleted. The partial unique index keeps at most one
``active`` link per (user, plan); the store turns a violation into
``DuplicateActiveLinkError`` so the caller can return the winning row.
"""

from datetime import datetime

import sqlalchemy as sa

from sqlalchemy.orm import Mapped, mapped_column

from menubill.common.model import Base, TimeZone, id_key

ACTIVE_LINK_INDEX = 'uq_checkout_links_active_pair'


class CheckoutLinkRecord(Base):
    """Issued checkout link"""

    __tablename__ = 'checkout_links'

    id: Mapped[id_key] = mapped_column(init=False)
    user_id: Mapped[str] = mapped_column(sa.String(64), sa.ForeignKey('profiles.id'), index=True)
    restaurant_id: Mapped[str] = mapped_column(sa.String(64), index=True)
    plan_id: Mapped[str] = mapped_column(sa.String(64), sa.ForeignKey('plans.id'))
    provider_customer_id: Mapped[str] = mapped_column(sa.String(64))
    original_checkout_url: Mapped[str] = mapped_column(sa.Text)
    expires_at: Mapped[datetime] = mapped_column(TimeZone, index=True)
    trial_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    trial_enabled: Mapped[bool] = mapped_column(default=False)
    status: Mapped[str] = mapped_column(sa.String(16), default='active', index=True, comment='active / used / expired')
    provider_session_id: Mapped[str | None] = mapped_column(sa.String(128), default=None)

    __table_args__ = (
        sa.Index(
            ACTIVE_LINK_INDEX,
            'user_id',
            'plan_id',
            unique=True,
            sqlite_where=sa.text("status = 'active'"),
            postgresql_where=sa.text("status = 'active'"),
        ),
        sa.CheckConstraint("status IN ('active', 'used', 'expired')", name='ck_checkout_links_status'),
        {'comment': 'Checkout links'},
    )
