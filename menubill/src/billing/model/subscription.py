"""Subscription table, mirrored from Stripe."""

from datetime import datetime

import sqlalchemy as sa

from sqlalchemy.orm import Mapped, mapped_column

from menubill.common.model import Base, TimeZone, id_key

ACTIVE_SUBSCRIPTION_INDEX = 'uq_subscriptions_active_pair'


class SubscriptionRecord(Base):
    """Restaurant subscription"""

    __tablename__ = 'subscriptions'

    id: Mapped[id_key] = mapped_column(init=False)
    profile_id: Mapped[str] = mapped_column(sa.String(64), sa.ForeignKey('profiles.id'), index=True)
    plan_id: Mapped[str] = mapped_column(sa.String(64), sa.ForeignKey('plans.id'))
    provider_subscription_id: Mapped[str] = mapped_column(sa.String(64), unique=True, index=True)
    status: Mapped[str] = mapped_column(sa.String(32), comment='Stripe subscription status')
    restaurant_id: Mapped[str | None] = mapped_column(sa.String(64), default=None, index=True)
    provider_customer_id: Mapped[str | None] = mapped_column(sa.String(64), default=None)
    is_active: Mapped[bool] = mapped_column(default=True)

    current_period_start: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    current_period_end: Mapped[datetime | None] = mapped_column(TimeZone, default=None)

    # Trial
    trial_activated: Mapped[bool] = mapped_column(default=False)
    trial_start: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    trial_end: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    original_trial_end: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    trial_extended_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    trial_extended_days: Mapped[int] = mapped_column(sa.Integer, default=0)

    # Cancellation
    canceled_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    cancel_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    cancellation_reason: Mapped[str | None] = mapped_column(sa.Text, default=None)

    payment_method_id: Mapped[str | None] = mapped_column(sa.String(64), default=None)
    coupon_code: Mapped[str | None] = mapped_column(sa.String(64), default=None)
    send_invoices: Mapped[bool] = mapped_column(default=False)
    charge_count: Mapped[int] = mapped_column(sa.Integer, default=0)

    # CRM deal metadata
    crm_deal_id: Mapped[str | None] = mapped_column(sa.String(64), default=None, index=True)
    crm_stage_id: Mapped[str | None] = mapped_column(sa.String(64), default=None)
    crm_deal_status: Mapped[str | None] = mapped_column(sa.String(32), default=None)

    __table_args__ = (
        sa.Index(
            ACTIVE_SUBSCRIPTION_INDEX,
            'profile_id',
            'plan_id',
            unique=True,
            sqlite_where=sa.text('is_active = 1'),
            postgresql_where=sa.text('is_active'),
        ),
        sa.CheckConstraint('trial_extended_days >= 0', name='ck_subscriptions_trial_extended_days'),
        {'comment': 'Subscriptions'},
    )
