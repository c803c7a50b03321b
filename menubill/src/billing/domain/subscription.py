"""
Subscription Domain Entity

Local mirror of a provider subscription with trial and cancellation tracking.

State machine as driven by the lifecycle service:

    trialing -> active                       (first charge, observed via webhook)
    active -> pending-cancel -> active       (deferred cancel, then undo)
    active|pending-cancel -> canceled        (immediate cancel / period end)

``canceled`` is terminal.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SubscriptionStatus(Enum):
    """Possible subscription statuses."""
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    UNPAID = "unpaid"
    PAUSED = "paused"

    @classmethod
    def parse(cls, value) -> 'SubscriptionStatus':
        if isinstance(value, SubscriptionStatus):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.INCOMPLETE


@dataclass
class Subscription:
    """
    Represents the billing relationship for one restaurant.

    Attributes:
        id: Internal subscription ID
        profile_id: Owner profile
        plan_id: Subscribed plan
        provider_subscription_id: Stripe subscription id
        status: Provider-defined status
        is_active: Whether this row holds the active slot for (profile, plan)
        trial_end: Current trial end, after extensions
        original_trial_end: Trial end before the first extension
        trial_extended_count: Number of successful extensions
        trial_extended_days: Cumulative extension days
        canceled_at: Set when cancellation is final
        cancel_at: Scheduled future cancellation
    """
    id: str
    profile_id: str
    plan_id: str
    provider_subscription_id: str
    status: SubscriptionStatus
    is_active: bool
    restaurant_id: Optional[str] = None
    provider_customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_activated: bool = False
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    original_trial_end: Optional[datetime] = None
    trial_extended_count: int = 0
    trial_extended_days: int = 0
    canceled_at: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    payment_method_id: Optional[str] = None
    coupon_code: Optional[str] = None
    send_invoices: bool = False
    charge_count: int = 0
    crm_deal_id: Optional[str] = None
    crm_stage_id: Optional[str] = None
    crm_deal_status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_pending_cancel(self) -> bool:
        """A cancellation is scheduled but has not happened yet."""
        return self.cancel_at is not None and self.canceled_at is None

    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED or self.canceled_at is not None

    def is_trialing(self) -> bool:
        return self.status == SubscriptionStatus.TRIALING

    @classmethod
    def from_row(cls, row) -> 'Subscription':
        return cls(
            id=row.id,
            profile_id=row.profile_id,
            plan_id=row.plan_id,
            provider_subscription_id=row.provider_subscription_id,
            status=SubscriptionStatus.parse(row.status),
            is_active=row.is_active,
            restaurant_id=row.restaurant_id,
            provider_customer_id=row.provider_customer_id,
            current_period_start=row.current_period_start,
            current_period_end=row.current_period_end,
            trial_activated=row.trial_activated,
            trial_start=row.trial_start,
            trial_end=row.trial_end,
            original_trial_end=row.original_trial_end,
            trial_extended_count=row.trial_extended_count,
            trial_extended_days=row.trial_extended_days,
            canceled_at=row.canceled_at,
            cancel_at=row.cancel_at,
            cancellation_reason=row.cancellation_reason,
            payment_method_id=row.payment_method_id,
            coupon_code=row.coupon_code,
            send_invoices=row.send_invoices,
            charge_count=row.charge_count,
            crm_deal_id=row.crm_deal_id,
            crm_stage_id=row.crm_stage_id,
            crm_deal_status=row.crm_deal_status,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            'id': self.id,
            'profileId': self.profile_id,
            'restaurantId': self.restaurant_id,
            'planId': self.plan_id,
            'providerSubscriptionId': self.provider_subscription_id,
            'status': self.status.value,
            'isActive': self.is_active,
            'currentPeriodStart': iso(self.current_period_start),
            'currentPeriodEnd': iso(self.current_period_end),
            'trialActivated': self.trial_activated,
            'trialStart': iso(self.trial_start),
            'trialEnd': iso(self.trial_end),
            'originalTrialEnd': iso(self.original_trial_end),
            'trialExtendedCount': self.trial_extended_count,
            'trialExtendedDays': self.trial_extended_days,
            'canceledAt': iso(self.canceled_at),
            'cancelAt': iso(self.cancel_at),
            'cancellationReason': self.cancellation_reason,
            'couponCode': self.coupon_code,
            'sendInvoices': self.send_invoices,
            'chargeCount': self.charge_count,
            # Computed fields
            'pendingCancel': self.is_pending_cancel,
        }
