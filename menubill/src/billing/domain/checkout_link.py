"""
Checkout Link Domain Entity

A time-boxed, single-use invitation to complete checkout for one plan.
Links are never deleted; only their status moves, and only forward:

    active -> used
    active -> expired
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from menubill.utils.timezone import timezone


class CheckoutLinkStatus(Enum):
    """Possible checkout link statuses."""
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not CheckoutLinkStatus.ACTIVE


@dataclass
class CheckoutLink:
    """
    An issued checkout link.

    Attributes:
        id: Link id, also the path segment of the public visit URL
        user_id: Profile the link was issued for
        restaurant_id: Restaurant being subscribed
        plan_id: Plan being purchased
        provider_customer_id: Stripe customer the session belongs to
        original_checkout_url: Stripe-hosted checkout page
        created_at: Issuance time
        expires_at: End of the usable window
        trial_days: Trial length granted at issuance
        trial_enabled: Whether the session carries a trial
        status: Current status
        updated_at: Last status change
        reused: True when issue() returned an already active link
    """
    id: str
    user_id: str
    restaurant_id: str
    plan_id: str
    provider_customer_id: str
    original_checkout_url: str
    created_at: datetime
    expires_at: datetime
    trial_days: int
    trial_enabled: bool
    status: CheckoutLinkStatus
    updated_at: Optional[datetime] = None
    reused: bool = field(default=False, compare=False)

    def is_active(self) -> bool:
        return self.status == CheckoutLinkStatus.ACTIVE

    def is_past_expiry(self, now: Optional[datetime] = None) -> bool:
        """Check whether the usable window has closed, regardless of stored status."""
        return (now or timezone.now()) > self.expires_at

    @classmethod
    def from_row(cls, row, reused: bool = False) -> 'CheckoutLink':
        return cls(
            id=row.id,
            user_id=row.user_id,
            restaurant_id=row.restaurant_id,
            plan_id=row.plan_id,
            provider_customer_id=row.provider_customer_id,
            original_checkout_url=row.original_checkout_url,
            created_at=row.created_at,
            expires_at=row.expires_at,
            trial_days=row.trial_days,
            trial_enabled=row.trial_enabled,
            status=CheckoutLinkStatus(row.status),
            updated_at=row.updated_at,
            reused=reused,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'userId': self.user_id,
            'restaurantId': self.restaurant_id,
            'planId': self.plan_id,
            'providerCustomerId': self.provider_customer_id,
            'checkoutUrl': self.original_checkout_url,
            'createdAt': self.created_at.isoformat(),
            'expiresAt': self.expires_at.isoformat(),
            'trialDays': self.trial_days,
            'trialEnabled': self.trial_enabled,
            'status': self.status.value,
        }
