"""
Plan Domain Entity

Immutable catalog entry. The billing core only ever reads plans.
"""

from dataclasses import dataclass
from enum import Enum


class PlanTier(Enum):
    """Fixed set of plan tiers offered to restaurants."""
    BASIC = "basic"
    PLUS = "plus"
    PREMIUM = "premium"


@dataclass(frozen=True)
class Plan:
    """
    A purchasable plan.

    Attributes:
        id: Internal plan id
        name: Display name
        tier: Plan tier
        price: Recurring price in the smallest currency unit (cents)
        currency: ISO currency code, lower case
        provider_price_id: Stripe price id used for checkout sessions
        trial_days: Default trial granted with this plan
        is_active: Whether the plan can still be sold
    """
    id: str
    name: str
    tier: PlanTier
    price: int
    currency: str
    provider_price_id: str
    trial_days: int
    is_active: bool = True

    @classmethod
    def from_row(cls, row) -> 'Plan':
        return cls(
            id=row.id,
            name=row.name,
            tier=PlanTier(row.tier),
            price=row.price,
            currency=row.currency,
            provider_price_id=row.provider_price_id,
            trial_days=row.trial_days,
            is_active=row.is_active,
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'tier': self.tier.value,
            'price': self.price,
            'currency': self.currency,
            'trialDays': self.trial_days,
            'isActive': self.is_active,
        }
