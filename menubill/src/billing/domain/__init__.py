"""
Billing Domain Entities

Plain dataclasses returned by the billing services. ORM rows never leave
the crud layer; services convert them with ``from_row``.
"""

from .checkout_link import CheckoutLink, CheckoutLinkStatus
from .plan import Plan, PlanTier
from .subscription import Subscription, SubscriptionStatus
from .webhook_event import (
    InboundEvent,
    ReconcileOutcome,
    ReconcileResult,
    WebhookEventStatus,
    WebhookSource,
)

__all__ = [
    'CheckoutLink',
    'CheckoutLinkStatus',
    'Plan',
    'PlanTier',
    'Subscription',
    'SubscriptionStatus',
    'InboundEvent',
    'ReconcileOutcome',
    'ReconcileResult',
    'WebhookEventStatus',
    'WebhookSource',
]
