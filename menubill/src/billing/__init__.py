"""
Billing Module

Subscription and checkout-link lifecycle for the restaurant menu product.
Integrates with Stripe for payments and Pipedrive for the sales pipeline.

Submodules:
- shared: Policy, CRM constants, exceptions
- domain: Core entities (Plan, CheckoutLink, Subscription, InboundEvent)
- model / crud: SQLAlchemy tables and data access
- plans: Plan catalog
- external: Payment provider (Stripe) and CRM (Pipedrive) clients
- checkout_links: Link issuance, visits, expiry sweep
- subscriptions: Cancel, undo-cancel, trial extension, card validation
- webhooks: Signature checks, dedup and event handlers
- notifications: Sink fan-out (log, Slack)
- endpoints: API routes

Usage:
    from menubill.src.billing.container import build_container

    billing = build_container(settings, session_factory, http)
    link, reused = await billing.links.issue(user_id, restaurant_id, plan_id)
"""

from .domain import (
    CheckoutLink,
    CheckoutLinkStatus,
    Plan,
    PlanTier,
    Subscription,
    SubscriptionStatus,
)
from .shared import BillingError, BillingPolicy

__all__ = [
    'CheckoutLink',
    'CheckoutLinkStatus',
    'Plan',
    'PlanTier',
    'Subscription',
    'SubscriptionStatus',
    'BillingError',
    'BillingPolicy',
]
