"""
Endpoint Dependencies

Hand out the billing services wired at startup.
"""

from fastapi import Request

from menubill.src.billing.checkout_links.service import CheckoutLinkService
from menubill.src.billing.container import BillingContainer
from menubill.src.billing.subscriptions.lifecycle import SubscriptionLifecycleService


def get_billing(request: Request) -> BillingContainer:
    """
    Services built in the application lifespan.

    This is a dependency that can be overridden in tests.
    """
    return request.app.state.billing


def get_checkout_links(request: Request) -> CheckoutLinkService:
    return get_billing(request).links


def get_lifecycle(request: Request) -> SubscriptionLifecycleService:
    return get_billing(request).lifecycle
