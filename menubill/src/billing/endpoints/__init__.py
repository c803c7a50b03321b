"""
Billing Endpoints Module

API routes for billing operations.

Routers:
- checkout_links: Issue, look up and visit checkout links
- subscriptions: Cancel / undo-cancel / trial extension, card and coupon checks
- webhooks: CRM and Stripe webhook ingress
- health: Liveness

Usage:
    from menubill.src.billing.endpoints import billing_router

    app.include_router(billing_router, prefix=settings.FASTAPI_API_V1_PATH)
"""

from fastapi import APIRouter

from .checkout_links import router as checkout_links_router
from .dependencies import get_billing, get_checkout_links, get_lifecycle
from .health import router as health_router
from .subscriptions import router as subscriptions_router
from .webhooks import router as webhooks_router

# Create main billing router
billing_router = APIRouter()

# Include all sub-routers
billing_router.include_router(checkout_links_router)
billing_router.include_router(subscriptions_router)
billing_router.include_router(webhooks_router)
billing_router.include_router(health_router)

__all__ = [
    'billing_router',
    'checkout_links_router',
    'subscriptions_router',
    'webhooks_router',
    'health_router',
    'get_billing',
    'get_checkout_links',
    'get_lifecycle',
]
