"""
Stripe Integration

Payment provider gateway, its interface and idempotency helpers.
"""

from .client import DisabledGateway, StripeGateway, subscription_from_stripe
from .idempotency import StripeIdempotencyManager
from .interfaces import CheckoutSession, CouponValidation, PaymentProviderGateway, ProviderSubscription

__all__ = [
    'CheckoutSession',
    'CouponValidation',
    'DisabledGateway',
    'PaymentProviderGateway',
    'ProviderSubscription',
    'StripeGateway',
    'StripeIdempotencyManager',
    'subscription_from_stripe',
]
