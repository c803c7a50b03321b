from .service import CheckoutLinkService
from .sweep import create_scheduler, shutdown_scheduler, start_scheduler, sweep_expired_checkout_links

__all__ = [
    'CheckoutLinkService',
    'create_scheduler',
    'shutdown_scheduler',
    'start_scheduler',
    'sweep_expired_checkout_links',
]
