"""
Stripe Event Handler

- checkout.session.completed: mark the issuing link used and record the
  subscription the checkout created
- customer.subscription.updated / deleted: mirror provider state locally
"""

import logging
from typing import Tuple

from menubill.src.billing.checkout_links.service import CheckoutLinkService
from menubill.src.billing.domain.webhook_event import InboundEvent
from menubill.src.billing.external.stripe.client import subscription_from_stripe
from menubill.src.billing.external.stripe.interfaces import PaymentProviderGateway
from menubill.src.billing.shared.exceptions import InvalidStateTransitionError
from menubill.src.billing.subscriptions.lifecycle import SubscriptionLifecycleService

logger = logging.getLogger(__name__)

HANDLED_EVENTS: Tuple[str, ...] = (
    'checkout.session.completed',
    'customer.subscription.updated',
    'customer.subscription.deleted',
)


class ProviderEventHandler:
    """Applies verified Stripe events."""

    def __init__(
        self,
        links: CheckoutLinkService,
        lifecycle: SubscriptionLifecycleService,
        gateway: PaymentProviderGateway,
    ):
        self._links = links
        self._lifecycle = lifecycle
        self._gateway = gateway

    def handles(self, event_type: str) -> bool:
        return event_type in HANDLED_EVENTS

    async def handle(self, event: InboundEvent) -> str:
        obj = (event.payload.get('data') or {}).get('object') or {}
        if event.event_type == 'checkout.session.completed':
            return await self._checkout_completed(obj)

        subscription = await self._lifecycle.apply_provider_update(subscription_from_stripe(obj))
        if subscription is None:
            return f"Subscription {obj.get('id')} not tracked"
        return f"Subscription {subscription.id} is {subscription.status.value}"

    async def _checkout_completed(self, session: dict) -> str:
        session_id = session.get('id')
        link = await self._links.find_by_session(session_id) if session_id else None
        if link is None:
            logger.info(f"[WEBHOOK] No checkout link for session {session_id}, ignoring")
            return "Checkout session not issued by us"

        try:
            await self._links.mark_used(link.id)
        except InvalidStateTransitionError as e:
            # Paid after the link expired; the payment still stands
            logger.warning(f"[WEBHOOK] Link {link.id} completed while {e.current_status}")

        provider_subscription_id = session.get('subscription')
        if session.get('mode') != 'subscription' or not provider_subscription_id:
            return f"Link {link.id} completed"

        if isinstance(provider_subscription_id, dict):
            provider_subscription_id = provider_subscription_id.get('id')
        provider = await self._gateway.retrieve_subscription(provider_subscription_id)
        subscription = await self._lifecycle.open_from_checkout(link, provider)
        return f"Link {link.id} completed, subscription {subscription.id}"
