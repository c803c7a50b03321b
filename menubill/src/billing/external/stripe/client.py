"""
Stripe Gateway

Stripe implementation of PaymentProviderGateway. Every call carries its
own api_key (no module-level ``stripe.api_key``) and is bounded by a
timeout; a timeout counts as a failed call.

Usage:
    gateway = StripeGateway(api_key=settings.STRIPE_SECRET_KEY, webhook_secret=settings.STRIPE_WEBHOOK_SECRET)
    session = await gateway.create_checkout_session(...)
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import stripe

from menubill.src.billing.shared.exceptions import (
    ConfigMissingError,
    InsufficientFundsError,
    ProviderError,
    WebhookVerificationError,
)
from menubill.utils.timezone import timezone

from .idempotency import StripeIdempotencyManager
from .interfaces import CheckoutSession, CouponValidation, PaymentProviderGateway, ProviderSubscription

logger = logging.getLogger(__name__)

# A reusable manual-capture intent must be younger than this
RECENT_AUTHORIZATION_SECONDS = 5 * 60


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a StripeObject or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def subscription_from_stripe(obj: Any) -> ProviderSubscription:
    """
    Convert a Stripe subscription (object or webhook dict) to ProviderSubscription.

    Newer API versions moved the billing period onto subscription items;
    fall back to the first item when the top-level fields are absent.
    """
    period_start = _field(obj, 'current_period_start')
    period_end = _field(obj, 'current_period_end')
    if period_start is None or period_end is None:
        items = _field(_field(obj, 'items'), 'data') or []
        if items:
            period_start = period_start or _field(items[0], 'current_period_start')
            period_end = period_end or _field(items[0], 'current_period_end')

    customer = _field(obj, 'customer')
    schedule = _field(obj, 'schedule')
    metadata = _field(obj, 'metadata') or {}

    return ProviderSubscription(
        id=_field(obj, 'id'),
        status=_field(obj, 'status', 'incomplete'),
        customer_id=customer if isinstance(customer, str) or customer is None else _field(customer, 'id'),
        current_period_start=timezone.from_timestamp(period_start),
        current_period_end=timezone.from_timestamp(period_end),
        trial_start=timezone.from_timestamp(_field(obj, 'trial_start')),
        trial_end=timezone.from_timestamp(_field(obj, 'trial_end')),
        cancel_at=timezone.from_timestamp(_field(obj, 'cancel_at')),
        cancel_at_period_end=bool(_field(obj, 'cancel_at_period_end', False)),
        canceled_at=timezone.from_timestamp(_field(obj, 'canceled_at')),
        ended_at=timezone.from_timestamp(_field(obj, 'ended_at')),
        schedule_id=schedule if isinstance(schedule, str) or schedule is None else _field(schedule, 'id'),
        metadata=dict(metadata),
    )


class StripeGateway(PaymentProviderGateway):
    """
    Stripe-backed payment provider gateway.

    Args:
        api_key: Stripe secret key
        webhook_secret: Signing secret for inbound Stripe webhooks
        timeout: Seconds before a provider call is abandoned
        poll_attempts: Status polls while an authorisation is ``processing``
        poll_delay: Seconds between polls
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str = '',
        timeout: float = 20.0,
        poll_attempts: int = 15,
        poll_delay: float = 0.2,
        webhook_tolerance: int = 300,
        idempotency: Optional[StripeIdempotencyManager] = None,
    ):
        if not api_key:
            raise ConfigMissingError('STRIPE_SECRET_KEY', 'Payment provider is not configured')
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._timeout = timeout
        self._poll_attempts = poll_attempts
        self._poll_delay = poll_delay
        self._webhook_tolerance = webhook_tolerance
        self._idempotency = idempotency or StripeIdempotencyManager()

    async def _call(self, operation: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute a Stripe API call with timeout and error mapping.

        Raises:
            ProviderError: timeout or any Stripe error
        """
        try:
            return await asyncio.wait_for(func(*args, api_key=self._api_key, **kwargs), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error(f"[STRIPE] {operation} timed out after {self._timeout}s")
            raise ProviderError(f"Payment provider timed out during {operation}", provider_code='timeout')
        except stripe.StripeError as e:
            logger.error(f"[STRIPE] {operation} failed: code={e.code} message={e.user_message or e}")
            raise ProviderError(
                e.user_message or f"Payment provider rejected {operation}",
                provider_code=e.code,
            ) from e

    # -------------------------------------------------------------------------
    # Customer Operations
    # -------------------------------------------------------------------------

    async def find_or_create_customer(
        self,
        email: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        existing = await self._call('customer lookup', stripe.Customer.list_async, email=email, limit=1)
        for customer in _field(existing, 'data') or []:
            if not _field(customer, 'deleted', False):
                return _field(customer, 'id')

        params: Dict[str, Any] = {'email': email, 'metadata': metadata or {}}
        if name:
            params['name'] = name
        if phone:
            params['phone'] = phone
        customer = await self._call('customer create', stripe.Customer.create_async, **params)
        logger.info(f"[STRIPE] Created customer {customer.id} for {email}")
        return customer.id

    async def customer_exists(self, customer_id: str) -> bool:
        try:
            customer = await asyncio.wait_for(
                stripe.Customer.retrieve_async(customer_id, api_key=self._api_key),
                timeout=self._timeout,
            )
        except stripe.InvalidRequestError as e:
            if e.code == 'resource_missing':
                return False
            raise ProviderError(e.user_message or "Customer lookup failed", provider_code=e.code) from e
        except asyncio.TimeoutError:
            raise ProviderError("Payment provider timed out during customer lookup", provider_code='timeout')
        except stripe.StripeError as e:
            raise ProviderError(e.user_message or "Customer lookup failed", provider_code=e.code) from e
        return not _field(customer, 'deleted', False)

    # -------------------------------------------------------------------------
    # Checkout Session Operations
    # -------------------------------------------------------------------------

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        trial_days: int,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        idempotency_key: str,
        coupon_code: Optional[str] = None,
    ) -> CheckoutSession:
        subscription_data: Dict[str, Any] = {'metadata': metadata}
        if trial_days > 0:
            subscription_data['trial_period_days'] = trial_days

        params: Dict[str, Any] = {
            'mode': 'subscription',
            'customer': customer_id,
            'line_items': [{'price': price_id, 'quantity': 1}],
            'subscription_data': subscription_data,
            'metadata': metadata,
            'success_url': success_url,
            'cancel_url': cancel_url,
        }
        # Stripe rejects allow_promotion_codes together with discounts
        if coupon_code:
            params['discounts'] = [{'coupon': coupon_code}]
        else:
            params['allow_promotion_codes'] = True

        session = await self._call(
            'checkout session create',
            stripe.checkout.Session.create_async,
            idempotency_key=idempotency_key,
            **params,
        )
        return CheckoutSession(
            id=session.id,
            url=session.url,
            expires_at=timezone.from_timestamp(_field(session, 'expires_at')),
        )

    # -------------------------------------------------------------------------
    # Subscription Operations
    # -------------------------------------------------------------------------

    async def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        sub = await self._call('subscription retrieve', stripe.Subscription.retrieve_async, subscription_id)
        return subscription_from_stripe(sub)

    async def cancel_subscription(
        self,
        subscription_id: str,
        at_period_end: bool,
        reason: Optional[str] = None,
    ) -> ProviderSubscription:
        details = {'comment': reason} if reason else None

        if not at_period_end:
            params = {'cancellation_details': details} if details else {}
            sub = await self._call('subscription cancel', stripe.Subscription.cancel_async, subscription_id, **params)
            logger.info(f"[STRIPE] Canceled subscription {subscription_id} immediately")
            return subscription_from_stripe(sub)

        current = await self.retrieve_subscription(subscription_id)
        if current.schedule_id:
            # Subscriptions driven by a schedule must be ended through the schedule
            await self._call(
                'schedule cancel',
                stripe.SubscriptionSchedule.modify_async,
                current.schedule_id,
                end_behavior='cancel',
            )
            logger.info(f"[STRIPE] Set schedule {current.schedule_id} to cancel at end")
            return await self.retrieve_subscription(subscription_id)

        params: Dict[str, Any] = {'cancel_at_period_end': True}
        if details:
            params['cancellation_details'] = details
        sub = await self._call('subscription modify', stripe.Subscription.modify_async, subscription_id, **params)
        logger.info(f"[STRIPE] Scheduled cancellation for subscription {subscription_id}")
        return subscription_from_stripe(sub)

    async def reactivate_subscription(self, subscription_id: str) -> ProviderSubscription:
        current = await self.retrieve_subscription(subscription_id)

        if current.schedule_id:
            await self._call(
                'schedule release',
                stripe.SubscriptionSchedule.modify_async,
                current.schedule_id,
                end_behavior='release',
            )
            return await self.retrieve_subscription(subscription_id)

        # trial_end is left untouched so an extended trial survives the undo
        if current.cancel_at_period_end:
            params: Dict[str, Any] = {'cancel_at_period_end': False}
        else:
            params = {'cancel_at': ''}
        sub = await self._call('subscription reactivate', stripe.Subscription.modify_async, subscription_id, **params)
        logger.info(f"[STRIPE] Cleared scheduled cancellation for subscription {subscription_id}")
        return subscription_from_stripe(sub)

    async def set_trial_end(self, subscription_id: str, trial_end: datetime) -> ProviderSubscription:
        sub = await self._call(
            'trial extension',
            stripe.Subscription.modify_async,
            subscription_id,
            trial_end=timezone.to_timestamp(trial_end),
            proration_behavior='none',
            idempotency_key=self._idempotency.generate_trial_extension_key(subscription_id, trial_end),
        )
        return subscription_from_stripe(sub)

    # -------------------------------------------------------------------------
    # Payment Method Operations
    # -------------------------------------------------------------------------

    async def _find_recent_authorization(self, payment_method_id: str, customer_id: Optional[str]) -> Optional[Any]:
        if not customer_id:
            return None
        intents = await self._call('payment intent list', stripe.PaymentIntent.list_async, customer=customer_id, limit=10)
        cutoff = timezone.to_timestamp(timezone.now()) - RECENT_AUTHORIZATION_SECONDS
        for intent in _field(intents, 'data') or []:
            if (
                _field(intent, 'status') == 'requires_capture'
                and _field(intent, 'payment_method') == payment_method_id
                and (_field(intent, 'created') or 0) >= cutoff
            ):
                return intent
        return None

    async def validate_payment_method(
        self,
        payment_method_id: str,
        amount: int,
        currency: str,
        customer_id: Optional[str] = None,
    ) -> None:
        intent = await self._find_recent_authorization(payment_method_id, customer_id)

        if intent is None:
            params: Dict[str, Any] = {
                'amount': amount,
                'currency': currency,
                'payment_method': payment_method_id,
                'capture_method': 'manual',
                'confirm': True,
                'off_session': True,
            }
            if customer_id:
                params['customer'] = customer_id
            try:
                intent = await asyncio.wait_for(
                    stripe.PaymentIntent.create_async(api_key=self._api_key, **params),
                    timeout=self._timeout,
                )
            except stripe.CardError as e:
                logger.info(f"[FUNDS] Card {payment_method_id} declined: {e.code} / {getattr(e, 'decline_code', None)}")
                raise InsufficientFundsError(
                    decline_code=getattr(e, 'decline_code', None) or e.code,
                    payment_method_id=payment_method_id,
                ) from e
            except asyncio.TimeoutError:
                raise ProviderError("Payment provider timed out during card validation", provider_code='timeout')
            except stripe.StripeError as e:
                raise ProviderError(e.user_message or "Card validation failed", provider_code=e.code) from e

        attempts = 0
        while _field(intent, 'status') == 'processing' and attempts < self._poll_attempts:
            await asyncio.sleep(self._poll_delay)
            intent = await self._call('payment intent retrieve', stripe.PaymentIntent.retrieve_async, intent.id)
            attempts += 1

        status = _field(intent, 'status')
        if status == 'requires_capture':
            await self._release_authorization(intent.id)
            return

        logger.info(f"[FUNDS] Authorisation for {payment_method_id} ended in status {status}")
        if status not in ('canceled', 'succeeded'):
            await self._release_authorization(intent.id)
        raise InsufficientFundsError(payment_method_id=payment_method_id)

    async def _release_authorization(self, intent_id: str) -> None:
        try:
            await self._call('payment intent cancel', stripe.PaymentIntent.cancel_async, intent_id)
        except ProviderError as e:
            # The hold lapses on its own; the validation result stands
            logger.warning(f"[FUNDS] Could not release authorisation {intent_id}: {e.message}")

    # -------------------------------------------------------------------------
    # Coupon Operations
    # -------------------------------------------------------------------------

    async def validate_coupon(self, code: str) -> CouponValidation:
        try:
            coupon = await asyncio.wait_for(
                stripe.Coupon.retrieve_async(code, api_key=self._api_key),
                timeout=self._timeout,
            )
        except stripe.InvalidRequestError as e:
            if e.code == 'resource_missing':
                return CouponValidation(code=code, valid=False, reason="Coupon not found")
            raise ProviderError(e.user_message or "Coupon lookup failed", provider_code=e.code) from e
        except asyncio.TimeoutError:
            raise ProviderError("Payment provider timed out during coupon lookup", provider_code='timeout')
        except stripe.StripeError as e:
            raise ProviderError(e.user_message or "Coupon lookup failed", provider_code=e.code) from e

        valid = bool(_field(coupon, 'valid', False))
        return CouponValidation(
            code=code,
            valid=valid,
            name=_field(coupon, 'name'),
            percent_off=_field(coupon, 'percent_off'),
            amount_off=_field(coupon, 'amount_off'),
            currency=_field(coupon, 'currency'),
            duration=_field(coupon, 'duration'),
            reason=None if valid else "Coupon is no longer valid",
        )

    async def apply_coupon(self, subscription_id: str, code: str) -> ProviderSubscription:
        sub = await self._call(
            'coupon apply',
            stripe.Subscription.modify_async,
            subscription_id,
            discounts=[{'coupon': code}],
        )
        logger.info(f"[STRIPE] Applied coupon {code} to subscription {subscription_id}")
        return subscription_from_stripe(sub)

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if not self._webhook_secret:
            raise ConfigMissingError('STRIPE_WEBHOOK_SECRET')
        try:
            stripe.Webhook.construct_event(
                payload, signature, self._webhook_secret, tolerance=self._webhook_tolerance
            )
        except ValueError as e:
            raise WebhookVerificationError("Invalid webhook payload", source='stripe') from e
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(source='stripe') from e
        return json.loads(payload)


class DisabledGateway(PaymentProviderGateway):
    """Stand-in used when no Stripe key is configured; every call answers 503."""

    def _unavailable(self) -> ConfigMissingError:
        return ConfigMissingError('STRIPE_SECRET_KEY', 'Payment provider is not configured')

    async def find_or_create_customer(self, email, name=None, phone=None, metadata=None) -> str:
        raise self._unavailable()

    async def customer_exists(self, customer_id) -> bool:
        raise self._unavailable()

    async def create_checkout_session(self, *args, **kwargs) -> CheckoutSession:
        raise self._unavailable()

    async def retrieve_subscription(self, subscription_id) -> ProviderSubscription:
        raise self._unavailable()

    async def cancel_subscription(self, subscription_id, at_period_end, reason=None) -> ProviderSubscription:
        raise self._unavailable()

    async def reactivate_subscription(self, subscription_id) -> ProviderSubscription:
        raise self._unavailable()

    async def set_trial_end(self, subscription_id, trial_end) -> ProviderSubscription:
        raise self._unavailable()

    async def validate_payment_method(self, payment_method_id, amount, currency, customer_id=None) -> None:
        raise self._unavailable()

    async def validate_coupon(self, code) -> CouponValidation:
        raise self._unavailable()

    async def apply_coupon(self, subscription_id, code) -> ProviderSubscription:
        raise self._unavailable()

    def construct_event(self, payload, signature) -> Dict[str, Any]:
        raise self._unavailable()
