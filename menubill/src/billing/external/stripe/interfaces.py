"""
Payment Provider Interfaces

Narrow capability interface over the payment provider, plus the plain
result types it returns. Services depend on this interface only, so the
Stripe implementation can be swapped for a mock in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class CheckoutSession:
    """A provider-hosted checkout page."""
    id: str
    url: str
    expires_at: Optional[datetime] = None


@dataclass
class ProviderSubscription:
    """
    Provider view of a subscription.

    Attributes:
        id: Provider subscription id
        status: Provider status string
        cancel_at: Scheduled cancellation, if any
        cancel_at_period_end: Whether cancellation is tied to period end
        canceled_at: When the provider recorded the cancellation request
        ended_at: When the subscription actually ended
        schedule_id: Attached subscription schedule, if any
    """
    id: str
    status: str
    customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    schedule_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CouponValidation:
    code: str
    valid: bool
    name: Optional[str] = None
    percent_off: Optional[float] = None
    amount_off: Optional[int] = None
    currency: Optional[str] = None
    duration: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'valid': self.valid,
            'name': self.name,
            'percentOff': self.percent_off,
            'amountOff': self.amount_off,
            'currency': self.currency,
            'duration': self.duration,
            'reason': self.reason,
        }


class PaymentProviderGateway(ABC):
    """Interface for the external payment provider."""

    @abstractmethod
    async def find_or_create_customer(
        self,
        email: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Return the provider customer id for ``email``, creating the customer if needed."""

    @abstractmethod
    async def customer_exists(self, customer_id: str) -> bool:
        """False when the customer was deleted or never existed."""

    @abstractmethod
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
        """Create a subscription-mode checkout session."""

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        pass

    @abstractmethod
    async def cancel_subscription(
        self,
        subscription_id: str,
        at_period_end: bool,
        reason: Optional[str] = None,
    ) -> ProviderSubscription:
        """Schedule cancellation at period end, or cancel immediately."""

    @abstractmethod
    async def reactivate_subscription(self, subscription_id: str) -> ProviderSubscription:
        """Clear a scheduled cancellation."""

    @abstractmethod
    async def set_trial_end(self, subscription_id: str, trial_end: datetime) -> ProviderSubscription:
        """Move the trial end without proration."""

    @abstractmethod
    async def validate_payment_method(
        self,
        payment_method_id: str,
        amount: int,
        currency: str,
        customer_id: Optional[str] = None,
    ) -> None:
        """
        Check the card can cover ``amount`` with an uncaptured authorisation.

        Raises:
            InsufficientFundsError: the card was declined
            ProviderError: the provider call itself failed
        """

    @abstractmethod
    async def validate_coupon(self, code: str) -> CouponValidation:
        pass

    @abstractmethod
    async def apply_coupon(self, subscription_id: str, code: str) -> ProviderSubscription:
        pass

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify a provider webhook signature and decode the event.

        Raises:
            WebhookVerificationError: bad signature or payload
        """
