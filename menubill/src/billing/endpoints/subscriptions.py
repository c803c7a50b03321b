"""
Subscription Endpoints

API endpoints for subscription management, card validation and coupons.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from menubill.src.billing.container import BillingContainer
from menubill.src.billing.subscriptions.lifecycle import SubscriptionLifecycleService
from .dependencies import get_billing, get_lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-subscriptions"])


# ============================================================================
# Request Models
# ============================================================================

class CancelSubscriptionRequest(BaseModel):
    """Request for subscription cancellation."""
    model_config = ConfigDict(populate_by_name=True)

    at_period_end: bool = Field(alias='atPeriodEnd')
    reason: Optional[str] = Field(None, max_length=1000)


class ExtendTrialRequest(BaseModel):
    """Request for trial extension."""
    days: int


class ValidatePaymentMethodRequest(BaseModel):
    """Request for a card funds check."""
    model_config = ConfigDict(populate_by_name=True)

    payment_method_id: str = Field(alias='paymentMethodId', min_length=1)
    amount: int
    currency: str = 'usd'
    customer_id: Optional[str] = Field(None, alias='customerId')


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/subscriptions/{subscription_id}")
async def get_subscription(
    subscription_id: str,
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle),
) -> Dict:
    subscription = await lifecycle.get(subscription_id)
    return subscription.to_dict()


@router.post("/subscriptions/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str,
    request: CancelSubscriptionRequest,
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle),
) -> Dict:
    """
    Cancel a subscription.

    ``atPeriodEnd`` keeps access until the current period ends and can be
    undone; otherwise the subscription ends now.
    """
    subscription = await lifecycle.cancel(subscription_id, request.at_period_end, request.reason)
    return subscription.to_dict()


@router.post("/subscriptions/{subscription_id}/undo-cancel")
async def undo_cancel_subscription(
    subscription_id: str,
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle),
) -> Dict:
    """Withdraw a scheduled cancellation."""
    subscription = await lifecycle.undo_cancel(subscription_id)
    return subscription.to_dict()


@router.post("/subscriptions/{subscription_id}/extend-trial")
async def extend_trial(
    subscription_id: str,
    request: ExtendTrialRequest,
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle),
) -> Dict:
    subscription = await lifecycle.extend_trial(subscription_id, request.days)
    return subscription.to_dict()


@router.post("/payment-methods/validate")
async def validate_payment_method(
    request: ValidatePaymentMethodRequest,
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle),
) -> Dict:
    """
    Check a card can cover ``amount`` (cents) with an authorisation that is
    released immediately. Declines answer 402.
    """
    await lifecycle.validate_card_funds(
        request.payment_method_id,
        request.amount,
        request.currency,
        request.customer_id,
    )
    return {'valid': True, 'paymentMethodId': request.payment_method_id}


@router.get("/coupons/{code}")
async def validate_coupon(
    code: str,
    billing: BillingContainer = Depends(get_billing),
) -> Dict:
    coupon = await billing.gateway.validate_coupon(code)
    return coupon.to_dict()
