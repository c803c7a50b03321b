"""
Webhook Endpoints

CRM (Pipedrive) and Stripe webhook ingress. Both verify the sender, then
answer 200 whatever the processing outcome; failures are recorded on the
event and retried on redelivery.
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from menubill.src.billing.container import BillingContainer
from menubill.src.billing.domain.webhook_event import InboundEvent
from menubill.src.billing.shared.exceptions import WebhookVerificationError
from menubill.src.billing.webhooks.events import crm_event_from_payload, stripe_event_from_payload
from menubill.src.billing.webhooks.reconciler import WebhookReconciler
from menubill.src.billing.webhooks.signatures import verify_crm_signature
from .dependencies import get_billing

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-webhooks"])


async def _reconcile(reconciler: WebhookReconciler, event: InboundEvent) -> Dict[str, Any]:
    try:
        result = await reconciler.handle(event)
    except Exception:
        # Already logged and marked failed by the reconciler
        return {
            'status': 'success',
            'error': 'processed_with_errors',
            'eventId': event.event_id,
        }
    return {'status': 'success', **result.to_dict()}


@router.post("/webhooks/crm")
async def crm_webhook(request: Request, billing: BillingContainer = Depends(get_billing)) -> Dict[str, Any]:
    """
    Process Pipedrive deal webhooks.

    The raw body must carry an HMAC-SHA256 signature made with
    ``CRM_WEBHOOK_SECRET``.
    """
    settings = billing.settings
    body = await request.body()
    verify_crm_signature(body, request.headers.get(settings.CRM_WEBHOOK_SIGNATURE_HEADER), settings.CRM_WEBHOOK_SECRET)

    try:
        payload = json.loads(body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        # Signed bodies are always acknowledged
        logger.warning(f"[WEBHOOK] CRM body is not a JSON object ({len(body)} bytes), dropping it")
        return {'status': 'success', 'error': 'processed_with_errors', 'eventId': None}

    return await _reconcile(billing.reconciler, crm_event_from_payload(payload))


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, billing: BillingContainer = Depends(get_billing)) -> Dict[str, Any]:
    """
    Process Stripe webhook events.

    Handles:
    - checkout.session.completed
    - customer.subscription.updated
    - customer.subscription.deleted
    """
    body = await request.body()
    signature = request.headers.get('stripe-signature')
    if not signature:
        raise WebhookVerificationError("Missing stripe-signature header", source="stripe")

    event = billing.gateway.construct_event(body, signature)
    return await _reconcile(billing.reconciler, stripe_event_from_payload(event))
