"""
CRM webhook signature verification.

The sender signs the raw request body with HMAC-SHA256 using the shared
secret and sends the hex digest in a header, optionally prefixed with
``sha256=``.
"""

import hashlib
import hmac
import logging
from typing import Optional

from menubill.src.billing.shared.exceptions import ConfigMissingError, WebhookVerificationError

logger = logging.getLogger(__name__)


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_crm_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """
    Check the signature header against the raw body.

    Raises:
        ConfigMissingError: no secret configured, the endpoint is disabled
        WebhookVerificationError: missing or mismatching signature
    """
    if not secret:
        logger.error("[WEBHOOK] CRM_WEBHOOK_SECRET not configured")
        raise ConfigMissingError("CRM_WEBHOOK_SECRET")

    if not signature:
        raise WebhookVerificationError("Missing webhook signature", source="crm")

    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]

    expected = compute_signature(secret, body)
    if not hmac.compare_digest(expected, provided.lower()):
        logger.warning("[WEBHOOK] CRM signature mismatch")
        raise WebhookVerificationError(source="crm")
