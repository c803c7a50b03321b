"""
Inbound webhook normalisation.

Turns decoded CRM (Pipedrive v1/v2) and Stripe webhook bodies into
``InboundEvent`` so the reconciler handles both the same way.
"""

import hashlib
import json
from typing import Any, Dict, Optional

from menubill.src.billing.domain.webhook_event import InboundEvent, WebhookSource
from menubill.utils.timezone import timezone

# Pipedrive v2 reports create/change/delete, v1 reports added/updated/deleted
CRM_ACTION_ALIASES: Dict[str, str] = {
    "create": "added",
    "added": "added",
    "change": "updated",
    "updated": "updated",
    "delete": "deleted",
    "deleted": "deleted",
}


def _payload_digest(payload: Dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _crm_event_type(meta: Dict[str, Any], data: Dict[str, Any], previous: Dict[str, Any]) -> str:
    entity = meta.get("entity") or meta.get("object")
    action = meta.get("action")
    if not entity or not action:
        # v1 also carries the combined form, e.g. "updated.deal"
        combined = str(meta.get("event") or "")
        if "." in combined:
            action, entity = combined.split(".", 1)

    event_type = f"{entity or 'unknown'}.{CRM_ACTION_ALIASES.get(action, action or 'unknown')}"
    if event_type == "deal.updated" and "stage_id" in previous and previous.get("stage_id") != data.get("stage_id"):
        return "deal.stage_changed"
    return event_type


def _is_v1(meta: Dict[str, Any]) -> bool:
    return str(meta.get("v")) == "1" or "object" in meta or "event" in meta


def _crm_event_id(meta: Dict[str, Any], payload: Dict[str, Any]) -> str:
    if _is_v1(meta):
        # v1 meta.id is the entity id, shared by every event on the deal
        stamp = meta.get("timestamp_micro") or meta.get("timestamp")
        if meta.get("webhook_id") and stamp:
            return f"crm-{meta['webhook_id']}-{stamp}"
        return f"crm-{_payload_digest(payload)}"
    return str(meta.get("id") or meta.get("correlation_id") or f"crm-{_payload_digest(payload)}")


def crm_event_from_payload(payload: Dict[str, Any]) -> InboundEvent:
    """
    Normalise a Pipedrive webhook body.

    v2 events are keyed on ``meta.id``, falling back to ``meta.correlation_id``.
    v1 events are keyed on webhook id plus delivery timestamp. Either falls
    back to a digest of the body, so identical redeliveries still dedup.
    """
    meta = payload.get("meta") or {}
    data = payload.get("data") or payload.get("current") or {}
    previous = payload.get("previous") or {}

    event_id = _crm_event_id(meta, payload)
    subject: Optional[Any] = meta.get("entity_id") or data.get("id")

    return InboundEvent(
        event_id=event_id,
        source=WebhookSource.CRM,
        event_type=_crm_event_type(meta, data, previous),
        payload=payload,
        subject_id=str(subject) if subject is not None else None,
        occurred_at=timezone.parse(meta.get("timestamp")),
        change_source=meta.get("change_source"),
    )


def stripe_event_from_payload(event: Dict[str, Any]) -> InboundEvent:
    """Normalise a verified Stripe event."""
    obj = (event.get("data") or {}).get("object") or {}
    return InboundEvent(
        event_id=event["id"],
        source=WebhookSource.STRIPE,
        event_type=event.get("type", ""),
        payload=event,
        subject_id=obj.get("id"),
        occurred_at=timezone.from_timestamp(event.get("created")),
    )
