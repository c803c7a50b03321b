"""
Webhook Event Domain Types

Normalised inbound event shared by the CRM and Stripe ingress paths,
plus the outcome the reconciler reports for it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class WebhookSource(Enum):
    CRM = "crm"
    STRIPE = "stripe"


class WebhookEventStatus(Enum):
    """Dedup record statuses."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReconcileOutcome(Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IN_PROGRESS = "in_progress"
    IGNORED = "ignored"
    STALE = "stale"


@dataclass
class InboundEvent:
    """
    A verified webhook delivery.

    Attributes:
        event_id: Sender-assigned id, the dedup key
        source: Which system delivered it
        event_type: Normalised type, e.g. ``deal.updated``
        payload: Raw decoded body
        subject_id: Entity the event is about (deal id, subscription id)
        occurred_at: Sender-side timestamp, when present
        change_source: Who caused the change on the sender's side
    """
    event_id: str
    source: WebhookSource
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    subject_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    change_source: Optional[str] = None


@dataclass
class ReconcileResult:
    event_id: str
    outcome: ReconcileOutcome
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            'eventId': self.event_id,
            'outcome': self.outcome.value,
            'detail': self.detail,
        }
