from .crm_deals import CrmDealHandler
from .events import crm_event_from_payload, stripe_event_from_payload
from .provider_events import ProviderEventHandler
from .reconciler import WebhookReconciler
from .signatures import compute_signature, verify_crm_signature

__all__ = [
    'CrmDealHandler',
    'ProviderEventHandler',
    'WebhookReconciler',
    'compute_signature',
    'crm_event_from_payload',
    'stripe_event_from_payload',
    'verify_crm_signature',
]
