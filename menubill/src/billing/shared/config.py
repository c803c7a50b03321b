"""
Billing Configuration

Trial policy, checkout-link lifetime and tier constants shared by the
checkout-link, subscription and webhook services.

Usage:
    from menubill.src.billing.shared.config import BillingPolicy

    policy = BillingPolicy.from_settings(settings)
    policy.max_extension_total_days  # 23
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Tuple

from menubill.core.conf import Settings


# =============================================================================
# TIER CONSTANTS
# =============================================================================
PLAN_TIERS: Tuple[str, ...] = ("basic", "plus", "premium")


# =============================================================================
# CRM CONSTANTS
# =============================================================================
CRM_RELEVANT_EVENTS: Tuple[str, ...] = ("deal.added", "deal.updated", "deal.stage_changed")

# Deal custom field names the bridge writes back to
CRM_PAYMENT_LINK_FIELD: str = "Payment Link"
CRM_PAYMENT_LINK_HASH_FIELD: str = "Payment Link Data Hash"
CRM_SALES_REP_SLACK_ID_FIELD: str = "Sales Rep Slack ID"

# Values the bridge writes to the payment link field instead of a URL
CRM_MISSING_ATTRIBUTES_PREFIX: str = "Missing attributes:"
CRM_INVALID_PRICE_MESSAGE: str = "Invalid price"

# Webhook change_source for writes made through the CRM API (i.e. by us)
CRM_SELF_CHANGE_SOURCE: str = "api"


# =============================================================================
# POLICY
# =============================================================================
@dataclass(frozen=True)
class BillingPolicy:
    """
    Trial and link lifetime policy.

    Attributes:
        trial_days: Default trial length granted at checkout
        max_trial_extension_days: Absolute trial ceiling in days
        link_ttl: How long an issued checkout link stays usable
        webhook_lock_window_seconds: Age after which an in-flight webhook claim is stale
        skip_stale_crm_events: Drop deal events older than the newest applied one
    """
    trial_days: int = 7
    max_trial_extension_days: int = 30
    link_ttl: timedelta = timedelta(hours=24)
    webhook_lock_window_seconds: int = 300
    skip_stale_crm_events: bool = False

    @property
    def max_extension_total_days(self) -> int:
        """Cumulative extension allowed on top of the default trial."""
        return self.max_trial_extension_days - self.trial_days

    @classmethod
    def from_settings(cls, settings: Settings) -> 'BillingPolicy':
        return cls(
            trial_days=settings.BILLING_TRIAL_DAYS,
            max_trial_extension_days=settings.BILLING_MAX_TRIAL_EXTENSION_DAYS,
            link_ttl=timedelta(hours=settings.CHECKOUT_LINK_TTL_HOURS),
            webhook_lock_window_seconds=settings.WEBHOOK_LOCK_WINDOW_SECONDS,
            skip_stale_crm_events=settings.CRM_SKIP_STALE_EVENTS,
        )
