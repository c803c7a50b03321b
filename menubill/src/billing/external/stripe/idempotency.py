"""
Stripe Idempotency Key Generation

Generates deterministic idempotency keys for Stripe API calls so that a
retried issuance inside the same time window reuses the same provider
session instead of minting a second one.
"""

import hashlib
from datetime import datetime
from typing import Optional

from menubill.utils.timezone import timezone


class StripeIdempotencyManager:
    """
    Generates deterministic idempotency keys for Stripe operations.

    Keys are:
    - Unique per operation + account + parameters
    - Stable inside a time bucket, so retries collapse onto one request

    Usage:
        key = StripeIdempotencyManager().generate_checkout_key(user_id, plan_id, trial_days=7)
    """

    def __init__(self, time_bucket_minutes: int = 5):
        self.time_bucket_minutes = time_bucket_minutes

    def generate_key(
        self,
        operation: str,
        account_id: str,
        *args,
        now: Optional[datetime] = None,
        **kwargs
    ) -> str:
        """
        Generate an idempotency key.

        Args:
            operation: Operation type (e.g., 'checkout', 'trial_extension')
            account_id: User/account identifier
            *args: Additional positional arguments to include in key
            now: Clock override
            **kwargs: Additional keyword arguments to include in key

        Returns:
            40-character hex idempotency key
        """
        current = now or timezone.now()
        timestamp_bucket = int(current.timestamp() // (self.time_bucket_minutes * 60))

        # Sort kwargs for deterministic ordering
        sorted_kwargs = sorted(kwargs.items())

        components = [
            operation,
            account_id,
            *[str(arg) for arg in args],
            *[f"{k}={v}" for k, v in sorted_kwargs],
            str(timestamp_bucket),
        ]

        idempotency_base = "_".join(components)
        return hashlib.sha256(idempotency_base.encode()).hexdigest()[:40]

    def generate_checkout_key(
        self,
        user_id: str,
        plan_id: str,
        trial_days: int,
        coupon_code: Optional[str] = None,
        previous_link_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Key for a checkout session for one (user, plan) pair.

        ``previous_link_id`` is the pair's latest link, so a new key is minted
        once that link is used or expired.
        """
        return self.generate_key(
            "checkout",
            user_id,
            plan_id,
            now=now,
            trial_days=trial_days,
            coupon=coupon_code or "",
            previous=previous_link_id or "",
        )

    def generate_trial_extension_key(self, subscription_id: str, trial_end: datetime) -> str:
        return self.generate_key("trial_extension", subscription_id, timezone.to_timestamp(trial_end))
