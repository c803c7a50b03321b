"""
Billing Exceptions

Custom exception classes for billing-related errors.
Each carries a stable error code and the HTTP status the API layer
answers with, so handlers never leak internals to callers.
"""

from typing import Optional


class BillingError(Exception):
    """
    Base exception for all billing-related errors.

    All billing exceptions inherit from this class, allowing for
    broad exception handling when needed.
    """

    status_code: int = 500

    def __init__(self, message: str, code: str = "BILLING_ERROR", details: dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.message,
            'code': self.code,
        }


class ValidationError(BillingError):
    """Raised on bad input: unknown field values, missing required data, bad coupon."""

    status_code = 400

    def __init__(self, message: str = "Invalid request", code: str = "VALIDATION_ERROR", field: str = None):
        super().__init__(
            message=message,
            code=code,
            details={'field': field} if field else {}
        )
        self.field = field


class InvalidPlanError(ValidationError):
    """Raised when a plan does not exist or is no longer offered."""

    status_code = 409

    def __init__(self, plan_id: str, message: str = None):
        super().__init__(
            message=message or f"Plan {plan_id} is not available",
            code="INVALID_PLAN",
            field="planId",
        )
        self.plan_id = plan_id


class NotFoundError(BillingError):
    """Raised when an entity id is unknown."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            message=f"{entity} {entity_id} not found",
            code="NOT_FOUND",
            details={'entity': entity, 'id': entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidStateTransitionError(BillingError):
    """
    Raised when an operation is not legal from the current status.

    Examples:
        - Marking a link used that already expired
        - Undo-cancel with nothing scheduled
        - Cancelling an already canceled subscription
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        code: str = "INVALID_STATE_TRANSITION"
    ):
        super().__init__(
            message=message,
            code=code,
            details={'current_status': current_status} if current_status else {}
        )
        self.current_status = current_status


class LinkAlreadyUsedError(InvalidStateTransitionError):
    """Raised when a visitor opens a checkout link that has already been completed."""

    status_code = 410

    def __init__(self, link_id: str):
        super().__init__(
            message=f"Checkout link {link_id} has already been used",
            current_status="used",
            code="LINK_ALREADY_USED",
        )
        self.link_id = link_id


class DuplicateActiveLinkError(BillingError):
    """Raised by the store when another active link already holds the (user, plan) slot."""

    status_code = 409

    def __init__(self, user_id: str, plan_id: str):
        super().__init__(
            message=f"An active checkout link already exists for user {user_id} and plan {plan_id}",
            code="DUPLICATE_ACTIVE_LINK",
            details={'user_id': user_id, 'plan_id': plan_id}
        )
        self.user_id = user_id
        self.plan_id = plan_id


class ProviderError(BillingError):
    """
    Raised when a payment provider call fails or times out.

    Attributes:
        provider_code: Error code reported by the provider, if any
    """

    status_code = 502

    def __init__(
        self,
        message: str = "Payment provider request failed",
        provider_code: str = None,
        code: str = "PROVIDER_ERROR"
    ):
        super().__init__(
            message=message,
            code=code,
            details={'provider_code': provider_code} if provider_code else {}
        )
        self.provider_code = provider_code


class InsufficientFundsError(BillingError):
    """Raised when a card is declined or cannot cover the authorization amount."""

    status_code = 402

    def __init__(
        self,
        message: str = "Insufficient funds or card declined",
        decline_code: str = None,
        payment_method_id: str = None
    ):
        details = {}
        if decline_code:
            details['decline_code'] = decline_code
        if payment_method_id:
            details['payment_method_id'] = payment_method_id

        super().__init__(
            message=message,
            code="INSUFFICIENT_FUNDS",
            details=details
        )
        self.decline_code = decline_code
        self.payment_method_id = payment_method_id


class TrialExtensionLimitError(BillingError):
    """
    Raised when a trial extension would exceed the cumulative ceiling.

    Attributes:
        requested: Days requested in this call
        remaining: Days still available before the ceiling
    """

    status_code = 400

    def __init__(self, requested: int, remaining: int):
        super().__init__(
            message=f"Trial can be extended by at most {max(0, remaining)} more day(s)",
            code="TRIAL_EXTENSION_LIMIT",
            details={'requested': requested, 'remaining': max(0, remaining)}
        )
        self.requested = requested
        self.remaining = max(0, remaining)


class ConfigMissingError(BillingError):
    """Raised when a required integration (payment provider, CRM, webhook secret) is not configured."""

    status_code = 503

    def __init__(self, setting: str, message: str = None):
        super().__init__(
            message=message or f"{setting} is not configured",
            code="CONFIG_MISSING",
            details={'setting': setting}
        )
        self.setting = setting


class WebhookVerificationError(BillingError):
    """Raised when an inbound webhook fails its signature check."""

    status_code = 401

    def __init__(self, message: str = "Invalid webhook signature", source: str = None):
        super().__init__(
            message=message,
            code="WEBHOOK_VERIFICATION_FAILED",
            details={'source': source} if source else {}
        )
        self.source = source


class CrmError(BillingError):
    """Raised when a CRM (Pipedrive) write fails."""

    status_code = 502

    def __init__(self, message: str = "CRM request failed", status: int = None):
        super().__init__(
            message=message,
            code="CRM_ERROR",
            details={'status': status} if status else {}
        )
        self.status = status
