"""
Billing Shared Module

Policy constants and the exception hierarchy used across billing services.
"""

from .config import BillingPolicy, PLAN_TIERS
from .exceptions import (
    BillingError,
    ConfigMissingError,
    CrmError,
    DuplicateActiveLinkError,
    InsufficientFundsError,
    InvalidPlanError,
    InvalidStateTransitionError,
    LinkAlreadyUsedError,
    NotFoundError,
    ProviderError,
    TrialExtensionLimitError,
    ValidationError,
    WebhookVerificationError,
)

__all__ = [
    'BillingPolicy',
    'PLAN_TIERS',
    'BillingError',
    'ConfigMissingError',
    'CrmError',
    'DuplicateActiveLinkError',
    'InsufficientFundsError',
    'InvalidPlanError',
    'InvalidStateTransitionError',
    'LinkAlreadyUsedError',
    'NotFoundError',
    'ProviderError',
    'TrialExtensionLimitError',
    'ValidationError',
    'WebhookVerificationError',
]
