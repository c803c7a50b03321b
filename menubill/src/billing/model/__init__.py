from menubill.src.billing.model.checkout_link import CheckoutLinkRecord
from menubill.src.billing.model.plan import PlanRecord
from menubill.src.billing.model.profile import ProfileRecord, RestaurantRecord
from menubill.src.billing.model.subscription import SubscriptionRecord
from menubill.src.billing.model.webhook_event import WebhookEventRecord

__all__ = [
    'CheckoutLinkRecord',
    'PlanRecord',
    'ProfileRecord',
    'RestaurantRecord',
    'SubscriptionRecord',
    'WebhookEventRecord',
]
