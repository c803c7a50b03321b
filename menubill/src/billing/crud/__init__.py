from menubill.src.billing.crud.crud_checkout_link import CRUDCheckoutLink, checkout_link_dao
from menubill.src.billing.crud.crud_plan import CRUDPlan, plan_dao
from menubill.src.billing.crud.crud_profile import CRUDProfile, CRUDRestaurant, profile_dao, restaurant_dao
from menubill.src.billing.crud.crud_subscription import CRUDSubscription, subscription_dao
from menubill.src.billing.crud.crud_webhook_event import CRUDWebhookEvent, webhook_event_dao

__all__ = [
    'CRUDCheckoutLink',
    'CRUDPlan',
    'CRUDProfile',
    'CRUDRestaurant',
    'CRUDSubscription',
    'CRUDWebhookEvent',
    'checkout_link_dao',
    'plan_dao',
    'profile_dao',
    'restaurant_dao',
    'subscription_dao',
    'webhook_event_dao',
]
