from .lifecycle import SubscriptionLifecycleService

__all__ = ['SubscriptionLifecycleService']
