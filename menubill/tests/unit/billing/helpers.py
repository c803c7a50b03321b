"""Constants and builders shared by the billing tests."""

from datetime import datetime, timedelta

from menubill.src.billing.external.stripe.interfaces import ProviderSubscription

PUBLIC_BASE_URL = "https://app.menubill.test"
LINK_BASE_URL = "https://api.menubill.test/api/v1/checkout-links"

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
RESTAURANT_ID = "rest-1"


class FakeClock:
    """Callable clock that tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def provider_subscription(subscription_id: str, **overrides) -> ProviderSubscription:
    values = dict(id=subscription_id, status="trialing", customer_id="cus_123")
    values.update(overrides)
    return ProviderSubscription(**values)
