"""Shared fixtures for billing unit tests.

Every test gets its own SQLite database file, a mocked payment provider
and a notification fan-out whose only sink is a mock.
"""

import itertools
import uuid
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from menubill.database.db import create_async_engine_and_session, create_tables
from menubill.src.billing.checkout_links.service import CheckoutLinkService
from menubill.src.billing.external.stripe.interfaces import (
    CheckoutSession,
    CouponValidation,
    PaymentProviderGateway,
)
from menubill.src.billing.model import PlanRecord, ProfileRecord, RestaurantRecord, SubscriptionRecord
from menubill.src.billing.notifications.fanout import NotificationFanout
from menubill.src.billing.notifications.types import NotificationSink
from menubill.src.billing.plans.catalog import PlanCatalog
from menubill.src.billing.shared.config import BillingPolicy
from menubill.src.billing.subscriptions.lifecycle import SubscriptionLifecycleService
from menubill.utils.timezone import UTC

from .helpers import LINK_BASE_URL, OTHER_USER_ID, PUBLIC_BASE_URL, RESTAURANT_ID, USER_ID, FakeClock


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=UTC))


@pytest.fixture
def policy():
    return BillingPolicy(trial_days=7, max_trial_extension_days=30, link_ttl=timedelta(hours=24))


@pytest.fixture
async def session_factory(tmp_path):
    engine, factory = create_async_engine_and_session(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    await create_tables(engine)

    async with factory() as db:
        db.add_all([
            PlanRecord(id="plan-basic", name="Basic", tier="basic", price=4900, provider_price_id="price_basic"),
            PlanRecord(id="plan-plus", name="Plus", tier="plus", price=9900, provider_price_id="price_plus"),
            PlanRecord(
                id="plan-retired",
                name="Legacy",
                tier="premium",
                price=14900,
                provider_price_id="price_legacy",
                is_active=False,
            ),
        ])
        for profile_id, email in ((USER_ID, "owner@bistro.test"), (OTHER_USER_ID, "chef@trattoria.test")):
            profile = ProfileRecord(email=email, name="Owner", phone="+14155550100")
            profile.id = profile_id
            db.add(profile)
        await db.flush()

        restaurant = RestaurantRecord(name="Bistro", owner_id=USER_ID)
        restaurant.id = RESTAURANT_ID
        db.add(restaurant)
        await db.commit()

    yield factory
    await engine.dispose()


@pytest.fixture
def gateway():
    """Payment provider mock; each checkout session gets a fresh id."""
    mock = AsyncMock(spec=PaymentProviderGateway)
    counter = itertools.count(1)

    async def create_session(**kwargs):
        n = next(counter)
        return CheckoutSession(id=f"cs_test_{n}", url=f"https://checkout.stripe.com/c/pay/cs_test_{n}")

    mock.create_checkout_session.side_effect = create_session
    mock.customer_exists.return_value = True
    mock.find_or_create_customer.return_value = "cus_123"
    mock.validate_coupon.return_value = CouponValidation(code="WELCOME", valid=True, percent_off=20.0)
    mock.validate_payment_method.return_value = None
    return mock


@pytest.fixture
def sink():
    mock = AsyncMock(spec=NotificationSink)
    mock.name = "mock"
    return mock


@pytest.fixture
def notifier(sink):
    return NotificationFanout([sink])


@pytest.fixture
def catalog(session_factory):
    return PlanCatalog(session_factory)


@pytest.fixture
def links(session_factory, catalog, gateway, notifier, policy, clock):
    return CheckoutLinkService(
        session_factory,
        catalog,
        gateway,
        notifier,
        policy,
        public_base_url=PUBLIC_BASE_URL,
        link_base_url=LINK_BASE_URL,
        clock=clock,
    )


@pytest.fixture
def lifecycle(session_factory, gateway, notifier, policy, clock):
    return SubscriptionLifecycleService(session_factory, gateway, notifier, policy, clock=clock)


@pytest.fixture
def make_subscription(session_factory, clock):
    """Insert a trialing subscription for (user-1, plan-basic); keyword overrides win."""

    async def _make(**overrides) -> str:
        values = dict(
            profile_id=USER_ID,
            plan_id="plan-basic",
            provider_subscription_id=f"sub_{uuid.uuid4().hex[:12]}",
            status="trialing",
            restaurant_id=RESTAURANT_ID,
            provider_customer_id="cus_123",
            is_active=True,
            current_period_start=clock.now,
            current_period_end=clock.now + timedelta(days=30),
            trial_activated=True,
            trial_start=clock.now,
            trial_end=clock.now + timedelta(days=7),
        )
        values.update(overrides)
        record = SubscriptionRecord(**values)
        async with session_factory() as db:
            db.add(record)
            await db.commit()
            await db.refresh(record)
        return record.id

    return _make

