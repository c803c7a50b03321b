"""Tests for the billing HTTP API.

The app is built with ``register_app`` and its state is wired by hand,
so the lifespan (engine, scheduler) never runs.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from menubill.core.conf import Settings
from menubill.core.registrar import register_app
from menubill.src.billing.container import build_container
from menubill.src.billing.external.pipedrive.client import PipedriveClient
from menubill.src.billing.external.stripe.client import DisabledGateway
from menubill.src.billing.shared.exceptions import InsufficientFundsError, ProviderError
from menubill.src.billing.webhooks.signatures import compute_signature

from .helpers import RESTAURANT_ID, USER_ID, provider_subscription

CRM_SECRET = "crm-shared-secret"
API = "/api/v1"


@pytest.fixture
def settings():
    return Settings(
        CRM_WEBHOOK_SECRET=CRM_SECRET,
        PUBLIC_BASE_URL="https://app.menubill.test",
        STRIPE_SECRET_KEY="",
        SLACK_BOT_TOKEN="",
    )


@pytest.fixture
def crm():
    mock = AsyncMock(spec=PipedriveClient)
    mock.configured = True
    return mock


@pytest.fixture
async def http():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def app(settings, session_factory, http, gateway, crm, notifier):
    application = register_app()
    application.state.db_session = session_factory
    application.state.billing = build_container(
        settings, session_factory, http, gateway=gateway, crm=crm, notifier=notifier
    )
    return application


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def issue(client, **overrides) -> httpx.Response:
    body = {"userId": USER_ID, "restaurantId": RESTAURANT_ID, "planId": "plan-basic"}
    body.update(overrides)
    return await client.post(f"{API}/checkout-links", json=body)


class TestCheckoutLinkRoutes:
    """Tests for /checkout-links."""

    @pytest.mark.asyncio
    async def test_issue_then_reuse(self, client):
        """Test a new link answers 201 and a repeat request 200 with the same link."""
        created = await issue(client)
        repeated = await issue(client)

        assert created.status_code == 201
        assert created.json()["reused"] is False
        assert created.json()["url"] == f"https://app.menubill.test{API}/checkout-links/{created.json()['id']}/visit"
        assert repeated.status_code == 200
        assert repeated.json()["id"] == created.json()["id"]
        assert repeated.json()["reused"] is True

    @pytest.mark.asyncio
    async def test_missing_field_is_400(self, client):
        response = await client.post(f"{API}/checkout-links", json={"userId": USER_ID})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_bad_trial_days_is_400(self, client):
        response = await issue(client, trialDays=90)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_plan_is_409(self, client):
        response = await issue(client, planId="plan-missing")

        assert response.status_code == 409
        assert response.json() == {"error": "Plan plan-missing does not exist", "code": "INVALID_PLAN"}

    @pytest.mark.asyncio
    async def test_provider_failure_is_502(self, client, gateway):
        gateway.create_checkout_session.side_effect = ProviderError("Stripe is down")

        response = await issue(client)

        assert response.status_code == 502
        assert response.json()["code"] == "PROVIDER_ERROR"

    @pytest.mark.asyncio
    async def test_unconfigured_provider_is_503(self, app, client):
        app.state.billing.links._gateway = DisabledGateway()

        response = await issue(client)

        assert response.status_code == 503
        assert response.json()["code"] == "CONFIG_MISSING"

    @pytest.mark.asyncio
    async def test_get_and_list(self, client):
        created = (await issue(client)).json()

        fetched = await client.get(f"{API}/checkout-links/{created['id']}")
        listed = await client.get(f"{API}/checkout-links", params={"restaurantId": RESTAURANT_ID})

        assert fetched.status_code == 200
        assert fetched.json()["status"] == "active"
        assert [link["id"] for link in listed.json()] == [created["id"]]

    @pytest.mark.asyncio
    async def test_unknown_link_is_404(self, client):
        response = await client.get(f"{API}/checkout-links/missing")

        assert response.status_code == 404
        assert response.json() == {"error": "Checkout link missing not found", "code": "NOT_FOUND"}

    @pytest.mark.asyncio
    async def test_visit_redirects_to_checkout(self, client):
        created = (await issue(client)).json()

        response = await client.get(f"{API}/checkout-links/{created['id']}/visit")

        assert response.status_code == 307
        assert response.headers["location"] == created["checkoutUrl"]

    @pytest.mark.asyncio
    async def test_visit_used_link_is_410(self, app, client):
        created = (await issue(client)).json()
        await app.state.billing.links.mark_used(created["id"])

        response = await client.get(f"{API}/checkout-links/{created['id']}/visit")

        assert response.status_code == 410
        assert response.json()["code"] == "LINK_ALREADY_USED"


class TestSubscriptionRoutes:
    """Tests for /subscriptions, /payment-methods and /coupons."""

    @pytest.mark.asyncio
    async def test_cancel_at_period_end(self, client, gateway, make_subscription, clock):
        subscription_id = await make_subscription()
        gateway.cancel_subscription.return_value = provider_subscription(
            "sub_x", cancel_at=clock.now + timedelta(days=30), cancel_at_period_end=True
        )

        response = await client.post(
            f"{API}/subscriptions/{subscription_id}/cancel",
            json={"atPeriodEnd": True, "reason": "seasonal closure"},
        )

        assert response.status_code == 200
        assert response.json()["pendingCancel"] is True
        assert response.json()["cancellationReason"] == "seasonal closure"

    @pytest.mark.asyncio
    async def test_undo_without_pending_cancel_is_400(self, client, make_subscription):
        subscription_id = await make_subscription()

        response = await client.post(f"{API}/subscriptions/{subscription_id}/undo-cancel")

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATE_TRANSITION"

    @pytest.mark.asyncio
    async def test_extend_trial_over_ceiling_is_400(self, client, make_subscription):
        subscription_id = await make_subscription()

        response = await client.post(f"{API}/subscriptions/{subscription_id}/extend-trial", json={"days": 24})

        assert response.status_code == 400
        assert response.json()["code"] == "TRIAL_EXTENSION_LIMIT"

    @pytest.mark.asyncio
    async def test_extend_trial(self, client, make_subscription):
        subscription_id = await make_subscription()

        response = await client.post(f"{API}/subscriptions/{subscription_id}/extend-trial", json={"days": 3})

        assert response.status_code == 200
        assert response.json()["trialExtendedDays"] == 3

    @pytest.mark.asyncio
    async def test_unknown_subscription_is_404(self, client):
        response = await client.get(f"{API}/subscriptions/missing")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_declined_card_is_402(self, client, gateway):
        gateway.validate_payment_method.side_effect = InsufficientFundsError(decline_code="insufficient_funds")

        response = await client.post(
            f"{API}/payment-methods/validate",
            json={"paymentMethodId": "pm_card_chargeDeclined", "amount": 4900},
        )

        assert response.status_code == 402
        assert response.json() == {"error": "Insufficient funds or card declined", "code": "INSUFFICIENT_FUNDS"}

    @pytest.mark.asyncio
    async def test_valid_card(self, client):
        response = await client.post(
            f"{API}/payment-methods/validate",
            json={"paymentMethodId": "pm_card_visa", "amount": 4900},
        )

        assert response.status_code == 200
        assert response.json() == {"valid": True, "paymentMethodId": "pm_card_visa"}

    @pytest.mark.asyncio
    async def test_coupon_lookup(self, client):
        response = await client.get(f"{API}/coupons/WELCOME")

        assert response.status_code == 200
        assert response.json()["valid"] is True
        assert response.json()["percentOff"] == 20.0

    @pytest.mark.asyncio
    async def test_unexpected_error_is_generic_500(self, app):
        """Test internals never leak: unexpected errors render a generic body."""
        app.state.billing.lifecycle.get = AsyncMock(side_effect=RuntimeError("connection reset by peer"))
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            response = await c.get(f"{API}/subscriptions/anything")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error", "code": "INTERNAL_ERROR"}


class TestWebhookRoutes:
    """Tests for /webhooks/crm and /webhooks/stripe."""

    @staticmethod
    def signed(payload: dict):
        body = json.dumps(payload).encode()
        return body, {"X-Webhook-Signature": compute_signature(CRM_SECRET, body), "Content-Type": "application/json"}

    @pytest.mark.asyncio
    async def test_crm_bad_signature_is_401(self, client):
        response = await client.post(
            f"{API}/webhooks/crm",
            content=b"{}",
            headers={"X-Webhook-Signature": "deadbeef"},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "WEBHOOK_VERIFICATION_FAILED"

    @pytest.mark.asyncio
    async def test_crm_without_secret_is_503(self, app, client):
        app.state.billing.settings = Settings(CRM_WEBHOOK_SECRET="")

        response = await client.post(f"{API}/webhooks/crm", content=b"{}", headers={"X-Webhook-Signature": "x"})

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_crm_echo_ignored_then_duplicate(self, client, crm):
        """Test our own CRM writes are acknowledged without processing, and replays dedup."""
        body, headers = self.signed({
            "meta": {"id": "evt-echo", "entity": "deal", "action": "change", "change_source": "api"},
            "data": {"id": 77},
        })

        first = await client.post(f"{API}/webhooks/crm", content=body, headers=headers)
        replay = await client.post(f"{API}/webhooks/crm", content=body, headers=headers)

        assert first.status_code == 200
        assert first.json()["outcome"] == "ignored"
        assert replay.json()["outcome"] == "duplicate"
        crm.get_deal_field_key.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_crm_processing_error_still_200(self, client, crm):
        """Test handler failures are acknowledged; the event is retried on redelivery."""
        crm.get_deal_field_key.side_effect = RuntimeError("pipedrive unavailable")
        body, headers = self.signed({
            "meta": {"id": "evt-fail", "entity": "deal", "action": "change"},
            "data": {"id": 77, "status": "open"},
        })

        response = await client.post(f"{API}/webhooks/crm", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"status": "success", "error": "processed_with_errors", "eventId": "evt-fail"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"\"deal\""])
    async def test_crm_signed_malformed_body_acknowledged(self, client, body):
        """Test a signed body that is not a JSON object is acknowledged, not rejected."""
        headers = {"X-Webhook-Signature": compute_signature(CRM_SECRET, body)}

        response = await client.post(f"{API}/webhooks/crm", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"status": "success", "error": "processed_with_errors", "eventId": None}

    @pytest.mark.asyncio
    async def test_stripe_missing_signature_is_401(self, client):
        response = await client.post(f"{API}/webhooks/stripe", content=b"{}")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_stripe_event_processed(self, client, gateway, make_subscription):
        await make_subscription(provider_subscription_id="sub_live")
        gateway.construct_event.return_value = {
            "id": "evt_stripe_1",
            "type": "customer.subscription.updated",
            "created": 1772452800,
            "data": {"object": {"id": "sub_live", "status": "active"}},
        }

        response = await client.post(
            f"{API}/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "t=1,v1=abc"},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "processed"
        gateway.construct_event.assert_called_once_with(b"{}", "t=1,v1=abc")


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get(f"{API}/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": "ok", "stripe": "disabled", "crm": "enabled"}
