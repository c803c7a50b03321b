"""Tests for subscription lifecycle operations.

Tests cover:
- Deferred and immediate cancellation
- Undo-cancel legality
- Trial extension and its cumulative ceiling
- Card funds validation
- Recording subscriptions from completed checkouts and provider updates
"""

import asyncio
from datetime import timedelta

import pytest

from menubill.src.billing.domain.subscription import SubscriptionStatus
from menubill.src.billing.shared.exceptions import (
    InsufficientFundsError,
    InvalidStateTransitionError,
    NotFoundError,
    ProviderError,
    TrialExtensionLimitError,
    ValidationError,
)

from .helpers import RESTAURANT_ID, USER_ID, provider_subscription


class TestCancel:
    """Tests for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_at_period_end(self, lifecycle, gateway, sink, make_subscription, clock):
        """Test a deferred cancel schedules the end date and keeps the subscription active."""
        subscription_id = await make_subscription()
        cancel_at = clock.now + timedelta(days=30)
        gateway.cancel_subscription.return_value = provider_subscription(
            "sub_x", cancel_at=cancel_at, cancel_at_period_end=True
        )

        subscription = await lifecycle.cancel(subscription_id, at_period_end=True, reason="closing for winter")

        assert subscription.cancel_at == cancel_at
        assert subscription.canceled_at is None
        assert subscription.is_active is True
        assert subscription.is_pending_cancel is True
        assert subscription.cancellation_reason == "closing for winter"
        gateway.cancel_subscription.assert_awaited_once_with(
            subscription.provider_subscription_id, at_period_end=True, reason="closing for winter"
        )
        sink.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancel_at_period_end_falls_back_to_period_end(self, lifecycle, gateway, make_subscription, clock):
        subscription_id = await make_subscription()
        period_end = clock.now + timedelta(days=12)
        gateway.cancel_subscription.return_value = provider_subscription(
            "sub_x", cancel_at_period_end=True, current_period_end=period_end
        )

        subscription = await lifecycle.cancel(subscription_id, at_period_end=True)

        assert subscription.cancel_at == period_end

    @pytest.mark.asyncio
    async def test_cancel_at_period_end_twice_is_noop(self, lifecycle, gateway, make_subscription, clock):
        subscription_id = await make_subscription(cancel_at=clock.now + timedelta(days=30))

        subscription = await lifecycle.cancel(subscription_id, at_period_end=True)

        assert subscription.is_pending_cancel is True
        gateway.cancel_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_immediately(self, lifecycle, gateway, make_subscription, clock):
        """Test an immediate cancel ends the subscription and frees the active slot."""
        subscription_id = await make_subscription()
        gateway.cancel_subscription.return_value = provider_subscription(
            "sub_x", status="canceled", ended_at=clock.now
        )

        subscription = await lifecycle.cancel(subscription_id, at_period_end=False)

        assert subscription.status == SubscriptionStatus.CANCELED
        assert subscription.canceled_at == clock.now
        assert subscription.is_active is False

    @pytest.mark.asyncio
    async def test_cancel_already_canceled(self, lifecycle, gateway, make_subscription, clock):
        subscription_id = await make_subscription(status="canceled", canceled_at=clock.now, is_active=False)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.cancel(subscription_id, at_period_end=False)

        gateway.cancel_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_row_untouched(self, lifecycle, gateway, sink, make_subscription):
        """Test the local row does not change when the provider rejects the cancel."""
        subscription_id = await make_subscription()
        gateway.cancel_subscription.side_effect = ProviderError("No such subscription")

        with pytest.raises(ProviderError):
            await lifecycle.cancel(subscription_id, at_period_end=True)

        subscription = await lifecycle.get(subscription_id)
        assert subscription.cancel_at is None
        assert subscription.is_active is True
        sink.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_unknown_subscription(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.cancel("missing", at_period_end=True)


class TestUndoCancel:
    """Tests for withdrawing a scheduled cancellation."""

    @pytest.mark.asyncio
    async def test_undo_cancel(self, lifecycle, gateway, sink, make_subscription, clock):
        """Test undo clears cancel_at and reactivates in one step."""
        subscription_id = await make_subscription(
            cancel_at=clock.now + timedelta(days=30), cancellation_reason="too expensive"
        )
        gateway.reactivate_subscription.return_value = provider_subscription("sub_x", status="active")

        subscription = await lifecycle.undo_cancel(subscription_id)

        assert subscription.cancel_at is None
        assert subscription.is_active is True
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.cancellation_reason is None
        sink.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_undo_without_scheduled_cancel(self, lifecycle, gateway, make_subscription):
        subscription_id = await make_subscription()

        with pytest.raises(InvalidStateTransitionError, match="no scheduled cancellation"):
            await lifecycle.undo_cancel(subscription_id)

        gateway.reactivate_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_undo_after_final_cancel(self, lifecycle, make_subscription, clock):
        subscription_id = await make_subscription(
            status="canceled",
            cancel_at=clock.now,
            canceled_at=clock.now,
            is_active=False,
        )

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.undo_cancel(subscription_id)

    @pytest.mark.asyncio
    async def test_undo_blocked_by_other_active_subscription(self, lifecycle, gateway, make_subscription, clock):
        """Test undo is refused when another subscription holds the active slot for the plan."""
        await make_subscription(status="active")
        pending_id = await make_subscription(
            status="active",
            is_active=False,
            cancel_at=clock.now + timedelta(days=10),
        )

        with pytest.raises(InvalidStateTransitionError, match="Another active subscription"):
            await lifecycle.undo_cancel(pending_id)

        gateway.reactivate_subscription.assert_not_awaited()


class TestExtendTrial:
    """Tests for trial extension."""

    @pytest.mark.asyncio
    async def test_extend_trial(self, lifecycle, gateway, sink, make_subscription, clock):
        original_end = clock.now + timedelta(days=7)
        subscription_id = await make_subscription(trial_end=original_end)

        subscription = await lifecycle.extend_trial(subscription_id, 5)

        assert subscription.trial_end == original_end + timedelta(days=5)
        assert subscription.original_trial_end == original_end
        assert subscription.trial_extended_count == 1
        assert subscription.trial_extended_days == 5
        gateway.set_trial_end.assert_awaited_once_with(
            subscription.provider_subscription_id, original_end + timedelta(days=5)
        )
        sink.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_original_trial_end_kept_across_extensions(self, lifecycle, make_subscription, clock):
        original_end = clock.now + timedelta(days=7)
        subscription_id = await make_subscription(trial_end=original_end)

        await lifecycle.extend_trial(subscription_id, 3)
        subscription = await lifecycle.extend_trial(subscription_id, 4)

        assert subscription.original_trial_end == original_end
        assert subscription.trial_end == original_end + timedelta(days=7)
        assert subscription.trial_extended_count == 2
        assert subscription.trial_extended_days == 7

    @pytest.mark.asyncio
    async def test_cumulative_ceiling(self, lifecycle, gateway, make_subscription):
        """Test extensions stop at max_trial_extension_days - trial_days (23) in total."""
        subscription_id = await make_subscription()
        await lifecycle.extend_trial(subscription_id, 20)

        with pytest.raises(TrialExtensionLimitError) as exc_info:
            await lifecycle.extend_trial(subscription_id, 4)
        assert exc_info.value.remaining == 3

        subscription = await lifecycle.extend_trial(subscription_id, 3)
        assert subscription.trial_extended_days == 23

        with pytest.raises(TrialExtensionLimitError) as exc_info:
            await lifecycle.extend_trial(subscription_id, 1)
        assert exc_info.value.remaining == 0
        assert gateway.set_trial_end.await_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_extensions_never_exceed_ceiling(self, lifecycle, make_subscription):
        subscription_id = await make_subscription()

        results = await asyncio.gather(
            *(lifecycle.extend_trial(subscription_id, 10) for _ in range(3)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        subscription = await lifecycle.get(subscription_id)
        assert succeeded
        assert subscription.trial_extended_days <= 23
        assert subscription.trial_extended_count == len(succeeded)
        assert subscription.trial_extended_days == 10 * len(succeeded)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, -2])
    async def test_days_must_be_positive(self, lifecycle, make_subscription, days):
        subscription_id = await make_subscription()

        with pytest.raises(ValidationError):
            await lifecycle.extend_trial(subscription_id, days)

    @pytest.mark.asyncio
    async def test_canceled_subscription_cannot_extend(self, lifecycle, make_subscription, clock):
        subscription_id = await make_subscription(status="canceled", canceled_at=clock.now, is_active=False)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.extend_trial(subscription_id, 2)

    @pytest.mark.asyncio
    async def test_no_trial_cannot_extend(self, lifecycle, make_subscription):
        subscription_id = await make_subscription(status="active", trial_end=None, trial_start=None)

        with pytest.raises(InvalidStateTransitionError, match="not in a trial"):
            await lifecycle.extend_trial(subscription_id, 2)

    @pytest.mark.asyncio
    async def test_provider_failure_keeps_trial(self, lifecycle, gateway, make_subscription, clock):
        subscription_id = await make_subscription()
        gateway.set_trial_end.side_effect = ProviderError("trial_end must be in the future")

        with pytest.raises(ProviderError):
            await lifecycle.extend_trial(subscription_id, 5)

        subscription = await lifecycle.get(subscription_id)
        assert subscription.trial_extended_days == 0
        assert subscription.trial_end == clock.now + timedelta(days=7)


class TestCardFunds:
    """Tests for card validation."""

    @pytest.mark.asyncio
    async def test_validate_card_funds(self, lifecycle, gateway):
        await lifecycle.validate_card_funds("pm_card_visa", 4900, "USD", customer_id="cus_123")

        gateway.validate_payment_method.assert_awaited_once_with("pm_card_visa", 4900, "usd", "cus_123")

    @pytest.mark.asyncio
    async def test_declined_card_propagates(self, lifecycle, gateway):
        gateway.validate_payment_method.side_effect = InsufficientFundsError(
            decline_code="insufficient_funds", payment_method_id="pm_card_chargeDeclined"
        )

        with pytest.raises(InsufficientFundsError) as exc_info:
            await lifecycle.validate_card_funds("pm_card_chargeDeclined", 4900)

        assert exc_info.value.status_code == 402
        assert exc_info.value.decline_code == "insufficient_funds"

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, lifecycle, gateway):
        with pytest.raises(ValidationError):
            await lifecycle.validate_card_funds("pm_card_visa", 0)

        gateway.validate_payment_method.assert_not_awaited()


class TestProviderSync:
    """Tests for subscriptions created and updated by provider events."""

    @pytest.mark.asyncio
    async def test_open_from_checkout(self, lifecycle, links, clock):
        link = await links.issue(USER_ID, RESTAURANT_ID, "plan-basic")
        provider = provider_subscription(
            "sub_new",
            trial_start=clock.now,
            trial_end=clock.now + timedelta(days=7),
            current_period_start=clock.now,
            current_period_end=clock.now + timedelta(days=7),
        )

        subscription = await lifecycle.open_from_checkout(link, provider)

        assert subscription.provider_subscription_id == "sub_new"
        assert subscription.profile_id == USER_ID
        assert subscription.plan_id == "plan-basic"
        assert subscription.restaurant_id == RESTAURANT_ID
        assert subscription.status == SubscriptionStatus.TRIALING
        assert subscription.is_active is True
        assert subscription.trial_activated is True

    @pytest.mark.asyncio
    async def test_open_from_checkout_redelivery(self, lifecycle, links):
        link = await links.issue(USER_ID, RESTAURANT_ID, "plan-basic")
        provider = provider_subscription("sub_new")

        first = await lifecycle.open_from_checkout(link, provider)
        second = await lifecycle.open_from_checkout(link, provider_subscription("sub_new", status="active"))

        assert second.id == first.id
        assert second.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_open_from_checkout_with_existing_active(self, lifecycle, links, make_subscription):
        """Test a second subscription for the same plan is stored without taking the active slot."""
        existing_id = await make_subscription(status="active")
        link = await links.issue(USER_ID, RESTAURANT_ID, "plan-basic")

        subscription = await lifecycle.open_from_checkout(link, provider_subscription("sub_second"))

        assert subscription.id != existing_id
        assert subscription.is_active is False
        assert (await lifecycle.get(existing_id)).is_active is True

    @pytest.mark.asyncio
    async def test_provider_cancellation_is_mirrored(self, lifecycle, make_subscription, clock):
        subscription_id = await make_subscription(provider_subscription_id="sub_mirror")

        subscription = await lifecycle.apply_provider_update(
            provider_subscription("sub_mirror", status="canceled", ended_at=clock.now)
        )

        assert subscription.id == subscription_id
        assert subscription.status == SubscriptionStatus.CANCELED
        assert subscription.canceled_at == clock.now
        assert subscription.is_active is False

    @pytest.mark.asyncio
    async def test_scheduled_cancel_does_not_finalise(self, lifecycle, make_subscription, clock):
        """Test the provider's canceled_at on a scheduled cancel is not taken as the final cancel."""
        await make_subscription(provider_subscription_id="sub_mirror")
        period_end = clock.now + timedelta(days=30)

        subscription = await lifecycle.apply_provider_update(
            provider_subscription(
                "sub_mirror",
                status="active",
                cancel_at_period_end=True,
                canceled_at=clock.now,
                current_period_end=period_end,
            )
        )

        assert subscription.cancel_at == period_end
        assert subscription.canceled_at is None
        assert subscription.is_pending_cancel is True

    @pytest.mark.asyncio
    async def test_update_for_unknown_subscription(self, lifecycle):
        assert await lifecycle.apply_provider_update(provider_subscription("sub_unknown")) is None

    @pytest.mark.asyncio
    async def test_update_after_final_cancel_ignored(self, lifecycle, make_subscription, clock):
        await make_subscription(
            provider_subscription_id="sub_done", status="canceled", canceled_at=clock.now, is_active=False
        )

        assert await lifecycle.apply_provider_update(provider_subscription("sub_done", status="active")) is None

    @pytest.mark.asyncio
    async def test_attach_crm_deal(self, lifecycle, make_subscription):
        subscription_id = await make_subscription()

        touched = await lifecycle.attach_crm_deal(RESTAURANT_ID, "deal-42", stage_id="3", deal_status="open")

        subscription = await lifecycle.get(subscription_id)
        assert touched == 1
        assert subscription.crm_deal_id == "deal-42"
        assert subscription.crm_stage_id == "3"
