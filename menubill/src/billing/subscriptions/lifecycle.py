"""
Subscription Lifecycle Service

Cancel, undo-cancel and trial extension for provider-backed subscriptions.

Every operation talks to the payment provider first and only then writes
locally, with a conditional UPDATE that re-checks the state the decision
was based on. A provider failure therefore leaves the local row untouched.

Usage:
    lifecycle = SubscriptionLifecycleService(session_factory, gateway, notifier, policy)
    await lifecycle.cancel(subscription_id, at_period_end=True, reason="closing down")
    await lifecycle.undo_cancel(subscription_id)
    await lifecycle.extend_trial(subscription_id, days=7)
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menubill.src.billing.crud.crud_subscription import CRUDSubscription, subscription_dao
from menubill.src.billing.domain.checkout_link import CheckoutLink
from menubill.src.billing.domain.subscription import Subscription, SubscriptionStatus
from menubill.src.billing.external.stripe.interfaces import PaymentProviderGateway, ProviderSubscription
from menubill.src.billing.model.subscription import SubscriptionRecord
from menubill.src.billing.notifications import formatters
from menubill.src.billing.notifications.fanout import NotificationFanout
from menubill.src.billing.shared.config import BillingPolicy
from menubill.src.billing.shared.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    ProviderError,
    TrialExtensionLimitError,
    ValidationError,
)
from menubill.utils.timezone import timezone

logger = logging.getLogger(__name__)


class SubscriptionLifecycleService:
    """
    Subscription state changes driven by staff actions and provider events.

    Args:
        session_factory: Async session factory for the billing database
        gateway: Payment provider
        notifier: Lifecycle notification fan-out
        policy: Trial ceiling policy
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentProviderGateway,
        notifier: NotificationFanout,
        policy: BillingPolicy,
        subscriptions: CRUDSubscription = subscription_dao,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self._sessions = session_factory
        self._gateway = gateway
        self._notifier = notifier
        self._policy = policy
        self._subscriptions = subscriptions
        self._clock = clock

    async def get(self, subscription_id: str) -> Subscription:
        async with self._sessions() as db:
            row = await self._subscriptions.get(db, subscription_id)
        if row is None:
            raise NotFoundError("Subscription", subscription_id)
        return Subscription.from_row(row)

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel(self, subscription_id: str, at_period_end: bool, reason: Optional[str] = None) -> Subscription:
        """
        Cancel a subscription now or at the end of the current period.

        Args:
            subscription_id: Internal subscription id
            at_period_end: Defer the cancellation to period end
            reason: Free-text reason recorded locally and on the provider

        Returns:
            The updated subscription

        Raises:
            NotFoundError: unknown subscription
            InvalidStateTransitionError: already canceled
            ProviderError: provider rejected the cancellation; nothing changed locally
        """
        subscription = await self.get(subscription_id)

        if subscription.is_canceled():
            raise InvalidStateTransitionError(
                f"Subscription {subscription_id} is already canceled",
                current_status=subscription.status.value,
            )

        if at_period_end and subscription.is_pending_cancel:
            logger.info(f"[CANCEL] Subscription {subscription_id} already scheduled to cancel, nothing to do")
            return subscription

        provider = await self._gateway.cancel_subscription(
            subscription.provider_subscription_id,
            at_period_end=at_period_end,
            reason=reason,
        )

        if at_period_end:
            cancel_at = provider.cancel_at or provider.current_period_end or subscription.current_period_end
            if cancel_at is None:
                raise ProviderError(
                    f"Provider returned no cancellation date for {subscription.provider_subscription_id}"
                )
            values = dict(cancel_at=cancel_at, cancellation_reason=reason)
        else:
            values = dict(
                canceled_at=provider.ended_at or provider.canceled_at or self._clock(),
                is_active=False,
                status=SubscriptionStatus.CANCELED.value,
                cancellation_reason=reason,
            )

        async with self._sessions() as db:
            updated = await self._subscriptions.conditional_update(
                db,
                subscription_id,
                SubscriptionRecord.canceled_at.is_(None),
                **values,
            )

        subscription = await self.get(subscription_id)
        if not updated:
            logger.warning(f"[CANCEL] Subscription {subscription_id} changed underneath the cancel, keeping stored state")
            return subscription

        logger.info(
            f"[CANCEL] Subscription {subscription_id} "
            f"{'scheduled to cancel at ' + subscription.cancel_at.isoformat() if at_period_end else 'canceled immediately'}"
        )
        await self._notifier.notify(formatters.subscription_canceled(subscription, at_period_end, reason))
        return subscription

    async def undo_cancel(self, subscription_id: str) -> Subscription:
        """
        Withdraw a scheduled cancellation.

        Clears ``cancel_at`` and sets ``is_active`` in one statement.

        Raises:
            NotFoundError: unknown subscription
            InvalidStateTransitionError: nothing scheduled, already canceled, or
                another subscription holds the active slot
            ProviderError: provider rejected the reactivation
        """
        subscription = await self.get(subscription_id)

        if not subscription.is_pending_cancel:
            raise InvalidStateTransitionError(
                f"Subscription {subscription_id} has no scheduled cancellation to undo",
                current_status=subscription.status.value,
            )

        async with self._sessions() as db:
            conflict = await self._subscriptions.has_other_active(
                db, subscription.profile_id, subscription.plan_id, exclude_id=subscription_id
            )
        if conflict and not subscription.is_active:
            raise InvalidStateTransitionError(
                f"Another active subscription exists for plan {subscription.plan_id}",
                current_status=subscription.status.value,
            )

        provider = await self._gateway.reactivate_subscription(subscription.provider_subscription_id)

        values = dict(cancel_at=None, is_active=True, cancellation_reason=None)
        if provider.status:
            values['status'] = SubscriptionStatus.parse(provider.status).value

        try:
            async with self._sessions() as db:
                updated = await self._subscriptions.conditional_update(
                    db,
                    subscription_id,
                    SubscriptionRecord.cancel_at.is_not(None),
                    SubscriptionRecord.canceled_at.is_(None),
                    **values,
                )
        except IntegrityError as e:
            raise InvalidStateTransitionError(
                f"Another active subscription exists for plan {subscription.plan_id}",
                current_status=subscription.status.value,
            ) from e

        if not updated:
            current = await self.get(subscription_id)
            raise InvalidStateTransitionError(
                f"Subscription {subscription_id} is no longer pending cancellation",
                current_status=current.status.value,
            )

        subscription = await self.get(subscription_id)
        logger.info(f"[CANCEL] Scheduled cancellation withdrawn for subscription {subscription_id}")
        await self._notifier.notify(formatters.subscription_reactivated(subscription))
        return subscription

    # =========================================================================
    # Trial
    # =========================================================================

    async def extend_trial(self, subscription_id: str, days: int) -> Subscription:
        """
        Push the trial end out by ``days``.

        The cumulative extension is capped at
        ``max_trial_extension_days - trial_days``; the cap is re-checked in
        the UPDATE itself so concurrent extensions cannot overshoot it.

        Raises:
            ValidationError: days < 1
            NotFoundError: unknown subscription
            InvalidStateTransitionError: canceled or no trial
            TrialExtensionLimitError: the ceiling would be exceeded
            ProviderError: provider rejected the new trial end
        """
        if days < 1:
            raise ValidationError("Trial extension must be at least 1 day", field="days")

        subscription = await self.get(subscription_id)

        if subscription.is_canceled():
            raise InvalidStateTransitionError(
                f"Subscription {subscription_id} is canceled",
                current_status=subscription.status.value,
            )
        if subscription.trial_end is None:
            raise InvalidStateTransitionError(
                f"Subscription {subscription_id} is not in a trial period",
                current_status=subscription.status.value,
            )

        ceiling = self._policy.max_extension_total_days
        remaining = ceiling - subscription.trial_extended_days
        if days > remaining:
            raise TrialExtensionLimitError(requested=days, remaining=remaining)

        new_trial_end = timezone.add_days(subscription.trial_end, days)
        await self._gateway.set_trial_end(subscription.provider_subscription_id, new_trial_end)

        async with self._sessions() as db:
            updated = await self._subscriptions.conditional_update(
                db,
                subscription_id,
                SubscriptionRecord.trial_extended_count == subscription.trial_extended_count,
                SubscriptionRecord.trial_extended_days + days <= ceiling,
                trial_end=new_trial_end,
                original_trial_end=subscription.original_trial_end or subscription.trial_end,
                trial_extended_count=SubscriptionRecord.trial_extended_count + 1,
                trial_extended_days=SubscriptionRecord.trial_extended_days + days,
            )

        if not updated:
            current = await self.get(subscription_id)
            logger.warning(
                f"[TRIAL] Extension of {subscription_id} lost a concurrent update; "
                f"provider trial end is now {new_trial_end.isoformat()}"
            )
            if current.trial_extended_days + days > ceiling:
                raise TrialExtensionLimitError(requested=days, remaining=ceiling - current.trial_extended_days)
            raise InvalidStateTransitionError(
                f"Subscription {subscription_id} was modified concurrently, retry the extension",
                current_status=current.status.value,
            )

        subscription = await self.get(subscription_id)
        logger.info(
            f"[TRIAL] Subscription {subscription_id} trial extended by {days}d to {new_trial_end.isoformat()} "
            f"({subscription.trial_extended_days}/{ceiling}d used)"
        )
        await self._notifier.notify(formatters.trial_extended(subscription, days))
        return subscription

    # =========================================================================
    # Card validation
    # =========================================================================

    async def validate_card_funds(
        self,
        payment_method_id: str,
        amount: int,
        currency: str = "usd",
        customer_id: Optional[str] = None,
    ) -> None:
        """
        Confirm a card can cover ``amount`` (cents) without charging it.

        Raises:
            ValidationError: non-positive amount
            InsufficientFundsError: card declined
            ProviderError: provider failure
        """
        if amount <= 0:
            raise ValidationError("Amount must be a positive number of cents", field="amount")
        await self._gateway.validate_payment_method(payment_method_id, amount, currency.lower(), customer_id)
        logger.info(f"[FUNDS] Payment method {payment_method_id} can cover {amount} {currency.lower()}")

    # =========================================================================
    # CRM and provider sync
    # =========================================================================

    async def attach_crm_deal(
        self,
        restaurant_id: str,
        deal_id: str,
        stage_id: Optional[str] = None,
        deal_status: Optional[str] = None,
    ) -> int:
        """Stamp deal metadata on the restaurant's subscriptions. Returns the number of rows touched."""
        async with self._sessions() as db:
            touched = await self._subscriptions.update_crm_metadata_for_restaurant(
                db, restaurant_id, deal_id, stage_id, deal_status
            )
        if touched:
            logger.info(f"[CRM] Deal {deal_id} attached to {touched} subscription(s) of restaurant {restaurant_id}")
        return touched

    async def open_from_checkout(self, link: CheckoutLink, provider: ProviderSubscription) -> Subscription:
        """
        Record the subscription a completed checkout created.

        Redelivery of the same checkout mirrors the provider state onto the
        existing row. If another subscription already holds the active slot
        for (profile, plan), the new one is stored inactive.
        """
        async with self._sessions() as db:
            existing = await self._subscriptions.get_by_provider_id(db, provider.id)
        if existing is not None:
            updated = await self.apply_provider_update(provider)
            return updated or Subscription.from_row(existing)

        for is_active in (True, False):
            record = SubscriptionRecord(
                profile_id=link.user_id,
                plan_id=link.plan_id,
                provider_subscription_id=provider.id,
                status=SubscriptionStatus.parse(provider.status).value,
                restaurant_id=link.restaurant_id,
                provider_customer_id=provider.customer_id or link.provider_customer_id,
                is_active=is_active,
                current_period_start=provider.current_period_start,
                current_period_end=provider.current_period_end,
                trial_activated=provider.trial_end is not None,
                trial_start=provider.trial_start,
                trial_end=provider.trial_end,
                cancel_at=provider.cancel_at,
            )
            try:
                async with self._sessions() as db:
                    saved = await self._subscriptions.create(db, record)
            except IntegrityError:
                async with self._sessions() as db:
                    raced = await self._subscriptions.get_by_provider_id(db, provider.id)
                if raced is not None:
                    return Subscription.from_row(raced)
                logger.warning(
                    f"[SYNC] Profile {link.user_id} already has an active {link.plan_id} subscription, "
                    f"storing {provider.id} inactive"
                )
                continue

            logger.info(f"[SYNC] Subscription {saved.id} opened from checkout link {link.id} ({provider.id})")
            return Subscription.from_row(saved)

        raise InvalidStateTransitionError(f"Could not record provider subscription {provider.id}")

    async def apply_provider_update(self, provider: ProviderSubscription) -> Optional[Subscription]:
        """
        Mirror a provider subscription snapshot onto the local row.

        The provider's ``canceled_at`` is also set for scheduled cancellations,
        so the local ``canceled_at`` is only written once the status is
        ``canceled``.

        Returns:
            The updated subscription, or None if it is unknown or already canceled
        """
        async with self._sessions() as db:
            row = await self._subscriptions.get_by_provider_id(db, provider.id)
        if row is None:
            logger.info(f"[SYNC] No local subscription for provider id {provider.id}")
            return None

        subscription = Subscription.from_row(row)
        if subscription.is_canceled():
            logger.info(f"[SYNC] Subscription {subscription.id} already canceled, ignoring provider update")
            return None

        status = SubscriptionStatus.parse(provider.status)
        cancel_at = provider.cancel_at
        if cancel_at is None and provider.cancel_at_period_end:
            cancel_at = provider.current_period_end

        values = dict(
            status=status.value,
            cancel_at=cancel_at,
            current_period_start=provider.current_period_start or subscription.current_period_start,
            current_period_end=provider.current_period_end or subscription.current_period_end,
            trial_start=provider.trial_start or subscription.trial_start,
            trial_end=provider.trial_end or subscription.trial_end,
        )
        if provider.trial_start:
            values['trial_activated'] = True
        if status == SubscriptionStatus.CANCELED:
            values['canceled_at'] = provider.ended_at or provider.canceled_at or self._clock()
            values['is_active'] = False

        async with self._sessions() as db:
            await self._subscriptions.conditional_update(
                db,
                subscription.id,
                SubscriptionRecord.canceled_at.is_(None),
                **values,
            )

        logger.info(f"[SYNC] Subscription {subscription.id} mirrored provider status {status.value}")
        return await self.get(subscription.id)
