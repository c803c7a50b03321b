"""
Checkout Link Service

Issues, resolves and transitions checkout links.

Issuance is all-or-nothing: the provider checkout session is created
before anything is written, so a provider failure leaves no row behind.
At most one active link exists per (user, plan); a second request for the
same pair returns the existing link, and a losing concurrent insert
returns the winner's link.

Usage:
    service = CheckoutLinkService(session_factory, catalog, gateway, notifier, policy, ...)
    link = await service.issue(user_id, restaurant_id, plan_id)
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menubill.src.billing.crud.crud_checkout_link import CRUDCheckoutLink, checkout_link_dao
from menubill.src.billing.crud.crud_profile import CRUDProfile, profile_dao
from menubill.src.billing.domain.checkout_link import CheckoutLink, CheckoutLinkStatus
from menubill.src.billing.domain.plan import Plan
from menubill.src.billing.external.stripe.idempotency import StripeIdempotencyManager
from menubill.src.billing.external.stripe.interfaces import PaymentProviderGateway
from menubill.src.billing.model.checkout_link import CheckoutLinkRecord
from menubill.src.billing.model.profile import ProfileRecord
from menubill.src.billing.notifications import formatters
from menubill.src.billing.notifications.fanout import NotificationFanout
from menubill.src.billing.plans.catalog import PlanCatalog
from menubill.src.billing.shared.config import BillingPolicy
from menubill.src.billing.shared.exceptions import (
    DuplicateActiveLinkError,
    InvalidStateTransitionError,
    LinkAlreadyUsedError,
    NotFoundError,
    ValidationError,
)
from menubill.utils.timezone import timezone

logger = logging.getLogger(__name__)


class CheckoutLinkService:
    """
    Checkout link lifecycle.

    Args:
        session_factory: Async session factory for the billing database
        catalog: Plan lookups
        gateway: Payment provider
        notifier: Lifecycle notification fan-out
        policy: Trial and TTL policy
        public_base_url: Frontend origin used for checkout redirects
        link_base_url: Public prefix of the visit route, e.g. https://host/api/v1/checkout-links
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: PlanCatalog,
        gateway: PaymentProviderGateway,
        notifier: NotificationFanout,
        policy: BillingPolicy,
        public_base_url: str,
        link_base_url: str,
        links: CRUDCheckoutLink = checkout_link_dao,
        profiles: CRUDProfile = profile_dao,
        idempotency: Optional[StripeIdempotencyManager] = None,
        clock: Callable[[], datetime] = timezone.now,
        sweep_batch_size: int = 200,
    ):
        self._sessions = session_factory
        self._catalog = catalog
        self._gateway = gateway
        self._notifier = notifier
        self._policy = policy
        self._public_base_url = public_base_url.rstrip('/')
        self._link_base_url = link_base_url.rstrip('/')
        self._links = links
        self._profiles = profiles
        self._idempotency = idempotency or StripeIdempotencyManager()
        self._clock = clock
        self._sweep_batch_size = sweep_batch_size

    @property
    def sweep_batch_size(self) -> int:
        return self._sweep_batch_size

    def public_url(self, link: CheckoutLink) -> str:
        """Stable URL handed to customers; resolves to the current checkout page."""
        return f"{self._link_base_url}/{link.id}/visit"

    # =========================================================================
    # Issuance
    # =========================================================================

    async def issue(
        self,
        user_id: str,
        restaurant_id: str,
        plan_id: str,
        trial_override_days: Optional[int] = None,
        coupon_code: Optional[str] = None,
    ) -> CheckoutLink:
        """
        Issue a checkout link for (user, plan), or return the active one.

        Args:
            user_id: Profile id
            restaurant_id: Restaurant being subscribed
            plan_id: Plan to purchase
            trial_override_days: Replaces the plan's default trial
            coupon_code: Provider coupon applied to the session

        Returns:
            The link; ``reused`` is True when an existing active link was returned

        Raises:
            InvalidPlanError: unknown or inactive plan
            ValidationError: bad trial override or coupon
            NotFoundError: unknown profile
            ProviderError: provider call failed; nothing was persisted
        """
        plan = await self._catalog.require_active(plan_id)
        trial_days = self._resolve_trial_days(plan, trial_override_days)

        existing = await self._active_link(user_id, plan_id)
        if existing is not None:
            logger.info(f"[CHECKOUT] Reusing active link {existing.id} for user {user_id} plan {plan_id}")
            existing.reused = True
            return existing

        async with self._sessions() as db:
            profile = await self._profiles.get(db, user_id)
            latest = await self._links.get_latest_for_pair(db, user_id, plan_id)
        if profile is None:
            raise NotFoundError("Profile", user_id)

        customer_id = await self._resolve_customer(profile)

        if coupon_code:
            coupon = await self._gateway.validate_coupon(coupon_code)
            if not coupon.valid:
                raise ValidationError(
                    f"Coupon {coupon_code} is not valid: {coupon.reason or 'unknown reason'}",
                    field="couponCode",
                )

        now = self._clock()
        # Racers for the same pair see the same latest link and share one key,
        # so the provider hands both the same session
        idempotency_key = self._idempotency.generate_checkout_key(
            user_id,
            plan_id,
            trial_days,
            coupon_code=coupon_code,
            previous_link_id=latest.id if latest else None,
            now=now,
        )
        session = await self._gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=plan.provider_price_id,
            trial_days=trial_days,
            metadata={
                'user_id': user_id,
                'restaurant_id': restaurant_id,
                'plan_id': plan_id,
                'trial_days': str(trial_days),
            },
            success_url=f"{self._public_base_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self._public_base_url}/billing/cancel",
            idempotency_key=idempotency_key,
            coupon_code=coupon_code,
        )

        record = CheckoutLinkRecord(
            user_id=user_id,
            restaurant_id=restaurant_id,
            plan_id=plan_id,
            provider_customer_id=customer_id,
            original_checkout_url=session.url,
            expires_at=now + self._policy.link_ttl,
            trial_days=trial_days,
            trial_enabled=trial_days > 0,
            provider_session_id=session.id,
        )
        record.created_at = now
        record.updated_at = now

        try:
            async with self._sessions() as db:
                saved = await self._links.create(db, record)
        except DuplicateActiveLinkError:
            winner = await self._active_link(user_id, plan_id)
            if winner is None:
                raise
            logger.info(f"[CHECKOUT] Lost issuance race for user {user_id} plan {plan_id}, returning {winner.id}")
            winner.reused = True
            return winner

        link = CheckoutLink.from_row(saved)
        logger.info(
            f"[CHECKOUT] Issued link {link.id} for user {user_id} plan {plan_id} "
            f"(trial {trial_days}d, expires {link.expires_at.isoformat()})"
        )
        await self._notifier.notify(formatters.checkout_link_issued(link, plan, self.public_url(link)))
        return link

    def _resolve_trial_days(self, plan: Plan, override: Optional[int]) -> int:
        if override is None:
            return plan.trial_days
        if override < 0 or override > self._policy.max_trial_extension_days:
            raise ValidationError(
                f"Trial days must be between 0 and {self._policy.max_trial_extension_days}",
                field="trialDays",
            )
        return override

    async def _active_link(self, user_id: str, plan_id: str) -> Optional[CheckoutLink]:
        """Active link for the pair; one already past expiry is closed and not returned."""
        async with self._sessions() as db:
            row = await self._links.get_active_for_pair(db, user_id, plan_id)
        if row is None:
            return None

        link = CheckoutLink.from_row(row)
        if not link.is_past_expiry(self._clock()):
            return link

        await self._expire(link.id)
        return None

    async def _resolve_customer(self, profile: ProfileRecord) -> str:
        """Stored provider customer if it still exists, otherwise find or create one by email."""
        if profile.provider_customer_id and await self._gateway.customer_exists(profile.provider_customer_id):
            return profile.provider_customer_id

        if profile.provider_customer_id:
            logger.warning(
                f"[CHECKOUT] Customer {profile.provider_customer_id} for profile {profile.id} no longer exists, re-resolving"
            )

        customer_id = await self._gateway.find_or_create_customer(
            email=profile.email,
            name=profile.name,
            phone=profile.phone,
            metadata={'profile_id': profile.id},
        )
        if customer_id != profile.provider_customer_id:
            async with self._sessions() as db:
                await self._profiles.set_provider_customer(db, profile.id, customer_id)
        return customer_id

    # =========================================================================
    # Lookups and transitions
    # =========================================================================

    async def resolve(self, link_id: str) -> CheckoutLink:
        async with self._sessions() as db:
            row = await self._links.get(db, link_id)
        if row is None:
            raise NotFoundError("Checkout link", link_id)
        return CheckoutLink.from_row(row)

    async def by_restaurant(self, restaurant_id: str) -> List[CheckoutLink]:
        async with self._sessions() as db:
            rows = await self._links.list_by_restaurant(db, restaurant_id)
        return [CheckoutLink.from_row(row) for row in rows]

    async def mark_used(self, link_id: str) -> CheckoutLink:
        """
        Move a link from active to used.

        Raises:
            NotFoundError: unknown link
            InvalidStateTransitionError: link is no longer active
        """
        async with self._sessions() as db:
            moved = await self._links.transition(db, link_id, CheckoutLinkStatus.ACTIVE, CheckoutLinkStatus.USED)
            row = await self._links.get(db, link_id)

        if row is None:
            raise NotFoundError("Checkout link", link_id)
        if not moved:
            raise InvalidStateTransitionError(
                f"Checkout link {link_id} is {row.status} and cannot be marked used",
                current_status=row.status,
            )
        logger.info(f"[CHECKOUT] Link {link_id} marked used")
        return CheckoutLink.from_row(row)

    async def find_by_session(self, session_id: str) -> Optional[CheckoutLink]:
        """Link that created the given provider checkout session, if any."""
        async with self._sessions() as db:
            row = await self._links.get_by_provider_session(db, session_id)
        return CheckoutLink.from_row(row) if row else None

    async def _expire(self, link_id: str) -> bool:
        async with self._sessions() as db:
            return await self._links.transition(db, link_id, CheckoutLinkStatus.ACTIVE, CheckoutLinkStatus.EXPIRED)

    async def sweep_expired(self, now: Optional[datetime] = None, failed: Optional[Set[str]] = None) -> int:
        """
        Expire active links whose window has closed.

        One batch per call; rows that fail are logged and left for the next sweep.

        Args:
            now: Cut-off, defaults to the service clock
            failed: Ids that failed earlier in this run; they are skipped, and
                ids failing in this batch are added

        Returns:
            Number of links moved to expired
        """
        cutoff = now or self._clock()
        if failed is None:
            failed = set()
        async with self._sessions() as db:
            rows = await self._links.list_expired(db, cutoff, limit=self._sweep_batch_size, exclude=failed)

        expired = 0
        for row in rows:
            try:
                if await self._expire(row.id):
                    expired += 1
            except Exception as e:
                failed.add(row.id)
                logger.error(f"[SWEEP] Failed to expire link {row.id}: {e}")

        if rows:
            logger.info(f"[SWEEP] Expired {expired}/{len(rows)} checkout link(s)")
        if expired:
            await self._notifier.notify(formatters.checkout_links_expired(expired))
        return expired

    async def visit(self, link_id: str) -> CheckoutLink:
        """
        Resolve the link a customer opened to a usable checkout page.

        An expired link is never reactivated; a fresh link is issued for the
        same (user, restaurant, plan) with the original trial length.

        Raises:
            NotFoundError: unknown link
            LinkAlreadyUsedError: checkout already completed
            InvalidPlanError: plan was withdrawn since the link was issued
        """
        link = await self.resolve(link_id)

        if link.status == CheckoutLinkStatus.USED:
            raise LinkAlreadyUsedError(link_id)

        if link.status == CheckoutLinkStatus.ACTIVE:
            if not link.is_past_expiry(self._clock()):
                return link
            if not await self._expire(link_id):
                current = await self.resolve(link_id)
                if current.status == CheckoutLinkStatus.USED:
                    raise LinkAlreadyUsedError(link_id)

        logger.info(f"[CHECKOUT] Link {link_id} expired, issuing a replacement")
        return await self.issue(
            link.user_id,
            link.restaurant_id,
            link.plan_id,
            trial_override_days=link.trial_days,
        )
