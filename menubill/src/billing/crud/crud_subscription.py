"""CRUD operations for subscriptions."""

from typing import Any, Optional

from sqlalchemy import ColumnElement, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from menubill.src.billing.model.subscription import SubscriptionRecord
from menubill.utils.timezone import timezone


class CRUDSubscription(CRUDPlus[SubscriptionRecord]):
    """CRUD operations for SubscriptionRecord."""

    async def create(self, db: AsyncSession, subscription: SubscriptionRecord) -> SubscriptionRecord:
        """
        Persist a new subscription.

        :raises IntegrityError: duplicate provider id or the active slot is taken
        """
        db.add(subscription)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise
        await db.refresh(subscription)
        return subscription

    async def get(self, db: AsyncSession, subscription_id: str) -> Optional[SubscriptionRecord]:
        result = await db.execute(select(SubscriptionRecord).where(SubscriptionRecord.id == subscription_id))
        return result.scalar_one_or_none()

    async def get_by_provider_id(self, db: AsyncSession, provider_subscription_id: str) -> Optional[SubscriptionRecord]:
        result = await db.execute(
            select(SubscriptionRecord).where(SubscriptionRecord.provider_subscription_id == provider_subscription_id)
        )
        return result.scalar_one_or_none()

    async def has_other_active(self, db: AsyncSession, profile_id: str, plan_id: str, exclude_id: str) -> bool:
        """Whether another subscription already holds the active slot for (profile, plan)."""
        result = await db.execute(
            select(SubscriptionRecord.id).where(
                SubscriptionRecord.profile_id == profile_id,
                SubscriptionRecord.plan_id == plan_id,
                SubscriptionRecord.is_active == True,  # noqa: E712
                SubscriptionRecord.id != exclude_id,
            )
        )
        return result.first() is not None

    async def conditional_update(
        self,
        db: AsyncSession,
        subscription_id: str,
        *whereclause: ColumnElement[bool],
        **values: Any,
    ) -> bool:
        """
        Update one subscription only if every extra condition still holds.

        All ``values`` are written in a single statement, so related columns
        (e.g. ``cancel_at`` and ``is_active``) never change independently.

        :param db: Database session
        :param subscription_id: Subscription id
        :param whereclause: Extra guard conditions re-checked at write time
        :param values: Columns to set
        :return: True if the row was updated
        :raises IntegrityError: the write would break the one-active-per-pair index
        """
        stmt = (
            update(SubscriptionRecord)
            .where(SubscriptionRecord.id == subscription_id, *whereclause)
            .values(updated_at=timezone.now(), **values)
        )
        try:
            result = await db.execute(stmt)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise
        return result.rowcount == 1

    async def update_crm_metadata_for_restaurant(
        self,
        db: AsyncSession,
        restaurant_id: str,
        deal_id: str,
        stage_id: Optional[str],
        deal_status: Optional[str],
    ) -> int:
        """Stamp CRM deal metadata on every subscription of a restaurant. Returns rows touched."""
        result = await db.execute(
            update(SubscriptionRecord)
            .where(SubscriptionRecord.restaurant_id == restaurant_id)
            .values(
                crm_deal_id=deal_id,
                crm_stage_id=stage_id,
                crm_deal_status=deal_status,
                updated_at=timezone.now(),
            )
        )
        await db.commit()
        return result.rowcount


subscription_dao: CRUDSubscription = CRUDSubscription(SubscriptionRecord)
