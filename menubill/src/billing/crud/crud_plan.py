"""CRUD operations for the plan catalog."""

from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from menubill.src.billing.model.plan import PlanRecord


class CRUDPlan(CRUDPlus[PlanRecord]):
    """Read-only queries over PlanRecord."""

    async def get(self, db: AsyncSession, plan_id: str) -> Optional[PlanRecord]:
        result = await db.execute(select(PlanRecord).where(PlanRecord.id == plan_id))
        return result.scalar_one_or_none()

    async def get_by_tier(self, db: AsyncSession, tier: str, only_active: bool = True) -> Sequence[PlanRecord]:
        """
        Get plans of one tier, cheapest first.

        :param db: Database session
        :param tier: basic / plus / premium
        :param only_active: If True, only return plans still on sale
        :return: List of plans
        """
        query = select(PlanRecord).where(PlanRecord.tier == tier)
        if only_active:
            query = query.where(PlanRecord.is_active == True)  # noqa: E712
        result = await db.execute(query.order_by(PlanRecord.price, PlanRecord.id))
        return result.scalars().all()

    async def get_active_by_price(self, db: AsyncSession, price: int) -> Optional[PlanRecord]:
        """
        Find the active plan sold at exactly ``price`` cents.

        Several plans may share a price across currencies; the lowest id wins
        so the lookup stays deterministic.
        """
        result = await db.execute(
            select(PlanRecord)
            .where(PlanRecord.price == price, PlanRecord.is_active == True)  # noqa: E712
            .order_by(PlanRecord.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_active(self, db: AsyncSession) -> Sequence[PlanRecord]:
        result = await db.execute(
            select(PlanRecord).where(PlanRecord.is_active == True).order_by(PlanRecord.price)  # noqa: E712
        )
        return result.scalars().all()


plan_dao: CRUDPlan = CRUDPlan(PlanRecord)
