"""
Plan Catalog

Read-only resolver from plan id, tier or price to plan attributes.
"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menubill.src.billing.crud.crud_plan import CRUDPlan, plan_dao
from menubill.src.billing.domain.plan import Plan, PlanTier
from menubill.src.billing.shared.exceptions import InvalidPlanError, ValidationError

logger = logging.getLogger(__name__)


class PlanCatalog:
    """Looks plans up; never writes them."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], dao: CRUDPlan = plan_dao):
        self._sessions = session_factory
        self._dao = dao

    async def get(self, plan_id: str) -> Optional[Plan]:
        async with self._sessions() as db:
            row = await self._dao.get(db, plan_id)
        return Plan.from_row(row) if row else None

    async def require_active(self, plan_id: str) -> Plan:
        """
        Resolve a plan that can be sold right now.

        Raises:
            InvalidPlanError: plan is unknown or inactive
        """
        plan = await self.get(plan_id)
        if plan is None:
            raise InvalidPlanError(plan_id, f"Plan {plan_id} does not exist")
        if not plan.is_active:
            raise InvalidPlanError(plan_id, f"Plan {plan_id} is no longer offered")
        return plan

    async def by_tier(self, tier: str) -> List[Plan]:
        try:
            tier_value = PlanTier(tier).value
        except ValueError:
            raise ValidationError(f"Unknown plan tier '{tier}'", field="tier")
        async with self._sessions() as db:
            rows = await self._dao.get_by_tier(db, tier_value)
        return [Plan.from_row(row) for row in rows]

    async def by_price(self, price_cents: int) -> Optional[Plan]:
        """Active plan sold at exactly this price, used by the CRM bridge."""
        async with self._sessions() as db:
            row = await self._dao.get_active_by_price(db, price_cents)
        if row is None:
            logger.info(f"[PLANS] No active plan priced at {price_cents} cents")
            return None
        return Plan.from_row(row)

    async def list_active(self) -> List[Plan]:
        async with self._sessions() as db:
            rows = await self._dao.list_active(db)
        return [Plan.from_row(row) for row in rows]
