"""
Checkout Link Store

Persistence for checkout links. Every status write is a compare-and-set
on the expected prior status, so a sweep racing a completed checkout can
never overwrite a row that has already moved on.
"""

import logging

from datetime import datetime
from typing import Collection, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from menubill.src.billing.domain.checkout_link import CheckoutLinkStatus
from menubill.src.billing.model.checkout_link import ACTIVE_LINK_INDEX, CheckoutLinkRecord
from menubill.src.billing.shared.exceptions import DuplicateActiveLinkError
from menubill.utils.timezone import timezone

logger = logging.getLogger(__name__)


def _is_active_pair_violation(exc: IntegrityError) -> bool:
    # Postgres reports the index name, SQLite reports the indexed columns
    message = str(exc.orig)
    return ACTIVE_LINK_INDEX in message or 'checkout_links.user_id, checkout_links.plan_id' in message


class CRUDCheckoutLink(CRUDPlus[CheckoutLinkRecord]):
    """CRUD operations for CheckoutLinkRecord."""

    async def create(self, db: AsyncSession, link: CheckoutLinkRecord) -> CheckoutLinkRecord:
        """
        Persist a new active link.

        :param db: Database session
        :param link: Unsaved link row
        :return: The saved row
        :raises DuplicateActiveLinkError: another active link holds the (user, plan) slot
        """
        db.add(link)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            if _is_active_pair_violation(e):
                raise DuplicateActiveLinkError(link.user_id, link.plan_id) from e
            raise
        await db.refresh(link)
        return link

    async def get(self, db: AsyncSession, link_id: str) -> Optional[CheckoutLinkRecord]:
        result = await db.execute(select(CheckoutLinkRecord).where(CheckoutLinkRecord.id == link_id))
        return result.scalar_one_or_none()

    async def get_active_for_pair(self, db: AsyncSession, user_id: str, plan_id: str) -> Optional[CheckoutLinkRecord]:
        result = await db.execute(
            select(CheckoutLinkRecord).where(
                CheckoutLinkRecord.user_id == user_id,
                CheckoutLinkRecord.plan_id == plan_id,
                CheckoutLinkRecord.status == CheckoutLinkStatus.ACTIVE.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_latest_for_pair(self, db: AsyncSession, user_id: str, plan_id: str) -> Optional[CheckoutLinkRecord]:
        """Most recently issued link for (user, plan), whatever its status."""
        result = await db.execute(
            select(CheckoutLinkRecord)
            .where(CheckoutLinkRecord.user_id == user_id, CheckoutLinkRecord.plan_id == plan_id)
            .order_by(CheckoutLinkRecord.created_at.desc(), CheckoutLinkRecord.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_provider_session(self, db: AsyncSession, session_id: str) -> Optional[CheckoutLinkRecord]:
        result = await db.execute(
            select(CheckoutLinkRecord).where(CheckoutLinkRecord.provider_session_id == session_id)
        )
        return result.scalars().first()

    async def list_by_restaurant(self, db: AsyncSession, restaurant_id: str) -> Sequence[CheckoutLinkRecord]:
        """Newest first."""
        result = await db.execute(
            select(CheckoutLinkRecord)
            .where(CheckoutLinkRecord.restaurant_id == restaurant_id)
            .order_by(CheckoutLinkRecord.created_at.desc(), CheckoutLinkRecord.id)
        )
        return result.scalars().all()

    async def list_expired(
        self,
        db: AsyncSession,
        now: datetime,
        limit: int = 200,
        exclude: Collection[str] = (),
    ) -> Sequence[CheckoutLinkRecord]:
        """
        Active links whose window closed before ``now``.

        :param db: Database session
        :param now: Cut-off instant
        :param limit: Batch size
        :param exclude: Link ids to leave out, e.g. rows that already failed this run
        :return: Oldest expiry first
        """
        query = select(CheckoutLinkRecord).where(
            CheckoutLinkRecord.status == CheckoutLinkStatus.ACTIVE.value,
            CheckoutLinkRecord.expires_at < now,
        )
        if exclude:
            query = query.where(CheckoutLinkRecord.id.notin_(list(exclude)))
        result = await db.execute(query.order_by(CheckoutLinkRecord.expires_at).limit(limit))
        return result.scalars().all()

    async def transition(
        self,
        db: AsyncSession,
        link_id: str,
        expected: CheckoutLinkStatus,
        target: CheckoutLinkStatus,
    ) -> bool:
        """
        Compare-and-set the status of one link.

        :param db: Database session
        :param link_id: Link id
        :param expected: Status the row must currently have
        :param target: Status to write
        :return: True if the row moved, False if it was absent or already elsewhere
        """
        result = await db.execute(
            update(CheckoutLinkRecord)
            .where(CheckoutLinkRecord.id == link_id, CheckoutLinkRecord.status == expected.value)
            .values(status=target.value, updated_at=timezone.now())
        )
        await db.commit()
        moved = result.rowcount == 1
        if not moved:
            logger.debug(f"[CHECKOUT] CAS {expected.value}->{target.value} missed for link {link_id}")
        return moved


checkout_link_dao: CRUDCheckoutLink = CRUDCheckoutLink(CheckoutLinkRecord)
