"""CRUD operations for profiles and restaurants."""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from menubill.src.billing.model.profile import ProfileRecord, RestaurantRecord


class CRUDProfile(CRUDPlus[ProfileRecord]):
    """CRUD operations for ProfileRecord."""

    async def get(self, db: AsyncSession, profile_id: str) -> Optional[ProfileRecord]:
        result = await db.execute(select(ProfileRecord).where(ProfileRecord.id == profile_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[ProfileRecord]:
        result = await db.execute(select(ProfileRecord).where(ProfileRecord.email == email.lower()))
        return result.scalar_one_or_none()

    async def upsert_by_email(
        self,
        db: AsyncSession,
        email: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        sales_rep_email: Optional[str] = None,
    ) -> ProfileRecord:
        """
        Create or update a profile keyed by email.

        :param db: Database session
        :param email: Contact email, stored lower-case
        :param name: Contact name
        :param phone: E.164 phone number
        :param sales_rep_email: Owning sales rep
        :return: Created or updated profile
        """
        existing = await self.get_by_email(db, email)

        if existing:
            if name is not None:
                existing.name = name
            if phone is not None:
                existing.phone = phone
            if sales_rep_email is not None:
                existing.sales_rep_email = sales_rep_email
            await db.commit()
            await db.refresh(existing)
            return existing

        profile = ProfileRecord(email=email.lower(), name=name, phone=phone, sales_rep_email=sales_rep_email)
        db.add(profile)
        await db.commit()
        await db.refresh(profile)
        return profile

    async def set_provider_customer(self, db: AsyncSession, profile_id: str, customer_id: str) -> None:
        await db.execute(
            update(ProfileRecord).where(ProfileRecord.id == profile_id).values(provider_customer_id=customer_id)
        )
        await db.commit()


class CRUDRestaurant(CRUDPlus[RestaurantRecord]):
    """CRUD operations for RestaurantRecord."""

    async def get(self, db: AsyncSession, restaurant_id: str) -> Optional[RestaurantRecord]:
        result = await db.execute(select(RestaurantRecord).where(RestaurantRecord.id == restaurant_id))
        return result.scalar_one_or_none()

    async def get_by_deal(self, db: AsyncSession, deal_id: str) -> Optional[RestaurantRecord]:
        result = await db.execute(select(RestaurantRecord).where(RestaurantRecord.crm_deal_id == deal_id))
        return result.scalar_one_or_none()

    async def upsert_for_deal(self, db: AsyncSession, deal_id: str, name: str, owner_id: str) -> RestaurantRecord:
        """Create or update the restaurant linked to a CRM deal."""
        existing = await self.get_by_deal(db, deal_id)

        if existing:
            existing.name = name
            existing.owner_id = owner_id
            await db.commit()
            await db.refresh(existing)
            return existing

        restaurant = RestaurantRecord(name=name, owner_id=owner_id, crm_deal_id=deal_id)
        db.add(restaurant)
        await db.commit()
        await db.refresh(restaurant)
        return restaurant


profile_dao: CRUDProfile = CRUDProfile(ProfileRecord)
restaurant_dao: CRUDRestaurant = CRUDRestaurant(RestaurantRecord)
