"""Tests for the shared model base."""

import uuid

import pytest

from menubill.src.billing.crud.crud_profile import profile_dao, restaurant_dao
from menubill.src.billing.model import ProfileRecord


class TestPrimaryKeys:

    @pytest.mark.asyncio
    async def test_id_generated_on_insert(self, session_factory):
        """Test rows added without an id get a uuid string key."""
        async with session_factory() as db:
            first = ProfileRecord(email="ana@bistro.test")
            second = ProfileRecord(email="leo@bistro.test")
            db.add_all([first, second])
            await db.commit()

            assert uuid.UUID(first.id)
            assert first.id != second.id

    @pytest.mark.asyncio
    async def test_upserted_rows_get_ids(self, session_factory):
        async with session_factory() as db:
            profile = await profile_dao.upsert_by_email(db, email="ana@bistro.test", name="Ana Diaz")
            restaurant = await restaurant_dao.upsert_for_deal(db, "77", "Bistro Uno", profile.id)

        assert profile.id
        assert restaurant.id
        assert restaurant.owner_id == profile.id
