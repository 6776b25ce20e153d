"""
Tests for repository upserts that read their row back after writing it.
"""

import pytest

from conftest import NOW, SHOP
from partsync.core.exceptions import DatabaseException
from partsync.db.postgres.repositories import (
    GarageRepository,
    TrackedProductRepository,
    VehicleRecordRepository,
)


async def _missing(*args, **kwargs):
    return None


class TestReadBackAfterWrite:
    """A write whose row cannot be read back raises instead of returning None."""

    @pytest.mark.asyncio
    async def test_product_upsert(self, db_session, monkeypatch):
        repo = TrackedProductRepository(db_session)
        monkeypatch.setattr(repo, "get_by_sku", _missing)

        with pytest.raises(DatabaseException) as exc_info:
            await repo.upsert(SHOP, "A1", {"title": "Part A1", "storefront_product_id": "701"})

        assert exc_info.value.details == {"shop": SHOP, "sku": "A1"}

    @pytest.mark.asyncio
    async def test_vehicle_upsert(self, db_session, monkeypatch):
        repo = VehicleRecordRepository(db_session)
        monkeypatch.setattr(repo, "get_by_ymm", _missing)

        with pytest.raises(DatabaseException):
            await repo.upsert({"year": 2020, "make": "Ford", "model": "F-150"}, NOW)

    @pytest.mark.asyncio
    async def test_garage_get_or_create(self, db_session, monkeypatch):
        repo = GarageRepository(db_session)
        monkeypatch.setattr(repo, "get_by_customer", _missing)

        with pytest.raises(DatabaseException) as exc_info:
            await repo.get_or_create(SHOP, "cust-1", max_vehicles=5)

        assert exc_info.value.details["customer_id"] == "cust-1"

    @pytest.mark.asyncio
    async def test_product_upsert_returns_stored_row(self, db_session):
        product = await TrackedProductRepository(db_session).upsert(
            SHOP, "A1", {"title": "Part A1", "storefront_product_id": "701"}
        )

        assert product.sku == "A1"
        assert product.shop == SHOP
