"""
API tests for distributor connection, sync and schedule endpoints.

Tests:
- POST /api/v1/distributor/validate - Credential validation
- GET/PATCH /api/v1/distributor/config - Connection preferences
- POST /api/v1/sync/run - Manual sync
- GET /api/v1/sync/jobs - Job ledger
- /api/v1/schedules - Schedule CRUD
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient

from conftest import SHOP, add_product


class TestDistributorConnection:
    """Tests for the /distributor endpoints."""

    @pytest.mark.asyncio
    async def test_validate_stores_credentials(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/distributor/validate", json={"api_key": "t14-live-key-0001"}
        )

        assert response.status_code == 200
        assert response.json()["is_valid"] is True

        config = await async_client.get("/api/v1/distributor/config")
        assert config.status_code == 200
        data = config.json()
        assert data["shop"] == SHOP
        assert data["api_key"].endswith("0001")
        assert "t14-live" not in data["api_key"]
        assert data["is_active"] is True

    @pytest.mark.asyncio
    async def test_validate_with_rejected_key(self, async_client: AsyncClient, turn14):
        turn14.auth_status = 401

        response = await async_client.post("/api/v1/distributor/validate", json={"api_key": "bad-key"})

        assert response.status_code == 200
        assert response.json()["is_valid"] is False
        config = (await async_client.get("/api/v1/distributor/config")).json()
        assert config["is_active"] is False
        assert config["validation_error"]

    @pytest.mark.asyncio
    async def test_config_update(self, async_client: AsyncClient, distributor_config):
        response = await async_client.patch(
            "/api/v1/distributor/config",
            json={"selected_brands": ["ACME", "BOLT"], "sync_settings": {"default_markup": 35}},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["selected_brands"] == ["ACME", "BOLT"]
        assert data["sync_settings"]["default_markup"] == 35
        assert data["has_storefront_token"] is True

    @pytest.mark.asyncio
    async def test_missing_config(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/distributor/config")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_1003"

    @pytest.mark.asyncio
    async def test_brands(self, async_client: AsyncClient, distributor_config, turn14):
        turn14.brands = [{"id": 12, "name": "ACME"}, {"id": 13, "brand_name": "BOLT"}]

        response = await async_client.get("/api/v1/distributor/brands")

        assert response.status_code == 200
        assert response.json() == [{"id": "12", "name": "ACME"}, {"id": "13", "name": "BOLT"}]

    @pytest.mark.asyncio
    async def test_categories_and_vehicle_taxonomy(self, async_client: AsyncClient, distributor_config, turn14):
        turn14.categories = [{"id": 1, "name": "Air Intake"}]
        turn14.vehicles = [
            {"year": 2020, "make": "Ford", "model": "F-150"},
            {"year": 2020, "make": "Ford", "model": "Ranger"},
            {"year": 2020, "make": "Honda", "model": "Civic"},
        ]

        categories = await async_client.get("/api/v1/distributor/categories")
        makes = await async_client.get("/api/v1/distributor/vehicles/makes", params={"year": 2020})
        models = await async_client.get(
            "/api/v1/distributor/vehicles/models", params={"year": 2020, "make": "Ford"}
        )

        assert categories.json() == [{"id": 1, "name": "Air Intake"}]
        assert makes.json() == ["Ford", "Honda"]
        assert models.json() == ["F-150", "Ranger"]

    @pytest.mark.asyncio
    async def test_listing_preview(self, async_client: AsyncClient, distributor_config, turn14):
        turn14.products["T14-555"] = {
            "sku": "T14-555",
            "item_name": "Cold Air Intake",
            "brand_name": "ACME",
            "price": 100.0,
        }

        response = await async_client.get("/api/v1/distributor/products/T14-555/listing")

        assert response.status_code == 200
        body = response.json()
        assert body["markup"] == 20.0
        assert body["listing"]["handle"] == "cold-air-intake"
        assert body["listing"]["variants"][0]["price"] == "120.00"
        assert body["listing"]["status"] == "draft"

    @pytest.mark.asyncio
    async def test_listing_preview_unknown_item(self, async_client: AsyncClient, distributor_config):
        response = await async_client.get("/api/v1/distributor/products/NOPE/listing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_3003"

    @pytest.mark.asyncio
    async def test_untrack_product(self, async_client: AsyncClient, distributor_config, db_session, turn14):
        await add_product(db_session, "A1")
        await db_session.commit()
        turn14.compatibility["A1"] = [{"year": 2020, "make": "Ford", "model": "F-150"}]
        await async_client.post("/api/v1/compatibility/products/A1/sync")

        deleted = await async_client.delete("/api/v1/distributor/products/A1")

        assert deleted.status_code == 204
        stats = (await async_client.get("/api/v1/compatibility/stats")).json()
        assert stats["total_compatibility_records"] == 0
        missing = await async_client.delete("/api/v1/distributor/products/A1")
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "ERR_4004"

    @pytest.mark.asyncio
    async def test_shop_header_is_required(self, async_client: AsyncClient):
        response = await async_client.get(
            "/api/v1/distributor/config", headers={"X-Shop-Domain": ""}
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "ERR_1001"
        assert error["details"]["validation_errors"][0]["field"].startswith("header")


class TestManualSync:
    """Tests for POST /api/v1/sync/run and the job ledger."""

    @pytest.mark.asyncio
    async def test_inventory_run_is_recorded(
        self, async_client: AsyncClient, distributor_config, db_session, turn14, publisher
    ):
        await add_product(db_session, "A100", inventory_quantity=5, storefront_variant_id="9001")
        await db_session.commit()
        turn14.stock["A100"] = 0

        response = await async_client.post("/api/v1/sync/run", json={"sync_type": "inventory"})

        assert response.status_code == 200
        body = response.json()
        assert body["results"]["success_items"] == 1
        assert publisher.inventory_updates == [("9001", 0)]

        jobs = (await async_client.get("/api/v1/sync/jobs")).json()
        assert jobs["total"] == 1
        assert jobs["items"][0]["id"] == body["job_id"]
        assert jobs["items"][0]["status"] == "completed"
        assert jobs["items"][0]["trigger"] == "manual"

        job = await async_client.get(f"/api/v1/sync/jobs/{body['job_id']}")
        assert job.status_code == 200
        assert job.json()["processed_items"] == 1

    @pytest.mark.asyncio
    async def test_failed_run_is_recorded(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/sync/run", json={"sync_type": "pricing"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_1003"
        jobs = (await async_client.get("/api/v1/sync/jobs")).json()
        assert jobs["items"][0]["status"] == "failed"
        assert "No Turn 14 configuration" in jobs["items"][0]["error_message"]

    @pytest.mark.asyncio
    async def test_unknown_sync_type(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/sync/run", json={"sync_type": "everything"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_compatibility_kinds_are_rejected(self, async_client: AsyncClient):
        run = await async_client.post("/api/v1/sync/run", json={"sync_type": "vehicles"})
        schedule = await async_client.post(
            "/api/v1/schedules",
            json={"name": "Fitment", "sync_type": "compatibility", "frequency": "daily"},
        )

        assert run.status_code == 422
        assert schedule.status_code == 422
        assert (await async_client.get("/api/v1/sync/jobs")).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_unknown_job(self, async_client: AsyncClient):
        response = await async_client.get(f"/api/v1/sync/jobs/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_1002"

    @pytest.mark.asyncio
    async def test_stats_and_status(self, async_client: AsyncClient, distributor_config):
        await async_client.post("/api/v1/sync/run", json={"sync_type": "inventory"})

        stats = (await async_client.get("/api/v1/sync/stats")).json()
        assert stats == {
            "total_jobs": 1,
            "successful_jobs": 1,
            "failed_jobs": 0,
            "success_rate": 100,
            "period": "7 days",
        }

        status = (await async_client.get("/api/v1/sync/status")).json()
        assert status["recent_jobs"] == 1
        assert status["active_schedules"] == 0


class TestSchedules:
    """Tests for the /schedules endpoints."""

    @pytest.mark.asyncio
    async def test_crud(self, async_client: AsyncClient):
        created = await async_client.post(
            "/api/v1/schedules",
            json={"name": "Nightly inventory", "sync_type": "inventory", "frequency": "daily"},
        )
        assert created.status_code == 201
        schedule = created.json()
        assert schedule["next_run"] == "2024-03-16T02:00:00"

        listed = (await async_client.get("/api/v1/schedules")).json()
        assert [s["id"] for s in listed] == [schedule["id"]]

        updated = await async_client.patch(
            f"/api/v1/schedules/{schedule['id']}", json={"frequency": "hourly"}
        )
        assert updated.status_code == 200
        assert updated.json()["next_run"] == "2024-03-15T11:30:00"

        deleted = await async_client.delete(f"/api/v1/schedules/{schedule['id']}")
        assert deleted.status_code == 204
        missing = await async_client.get(f"/api/v1/schedules/{schedule['id']}")
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_schedules_of_other_shop_are_hidden(self, async_client: AsyncClient):
        created = (
            await async_client.post(
                "/api/v1/schedules",
                json={"name": "Prices", "sync_type": "pricing", "frequency": "hourly"},
                headers={"X-Shop-Domain": "other-shop.myshopify.com"},
            )
        ).json()

        response = await async_client.get(f"/api/v1/schedules/{created['id']}")

        assert response.status_code == 404
        assert (await async_client.get("/api/v1/schedules")).json() == []

    @pytest.mark.asyncio
    async def test_invalid_frequency(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/schedules",
            json={"name": "Prices", "sync_type": "pricing", "frequency": "every-minute"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_due_schedule_runs_through_scheduler(
        self, async_client: AsyncClient, scheduler, clock, distributor_config
    ):
        created = (
            await async_client.post(
                "/api/v1/schedules",
                json={"name": "Prices", "sync_type": "pricing", "frequency": "hourly"},
            )
        ).json()

        clock.advance(timedelta(hours=1))
        assert await scheduler.tick() == 1

        jobs = (await async_client.get("/api/v1/sync/jobs")).json()
        assert jobs["items"][0]["trigger"] == "scheduled"
        assert jobs["items"][0]["schedule_id"] == created["id"]
        schedule = (await async_client.get(f"/api/v1/schedules/{created['id']}")).json()
        assert schedule["last_run"] == "2024-03-15T11:30:00"
