"""
API tests for health and metrics endpoints.
"""

import pytest
from httpx import AsyncClient


class TestHealthEndpoints:
    @pytest.mark.asyncio
    async def test_root_health(self, async_client: AsyncClient):
        response = await async_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "partsync-backend"

    @pytest.mark.asyncio
    async def test_liveness(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_metrics_after_sync(self, async_client: AsyncClient, distributor_config):
        await async_client.post("/api/v1/sync/run", json={"sync_type": "inventory"})

        response = await async_client.get("/api/v1/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "partsync_sync_jobs_total" in response.text
