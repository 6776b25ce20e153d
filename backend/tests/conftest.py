"""
Pytest configuration and fixtures for PartSync tests.

Provides:
- In-memory SQLite database (StaticPool, savepoints enabled)
- A frozen clock
- A scripted Turn14 API served through httpx.MockTransport
- A recording storefront publisher
- Sample catalog rows
"""

import json
import os
import sys
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

# Add backend to path for imports
backend_path = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_path))

# Set environment variables for testing BEFORE any imports
# These need to be set before the modules are imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from partsync.core.clock import FrozenClock
from partsync.db.postgres.models import Base, DistributorConfig, TrackedProduct
from partsync.db.postgres.session import enable_sqlite_savepoints
from partsync.db.postgres.types import SyncSettings
from partsync.services.distributor_client import Turn14Client
from partsync.services.storefront import ListingRef

SHOP = "demo-parts.myshopify.com"
NOW = datetime(2024, 3, 15, 10, 30)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """
    Create an async SQLite engine for testing.

    Every session shares the single in-memory connection, so a test must
    commit its setup before code under test opens sessions of its own.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )
    enable_sqlite_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


# =============================================================================
# Turn14 API Double
# =============================================================================


class FakeTurn14:
    """
    Scripted Turn14 API.

    Tests fill the dictionaries and read `requests`; `handler` is plugged
    into the real client through httpx.MockTransport.
    """

    def __init__(self) -> None:
        self.stock: dict[str, int] = {}
        self.prices: dict[str, float] = {}
        self.inventory: dict[str, list[dict[str, Any]]] = {}
        self.compatibility: dict[str, list[dict[str, Any]] | None] = {}
        self.vehicles: list[dict[str, Any]] = []
        self.brands: list[dict[str, Any]] = []
        self.categories: list[dict[str, Any]] = []
        self.products: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, int] = {}
        self.auth_status = 200
        self.requests: list[tuple[str, str]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1")
        self.requests.append((request.method, path))

        if self.auth_status != 200:
            return httpx.Response(self.auth_status, json={"message": "Invalid API key"})

        if path == "/account":
            return httpx.Response(200, json={"account_id": "T14-1001", "name": "Demo Parts"})

        if path == "/brands":
            return httpx.Response(200, json={"brands": self.brands})

        if path == "/categories":
            return httpx.Response(200, json={"categories": self.categories})

        if path == "/vehicles/makes":
            year = int(request.url.params["year"])
            makes = sorted({v["make"] for v in self.vehicles if v["year"] == year})
            return httpx.Response(200, json={"makes": makes})

        if path == "/vehicles/models":
            year, make = int(request.url.params["year"]), request.url.params["make"]
            models = sorted({v["model"] for v in self.vehicles if v["year"] == year and v["make"] == make})
            return httpx.Response(200, json={"models": models})

        if path in ("/inventory/stock", "/pricing"):
            skus = json.loads(request.content)["skus"]
            for sku in skus:
                if sku in self.failures:
                    return httpx.Response(self.failures[sku], json={"message": "upstream failure"})
            if path == "/pricing":
                items = [{"sku": sku, "price": self.prices[sku]} for sku in skus if sku in self.prices]
            else:
                items = [{"sku": sku, "stock": self.stock[sku]} for sku in skus if sku in self.stock]
            return httpx.Response(200, json={"items": items})

        if path == "/inventory":
            brand = request.url.params.get("brands", "")
            if brand in self.failures:
                return httpx.Response(self.failures[brand], json={"message": "brand unavailable"})
            items = self.inventory.get(brand, [])
            return httpx.Response(200, json={"products": items, "total": len(items)})

        if path == "/vehicles":
            page = int(request.url.params.get("page", 1))
            limit = int(request.url.params.get("limit", 1000))
            start = (page - 1) * limit
            return httpx.Response(
                200,
                json={"vehicles": self.vehicles[start : start + limit], "total": len(self.vehicles)},
            )

        if path.startswith("/products/") and path.endswith("/compatibility"):
            sku = path.split("/")[2]
            if sku in self.failures:
                return httpx.Response(self.failures[sku], json={"message": "upstream failure"})
            if sku not in self.compatibility:
                return httpx.Response(404, json={"message": "Not found"})
            rows = self.compatibility[sku]
            return httpx.Response(200, json={} if rows is None else {"compatibility": rows})

        if path.startswith("/products/"):
            sku = path.split("/")[2]
            if sku not in self.products:
                return httpx.Response(404, json={"message": "Not found"})
            return httpx.Response(200, json={"product": self.products[sku]})

        return httpx.Response(404, json={"message": f"No route for {path}"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client_factory(self, config: DistributorConfig) -> Turn14Client:
        return Turn14Client.from_config(config, transport=self.transport())


@pytest.fixture
def turn14() -> FakeTurn14:
    return FakeTurn14()


# =============================================================================
# Storefront Double
# =============================================================================


class RecordingPublisher:
    """Storefront publisher that records every write."""

    def __init__(self) -> None:
        self.listings: list[dict[str, Any]] = []
        self.inventory_updates: list[tuple[str, int]] = []
        self.price_updates: list[tuple[str, float]] = []
        self.fail_skus: set[str] = set()
        self.closed = 0

    async def create_listing(self, listing: dict[str, Any]) -> ListingRef:
        sku = listing["variants"][0]["sku"]
        if sku in self.fail_skus:
            raise RuntimeError(f"listing rejected for {sku}")
        self.listings.append(listing)
        number = len(self.listings)
        return ListingRef(id=f"80{number:02d}", variant_id=f"90{number:02d}", handle=listing["handle"])

    async def update_inventory(self, variant_id: str, quantity: int) -> None:
        self.inventory_updates.append((variant_id, quantity))

    async def update_price(self, variant_id: str, price: float) -> None:
        self.price_updates.append((variant_id, price))

    async def close(self) -> None:
        self.closed += 1


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


# =============================================================================
# Test Data Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def distributor_config(db_session: AsyncSession) -> DistributorConfig:
    """An active Turn14 connection with one selected brand and a storefront token."""
    config = DistributorConfig(
        shop=SHOP,
        api_key="t14-live-key-0001",
        api_secret="t14-secret",
        selected_brands=["ACME"],
        sync_settings=SyncSettings(max_new_products=10, default_markup=20.0),
        storefront_access_token="shpat_test_token",
        is_active=True,
    )
    db_session.add(config)
    await db_session.commit()
    return config


_product_counter = 0


async def add_product(db: AsyncSession, sku: str, shop: str = SHOP, **values: Any) -> TrackedProduct:
    """Insert a tracked product; creation times increase in call order."""
    global _product_counter
    _product_counter += 1
    product = TrackedProduct(
        shop=shop,
        sku=sku,
        title=values.pop("title", f"Part {sku}"),
        storefront_product_id=values.pop("storefront_product_id", f"70{_product_counter}"),
        storefront_variant_id=values.pop("storefront_variant_id", f"var-{sku}"),
        brand=values.pop("brand", "ACME"),
        created_at=values.pop("created_at", NOW - timedelta(days=30) + timedelta(seconds=_product_counter)),
        **values,
    )
    db.add(product)
    await db.flush()
    return product
