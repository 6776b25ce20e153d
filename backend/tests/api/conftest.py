"""
Pytest fixtures for API tests.

Provides:
- The full application (exception handlers, middleware, routers)
- Test HTTP client with dependency overrides for the database session,
  clock, Turn14 transport and scheduler
- Request header helpers
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from conftest import SHOP
from partsync.api.v1.deps import get_clock, get_distributor_transport, get_scheduler
from partsync.db.postgres.session import get_db
from partsync.main import create_application
from partsync.services.scheduler import SchedulerService
from partsync.services.sync_engine import SyncEngine


@pytest.fixture
def app() -> FastAPI:
    """Create FastAPI application for testing."""
    return create_application()


@pytest.fixture
def scheduler(session_factory, clock, turn14, publisher) -> SchedulerService:
    """Scheduler whose engines talk to the scripted Turn14 API and the recording publisher."""

    def engine_factory(db, shop, engine_clock):
        return SyncEngine(
            db,
            shop,
            clock=engine_clock,
            client_factory=turn14.client_factory,
            publisher_factory=lambda config: publisher,
        )

    return SchedulerService(session_factory, engine_factory=engine_factory, clock=clock)


@pytest_asyncio.fixture
async def async_client(app, session_factory, clock, turn14, scheduler) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for testing."""

    # Override the database dependency; commits like the real one
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_distributor_transport] = turn14.transport
    app.dependency_overrides[get_scheduler] = lambda: scheduler

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Shop-Domain": SHOP},
    ) as client:
        yield client

    app.dependency_overrides.clear()
