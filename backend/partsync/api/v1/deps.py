"""
Shared endpoint dependencies.

The shop comes from the X-Shop-Domain header set by the embedding app or the
storefront app proxy; session token verification happens upstream.
"""

from collections.abc import Callable

import httpx
from fastapi import Depends, Header, Request

from partsync.core.clock import Clock, SystemClock
from partsync.db.postgres.models import DistributorConfig
from partsync.db.postgres.session import async_session_maker
from partsync.services.distributor_client import Turn14Client
from partsync.services.scheduler import SchedulerService


async def get_shop(
    x_shop_domain: str = Header(..., alias="X-Shop-Domain", min_length=3, max_length=255),
) -> str:
    return x_shop_domain.strip().lower()


def get_clock() -> Clock:
    return SystemClock()


def get_distributor_transport() -> httpx.AsyncBaseTransport | None:
    """Transport for Turn14 calls. None means the default network transport."""
    return None


def get_client_factory(
    transport: httpx.AsyncBaseTransport | None = Depends(get_distributor_transport),
) -> Callable[[DistributorConfig], Turn14Client]:
    def factory(config: DistributorConfig) -> Turn14Client:
        return Turn14Client.from_config(config, transport=transport)

    return factory


def get_scheduler(request: Request) -> SchedulerService:
    """The application's scheduler; created on first use when the lifespan did not run."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        scheduler = SchedulerService(async_session_maker)
        request.app.state.scheduler = scheduler
    return scheduler
