"""
API v1 router - aggregates all endpoint routers.
"""

from fastapi import APIRouter

from partsync.api.v1.endpoints import compatibility, distributor, garage, health, metrics, schedules, sync

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(
    distributor.router,
    prefix="/distributor",
    tags=["Distributor"],
)

api_router.include_router(
    sync.router,
    prefix="/sync",
    tags=["Sync"],
)

api_router.include_router(
    schedules.router,
    prefix="/schedules",
    tags=["Schedules"],
)

api_router.include_router(
    compatibility.router,
    prefix="/compatibility",
    tags=["Compatibility"],
)

api_router.include_router(
    garage.router,
    prefix="/garage",
    tags=["Garage"],
)

api_router.include_router(
    garage.admin_router,
    prefix="/garages",
    tags=["Garage"],
)

api_router.include_router(
    health.router,
    prefix="/health",
    tags=["Health"],
)

api_router.include_router(
    metrics.router,
    prefix="/metrics",
    tags=["Metrics"],
)
