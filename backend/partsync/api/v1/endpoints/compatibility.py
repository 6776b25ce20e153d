"""
Vehicle compatibility endpoints.

Provides endpoints to:
- Sync the vehicle database and per-product fitment from Turn14
- Search vehicles and walk year/make/model/submodel
- Find products for a vehicle and check one SKU against a saved vehicle
- Report compatibility coverage
"""

from collections.abc import Callable
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from partsync.api.v1.deps import get_client_factory, get_clock, get_scheduler, get_shop
from partsync.api.v1.schemas.compatibility import (
    BulkCompatibilityRequest,
    BulkCompatibilityResponse,
    CompatibilityCheckResponse,
    CompatibilityEdgeResponse,
    CompatibilityStatsResponse,
    PaginatedResponse,
    ProductCompatibilitySyncResponse,
    TrackedProductResponse,
    VehicleRecordResponse,
    VehicleSyncResponse,
)
from partsync.core.clock import Clock
from partsync.db.postgres.models import DistributorConfig
from partsync.db.postgres.session import get_db
from partsync.services.compatibility_service import CompatibilityService
from partsync.services.distributor_client import Turn14Client, VehicleFilters
from partsync.services.scheduler import SchedulerService

router = APIRouter()


def get_compatibility_service(
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    client_factory: Callable[[DistributorConfig], Turn14Client] = Depends(get_client_factory),
) -> CompatibilityService:
    return CompatibilityService(db, shop, clock=clock, client_factory=client_factory)


# =============================================================================
# Sync
# =============================================================================


@router.post("/vehicles/sync", response_model=VehicleSyncResponse)
async def sync_vehicle_database(
    year: Optional[int] = Query(None, ge=1900, le=2100),
    make: Optional[str] = Query(None),
    model: Optional[str] = Query(None),
    shop: str = Depends(get_shop),
    service: CompatibilityService = Depends(get_compatibility_service),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """Upsert the Turn14 vehicle taxonomy, optionally narrowed by year/make/model."""
    async with scheduler.shop_lock(shop):
        return await service.sync_vehicle_database(VehicleFilters(year=year, make=make, model=model))


@router.post("/products/{sku}/sync", response_model=ProductCompatibilitySyncResponse)
async def sync_product_compatibility(
    sku: str,
    shop: str = Depends(get_shop),
    service: CompatibilityService = Depends(get_compatibility_service),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    async with scheduler.shop_lock(shop):
        result = await service.sync_product_compatibility(sku)
    return ProductCompatibilitySyncResponse(sku=sku, **result)


@router.post("/bulk-sync", response_model=BulkCompatibilityResponse)
async def bulk_sync_compatibility(
    body: BulkCompatibilityRequest,
    shop: str = Depends(get_shop),
    service: CompatibilityService = Depends(get_compatibility_service),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """Runs never overlap a catalog sync of the same shop."""
    async with scheduler.shop_lock(shop):
        return await service.bulk_sync_compatibility(limit=body.limit, brand_filter=body.brand)


@router.get("/products/{sku}", response_model=list[CompatibilityEdgeResponse])
async def get_product_compatibility(
    sku: str,
    service: CompatibilityService = Depends(get_compatibility_service),
):
    return await service.get_product_compatibility(sku)


# =============================================================================
# Lookups
# =============================================================================


@router.get("/vehicles", response_model=PaginatedResponse[VehicleRecordResponse])
async def search_vehicles(
    year: Optional[int] = Query(None),
    make: Optional[str] = Query(None, description="Case-insensitive substring"),
    model: Optional[str] = Query(None, description="Case-insensitive substring"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: CompatibilityService = Depends(get_compatibility_service),
):
    vehicles, total = await service.search_vehicles(year=year, make=make, model=model, limit=limit, offset=offset)
    return PaginatedResponse[VehicleRecordResponse](
        items=[VehicleRecordResponse.model_validate(vehicle) for vehicle in vehicles],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(vehicles) < total,
    )


@router.get("/years", response_model=list[int])
async def available_years(service: CompatibilityService = Depends(get_compatibility_service)):
    return await service.get_available_years()


@router.get("/makes", response_model=list[str])
async def available_makes(
    year: Optional[int] = Query(None),
    service: CompatibilityService = Depends(get_compatibility_service),
):
    return await service.get_available_makes(year)


@router.get("/models", response_model=list[str])
async def available_models(
    year: int = Query(...),
    make: str = Query(...),
    service: CompatibilityService = Depends(get_compatibility_service),
):
    return await service.get_available_models(year, make)


@router.get("/submodels", response_model=list[str])
async def available_submodels(
    year: int = Query(...),
    make: str = Query(...),
    model: str = Query(...),
    service: CompatibilityService = Depends(get_compatibility_service),
):
    return await service.get_available_submodels(year, make, model)


# =============================================================================
# Matching
# =============================================================================


@router.get("/products", response_model=PaginatedResponse[TrackedProductResponse])
async def find_compatible_products(
    year: int = Query(...),
    make: str = Query(...),
    model: str = Query(...),
    submodel: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    brand: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: CompatibilityService = Depends(get_compatibility_service),
):
    """Active products with an exact fitment edge for the vehicle."""
    products, total = await service.find_compatible_products(
        year, make, model, submodel=submodel, category=category, brand=brand, limit=limit, offset=offset
    )
    return PaginatedResponse[TrackedProductResponse](
        items=[TrackedProductResponse.model_validate(product) for product in products],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(products) < total,
    )


@router.get("/check", response_model=CompatibilityCheckResponse)
async def check_compatibility(
    vehicle_id: UUID = Query(..., description="Saved garage vehicle"),
    sku: str = Query(...),
    service: CompatibilityService = Depends(get_compatibility_service),
):
    return await service.check_compatibility(vehicle_id, sku)


@router.get("/stats", response_model=CompatibilityStatsResponse)
async def compatibility_stats(service: CompatibilityService = Depends(get_compatibility_service)):
    return await service.get_compatibility_stats()
