"""
Turn14 connection endpoints.

Provides endpoints to:
- Validate and store Turn14 credentials
- Read and update connection preferences (brands, sync settings, storefront token)
- List the distributor's brands, categories and vehicle makes/models
- Preview the listing an item would be imported as, stop tracking a product
- Report import statistics
"""

from collections.abc import Callable
from datetime import timedelta
from typing import Any

import httpx
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from partsync.api.v1.deps import get_client_factory, get_clock, get_distributor_transport, get_shop
from partsync.api.v1.schemas.sync import (
    BrandResponse,
    CredentialsRequest,
    CredentialsValidationResponse,
    DistributorConfigResponse,
    DistributorConfigUpdate,
    ListingPreviewResponse,
)
from partsync.core.clock import Clock
from partsync.core.exceptions import ConfigurationException, ProductNotFoundException
from partsync.core.log_sanitizer import mask_secret, sanitize_log
from partsync.core.logging import get_logger
from partsync.db.postgres.models import DistributorConfig
from partsync.db.postgres.repositories import DistributorConfigRepository, TrackedProductRepository
from partsync.db.postgres.session import get_db
from partsync.services.distributor_client import (
    Turn14Client,
    build_listing,
    get_distributor_config,
    validate_distributor_credentials,
)

router = APIRouter()
logger = get_logger(__name__)


def _to_response(config: DistributorConfig) -> DistributorConfigResponse:
    return DistributorConfigResponse(
        shop=config.shop,
        api_key=mask_secret(config.api_key),
        environment=config.environment,
        dealer_code=config.dealer_code,
        is_active=config.is_active,
        last_validated=config.last_validated,
        validation_error=config.validation_error,
        selected_brands=config.selected_brands or [],
        sync_settings=config.sync_settings,
        has_storefront_token=bool(config.storefront_access_token),
    )


@router.post("/validate", response_model=CredentialsValidationResponse)
async def validate_credentials(
    body: CredentialsRequest,
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    transport: httpx.AsyncBaseTransport | None = Depends(get_distributor_transport),
):
    """
    Validate Turn14 credentials and store them.

    The credentials are saved either way; a rejected check leaves the
    connection inactive with the error recorded.
    """
    result = await validate_distributor_credentials(
        db,
        shop,
        body.api_key,
        body.api_secret,
        body.environment,
        validated_at=clock.now(),
        transport=transport,
    )
    return CredentialsValidationResponse(**result)


@router.get("/config", response_model=DistributorConfigResponse)
async def get_config(
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
):
    config = await DistributorConfigRepository(db).get_by_shop(shop)
    if config is None:
        raise ConfigurationException(
            message=f"No Turn 14 configuration found for shop: {shop}",
            details={"shop": shop},
        )
    return _to_response(config)


@router.patch("/config", response_model=DistributorConfigResponse)
async def update_config(
    body: DistributorConfigUpdate,
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
):
    """Update connection preferences. Credentials change only through /validate."""
    repo = DistributorConfigRepository(db)
    config = await repo.get_by_shop(shop)
    if config is None:
        raise ConfigurationException(
            message=f"No Turn 14 configuration found for shop: {shop}",
            details={"shop": shop},
        )
    config = await repo.update(config, body.model_dump(exclude_unset=True))
    logger.info(f"Updated Turn14 configuration for {shop}")
    return _to_response(config)


@router.get("/brands", response_model=list[BrandResponse])
async def list_brands(
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[DistributorConfig], Turn14Client] = Depends(get_client_factory),
):
    """Brands available from Turn14 for the shop's account."""
    config = await get_distributor_config(db, shop)
    async with client_factory(config) as client:
        brands = await client.list_brands()
    return [BrandResponse(id=brand.id, name=brand.name) for brand in brands]


@router.get("/categories")
async def list_categories(
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[DistributorConfig], Turn14Client] = Depends(get_client_factory),
) -> list[dict[str, Any]]:
    config = await get_distributor_config(db, shop)
    async with client_factory(config) as client:
        return await client.list_categories()


@router.get("/vehicles/makes", response_model=list[str])
async def list_vehicle_makes(
    year: int = Query(..., ge=1900, le=2100),
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[DistributorConfig], Turn14Client] = Depends(get_client_factory),
):
    """Makes Turn14 knows for a year, straight from the distributor."""
    config = await get_distributor_config(db, shop)
    async with client_factory(config) as client:
        return await client.list_makes(year)


@router.get("/vehicles/models", response_model=list[str])
async def list_vehicle_models(
    year: int = Query(..., ge=1900, le=2100),
    make: str = Query(..., min_length=1),
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[DistributorConfig], Turn14Client] = Depends(get_client_factory),
):
    config = await get_distributor_config(db, shop)
    async with client_factory(config) as client:
        return await client.list_models(year, make)


@router.get("/products/{sku}/listing", response_model=ListingPreviewResponse)
async def preview_listing(
    sku: str,
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[DistributorConfig], Turn14Client] = Depends(get_client_factory),
):
    """
    Preview the storefront listing a Turn14 item would be imported as.

    Uses the shop's default markup; nothing is written.
    """
    config = await get_distributor_config(db, shop)
    async with client_factory(config) as client:
        product = await client.get_product(sku)
    markup = config.sync_settings.default_markup if config.sync_settings else 0.0
    return ListingPreviewResponse(sku=product.sku, markup=markup, listing=build_listing(product, markup))


@router.delete("/products/{sku}", status_code=status.HTTP_204_NO_CONTENT)
async def untrack_product(
    sku: str,
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
):
    """Stop tracking a product. Its compatibility edges go with it; the storefront listing stays."""
    repo = TrackedProductRepository(db)
    product = await repo.get_by_sku(shop, sku)
    if product is None:
        raise ProductNotFoundException(sku)
    await repo.remove(product)
    logger.info(f"Stopped tracking {sanitize_log(sku)} for {sanitize_log(shop)}")


@router.get("/import-stats")
async def import_stats(
    days: int = Query(7, ge=1, le=365, description="Window for recent imports"),
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> dict[str, Any]:
    return await TrackedProductRepository(db).import_stats(shop, clock.now() - timedelta(days=days))
