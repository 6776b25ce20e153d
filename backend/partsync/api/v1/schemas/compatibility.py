"""
Vehicle and compatibility schemas.
"""

from datetime import datetime
from typing import Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from partsync.db.postgres.types import ProductSyncStatus

# Generic type for pagination
T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response schema."""

    items: list[T] = Field(..., description="List of items")
    total: int = Field(..., description="Total number of items")
    limit: int = Field(..., description="Maximum items per page")
    offset: int = Field(..., description="Number of items skipped")
    has_more: bool = Field(..., description="Whether more items are available")


class VehicleRecordResponse(BaseModel):
    """Canonical distributor vehicle."""

    id: UUID
    year: int
    make: str
    model: str
    submodel: str = ""
    engine: Optional[str] = None
    engine_size: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    drive_type: Optional[str] = None
    body_style: Optional[str] = None
    distributor_vehicle_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CompatibilityEdgeResponse(BaseModel):
    year: Optional[int] = None
    make: str = ""
    model: str = ""
    submodel: str = ""
    engine: Optional[str] = None
    notes: Optional[str] = None
    restrictions: Optional[str] = None
    is_universal: bool = False

    model_config = ConfigDict(from_attributes=True)


class TrackedProductResponse(BaseModel):
    """A tracked Turn14 SKU and its storefront listing."""

    id: UUID
    sku: str
    title: Optional[str] = None
    storefront_product_id: str
    storefront_variant_id: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    current_price: float
    inventory_quantity: int
    sync_status: ProductSyncStatus
    last_synced: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class VehicleSyncResponse(BaseModel):
    processed: int
    created: int
    updated: int
    errors: int = 0


class ProductCompatibilitySyncResponse(BaseModel):
    sku: str
    processed: int
    created: int


class BulkCompatibilityRequest(BaseModel):
    limit: int = Field(10, ge=1, le=100, description="Products processed in this batch")
    brand: Optional[str] = Field(None, description="Only products of this brand")


class BulkCompatibilityResponse(BaseModel):
    processed: int
    successful: int
    failed: int
    errors: list[dict[str, str]] = Field(default_factory=list)


class CompatibilityCheckResponse(BaseModel):
    compatible: bool
    is_universal: Optional[bool] = None
    notes: Optional[str] = None
    restrictions: Optional[str] = None
    reason: Optional[str] = None


class CompatibilityStatsResponse(BaseModel):
    total_vehicles: int
    total_compatibility_records: int
    products_with_compatibility: int
    total_products: int
    compatibility_percentage: int
