"""
Domain enums and typed JSON column support.

Settings, brand selections and per-item error lists are stored as JSON but
validated through pydantic models whenever they cross the store boundary,
so services only ever see typed structures.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from sqlalchemy import JSON
from sqlalchemy.types import TypeDecorator

# =============================================================================
# Enums
# =============================================================================


class DistributorEnvironment(StrEnum):
    SANDBOX = "sandbox"
    PRODUCTION = "production"


class SyncType(StrEnum):
    """Kinds of sync recorded in the job ledger."""

    INVENTORY = "inventory"
    PRICING = "pricing"
    PRODUCTS = "products"
    FULL = "full"
    VEHICLES = "vehicles"
    COMPATIBILITY = "compatibility"

    @property
    def is_catalog(self) -> bool:
        """Catalog syncs run through the sync engine and can be scheduled."""
        return self in CATALOG_SYNC_TYPES


CATALOG_SYNC_TYPES = frozenset({SyncType.INVENTORY, SyncType.PRICING, SyncType.PRODUCTS, SyncType.FULL})


class SyncFrequency(StrEnum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"


class SyncJobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncTrigger(StrEnum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class ProductSyncStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class ReminderIntervalType(StrEnum):
    TIME = "time"
    MILEAGE = "mileage"
    BOTH = "both"


class PriceAlertType(StrEnum):
    PRICE_DROP = "price_drop"
    BACK_IN_STOCK = "back_in_stock"


# =============================================================================
# Typed JSON Payloads
# =============================================================================


class SyncSettings(BaseModel):
    """Per-schedule / per-connection sync options."""

    model_config = ConfigDict(extra="ignore")

    max_new_products: int = Field(50, ge=1, le=250, description="New SKUs imported per brand per run")
    default_markup: float = Field(0.0, ge=0, description="Markup percentage applied to imported products")
    brand_filter: str | None = Field(None, description="Restrict compatibility sync to one brand")


class ItemSyncError(BaseModel):
    """One recorded failure on a tracked product."""

    timestamp: datetime
    operation: str
    message: str


# =============================================================================
# Column Type
# =============================================================================


class PydanticJSON(TypeDecorator):
    """
    JSON column validated through a pydantic type on the way in and out.

    Usage:
        sync_settings: Mapped[SyncSettings] = mapped_column(PydanticJSON(SyncSettings))
        selected_brands: Mapped[list[str]] = mapped_column(PydanticJSON(list[str]))
    """

    impl = JSON
    cache_ok = True

    def __init__(self, pydantic_type: Any, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.pydantic_type = pydantic_type
        self._adapter = TypeAdapter(pydantic_type)

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return self._adapter.dump_python(self._adapter.validate_python(value), mode="json")

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return self._adapter.validate_python(value)
