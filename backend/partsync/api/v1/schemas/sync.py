"""
Distributor connection, sync job and schedule schemas.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from partsync.db.postgres.types import (
    DistributorEnvironment,
    SyncFrequency,
    SyncJobStatus,
    SyncSettings,
    SyncTrigger,
    SyncType,
)


def _catalog_sync_type(value: Optional[SyncType]) -> Optional[SyncType]:
    if value is not None and not value.is_catalog:
        raise ValueError(f"{value} syncs run through the compatibility endpoints")
    return value


# =============================================================================
# Distributor Connection
# =============================================================================


class CredentialsRequest(BaseModel):
    """Turn14 credentials to validate and store."""

    api_key: str = Field(..., min_length=1, description="Turn14 API key")
    api_secret: Optional[str] = Field(None, description="Turn14 API secret")
    environment: DistributorEnvironment = Field(DistributorEnvironment.PRODUCTION, description="API environment")

    model_config = ConfigDict(
        json_schema_extra={"example": {"api_key": "t14-key", "api_secret": "t14-secret", "environment": "production"}}
    )


class CredentialsValidationResponse(BaseModel):
    is_valid: bool
    message: str
    account_info: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class DistributorConfigUpdate(BaseModel):
    """Connection preferences. Only the fields sent are changed."""

    dealer_code: Optional[str] = Field(None, max_length=100)
    selected_brands: Optional[list[str]] = Field(None, description="Brands imported by product sync")
    sync_settings: Optional[SyncSettings] = None
    storefront_access_token: Optional[str] = Field(None, description="Offline Admin API token")
    is_active: Optional[bool] = None


class DistributorConfigResponse(BaseModel):
    shop: str
    api_key: str = Field(..., description="Masked API key")
    environment: DistributorEnvironment
    dealer_code: Optional[str] = None
    is_active: bool
    last_validated: Optional[datetime] = None
    validation_error: Optional[str] = None
    selected_brands: list[str] = Field(default_factory=list)
    sync_settings: SyncSettings
    has_storefront_token: bool = False


class BrandResponse(BaseModel):
    id: Optional[str] = None
    name: str


class ListingPreviewResponse(BaseModel):
    """Storefront listing payload built from one Turn14 item."""

    sku: str
    markup: float
    listing: dict[str, Any]


# =============================================================================
# Sync Jobs
# =============================================================================


class SyncRunRequest(BaseModel):
    """Manual sync trigger."""

    sync_type: SyncType = Field(..., description="inventory, pricing, products or full")
    settings: Optional[SyncSettings] = Field(None, description="Overrides the stored sync settings")

    check_sync_type = field_validator("sync_type")(_catalog_sync_type)

    model_config = ConfigDict(json_schema_extra={"example": {"sync_type": "inventory"}})


class SyncJobResponse(BaseModel):
    """One entry of the sync job ledger."""

    id: UUID
    schedule_id: Optional[UUID] = None
    sync_type: SyncType
    trigger: SyncTrigger
    status: SyncJobStatus
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_items: int = 0
    processed_items: int = 0
    success_items: int = 0
    failed_items: int = 0
    error_message: Optional[str] = None
    results: Optional[dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SyncRunResponse(BaseModel):
    job_id: UUID
    results: dict[str, Any]


class SyncStatsResponse(BaseModel):
    total_jobs: int
    successful_jobs: int
    failed_jobs: int
    success_rate: int
    period: str


class CleanupResponse(BaseModel):
    deleted_jobs: int
    retention_days: int


# =============================================================================
# Schedules
# =============================================================================


class ScheduleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    sync_type: SyncType
    frequency: SyncFrequency
    is_active: bool = True
    settings: Optional[SyncSettings] = None

    check_sync_type = field_validator("sync_type")(_catalog_sync_type)

    model_config = ConfigDict(
        json_schema_extra={"example": {"name": "Nightly inventory", "sync_type": "inventory", "frequency": "daily"}}
    )


class ScheduleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    sync_type: Optional[SyncType] = None
    frequency: Optional[SyncFrequency] = None
    is_active: Optional[bool] = None
    settings: Optional[SyncSettings] = None

    check_sync_type = field_validator("sync_type")(_catalog_sync_type)


class ScheduleResponse(BaseModel):
    id: UUID
    name: str
    sync_type: SyncType
    frequency: SyncFrequency
    is_active: bool
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    settings: SyncSettings
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SyncStatusResponse(BaseModel):
    active_schedules: int
    recent_jobs: int
    last_sync: Optional[datetime] = None
    stats: SyncStatsResponse
    schedules: list[ScheduleResponse]
    jobs: list[SyncJobResponse]
