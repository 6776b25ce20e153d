# Schemas module
from partsync.api.v1.schemas.compatibility import (
    PaginatedResponse,
    TrackedProductResponse,
    VehicleRecordResponse,
)
from partsync.api.v1.schemas.sync import SyncJobResponse, SyncRunRequest

__all__ = [
    "PaginatedResponse",
    "SyncJobResponse",
    "SyncRunRequest",
    "TrackedProductResponse",
    "VehicleRecordResponse",
]
