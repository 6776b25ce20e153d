"""
Sync endpoints.

Provides endpoints to:
- Trigger a manual sync (serialized with scheduled runs of the same shop)
- Read sync status, statistics and the job ledger
- Purge old job history
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from partsync.api.v1.deps import get_clock, get_scheduler, get_shop
from partsync.api.v1.schemas.compatibility import PaginatedResponse
from partsync.api.v1.schemas.sync import (
    CleanupResponse,
    SyncJobResponse,
    SyncRunRequest,
    SyncRunResponse,
    SyncStatsResponse,
    SyncStatusResponse,
)
from partsync.core.clock import Clock
from partsync.core.config import settings
from partsync.core.exceptions import NotFoundException
from partsync.db.postgres.repositories import SyncJobRepository
from partsync.db.postgres.session import get_db
from partsync.db.postgres.types import SyncType
from partsync.services.scheduler import (
    SchedulerService,
    calculate_sync_stats,
    cleanup_old_sync_data,
    get_sync_status,
)

router = APIRouter()


@router.post("/run", response_model=SyncRunResponse)
async def run_sync(
    body: SyncRunRequest,
    shop: str = Depends(get_shop),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """
    Run a sync now and wait for it to finish.

    The run is recorded in the job ledger whether it succeeds or fails.
    """
    outcome = await scheduler.run_manual_sync(shop, body.sync_type, body.settings)
    return SyncRunResponse(job_id=outcome.job_id, results=outcome.result.to_dict())


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await get_sync_status(db, shop, clock=clock)


@router.get("/stats", response_model=SyncStatsResponse)
async def sync_stats(
    days: int = Query(7, ge=1, le=365),
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await calculate_sync_stats(db, shop, days=days, clock=clock)


@router.get("/jobs", response_model=PaginatedResponse[SyncJobResponse])
async def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    sync_type: Optional[SyncType] = Query(None),
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
):
    """Job ledger, newest first."""
    jobs = SyncJobRepository(db)
    items = await jobs.recent(shop, limit=limit, offset=offset, sync_type=sync_type)
    total = await jobs.count(shop, sync_type)
    return PaginatedResponse[SyncJobResponse](
        items=[SyncJobResponse.model_validate(job) for job in items],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(items) < total,
    )


@router.get("/jobs/{job_id}", response_model=SyncJobResponse)
async def get_job(
    job_id: UUID,
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
):
    job = await SyncJobRepository(db).get_for_shop(shop, job_id)
    if job is None:
        raise NotFoundException(message="Sync job not found.", resource_type="sync_job", resource_id=str(job_id))
    return job


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(
    retention_days: int = Query(settings.SYNC_RETENTION_DAYS, ge=1, le=3650),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Delete finished jobs older than the retention window (all shops)."""
    deleted = await cleanup_old_sync_data(db, retention_days, clock=clock)
    return CleanupResponse(deleted_jobs=deleted, retention_days=retention_days)
