"""
Sync schedule endpoints (CRUD).
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from partsync.api.v1.deps import get_clock, get_shop
from partsync.api.v1.schemas.sync import ScheduleCreate, ScheduleResponse, ScheduleUpdate
from partsync.core.clock import Clock
from partsync.db.postgres.session import get_db
from partsync.services.scheduler import ScheduleManager

router = APIRouter()


@router.get("", response_model=list[ScheduleResponse])
async def list_schedules(
    active_only: bool = Query(False),
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await ScheduleManager(db, clock).list_schedules(shop, active_only)


@router.post("", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    body: ScheduleCreate,
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Create a schedule; its first run is computed from the frequency."""
    return await ScheduleManager(db, clock).create(
        shop,
        body.name,
        body.sync_type,
        body.frequency,
        sync_settings=body.settings,
        is_active=body.is_active,
    )


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: UUID,
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await ScheduleManager(db, clock).get(shop, schedule_id)


@router.patch("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: UUID,
    body: ScheduleUpdate,
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await ScheduleManager(db, clock).update(shop, schedule_id, body.model_dump(exclude_unset=True))


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    schedule_id: UUID,
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    await ScheduleManager(db, clock).delete(shop, schedule_id)
