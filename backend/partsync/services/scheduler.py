"""
Sync scheduling.

- Next-run arithmetic for hourly, daily and weekly schedules
- Schedule CRUD and due-schedule lookup (ScheduleManager)
- Background polling service driven by an injected clock (SchedulerService)
- Manual sync trigger, sync status, job statistics and ledger cleanup

Runs for the same shop never overlap: every run goes through a per-shop
asyncio.Lock. Different shops may sync concurrently.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, assert_never
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from partsync.core.clock import Clock, SystemClock
from partsync.core.config import settings
from partsync.core.exceptions import NotFoundException
from partsync.core.log_sanitizer import sanitize_exception, sanitize_log
from partsync.core.logging import get_logger
from partsync.db.postgres.models import SyncSchedule
from partsync.db.postgres.repositories import SyncJobRepository, SyncScheduleRepository
from partsync.db.postgres.types import SyncFrequency, SyncJobStatus, SyncSettings, SyncTrigger, SyncType
from partsync.services.sync_engine import SyncEngine, SyncOutcome

logger = get_logger(__name__)

EngineFactory = Callable[[AsyncSession, str, Clock], SyncEngine]


def compute_next_run(
    frequency: SyncFrequency,
    now: datetime,
    run_hour: int | None = None,
) -> datetime | None:
    """
    Next execution time for a schedule.

    hourly: now + 1 hour. daily: the next calendar day at run_hour:00.
    weekly: seven days from now at run_hour:00. manual: never.

    All times are naive UTC, like every timestamp the service stores, so
    run_hour (SCHEDULE_RUN_HOUR, default 2) is an hour of the UTC day
    rather than the shop's local time.
    """
    hour = settings.SCHEDULE_RUN_HOUR if run_hour is None else run_hour
    match frequency:
        case SyncFrequency.HOURLY:
            return now + timedelta(hours=1)
        case SyncFrequency.DAILY:
            return (now + timedelta(days=1)).replace(hour=hour, minute=0, second=0, microsecond=0)
        case SyncFrequency.WEEKLY:
            return (now + timedelta(days=7)).replace(hour=hour, minute=0, second=0, microsecond=0)
        case SyncFrequency.MANUAL:
            return None
        case _:
            assert_never(frequency)


# =============================================================================
# Schedule Manager
# =============================================================================


class ScheduleManager:
    """CRUD and bookkeeping for recurring sync definitions."""

    def __init__(self, db: AsyncSession, clock: Clock | None = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.schedules = SyncScheduleRepository(db)

    async def create(
        self,
        shop: str,
        name: str,
        sync_type: SyncType,
        frequency: SyncFrequency,
        sync_settings: SyncSettings | None = None,
        is_active: bool = True,
    ) -> SyncSchedule:
        schedule = await self.schedules.create(
            {
                "shop": shop,
                "name": name,
                "sync_type": sync_type,
                "frequency": frequency,
                "is_active": is_active,
                "settings": sync_settings or SyncSettings(),
                "next_run": compute_next_run(frequency, self.clock.now()),
            }
        )
        logger.info(f"Created {frequency} {sync_type} schedule '{sanitize_log(name)}' for {sanitize_log(shop)}")
        return schedule

    async def get(self, shop: str, schedule_id: UUID) -> SyncSchedule:
        schedule = await self.schedules.get_for_shop(shop, schedule_id)
        if schedule is None:
            raise NotFoundException(
                message="Sync schedule not found.",
                resource_type="sync_schedule",
                resource_id=str(schedule_id),
            )
        return schedule

    async def update(self, shop: str, schedule_id: UUID, changes: dict[str, Any]) -> SyncSchedule:
        """
        Apply changes to a schedule.

        The next run is recomputed when the frequency changes or an inactive
        schedule is switched back on.
        """
        schedule = await self.get(shop, schedule_id)
        frequency_changed = "frequency" in changes and changes["frequency"] != schedule.frequency
        reactivated = changes.get("is_active") is True and not schedule.is_active

        schedule = await self.schedules.update(schedule, changes)
        if frequency_changed or reactivated:
            schedule.next_run = compute_next_run(schedule.frequency, self.clock.now())
            await self.db.flush()
        return schedule

    async def delete(self, shop: str, schedule_id: UUID) -> None:
        schedule = await self.get(shop, schedule_id)
        await self.schedules.remove(schedule)

    async def list_schedules(self, shop: str, active_only: bool = False) -> list[SyncSchedule]:
        return await self.schedules.list_for_shop(shop, active_only)

    async def schedules_due(self) -> list[SyncSchedule]:
        return await self.schedules.due(self.clock.now())

    async def mark_run(self, schedule: SyncSchedule) -> SyncSchedule:
        """Stamp last_run and move next_run forward from now."""
        now = self.clock.now()
        schedule.last_run = now
        schedule.next_run = compute_next_run(schedule.frequency, now)
        await self.db.flush()
        return schedule


# =============================================================================
# Scheduler Service
# =============================================================================


def _default_engine_factory(db: AsyncSession, shop: str, clock: Clock) -> SyncEngine:
    return SyncEngine(db, shop, clock=clock)


class SchedulerService:
    """
    Background runner for due schedules.

    Owned by the application lifespan. Each tick loads the due schedules,
    runs them one shop at a time under that shop's lock and always advances
    the schedule, whether the run succeeded or not.

    Usage:
        scheduler = SchedulerService(async_session_maker)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine_factory: EngineFactory | None = None,
        clock: Clock | None = None,
        poll_seconds: float | None = None,
    ):
        self.session_factory = session_factory
        self.engine_factory = engine_factory or _default_engine_factory
        self.clock = clock or SystemClock()
        self.poll_seconds = poll_seconds or settings.SCHEDULER_POLL_SECONDS
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._task: asyncio.Task | None = None
        self._last_cleanup: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def shop_lock(self, shop: str) -> asyncio.Lock:
        return self._locks[shop]

    def start(self) -> None:
        if self.is_running:
            logger.warning("Sync scheduler is already running")
            return
        self._task = asyncio.create_task(self._run_loop(), name="partsync-scheduler")
        logger.info("Sync scheduler started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync scheduler stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.tick()
                await self._maybe_cleanup()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error checking scheduled syncs: {sanitize_exception(e)}")
            await self.clock.sleep(self.poll_seconds)

    async def _maybe_cleanup(self) -> None:
        now = self.clock.now()
        if self._last_cleanup is not None and now - self._last_cleanup < timedelta(days=1):
            return
        self._last_cleanup = now
        async with self.session_factory() as db:
            await cleanup_old_sync_data(db, settings.SYNC_RETENTION_DAYS, clock=self.clock)
            await db.commit()

    async def tick(self) -> int:
        """
        Run every schedule that is due now.

        Returns:
            Number of schedules executed.
        """
        async with self.session_factory() as db:
            due = await ScheduleManager(db, self.clock).schedules_due()
            by_shop: dict[str, list[UUID]] = defaultdict(list)
            for schedule in due:
                by_shop[schedule.shop].append(schedule.id)

        if not by_shop:
            return 0

        logger.info(f"Found {len(due)} due sync schedules")
        await asyncio.gather(*(self._run_shop(shop, ids) for shop, ids in by_shop.items()))
        return len(due)

    async def _run_shop(self, shop: str, schedule_ids: list[UUID]) -> None:
        async with self.shop_lock(shop):
            for schedule_id in schedule_ids:
                await self.run_schedule(shop, schedule_id)

    async def run_schedule(self, shop: str, schedule_id: UUID) -> SyncOutcome | None:
        """Execute one schedule and advance it. Failures are logged, never raised."""
        outcome = None
        try:
            async with self.session_factory() as db:
                schedule = await SyncScheduleRepository(db).get_for_shop(shop, schedule_id)
                if schedule is None:
                    return None
                name, sync_type, sync_settings = schedule.name, schedule.sync_type, schedule.settings
                logger.info(f"Running scheduled sync: {sanitize_log(name)} ({sync_type})")
                engine = self.engine_factory(db, shop, self.clock)
                outcome = await engine.run_sync(
                    sync_type,
                    sync_settings,
                    schedule_id=schedule_id,
                    trigger=SyncTrigger.SCHEDULED,
                )
        except Exception as e:
            logger.error(f"Error running scheduled sync {schedule_id} for {sanitize_log(shop)}: {sanitize_exception(e)}")
        finally:
            async with self.session_factory() as db:
                manager = ScheduleManager(db, self.clock)
                schedule = await manager.schedules.get_for_shop(shop, schedule_id)
                if schedule is not None:
                    await manager.mark_run(schedule)
                    await db.commit()
        return outcome

    async def run_manual_sync(
        self,
        shop: str,
        sync_type: SyncType,
        sync_settings: SyncSettings | None = None,
    ) -> SyncOutcome:
        """Run a sync now, serialized with any scheduled run of the same shop."""
        async with self.shop_lock(shop):
            async with self.session_factory() as db:
                logger.info(f"Running manual {sync_type} sync for {sanitize_log(shop)}")
                engine = self.engine_factory(db, shop, self.clock)
                return await engine.run_sync(sync_type, sync_settings, trigger=SyncTrigger.MANUAL)


# =============================================================================
# Status and Maintenance
# =============================================================================


async def calculate_sync_stats(
    db: AsyncSession,
    shop: str,
    days: int = 7,
    clock: Clock | None = None,
) -> dict[str, Any]:
    """Job counts for the last `days` days. The success rate is 100 when there were no jobs."""
    since = (clock or SystemClock()).now() - timedelta(days=days)
    counts = await SyncJobRepository(db).status_counts(shop, since)
    total = sum(counts.values())
    successful = counts.get(SyncJobStatus.COMPLETED, 0)
    return {
        "total_jobs": total,
        "successful_jobs": successful,
        "failed_jobs": counts.get(SyncJobStatus.FAILED, 0),
        "success_rate": round(successful / total * 100) if total else 100,
        "period": f"{days} days",
    }


async def get_sync_status(db: AsyncSession, shop: str, clock: Clock | None = None) -> dict[str, Any]:
    """Active schedules, the ten most recent jobs and the weekly stats of a shop."""
    schedules = await SyncScheduleRepository(db).list_for_shop(shop, active_only=True)
    jobs = await SyncJobRepository(db).recent(shop, limit=10)
    return {
        "active_schedules": len(schedules),
        "recent_jobs": len(jobs),
        "last_sync": jobs[0].created_at if jobs else None,
        "stats": await calculate_sync_stats(db, shop, clock=clock),
        "schedules": schedules,
        "jobs": jobs,
    }


async def cleanup_old_sync_data(
    db: AsyncSession,
    retention_days: int = 30,
    clock: Clock | None = None,
) -> int:
    """Delete finished jobs older than the retention window. Returns the number deleted."""
    cutoff = (clock or SystemClock()).now() - timedelta(days=retention_days)
    deleted = await SyncJobRepository(db).delete_older_than(cutoff)
    logger.info(f"Cleaned up {deleted} sync jobs older than {retention_days} days")
    return deleted
