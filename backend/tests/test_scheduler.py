"""
Tests for schedule arithmetic, schedule CRUD and the background scheduler.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio

from conftest import NOW, SHOP, add_product
from partsync.core.exceptions import NotFoundException
from partsync.db.postgres.models import SyncJob
from partsync.db.postgres.repositories import SyncJobRepository
from partsync.db.postgres.types import SyncFrequency, SyncJobStatus, SyncSettings, SyncTrigger, SyncType
from partsync.services.scheduler import (
    ScheduleManager,
    SchedulerService,
    calculate_sync_stats,
    cleanup_old_sync_data,
    compute_next_run,
    get_sync_status,
)
from partsync.services.sync_engine import SyncEngine, SyncOutcome, SyncResult


class TestComputeNextRun:
    """Next-run arithmetic for each frequency."""

    def test_hourly(self):
        assert compute_next_run(SyncFrequency.HOURLY, NOW) == datetime(2024, 3, 15, 11, 30)

    @pytest.mark.parametrize(
        "now",
        [datetime(2024, 3, 15, 0, 5), datetime(2024, 3, 15, 1, 59), datetime(2024, 3, 15, 23, 45)],
    )
    def test_daily_runs_next_day_at_two(self, now):
        assert compute_next_run(SyncFrequency.DAILY, now) == datetime(2024, 3, 16, 2, 0)

    def test_daily_crosses_month_end(self):
        assert compute_next_run(SyncFrequency.DAILY, datetime(2024, 2, 29, 12, 0)) == datetime(2024, 3, 1, 2, 0)

    def test_weekly(self):
        assert compute_next_run(SyncFrequency.WEEKLY, NOW) == datetime(2024, 3, 22, 2, 0)

    def test_manual_never_runs(self):
        assert compute_next_run(SyncFrequency.MANUAL, NOW) is None

    def test_run_hour_override(self):
        assert compute_next_run(SyncFrequency.DAILY, NOW, run_hour=5) == datetime(2024, 3, 16, 5, 0)

    def test_run_hour_is_an_hour_of_the_utc_day(self):
        # 20:30 on the 15th in New York is already the 16th in UTC
        assert compute_next_run(SyncFrequency.DAILY, datetime(2024, 3, 16, 0, 30)) == datetime(2024, 3, 17, 2, 0)


class TestScheduleManager:
    """Tests for schedule CRUD."""

    @pytest.fixture
    def manager(self, db_session, clock):
        return ScheduleManager(db_session, clock)

    @pytest.mark.asyncio
    async def test_create_sets_next_run(self, manager):
        schedule = await manager.create(SHOP, "Nightly stock", SyncType.INVENTORY, SyncFrequency.DAILY)

        assert schedule.next_run == datetime(2024, 3, 16, 2, 0)
        assert schedule.is_active is True
        assert schedule.settings == SyncSettings()

    @pytest.mark.asyncio
    async def test_schedules_are_scoped_to_shop(self, manager):
        schedule = await manager.create(SHOP, "Nightly stock", SyncType.INVENTORY, SyncFrequency.DAILY)

        with pytest.raises(NotFoundException):
            await manager.get("other-shop.myshopify.com", schedule.id)
        assert await manager.list_schedules("other-shop.myshopify.com") == []

    @pytest.mark.asyncio
    async def test_frequency_change_recomputes_next_run(self, manager, clock):
        schedule = await manager.create(SHOP, "Stock", SyncType.INVENTORY, SyncFrequency.DAILY)
        clock.advance(timedelta(minutes=10))

        schedule = await manager.update(SHOP, schedule.id, {"frequency": SyncFrequency.HOURLY})

        assert schedule.next_run == datetime(2024, 3, 15, 11, 40)

    @pytest.mark.asyncio
    async def test_rename_keeps_next_run(self, manager, clock):
        schedule = await manager.create(SHOP, "Stock", SyncType.INVENTORY, SyncFrequency.DAILY)
        clock.advance(timedelta(hours=3))

        schedule = await manager.update(SHOP, schedule.id, {"name": "Stock levels"})

        assert schedule.name == "Stock levels"
        assert schedule.next_run == datetime(2024, 3, 16, 2, 0)

    @pytest.mark.asyncio
    async def test_reactivation_recomputes_next_run(self, manager, clock):
        schedule = await manager.create(SHOP, "Prices", SyncType.PRICING, SyncFrequency.HOURLY, is_active=False)
        clock.advance(timedelta(days=2))

        schedule = await manager.update(SHOP, schedule.id, {"is_active": True})

        assert schedule.next_run == NOW + timedelta(days=2, hours=1)

    @pytest.mark.asyncio
    async def test_delete_keeps_jobs_detached(self, manager, db_session):
        schedule = await manager.create(SHOP, "Stock", SyncType.INVENTORY, SyncFrequency.DAILY)
        job = await SyncJobRepository(db_session).open(SHOP, SyncType.INVENTORY, SyncTrigger.SCHEDULED, schedule.id)
        await db_session.commit()

        await manager.delete(SHOP, schedule.id)
        await db_session.commit()

        await db_session.refresh(job)
        assert job.schedule_id is None
        assert await manager.list_schedules(SHOP) == []

    @pytest.mark.asyncio
    async def test_due_schedules(self, manager, clock):
        hourly = await manager.create(SHOP, "Prices", SyncType.PRICING, SyncFrequency.HOURLY)
        await manager.create(SHOP, "Stock", SyncType.INVENTORY, SyncFrequency.DAILY)
        await manager.create(SHOP, "Paused", SyncType.PRICING, SyncFrequency.HOURLY, is_active=False)
        await manager.create(SHOP, "On demand", SyncType.FULL, SyncFrequency.MANUAL)

        assert await manager.schedules_due() == []

        clock.advance(timedelta(hours=1))
        assert [s.id for s in await manager.schedules_due()] == [hourly.id]


def stub_engine(side_effect=None) -> MagicMock:
    engine = MagicMock(spec=SyncEngine)
    engine.run_sync = AsyncMock(
        return_value=SyncOutcome(job_id=uuid4(), result=SyncResult()),
        side_effect=side_effect,
    )
    return engine


class TestSchedulerService:
    """Tests for the background scheduler."""

    @pytest_asyncio.fixture
    async def due_schedule(self, db_session, clock):
        schedule = await ScheduleManager(db_session, clock).create(
            SHOP, "Prices", SyncType.PRICING, SyncFrequency.HOURLY, SyncSettings(default_markup=25.0)
        )
        await db_session.commit()
        clock.advance(timedelta(hours=1, minutes=5))
        return schedule

    @pytest.mark.asyncio
    async def test_tick_runs_due_schedule_and_advances_it(self, session_factory, clock, due_schedule, db_session):
        engine = stub_engine()
        scheduler = SchedulerService(session_factory, engine_factory=lambda db, shop, c: engine, clock=clock)

        assert await scheduler.tick() == 1

        engine.run_sync.assert_awaited_once_with(
            SyncType.PRICING,
            SyncSettings(default_markup=25.0),
            schedule_id=due_schedule.id,
            trigger=SyncTrigger.SCHEDULED,
        )
        await db_session.refresh(due_schedule)
        assert due_schedule.last_run == clock.now()
        assert due_schedule.next_run == clock.now() + timedelta(hours=1)
        await db_session.commit()
        assert await scheduler.tick() == 0

    @pytest.mark.asyncio
    async def test_failed_run_still_advances_schedule(self, session_factory, clock, due_schedule, db_session):
        engine = stub_engine(side_effect=RuntimeError("distributor down"))
        scheduler = SchedulerService(session_factory, engine_factory=lambda db, shop, c: engine, clock=clock)

        outcome = await scheduler.run_schedule(SHOP, due_schedule.id)

        assert outcome is None
        await db_session.refresh(due_schedule)
        assert due_schedule.last_run == clock.now()
        assert due_schedule.next_run > clock.now()

    @pytest.mark.asyncio
    async def test_runs_for_one_shop_never_overlap(self, session_factory, clock):
        active = 0
        peak = 0

        async def run_sync(*args, **kwargs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return SyncOutcome(job_id=uuid4(), result=SyncResult())

        engine = MagicMock(spec=SyncEngine)
        engine.run_sync = AsyncMock(side_effect=run_sync)
        scheduler = SchedulerService(session_factory, engine_factory=lambda db, shop, c: engine, clock=clock)

        await asyncio.gather(
            scheduler.run_manual_sync(SHOP, SyncType.INVENTORY),
            scheduler.run_manual_sync(SHOP, SyncType.PRICING),
            scheduler.run_manual_sync(SHOP, SyncType.PRODUCTS),
        )

        assert engine.run_sync.await_count == 3
        assert peak == 1

    @pytest.mark.asyncio
    async def test_manual_sync_runs_real_engine(
        self, session_factory, clock, turn14, publisher, distributor_config, db_session
    ):
        await add_product(db_session, "A100", inventory_quantity=5, storefront_variant_id="9001")
        await db_session.commit()
        turn14.stock["A100"] = 2

        def engine_factory(db, shop, c):
            return SyncEngine(
                db,
                shop,
                clock=c,
                client_factory=turn14.client_factory,
                publisher_factory=lambda config: publisher,
            )

        scheduler = SchedulerService(session_factory, engine_factory=engine_factory, clock=clock)
        outcome = await scheduler.run_manual_sync(SHOP, SyncType.INVENTORY)

        assert outcome.result.success_items == 1
        assert publisher.inventory_updates == [("9001", 2)]
        job = await SyncJobRepository(db_session).get_for_shop(SHOP, outcome.job_id)
        assert job.trigger == SyncTrigger.MANUAL
        assert job.status == SyncJobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory, clock):
        engine = stub_engine()
        scheduler = SchedulerService(
            session_factory, engine_factory=lambda db, shop, c: engine, clock=clock, poll_seconds=60
        )

        scheduler.start()
        assert scheduler.is_running
        await scheduler.stop()

        assert not scheduler.is_running
        await scheduler.stop()


class TestStatusAndCleanup:
    """Tests for sync stats, status and ledger retention."""

    async def add_job(self, db, status, created_at, shop=SHOP) -> SyncJob:
        job = SyncJob(shop=shop, sync_type=SyncType.INVENTORY, status=status, created_at=created_at)
        db.add(job)
        await db.flush()
        return job

    @pytest.mark.asyncio
    async def test_stats_without_jobs(self, db_session, clock):
        stats = await calculate_sync_stats(db_session, SHOP, clock=clock)

        assert stats == {
            "total_jobs": 0,
            "successful_jobs": 0,
            "failed_jobs": 0,
            "success_rate": 100,
            "period": "7 days",
        }

    @pytest.mark.asyncio
    async def test_stats_count_recent_jobs(self, db_session, clock):
        await self.add_job(db_session, SyncJobStatus.COMPLETED, NOW - timedelta(days=1))
        await self.add_job(db_session, SyncJobStatus.COMPLETED, NOW - timedelta(days=2))
        await self.add_job(db_session, SyncJobStatus.FAILED, NOW - timedelta(days=3))
        await self.add_job(db_session, SyncJobStatus.FAILED, NOW - timedelta(days=10))
        await self.add_job(db_session, SyncJobStatus.FAILED, NOW - timedelta(days=1), shop="other.myshopify.com")

        stats = await calculate_sync_stats(db_session, SHOP, clock=clock)

        assert stats["total_jobs"] == 3
        assert stats["successful_jobs"] == 2
        assert stats["failed_jobs"] == 1
        assert stats["success_rate"] == 67

    @pytest.mark.asyncio
    async def test_status(self, db_session, clock):
        await ScheduleManager(db_session, clock).create(SHOP, "Stock", SyncType.INVENTORY, SyncFrequency.DAILY)
        await self.add_job(db_session, SyncJobStatus.COMPLETED, NOW - timedelta(hours=2))
        latest = await self.add_job(db_session, SyncJobStatus.RUNNING, NOW - timedelta(minutes=1))

        status = await get_sync_status(db_session, SHOP, clock=clock)

        assert status["active_schedules"] == 1
        assert status["recent_jobs"] == 2
        assert status["last_sync"] == latest.created_at

    @pytest.mark.asyncio
    async def test_cleanup_keeps_recent_and_unfinished_jobs(self, db_session, clock):
        await self.add_job(db_session, SyncJobStatus.COMPLETED, NOW - timedelta(days=31))
        await self.add_job(db_session, SyncJobStatus.FAILED, NOW - timedelta(days=45))
        await self.add_job(db_session, SyncJobStatus.RUNNING, NOW - timedelta(days=40))
        await self.add_job(db_session, SyncJobStatus.COMPLETED, NOW - timedelta(days=29))

        deleted = await cleanup_old_sync_data(db_session, retention_days=30, clock=clock)

        assert deleted == 2
        assert await SyncJobRepository(db_session).count(SHOP) == 2
