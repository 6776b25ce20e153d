"""
Tests for customer garages, maintenance reminders and price alerts.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import NOW, SHOP, add_product
from partsync.core.exceptions import GarageCapacityException, NotFoundException, VehicleNotFoundException
from partsync.db.postgres.models import (
    CustomerGarage,
    GarageVehicle,
    MaintenanceReminder,
    PriceAlert,
    PurchaseHistory,
)
from partsync.db.postgres.repositories import VehicleRecordRepository
from partsync.db.postgres.types import PriceAlertType, ReminderIntervalType
from partsync.services.garage_service import GarageService, add_months

F150 = {"year": 2020, "make": "Ford", "model": "F-150", "mileage": 42000}
CIVIC = {"year": 2019, "make": "Honda", "model": "Civic"}


@pytest.fixture
def service(db_session, clock):
    return GarageService(db_session, SHOP, clock=clock)


async def count(db, model, *conditions) -> int:
    result = await db.execute(select(func.count(model.id)).where(*conditions))
    return result.scalar() or 0


async def reminder_of_type(db, vehicle_id, reminder_type) -> MaintenanceReminder:
    result = await db.execute(
        select(MaintenanceReminder).where(
            MaintenanceReminder.vehicle_id == vehicle_id,
            MaintenanceReminder.reminder_type == reminder_type,
        )
    )
    return result.scalar_one()


class TestGarage:
    """Tests for garage creation and deletion."""

    @pytest.mark.asyncio
    async def test_created_on_first_use(self, service):
        details = await service.get_or_create_garage("cust-1")
        again = await service.get_or_create_garage("cust-1")

        assert details.garage.id == again.garage.id
        assert details.garage.max_vehicles == 5
        assert details.vehicles == []

    @pytest.mark.asyncio
    async def test_details_of_unknown_customer(self, service):
        assert await service.get_garage_details("nobody") is None

    @pytest.mark.asyncio
    async def test_delete_removes_children(self, service, db_session):
        await add_product(db_session, "A1", current_price=50.0)
        await db_session.commit()
        vehicle = await service.add_vehicle("cust-1", F150)
        await service.create_price_alert(
            "cust-1", {"sku": "A1", "product_title": "Air Filter", "target_price": 40.0, "vehicle_id": vehicle.id}
        )
        await service.record_purchase(
            "cust-1", {"order_id": "1001", "sku": "A1", "product_title": "Air Filter", "unit_price": 50.0}
        )

        assert await service.delete_garage("cust-1") is True

        assert await count(db_session, CustomerGarage) == 0
        assert await count(db_session, GarageVehicle) == 0
        assert await count(db_session, MaintenanceReminder) == 0
        assert await count(db_session, PriceAlert) == 0
        assert await count(db_session, PurchaseHistory) == 0
        assert await service.delete_garage("cust-1") is False


class TestVehicles:
    """Tests for adding, updating and removing garage vehicles."""

    @pytest.mark.asyncio
    async def test_first_vehicle_is_primary_with_default_reminders(self, service, db_session):
        vehicle = await service.add_vehicle("cust-1", F150)

        assert vehicle.is_primary is True
        assert vehicle.mileage == 42000
        reminders = (
            await db_session.execute(
                select(MaintenanceReminder).where(MaintenanceReminder.vehicle_id == vehicle.id)
            )
        ).scalars().all()
        assert sorted(r.reminder_type for r in reminders) == ["brake_inspection", "oil_change", "tire_rotation"]
        assert all(r.next_due is None for r in reminders)

    @pytest.mark.asyncio
    async def test_capacity_is_enforced(self, service, db_session):
        for year in range(2015, 2020):
            await service.add_vehicle("cust-1", {"year": year, "make": "Ford", "model": "F-150"})

        with pytest.raises(GarageCapacityException) as exc_info:
            await service.add_vehicle("cust-1", CIVIC)

        assert exc_info.value.max_vehicles == 5
        details = await service.get_garage_details("cust-1")
        assert len(details.vehicles) == 5

    @pytest.mark.asyncio
    async def test_single_primary_on_add(self, service, db_session):
        first = await service.add_vehicle("cust-1", F150)
        second = await service.add_vehicle("cust-1", CIVIC | {"is_primary": True})

        await db_session.refresh(first)
        assert first.is_primary is False
        assert second.is_primary is True
        assert await count(db_session, GarageVehicle, GarageVehicle.is_primary.is_(True)) == 1

    @pytest.mark.asyncio
    async def test_single_primary_on_update(self, service, db_session):
        first = await service.add_vehicle("cust-1", F150)
        second = await service.add_vehicle("cust-1", CIVIC)
        assert second.is_primary is False

        updated = await service.update_vehicle("cust-1", second.id, {"is_primary": True, "nickname": "Daily"})

        await db_session.refresh(first)
        assert updated.is_primary is True
        assert updated.nickname == "Daily"
        assert first.is_primary is False

    @pytest.mark.asyncio
    async def test_canonical_vehicle_is_linked(self, service, db_session):
        record, _ = await VehicleRecordRepository(db_session).upsert(
            {"year": 2020, "make": "Ford", "model": "F-150", "distributor_vehicle_id": "T14-501"}, NOW
        )
        await db_session.commit()

        vehicle = await service.add_vehicle("cust-1", F150)

        assert vehicle.vehicle_record_id == record.id
        assert vehicle.distributor_vehicle_id == "T14-501"

    @pytest.mark.asyncio
    async def test_vehicle_of_other_customer_is_not_found(self, service):
        vehicle = await service.add_vehicle("cust-1", F150)
        await service.get_or_create_garage("cust-2")

        with pytest.raises(VehicleNotFoundException):
            await service.update_vehicle("cust-2", vehicle.id, {"nickname": "Mine"})

    @pytest.mark.asyncio
    async def test_remove_detaches_alerts(self, service, db_session):
        await add_product(db_session, "A1", current_price=50.0)
        await db_session.commit()
        vehicle = await service.add_vehicle("cust-1", F150)
        alert = await service.create_price_alert(
            "cust-1", {"sku": "A1", "product_title": "Air Filter", "target_price": 40.0, "vehicle_id": vehicle.id}
        )

        await service.remove_vehicle("cust-1", vehicle.id)

        await db_session.refresh(alert)
        assert alert.vehicle_id is None
        assert await count(db_session, MaintenanceReminder) == 0
        with pytest.raises(VehicleNotFoundException):
            await service.remove_vehicle("cust-1", vehicle.id)


class TestMaintenanceReminders:
    """Tests for reminder completion and the upcoming list."""

    @pytest.mark.asyncio
    async def test_oil_change_schedules_mileage_and_date(self, service, db_session):
        vehicle = await service.add_vehicle("cust-1", F150)
        oil = await reminder_of_type(db_session, vehicle.id, "oil_change")

        reminder = await service.complete_maintenance_reminder("cust-1", oil.id, current_mileage=30000)

        assert reminder.interval_type == ReminderIntervalType.BOTH
        assert reminder.last_completed == NOW
        assert reminder.last_mileage == 30000
        assert reminder.next_mileage == 35000
        assert reminder.next_due == datetime(2024, 9, 15, 10, 30)

    @pytest.mark.asyncio
    async def test_time_interval_only_moves_date(self, service, db_session):
        vehicle = await service.add_vehicle("cust-1", F150)
        brakes = await reminder_of_type(db_session, vehicle.id, "brake_inspection")

        reminder = await service.complete_maintenance_reminder("cust-1", brakes.id, current_mileage=30000)

        assert reminder.next_due == datetime(2025, 3, 15, 10, 30)
        assert reminder.next_mileage is None

    @pytest.mark.asyncio
    async def test_upcoming_window(self, service, db_session, clock):
        vehicle = await service.add_vehicle("cust-1", F150)
        oil = await reminder_of_type(db_session, vehicle.id, "oil_change")
        await service.complete_maintenance_reminder("cust-1", oil.id, current_mileage=30000)

        assert await service.get_upcoming_reminders("cust-1", days_ahead=30) == []

        clock.advance(timedelta(days=170))
        upcoming = await service.get_upcoming_reminders("cust-1", days_ahead=30)
        assert [r.reminder_type for r in upcoming] == ["oil_change"]

    @pytest.mark.asyncio
    async def test_reminder_of_other_garage(self, service, db_session):
        vehicle = await service.add_vehicle("cust-1", F150)
        oil = await reminder_of_type(db_session, vehicle.id, "oil_change")
        await service.get_or_create_garage("cust-2")

        with pytest.raises(NotFoundException):
            await service.complete_maintenance_reminder("cust-2", oil.id)

    @pytest.mark.asyncio
    async def test_unknown_customer_has_no_reminders(self, service):
        assert await service.get_upcoming_reminders("nobody") == []


class TestPriceAlerts:
    """Tests for check_price_alerts."""

    @pytest.mark.asyncio
    async def test_price_drop_fires_once(self, service, db_session):
        product = await add_product(db_session, "A1", current_price=50.0)
        await db_session.commit()
        await service.get_or_create_garage("cust-1")
        alert = await service.create_price_alert(
            "cust-1", {"sku": "A1", "product_title": "Air Filter", "current_price": 50.0, "target_price": 40.0}
        )

        assert await service.check_price_alerts() == []
        await db_session.refresh(alert)
        assert alert.last_checked == NOW
        assert alert.alert_triggered is False

        product.current_price = 39.99
        await db_session.commit()
        triggered = await service.check_price_alerts()

        assert [t.alert.id for t in triggered] == [alert.id]
        assert triggered[0].customer_id == "cust-1"
        assert triggered[0].alert.triggered_at == NOW
        assert await service.check_price_alerts() == []

    @pytest.mark.asyncio
    async def test_back_in_stock(self, service, db_session):
        product = await add_product(db_session, "B1", inventory_quantity=0)
        await db_session.commit()
        await service.get_or_create_garage("cust-1")
        await service.create_price_alert(
            "cust-1", {"sku": "B1", "product_title": "Brake Pads", "alert_type": PriceAlertType.BACK_IN_STOCK}
        )

        assert await service.check_price_alerts() == []

        product.inventory_quantity = 3
        await db_session.commit()
        triggered = await service.check_price_alerts()

        assert len(triggered) == 1
        assert triggered[0].product.sku == "B1"

    @pytest.mark.asyncio
    async def test_alert_requires_garage(self, service):
        with pytest.raises(NotFoundException):
            await service.create_price_alert("nobody", {"sku": "A1", "product_title": "Air Filter"})

    @pytest.mark.asyncio
    async def test_alert_vehicle_must_belong_to_customer(self, service):
        await service.get_or_create_garage("cust-1")

        with pytest.raises(VehicleNotFoundException):
            await service.create_price_alert(
                "cust-1", {"sku": "A1", "product_title": "Air Filter", "vehicle_id": uuid4()}
            )


class TestPurchasesAndStats:
    @pytest.mark.asyncio
    async def test_purchase_total_defaults_to_quantity_times_price(self, service):
        await service.get_or_create_garage("cust-1")

        purchase = await service.record_purchase(
            "cust-1",
            {"order_id": "1001", "sku": "A1", "product_title": "Air Filter", "unit_price": 19.99, "quantity": 3},
        )

        assert purchase.total_price == 59.97
        assert purchase.purchase_date == NOW

    @pytest.mark.asyncio
    async def test_stats(self, service, db_session):
        await add_product(db_session, "A1", current_price=50.0)
        await db_session.commit()
        await service.add_vehicle("cust-1", F150)
        await service.add_vehicle("cust-1", CIVIC)
        await service.add_vehicle("cust-2", CIVIC)
        await service.create_price_alert("cust-2", {"sku": "A1", "product_title": "Air Filter", "target_price": 1.0})

        stats = await service.get_garage_stats()

        assert stats == {
            "total_garages": 2,
            "active_customers": 2,
            "total_vehicles": 3,
            "maintenance_reminders": 9,
            "price_alerts": 1,
        }


@pytest.mark.parametrize(
    "start, months, expected",
    [
        (datetime(2024, 1, 31), 1, datetime(2024, 2, 29)),
        (datetime(2024, 3, 15), 6, datetime(2024, 9, 15)),
        (datetime(2024, 11, 30), 3, datetime(2025, 2, 28)),
    ],
)
def test_add_months(start, months, expected):
    assert add_months(start, months) == expected
