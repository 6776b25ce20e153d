"""
Customer garage service.

Handles a customer's saved vehicles and everything attached to them:
- Garage creation and details
- Vehicle add/update/remove with capacity and primary-vehicle rules
- Compatible products for a saved vehicle
- Maintenance reminders (seeded defaults, upcoming, completion)
- Price and back-in-stock alerts
- Purchase history and shop-level garage statistics

Errors raised here reach customer-facing routes, so they carry generic
messages only.
"""

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from partsync.core.clock import Clock, SystemClock
from partsync.core.config import settings
from partsync.core.exceptions import (
    GarageCapacityException,
    NotFoundException,
    VehicleNotFoundException,
)
from partsync.core.log_sanitizer import sanitize_log
from partsync.core.logging import get_logger
from partsync.db.postgres.models import (
    CustomerGarage,
    GarageVehicle,
    MaintenanceReminder,
    PriceAlert,
    PurchaseHistory,
    TrackedProduct,
)
from partsync.db.postgres.repositories import (
    CompatibilityRepository,
    GarageRepository,
    VehicleRecordRepository,
)
from partsync.db.postgres.types import PriceAlertType, ReminderIntervalType

logger = get_logger(__name__)

DEFAULT_REMINDERS: list[dict[str, Any]] = [
    {
        "reminder_type": "oil_change",
        "title": "Oil Change",
        "description": "Regular oil change to keep your engine running smoothly",
        "interval_type": ReminderIntervalType.BOTH,
        "interval_mileage": 5000,
        "interval_months": 6,
    },
    {
        "reminder_type": "tire_rotation",
        "title": "Tire Rotation",
        "description": "Rotate tires for even wear and extended life",
        "interval_type": ReminderIntervalType.MILEAGE,
        "interval_mileage": 7500,
    },
    {
        "reminder_type": "brake_inspection",
        "title": "Brake Inspection",
        "description": "Check brake pads, rotors, and brake fluid",
        "interval_type": ReminderIntervalType.TIME,
        "interval_months": 12,
    },
]

VEHICLE_FIELDS = (
    "year",
    "make",
    "model",
    "submodel",
    "engine",
    "trim",
    "nickname",
    "color",
    "mileage",
    "vin",
)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


@dataclass
class GarageDetails:
    """A garage with its vehicles and their active reminders, alerts and recent purchases."""

    garage: CustomerGarage
    vehicles: list[GarageVehicle] = field(default_factory=list)
    reminders: list[MaintenanceReminder] = field(default_factory=list)
    alerts: list[PriceAlert] = field(default_factory=list)
    purchases: list[PurchaseHistory] = field(default_factory=list)


@dataclass
class TriggeredAlert:
    alert: PriceAlert
    product: TrackedProduct
    customer_id: str | None = None


class GarageService:
    """
    Garage operations for one shop.

    Usage:
        service = GarageService(db, "demo.myshopify.com")
        vehicle = await service.add_vehicle("cust-1", {"year": 2020, "make": "Ford", "model": "F-150"})
    """

    def __init__(self, db: AsyncSession, shop: str, *, clock: Clock | None = None):
        self.db = db
        self.shop = shop
        self.clock = clock or SystemClock()
        self.garages = GarageRepository(db)

    # =========================================================================
    # Garage
    # =========================================================================

    async def get_or_create_garage(self, customer_id: str) -> GarageDetails:
        garage = await self.garages.get_or_create(self.shop, customer_id, settings.GARAGE_MAX_VEHICLES)
        vehicles = await self.garages.list_vehicles(garage.id)
        return GarageDetails(garage=garage, vehicles=vehicles)

    async def get_garage_details(self, customer_id: str) -> GarageDetails | None:
        garage = await self.garages.get_by_customer(self.shop, customer_id)
        if garage is None:
            return None
        return GarageDetails(
            garage=garage,
            vehicles=await self.garages.list_vehicles(garage.id),
            reminders=await self.garages.active_reminders(garage.id),
            alerts=await self.garages.active_alerts(garage.id),
            purchases=await self.garages.recent_purchases(garage.id, limit=10),
        )

    async def delete_garage(self, customer_id: str) -> bool:
        garage = await self.garages.get_by_customer(self.shop, customer_id)
        if garage is None:
            return False
        await self.garages.remove_garage(garage)
        await self.db.commit()
        return True

    async def _require_garage(self, customer_id: str) -> CustomerGarage:
        garage = await self.garages.get_by_customer(self.shop, customer_id)
        if garage is None:
            raise NotFoundException(message="Garage not found.", resource_type="garage")
        return garage

    async def _require_vehicle(self, customer_id: str, vehicle_id: UUID) -> GarageVehicle:
        """Ownership check: the vehicle must belong to this customer's garage."""
        garage = await self.garages.get_by_customer(self.shop, customer_id)
        vehicle = await self.garages.get_vehicle(garage.id, vehicle_id) if garage else None
        if vehicle is None:
            raise VehicleNotFoundException(str(vehicle_id))
        return vehicle

    # =========================================================================
    # Vehicles
    # =========================================================================

    async def add_vehicle(self, customer_id: str, data: dict[str, Any]) -> GarageVehicle:
        """
        Save a vehicle in the customer's garage.

        The first vehicle, or one requested as primary, becomes the only
        primary vehicle. The vehicle is linked to the matching canonical
        vehicle record when there is one, and gets the default reminders.

        Raises:
            GarageCapacityException: If the garage is full. Nothing is written.
        """
        garage = await self.garages.get_or_create(self.shop, customer_id, settings.GARAGE_MAX_VEHICLES)
        count = await self.garages.count_vehicles(garage.id)
        if count >= garage.max_vehicles:
            raise GarageCapacityException(garage.max_vehicles)

        is_primary = count == 0 or bool(data.get("is_primary"))
        if is_primary:
            await self.garages.unset_primary(garage.id)

        canonical = await VehicleRecordRepository(self.db).get_by_ymm(
            data["year"], data["make"], data["model"], data.get("submodel")
        )

        vehicle = GarageVehicle(
            garage_id=garage.id,
            is_primary=is_primary,
            vehicle_record_id=canonical.id if canonical else None,
            distributor_vehicle_id=canonical.distributor_vehicle_id if canonical else None,
            mmy_id=canonical.mmy_id if canonical else None,
            **{name: data.get(name) for name in VEHICLE_FIELDS},
        )
        self.db.add(vehicle)
        await self.db.flush()

        self.db.add_all(MaintenanceReminder(vehicle_id=vehicle.id, **reminder) for reminder in DEFAULT_REMINDERS)
        await self.db.commit()
        await self.db.refresh(vehicle)

        logger.info(
            f"Added {vehicle.year} {sanitize_log(vehicle.make)} {sanitize_log(vehicle.model)} "
            f"to garage of customer {sanitize_log(customer_id)}"
        )
        return vehicle

    async def update_vehicle(self, customer_id: str, vehicle_id: UUID, changes: dict[str, Any]) -> GarageVehicle:
        vehicle = await self._require_vehicle(customer_id, vehicle_id)
        if changes.get("is_primary"):
            await self.garages.unset_primary(vehicle.garage_id, keep_vehicle_id=vehicle.id)

        for name, value in changes.items():
            if name in VEHICLE_FIELDS or name == "is_primary":
                setattr(vehicle, name, value)
        await self.db.commit()
        await self.db.refresh(vehicle)
        return vehicle

    async def remove_vehicle(self, customer_id: str, vehicle_id: UUID) -> None:
        vehicle = await self._require_vehicle(customer_id, vehicle_id)
        await self.garages.remove_vehicle(vehicle)
        await self.db.commit()
        logger.info(f"Removed vehicle {vehicle_id} from garage of customer {sanitize_log(customer_id)}")

    async def get_compatible_products(
        self,
        customer_id: str,
        vehicle_id: UUID,
        category: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[TrackedProduct], int]:
        vehicle = await self._require_vehicle(customer_id, vehicle_id)
        return await CompatibilityRepository(self.db).find_products(
            self.shop,
            vehicle.year,
            vehicle.make,
            vehicle.model,
            submodel=vehicle.submodel,
            category=category,
            limit=limit,
            offset=offset,
        )

    # =========================================================================
    # Maintenance Reminders
    # =========================================================================

    async def get_upcoming_reminders(self, customer_id: str, days_ahead: int = 30) -> list[MaintenanceReminder]:
        garage = await self.garages.get_by_customer(self.shop, customer_id)
        if garage is None:
            return []
        until = self.clock.now() + timedelta(days=days_ahead)
        return await self.garages.reminders_due_before(garage.id, until)

    async def complete_maintenance_reminder(
        self,
        customer_id: str,
        reminder_id: UUID,
        current_mileage: int | None = None,
    ) -> MaintenanceReminder:
        """
        Mark a reminder done and schedule the next occurrence.

        Time-based intervals move next_due to now + interval_months;
        mileage-based intervals move next_mileage to current_mileage +
        interval_mileage. "both" does both.
        """
        garage = await self._require_garage(customer_id)
        reminder = await self.garages.get_reminder(garage.id, reminder_id)
        if reminder is None:
            raise NotFoundException(
                message="Maintenance reminder not found.",
                resource_type="maintenance_reminder",
                resource_id=str(reminder_id),
            )

        now = self.clock.now()
        next_due = None
        next_mileage = None
        if reminder.interval_type in (ReminderIntervalType.TIME, ReminderIntervalType.BOTH):
            next_due = add_months(now, reminder.interval_months or 0)
        if reminder.interval_type in (ReminderIntervalType.MILEAGE, ReminderIntervalType.BOTH):
            next_mileage = (current_mileage or 0) + (reminder.interval_mileage or 0)

        reminder.last_completed = now
        reminder.last_mileage = current_mileage
        reminder.next_due = next_due
        reminder.next_mileage = next_mileage
        await self.db.commit()
        await self.db.refresh(reminder)
        return reminder

    # =========================================================================
    # Price Alerts
    # =========================================================================

    async def create_price_alert(self, customer_id: str, data: dict[str, Any]) -> PriceAlert:
        garage = await self._require_garage(customer_id)
        vehicle_id = data.get("vehicle_id")
        if vehicle_id is not None:
            await self._require_vehicle(customer_id, vehicle_id)

        alert = PriceAlert(
            garage_id=garage.id,
            vehicle_id=vehicle_id,
            sku=data["sku"],
            product_title=data["product_title"],
            current_price=data.get("current_price") or 0.0,
            target_price=data.get("target_price"),
            alert_type=data.get("alert_type") or PriceAlertType.PRICE_DROP,
            email_notifications=data.get("email_notifications", True) is not False,
        )
        self.db.add(alert)
        await self.db.commit()
        await self.db.refresh(alert)
        return alert

    async def check_price_alerts(self) -> list[TriggeredAlert]:
        """
        Evaluate every active, untriggered alert of the shop against its tracked product.

        price_drop fires when the current price is at or below the target;
        back_in_stock fires when the product has stock. A fired alert is
        not evaluated again. Every evaluated alert gets last_checked.
        """
        now = self.clock.now()
        triggered: list[TriggeredAlert] = []

        for alert, product in await self.garages.pending_alerts(self.shop):
            match alert.alert_type:
                case PriceAlertType.PRICE_DROP:
                    fire = alert.target_price is not None and product.current_price <= alert.target_price
                case PriceAlertType.BACK_IN_STOCK:
                    fire = product.inventory_quantity > 0
                case _:
                    fire = False

            alert.last_checked = now
            if fire:
                alert.alert_triggered = True
                alert.triggered_at = now
                garage = await self.garages.get(alert.garage_id)
                triggered.append(
                    TriggeredAlert(alert=alert, product=product, customer_id=garage.customer_id if garage else None)
                )

        await self.db.commit()
        if triggered:
            logger.info(f"Triggered {len(triggered)} price alerts for {sanitize_log(self.shop)}")
        return triggered

    # =========================================================================
    # Purchases and Stats
    # =========================================================================

    async def record_purchase(self, customer_id: str, data: dict[str, Any]) -> PurchaseHistory:
        garage = await self._require_garage(customer_id)
        vehicle_id = data.get("vehicle_id")
        if vehicle_id is not None:
            await self._require_vehicle(customer_id, vehicle_id)

        quantity = data.get("quantity") or 1
        unit_price = data["unit_price"]
        purchase = PurchaseHistory(
            garage_id=garage.id,
            vehicle_id=vehicle_id,
            order_id=data["order_id"],
            order_number=data.get("order_number"),
            sku=data["sku"],
            product_title=data["product_title"],
            quantity=quantity,
            unit_price=unit_price,
            total_price=data.get("total_price") or round(unit_price * quantity, 2),
            purchase_date=data.get("purchase_date") or self.clock.now(),
            category=data.get("category"),
        )
        self.db.add(purchase)
        await self.db.commit()
        await self.db.refresh(purchase)
        return purchase

    async def get_garage_stats(self) -> dict[str, int]:
        return await self.garages.stats(self.shop)
