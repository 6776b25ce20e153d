"""
SQLAlchemy models for the PartSync database.

Every merchant-owned row carries `shop`; VehicleRecord is the shared
distributor vehicle taxonomy. Child rows are removed explicitly by the
repositories, not by ORM cascades.
"""

from datetime import datetime, UTC
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from partsync.db.postgres.types import (
    DistributorEnvironment,
    ItemSyncError,
    PriceAlertType,
    ProductSyncStatus,
    PydanticJSON,
    ReminderIntervalType,
    SyncFrequency,
    SyncJobStatus,
    SyncSettings,
    SyncTrigger,
    SyncType,
)


def utcnow() -> datetime:
    """Naive UTC timestamp used for audit columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _enum(enum_cls: type) -> Enum:
    """Store StrEnum values (not member names) in a portable VARCHAR."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# Distributor Connection
# =============================================================================


class DistributorConfig(Base):
    """Turn14 credentials and sync preferences for one shop."""

    __tablename__ = "distributor_configs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    shop: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    api_key: Mapped[str] = mapped_column(String(255), nullable=False)
    api_secret: Mapped[str | None] = mapped_column(String(255))
    environment: Mapped[DistributorEnvironment] = mapped_column(
        _enum(DistributorEnvironment), default=DistributorEnvironment.PRODUCTION
    )
    dealer_code: Mapped[str | None] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_validated: Mapped[datetime | None] = mapped_column(DateTime)
    validation_error: Mapped[str | None] = mapped_column(Text)
    selected_brands: Mapped[list[str]] = mapped_column(PydanticJSON(list[str]), default=list)
    sync_settings: Mapped[SyncSettings] = mapped_column(PydanticJSON(SyncSettings), default=lambda: SyncSettings())
    # Offline Admin API token persisted by the installing layer
    storefront_access_token: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# Catalog
# =============================================================================


class TrackedProduct(Base):
    """A Turn14 SKU imported into the shop's storefront."""

    __tablename__ = "tracked_products"
    __table_args__ = (
        UniqueConstraint("shop", "sku", name="uq_tracked_products_shop_sku"),
        Index("ix_tracked_products_shop_status", "shop", "sync_status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255))
    storefront_product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    storefront_variant_id: Mapped[str | None] = mapped_column(String(64))
    brand: Mapped[str | None] = mapped_column(String(100), index=True)
    category: Mapped[str | None] = mapped_column(String(100))

    original_price: Mapped[float] = mapped_column(Float, default=0.0)
    current_price: Mapped[float] = mapped_column(Float, default=0.0)
    price_markup: Mapped[float] = mapped_column(Float, default=0.0)
    inventory_quantity: Mapped[int] = mapped_column(Integer, default=0)

    sync_status: Mapped[ProductSyncStatus] = mapped_column(
        _enum(ProductSyncStatus), default=ProductSyncStatus.ACTIVE
    )
    last_synced: Mapped[datetime | None] = mapped_column(DateTime)
    sync_errors: Mapped[list[ItemSyncError]] = mapped_column(
        PydanticJSON(list[ItemSyncError]), default=list
    )
    import_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# Vehicle Compatibility
# =============================================================================


class VehicleRecord(Base):
    """Canonical Turn14 vehicle. Submodel is '' when the vehicle has none."""

    __tablename__ = "vehicle_records"
    __table_args__ = (
        UniqueConstraint("year", "make", "model", "submodel", name="uq_vehicle_records_ymms"),
        Index("ix_vehicle_records_ymm", "year", "make", "model"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    submodel: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    engine: Mapped[str | None] = mapped_column(String(100))
    engine_size: Mapped[str | None] = mapped_column(String(50))
    fuel_type: Mapped[str | None] = mapped_column(String(50))
    transmission: Mapped[str | None] = mapped_column(String(100))
    drive_type: Mapped[str | None] = mapped_column(String(50))
    body_style: Mapped[str | None] = mapped_column(String(100))
    distributor_vehicle_id: Mapped[str | None] = mapped_column(String(64), index=True)
    mmy_id: Mapped[str | None] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class CompatibilityEdge(Base):
    """One fitment of a tracked product, or a universal-fit marker."""

    __tablename__ = "compatibility_edges"
    __table_args__ = (
        UniqueConstraint(
            "shop", "product_id", "year", "make", "model", "submodel",
            name="uq_compatibility_edges_product_vehicle",
        ),
        Index("ix_compatibility_edges_ymm", "shop", "year", "make", "model"),
        Index("ix_compatibility_edges_sku", "shop", "sku"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("tracked_products.id"), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    distributor_vehicle_id: Mapped[str | None] = mapped_column(String(64))

    year: Mapped[int | None] = mapped_column(Integer)
    make: Mapped[str] = mapped_column(String(100), default="")
    model: Mapped[str] = mapped_column(String(100), default="")
    submodel: Mapped[str] = mapped_column(String(100), default="")
    engine: Mapped[str | None] = mapped_column(String(100))
    engine_size: Mapped[str | None] = mapped_column(String(50))
    fuel_type: Mapped[str | None] = mapped_column(String(50))
    transmission: Mapped[str | None] = mapped_column(String(100))
    drive_type: Mapped[str | None] = mapped_column(String(50))
    body_style: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)
    restrictions: Mapped[str | None] = mapped_column(Text)
    is_universal: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# =============================================================================
# Scheduling and Job History
# =============================================================================


class SyncSchedule(Base):
    """Recurring sync definition."""

    __tablename__ = "sync_schedules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    shop: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sync_type: Mapped[SyncType] = mapped_column(_enum(SyncType), nullable=False)
    frequency: Mapped[SyncFrequency] = mapped_column(_enum(SyncFrequency), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_run: Mapped[datetime | None] = mapped_column(DateTime)
    next_run: Mapped[datetime | None] = mapped_column(DateTime, index=True)
    settings: Mapped[SyncSettings] = mapped_column(PydanticJSON(SyncSettings), default=lambda: SyncSettings())

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class SyncJob(Base):
    """Append-only record of one sync execution."""

    __tablename__ = "sync_jobs"
    __table_args__ = (Index("ix_sync_jobs_shop_created", "shop", "created_at"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    schedule_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("sync_schedules.id", ondelete="SET NULL")
    )
    sync_type: Mapped[SyncType] = mapped_column(_enum(SyncType), nullable=False)
    trigger: Mapped[SyncTrigger] = mapped_column(_enum(SyncTrigger), default=SyncTrigger.MANUAL)
    status: Mapped[SyncJobStatus] = mapped_column(_enum(SyncJobStatus), default=SyncJobStatus.PENDING)
    start_time: Mapped[datetime | None] = mapped_column(DateTime)
    end_time: Mapped[datetime | None] = mapped_column(DateTime)

    total_items: Mapped[int] = mapped_column(Integer, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, default=0)
    success_items: Mapped[int] = mapped_column(Integer, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)
    results: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# =============================================================================
# Customer Garage
# =============================================================================


class CustomerGarage(Base):
    """A customer's saved vehicles for one shop."""

    __tablename__ = "customer_garages"
    __table_args__ = (UniqueConstraint("shop", "customer_id", name="uq_customer_garages_shop_customer"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), default="My Vehicles")
    max_vehicles: Mapped[int] = mapped_column(Integer, default=5)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class GarageVehicle(Base):
    """A vehicle saved in a garage."""

    __tablename__ = "garage_vehicles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    garage_id: Mapped[UUID] = mapped_column(ForeignKey("customer_garages.id"), index=True, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    submodel: Mapped[str | None] = mapped_column(String(100))
    engine: Mapped[str | None] = mapped_column(String(100))
    trim: Mapped[str | None] = mapped_column(String(100))
    nickname: Mapped[str | None] = mapped_column(String(100))
    color: Mapped[str | None] = mapped_column(String(50))
    mileage: Mapped[int | None] = mapped_column(Integer)
    vin: Mapped[str | None] = mapped_column(String(17))
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)

    vehicle_record_id: Mapped[UUID | None] = mapped_column(ForeignKey("vehicle_records.id"))
    distributor_vehicle_id: Mapped[str | None] = mapped_column(String(64))
    mmy_id: Mapped[str | None] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class MaintenanceReminder(Base):
    """Recurring maintenance item for a garage vehicle."""

    __tablename__ = "maintenance_reminders"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    vehicle_id: Mapped[UUID] = mapped_column(ForeignKey("garage_vehicles.id"), index=True, nullable=False)
    reminder_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    interval_type: Mapped[ReminderIntervalType] = mapped_column(_enum(ReminderIntervalType), nullable=False)
    interval_months: Mapped[int | None] = mapped_column(Integer)
    interval_mileage: Mapped[int | None] = mapped_column(Integer)
    last_completed: Mapped[datetime | None] = mapped_column(DateTime)
    last_mileage: Mapped[int | None] = mapped_column(Integer)
    next_due: Mapped[datetime | None] = mapped_column(DateTime)
    next_mileage: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    email_reminder: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class PriceAlert(Base):
    """Polled alert on a tracked SKU's price or stock."""

    __tablename__ = "price_alerts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    garage_id: Mapped[UUID] = mapped_column(ForeignKey("customer_garages.id"), index=True, nullable=False)
    vehicle_id: Mapped[UUID | None] = mapped_column(ForeignKey("garage_vehicles.id"))
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    product_title: Mapped[str] = mapped_column(String(255), nullable=False)
    target_price: Mapped[float | None] = mapped_column(Float)
    current_price: Mapped[float] = mapped_column(Float, default=0.0)
    alert_type: Mapped[PriceAlertType] = mapped_column(_enum(PriceAlertType), default=PriceAlertType.PRICE_DROP)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    alert_triggered: Mapped[bool] = mapped_column(Boolean, default=False)
    triggered_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_checked: Mapped[datetime | None] = mapped_column(DateTime)
    email_notifications: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class PurchaseHistory(Base):
    """A past order line attributed to a garage (and optionally a vehicle)."""

    __tablename__ = "purchase_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    garage_id: Mapped[UUID] = mapped_column(ForeignKey("customer_garages.id"), index=True, nullable=False)
    vehicle_id: Mapped[UUID | None] = mapped_column(ForeignKey("garage_vehicles.id"))
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    order_number: Mapped[str | None] = mapped_column(String(64))
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    product_title: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False)
    total_price: Mapped[float] = mapped_column(Float, nullable=False)
    purchase_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    category: Mapped[str | None] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
