"""
Repository pattern implementations for database operations.

This module provides repository classes for the catalog, vehicle
compatibility, sync bookkeeping and garage aggregates.

- Every merchant-scoped query filters on `shop`
- Natural-key writes use INSERT ... ON CONFLICT so two overlapping passes
  never race a read-then-write
- Child rows are deleted explicitly before their parents
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Generic, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from partsync.core.exceptions import DatabaseException
from partsync.db.postgres.models import (
    Base,
    CompatibilityEdge,
    CustomerGarage,
    DistributorConfig,
    GarageVehicle,
    MaintenanceReminder,
    PriceAlert,
    PurchaseHistory,
    SyncJob,
    SyncSchedule,
    TrackedProduct,
    VehicleRecord,
    utcnow,
)
from partsync.db.postgres.types import (
    ItemSyncError,
    ProductSyncStatus,
    SyncJobStatus,
    SyncTrigger,
    SyncType,
)

# Generic type for models
ModelType = TypeVar("ModelType", bound=Base)


def dialect_insert(db: AsyncSession, model: type[Base]):
    """Return the dialect-specific INSERT construct that supports ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert is not supported on dialect {dialect!r}")
    return insert(model)


class BaseRepository(Generic[ModelType]):
    """
    Base repository with common CRUD operations.

    Attributes:
        model: The SQLAlchemy model class.
        db: The async database session.
    """

    def __init__(self, model: type[ModelType], db: AsyncSession) -> None:
        self.model = model
        self.db = db

    async def get(self, id: UUID) -> ModelType | None:
        """Get a single record by ID."""
        result = await self.db.execute(select(self.model).where(self.model.id == id))  # type: ignore[attr-defined]
        return result.scalar_one_or_none()

    async def create(self, obj_in: dict) -> ModelType:
        """Create a new record."""
        db_obj = self.model(**obj_in)
        self.db.add(db_obj)
        await self.db.flush()
        await self.db.refresh(db_obj)
        return db_obj

    async def update(self, db_obj: ModelType, obj_in: dict) -> ModelType:
        """Apply field values to a loaded record."""
        for key, value in obj_in.items():
            setattr(db_obj, key, value)
        await self.db.flush()
        return db_obj

    async def delete(self, db_obj: ModelType) -> None:
        """Delete a loaded record."""
        await self.db.delete(db_obj)
        await self.db.flush()


# =============================================================================
# Distributor Configuration
# =============================================================================


class DistributorConfigRepository(BaseRepository[DistributorConfig]):
    """Repository for per-shop Turn14 connection settings."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(DistributorConfig, db)

    async def get_by_shop(self, shop: str) -> DistributorConfig | None:
        result = await self.db.execute(select(DistributorConfig).where(DistributorConfig.shop == shop))
        return result.scalar_one_or_none()

    async def save(self, shop: str, values: dict[str, Any]) -> DistributorConfig:
        """
        Create or update the configuration for a shop.

        Args:
            shop: Shop domain.
            values: Column values to set.

        Returns:
            The stored configuration.
        """
        config = await self.get_by_shop(shop)
        if config is None:
            return await self.create({"shop": shop, **values})
        return await self.update(config, values)

    async def record_validation(
        self,
        config: DistributorConfig,
        validated_at: datetime,
        error: str | None,
    ) -> DistributorConfig:
        """Store a credential check outcome. A failed check deactivates the connection."""
        config.last_validated = validated_at
        config.validation_error = error
        if error:
            config.is_active = False
        else:
            config.is_active = True
        await self.db.flush()
        return config


# =============================================================================
# Catalog Store
# =============================================================================


class TrackedProductRepository(BaseRepository[TrackedProduct]):
    """Repository mapping distributor SKUs to storefront listings."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(TrackedProduct, db)

    async def get_by_sku(self, shop: str, sku: str) -> TrackedProduct | None:
        """
        Get a tracked product by its natural key.

        Args:
            shop: Shop domain.
            sku: Distributor SKU.

        Returns:
            TrackedProduct if tracked, None otherwise.
        """
        result = await self.db.execute(
            select(TrackedProduct)
            .where(TrackedProduct.shop == shop, TrackedProduct.sku == sku)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_syncable(
        self,
        shop: str,
        product_ids: Sequence[UUID] | None = None,
    ) -> list[TrackedProduct]:
        """
        List products that take part in inventory and pricing syncs.

        Errored products are included so a successful pass can return them
        to active; paused products are skipped.

        Args:
            shop: Shop domain.
            product_ids: Optional subset of product IDs.

        Returns:
            Syncable products, oldest first.
        """
        query = select(TrackedProduct).where(
            TrackedProduct.shop == shop,
            TrackedProduct.sync_status.in_([ProductSyncStatus.ACTIVE, ProductSyncStatus.ERROR]),
        )
        if product_ids:
            query = query.where(TrackedProduct.id.in_(list(product_ids)))
        result = await self.db.execute(query.order_by(TrackedProduct.created_at.asc()))
        return list(result.scalars().all())

    async def list_for_compatibility(
        self,
        shop: str,
        limit: int,
        brand: str | None = None,
    ) -> list[TrackedProduct]:
        """Active products in import order, optionally restricted to one brand."""
        query = select(TrackedProduct).where(
            TrackedProduct.shop == shop,
            TrackedProduct.sync_status == ProductSyncStatus.ACTIVE,
        )
        if brand:
            query = query.where(TrackedProduct.brand == brand)
        result = await self.db.execute(query.order_by(TrackedProduct.created_at.asc()).limit(limit))
        return list(result.scalars().all())

    async def existing_skus(self, shop: str) -> set[str]:
        """All SKUs tracked for a shop, in one query."""
        result = await self.db.execute(select(TrackedProduct.sku).where(TrackedProduct.shop == shop))
        return set(result.scalars().all())

    async def upsert(self, shop: str, sku: str, values: dict[str, Any]) -> TrackedProduct:
        """
        Insert or update a tracked product on (shop, sku).

        Args:
            shop: Shop domain.
            sku: Distributor SKU.
            values: Column values for the row.

        Returns:
            The stored product.
        """
        now = utcnow()
        stmt = dialect_insert(self.db, TrackedProduct).values(
            shop=shop,
            sku=sku,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[TrackedProduct.shop, TrackedProduct.sku],
            set_={**values, "updated_at": now},
        )
        await self.db.execute(stmt)
        product = await self.get_by_sku(shop, sku)
        if product is None:
            raise DatabaseException(
                message="Upserted product could not be read back.",
                details={"shop": shop, "sku": sku},
            )
        return product

    async def mark_synced(self, product: TrackedProduct, synced_at: datetime, **values: Any) -> TrackedProduct:
        """Apply synced values and return the product to active status."""
        for key, value in values.items():
            setattr(product, key, value)
        product.sync_status = ProductSyncStatus.ACTIVE
        product.last_synced = synced_at
        await self.db.flush()
        return product

    async def record_error(
        self,
        product: TrackedProduct,
        operation: str,
        message: str,
        failed_at: datetime,
        history: int,
    ) -> TrackedProduct:
        """
        Flag a product as errored and keep the newest `history` errors.

        Args:
            product: The product that failed.
            operation: Sync operation that failed (inventory, pricing, ...).
            message: Sanitized error message.
            failed_at: Failure time.
            history: Number of errors retained per product.
        """
        errors = list(product.sync_errors or [])
        errors.append(ItemSyncError(timestamp=failed_at, operation=operation, message=message))
        product.sync_errors = errors[-history:]
        product.sync_status = ProductSyncStatus.ERROR
        await self.db.flush()
        return product

    async def remove(self, product: TrackedProduct) -> None:
        """Delete a product together with its compatibility edges."""
        await self.db.execute(delete(CompatibilityEdge).where(CompatibilityEdge.product_id == product.id))
        await self.delete(product)

    async def count(self, shop: str) -> int:
        result = await self.db.execute(select(func.count(TrackedProduct.id)).where(TrackedProduct.shop == shop))
        return result.scalar() or 0

    async def import_stats(self, shop: str, since: datetime) -> dict[str, Any]:
        """
        Import statistics for a shop.

        Args:
            shop: Shop domain.
            since: Start of the "recent imports" window.

        Returns:
            Totals, recent import count, per-status breakdown and success rate.
        """
        total = await self.count(shop)
        recent = await self.db.execute(
            select(func.count(TrackedProduct.id)).where(
                TrackedProduct.shop == shop, TrackedProduct.created_at >= since
            )
        )
        breakdown_rows = await self.db.execute(
            select(TrackedProduct.sync_status, func.count(TrackedProduct.id))
            .where(TrackedProduct.shop == shop)
            .group_by(TrackedProduct.sync_status)
        )
        breakdown = {str(status): count for status, count in breakdown_rows.all()}
        active = breakdown.get(ProductSyncStatus.ACTIVE.value, 0)

        return {
            "total_imports": total,
            "recent_imports": recent.scalar() or 0,
            "active_products": active,
            "error_products": breakdown.get(ProductSyncStatus.ERROR.value, 0),
            "paused_products": breakdown.get(ProductSyncStatus.PAUSED.value, 0),
            "success_rate": round(active / total * 100) if total else 100,
            "status_breakdown": breakdown,
        }


# =============================================================================
# Vehicle Compatibility Store
# =============================================================================


VEHICLE_ATTRIBUTES = (
    "engine",
    "engine_size",
    "fuel_type",
    "transmission",
    "drive_type",
    "body_style",
    "distributor_vehicle_id",
    "mmy_id",
)


class VehicleRecordRepository(BaseRepository[VehicleRecord]):
    """Repository for the shared distributor vehicle taxonomy."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(VehicleRecord, db)

    async def get_by_ymm(
        self,
        year: int,
        make: str,
        model: str,
        submodel: str | None = None,
    ) -> VehicleRecord | None:
        result = await self.db.execute(
            select(VehicleRecord)
            .where(
                VehicleRecord.year == year,
                VehicleRecord.make == make,
                VehicleRecord.model == model,
                VehicleRecord.submodel == (submodel or ""),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert(self, values: dict[str, Any], now: datetime) -> tuple[VehicleRecord, bool]:
        """
        Upsert a vehicle on (year, make, model, submodel).

        A fresh insert writes the same timestamp to created_at and
        last_updated; a conflict only moves last_updated. That equality is
        what classifies the outcome.

        Args:
            values: year, make, model, submodel plus optional attributes.
            now: Sync timestamp.

        Returns:
            Tuple of (stored record, True if it was created).
        """
        key = {
            "year": values["year"],
            "make": values["make"],
            "model": values["model"],
            "submodel": values.get("submodel") or "",
        }
        attributes = {name: values.get(name) for name in VEHICLE_ATTRIBUTES}

        stmt = dialect_insert(self.db, VehicleRecord).values(
            **key,
            **attributes,
            is_active=True,
            created_at=now,
            last_updated=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                VehicleRecord.year,
                VehicleRecord.make,
                VehicleRecord.model,
                VehicleRecord.submodel,
            ],
            set_={**attributes, "is_active": True, "last_updated": now},
        )
        await self.db.execute(stmt)

        record = await self.get_by_ymm(key["year"], key["make"], key["model"], key["submodel"])
        if record is None:
            raise DatabaseException(message="Upserted vehicle could not be read back.", details=dict(key))
        return record, record.created_at == record.last_updated

    async def search(
        self,
        year: int | None = None,
        make: str | None = None,
        model: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[VehicleRecord], int]:
        """
        Search active vehicles.

        Make and model match case-insensitive substrings.

        Returns:
            Tuple of (page of vehicles, total matches).
        """
        conditions = [VehicleRecord.is_active.is_(True)]
        if year:
            conditions.append(VehicleRecord.year == year)
        if make:
            conditions.append(VehicleRecord.make.ilike(f"%{make}%"))
        if model:
            conditions.append(VehicleRecord.model.ilike(f"%{model}%"))

        total = await self.db.execute(select(func.count(VehicleRecord.id)).where(*conditions))
        result = await self.db.execute(
            select(VehicleRecord)
            .where(*conditions)
            .order_by(
                VehicleRecord.year.desc(),
                VehicleRecord.make.asc(),
                VehicleRecord.model.asc(),
                VehicleRecord.submodel.asc(),
            )
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total.scalar() or 0

    async def distinct_years(self) -> list[int]:
        result = await self.db.execute(
            select(VehicleRecord.year)
            .where(VehicleRecord.is_active.is_(True))
            .distinct()
            .order_by(VehicleRecord.year.desc())
        )
        return list(result.scalars().all())

    async def distinct_makes(self, year: int | None = None) -> list[str]:
        query = select(VehicleRecord.make).where(VehicleRecord.is_active.is_(True))
        if year:
            query = query.where(VehicleRecord.year == year)
        result = await self.db.execute(query.distinct().order_by(VehicleRecord.make.asc()))
        return list(result.scalars().all())

    async def distinct_models(self, year: int, make: str) -> list[str]:
        result = await self.db.execute(
            select(VehicleRecord.model)
            .where(
                VehicleRecord.is_active.is_(True),
                VehicleRecord.year == year,
                VehicleRecord.make == make,
            )
            .distinct()
            .order_by(VehicleRecord.model.asc())
        )
        return list(result.scalars().all())

    async def distinct_submodels(self, year: int, make: str, model: str) -> list[str]:
        result = await self.db.execute(
            select(VehicleRecord.submodel)
            .where(
                VehicleRecord.is_active.is_(True),
                VehicleRecord.year == year,
                VehicleRecord.make == make,
                VehicleRecord.model == model,
                VehicleRecord.submodel != "",
            )
            .distinct()
            .order_by(VehicleRecord.submodel.asc())
        )
        return list(result.scalars().all())

    async def count_active(self) -> int:
        result = await self.db.execute(
            select(func.count(VehicleRecord.id)).where(VehicleRecord.is_active.is_(True))
        )
        return result.scalar() or 0


class CompatibilityRepository(BaseRepository[CompatibilityEdge]):
    """Repository for product-to-vehicle fitment edges."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(CompatibilityEdge, db)

    async def list_for_product(self, product: TrackedProduct) -> list[CompatibilityEdge]:
        result = await self.db.execute(
            select(CompatibilityEdge)
            .where(CompatibilityEdge.product_id == product.id)
            .order_by(
                CompatibilityEdge.year.desc(),
                CompatibilityEdge.make.asc(),
                CompatibilityEdge.model.asc(),
                CompatibilityEdge.submodel.asc(),
            )
        )
        return list(result.scalars().all())

    async def replace_for_product(
        self,
        product: TrackedProduct,
        rows: Iterable[dict[str, Any]],
    ) -> int:
        """
        Replace every edge of a product inside one savepoint.

        Either the full refreshed set is stored or the previous set stays in
        place; a product is never left with a partial edge list.

        Args:
            product: Product whose edges are replaced.
            rows: Edge column values (without shop/product/sku).

        Returns:
            Number of edges stored.
        """
        async with self.db.begin_nested():
            await self.db.execute(
                delete(CompatibilityEdge).where(CompatibilityEdge.product_id == product.id)
            )
            edges = [
                CompatibilityEdge(shop=product.shop, product_id=product.id, sku=product.sku, **row)
                for row in rows
            ]
            self.db.add_all(edges)
            await self.db.flush()
        return len(edges)

    def _vehicle_conditions(
        self,
        shop: str,
        year: int,
        make: str,
        model: str,
        submodel: str | None,
    ) -> list[Any]:
        conditions = [
            CompatibilityEdge.shop == shop,
            CompatibilityEdge.year == year,
            CompatibilityEdge.make == make,
            CompatibilityEdge.model == model,
        ]
        if submodel:
            conditions.append(CompatibilityEdge.submodel == submodel)
        return conditions

    async def find_products(
        self,
        shop: str,
        year: int,
        make: str,
        model: str,
        submodel: str | None = None,
        category: str | None = None,
        brand: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[TrackedProduct], int]:
        """
        Active products with an exact fitment edge for a vehicle.

        Args:
            shop: Shop domain.
            year, make, model: Vehicle descriptor, matched exactly.
            submodel: Optional submodel, matched exactly when given.
            category: Optional product category filter.
            brand: Optional product brand filter.
            limit: Page size.
            offset: Page offset.

        Returns:
            Tuple of (page of products, total matches).
        """
        matching = select(CompatibilityEdge.product_id).where(
            *self._vehicle_conditions(shop, year, make, model, submodel)
        )
        conditions = [
            TrackedProduct.shop == shop,
            TrackedProduct.sync_status == ProductSyncStatus.ACTIVE,
            TrackedProduct.id.in_(matching),
        ]
        if category:
            conditions.append(TrackedProduct.category == category)
        if brand:
            conditions.append(TrackedProduct.brand == brand)

        total = await self.db.execute(select(func.count(TrackedProduct.id)).where(*conditions))
        result = await self.db.execute(
            select(TrackedProduct)
            .where(*conditions)
            .order_by(TrackedProduct.last_synced.desc(), TrackedProduct.sku.asc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total.scalar() or 0

    async def exact_match(
        self,
        shop: str,
        sku: str,
        year: int,
        make: str,
        model: str,
        submodel: str | None = None,
    ) -> CompatibilityEdge | None:
        result = await self.db.execute(
            select(CompatibilityEdge)
            .where(
                CompatibilityEdge.sku == sku,
                *self._vehicle_conditions(shop, year, make, model, submodel),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def universal_match(self, shop: str, sku: str) -> CompatibilityEdge | None:
        result = await self.db.execute(
            select(CompatibilityEdge)
            .where(
                CompatibilityEdge.shop == shop,
                CompatibilityEdge.sku == sku,
                CompatibilityEdge.is_universal.is_(True),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count(self, shop: str) -> int:
        result = await self.db.execute(
            select(func.count(CompatibilityEdge.id)).where(CompatibilityEdge.shop == shop)
        )
        return result.scalar() or 0

    async def count_products(self, shop: str) -> int:
        result = await self.db.execute(
            select(func.count(func.distinct(CompatibilityEdge.product_id))).where(
                CompatibilityEdge.shop == shop
            )
        )
        return result.scalar() or 0


# =============================================================================
# Scheduling and Job History
# =============================================================================


class SyncScheduleRepository(BaseRepository[SyncSchedule]):
    """Repository for recurring sync definitions."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(SyncSchedule, db)

    async def get_for_shop(self, shop: str, schedule_id: UUID) -> SyncSchedule | None:
        result = await self.db.execute(
            select(SyncSchedule).where(SyncSchedule.shop == shop, SyncSchedule.id == schedule_id)
        )
        return result.scalar_one_or_none()

    async def list_for_shop(self, shop: str, active_only: bool = False) -> list[SyncSchedule]:
        query = select(SyncSchedule).where(SyncSchedule.shop == shop)
        if active_only:
            query = query.where(SyncSchedule.is_active.is_(True))
        result = await self.db.execute(query.order_by(SyncSchedule.created_at.asc()))
        return list(result.scalars().all())

    async def remove(self, schedule: SyncSchedule) -> None:
        """Delete a schedule; its jobs stay in the ledger, detached."""
        await self.db.execute(
            update(SyncJob).where(SyncJob.schedule_id == schedule.id).values(schedule_id=None)
        )
        await self.db.delete(schedule)
        await self.db.flush()

    async def due(self, now: datetime) -> list[SyncSchedule]:
        """Active schedules whose next run is at or before `now`, across all shops."""
        result = await self.db.execute(
            select(SyncSchedule)
            .where(
                SyncSchedule.is_active.is_(True),
                SyncSchedule.next_run.is_not(None),
                SyncSchedule.next_run <= now,
            )
            .order_by(SyncSchedule.next_run.asc())
        )
        return list(result.scalars().all())


class SyncJobRepository(BaseRepository[SyncJob]):
    """Repository for the append-only sync job ledger."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(SyncJob, db)

    async def open(
        self,
        shop: str,
        sync_type: SyncType,
        trigger: SyncTrigger,
        schedule_id: UUID | None = None,
        created_at: datetime | None = None,
    ) -> SyncJob:
        """Create a pending job."""
        return await self.create(
            {
                "shop": shop,
                "sync_type": sync_type,
                "trigger": trigger,
                "schedule_id": schedule_id,
                "status": SyncJobStatus.PENDING,
                "created_at": created_at or utcnow(),
            }
        )

    async def mark_running(self, job: SyncJob, started_at: datetime) -> SyncJob:
        job.status = SyncJobStatus.RUNNING
        job.start_time = started_at
        await self.db.flush()
        return job

    async def record_progress(self, job: SyncJob, counts: dict[str, int]) -> SyncJob:
        """Write the running item counters onto the job row."""
        job.total_items = counts.get("total_items", job.total_items)
        job.processed_items = counts.get("processed_items", job.processed_items)
        job.success_items = counts.get("success_items", job.success_items)
        job.failed_items = counts.get("failed_items", job.failed_items)
        await self.db.flush()
        return job

    async def complete(
        self,
        job: SyncJob,
        finished_at: datetime,
        counts: dict[str, int],
        results: dict[str, Any],
    ) -> SyncJob:
        await self.record_progress(job, counts)
        job.status = SyncJobStatus.COMPLETED
        job.end_time = finished_at
        job.results = results
        await self.db.flush()
        return job

    async def fail(self, job: SyncJob, finished_at: datetime, error_message: str) -> SyncJob:
        job.status = SyncJobStatus.FAILED
        job.end_time = finished_at
        job.error_message = error_message
        await self.db.flush()
        return job

    async def get_for_shop(self, shop: str, job_id: UUID) -> SyncJob | None:
        result = await self.db.execute(select(SyncJob).where(SyncJob.shop == shop, SyncJob.id == job_id))
        return result.scalar_one_or_none()

    async def recent(
        self,
        shop: str,
        limit: int = 10,
        offset: int = 0,
        sync_type: SyncType | None = None,
    ) -> list[SyncJob]:
        query = select(SyncJob).where(SyncJob.shop == shop)
        if sync_type:
            query = query.where(SyncJob.sync_type == sync_type)
        result = await self.db.execute(
            query.order_by(SyncJob.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def count(self, shop: str, sync_type: SyncType | None = None) -> int:
        query = select(func.count(SyncJob.id)).where(SyncJob.shop == shop)
        if sync_type:
            query = query.where(SyncJob.sync_type == sync_type)
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def status_counts(self, shop: str, since: datetime) -> dict[str, int]:
        """Number of jobs per status created since `since`."""
        result = await self.db.execute(
            select(SyncJob.status, func.count(SyncJob.id))
            .where(SyncJob.shop == shop, SyncJob.created_at >= since)
            .group_by(SyncJob.status)
        )
        return {str(status): count for status, count in result.all()}

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete finished jobs created before `cutoff`. Returns the number deleted."""
        result = await self.db.execute(
            delete(SyncJob).where(
                SyncJob.created_at < cutoff,
                SyncJob.status.in_([SyncJobStatus.COMPLETED, SyncJobStatus.FAILED]),
            )
        )
        await self.db.flush()
        return result.rowcount or 0


# =============================================================================
# Customer Garage
# =============================================================================


class GarageRepository(BaseRepository[CustomerGarage]):
    """Repository for customer garages and everything they own."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(CustomerGarage, db)

    async def get_by_customer(self, shop: str, customer_id: str) -> CustomerGarage | None:
        result = await self.db.execute(
            select(CustomerGarage).where(
                CustomerGarage.shop == shop, CustomerGarage.customer_id == customer_id
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, shop: str, customer_id: str, max_vehicles: int) -> CustomerGarage:
        """Create the garage on first use; concurrent creators converge on one row."""
        now = utcnow()
        stmt = (
            dialect_insert(self.db, CustomerGarage)
            .values(
                id=uuid4(),
                shop=shop,
                customer_id=customer_id,
                name="My Vehicles",
                max_vehicles=max_vehicles,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=[CustomerGarage.shop, CustomerGarage.customer_id])
        )
        await self.db.execute(stmt)
        garage = await self.get_by_customer(shop, customer_id)
        if garage is None:
            raise DatabaseException(
                message="Garage could not be read back after creation.",
                details={"shop": shop, "customer_id": customer_id},
            )
        return garage

    # -- vehicles -------------------------------------------------------------

    async def list_vehicles(self, garage_id: UUID) -> list[GarageVehicle]:
        """Vehicles of a garage, primary first, then newest first."""
        result = await self.db.execute(
            select(GarageVehicle)
            .where(GarageVehicle.garage_id == garage_id)
            .order_by(GarageVehicle.is_primary.desc(), GarageVehicle.created_at.desc())
        )
        return list(result.scalars().all())

    async def count_vehicles(self, garage_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(GarageVehicle.id)).where(GarageVehicle.garage_id == garage_id)
        )
        return result.scalar() or 0

    async def get_vehicle(self, garage_id: UUID, vehicle_id: UUID) -> GarageVehicle | None:
        result = await self.db.execute(
            select(GarageVehicle).where(
                GarageVehicle.garage_id == garage_id, GarageVehicle.id == vehicle_id
            )
        )
        return result.scalar_one_or_none()

    async def get_vehicle_for_shop(self, shop: str, vehicle_id: UUID) -> GarageVehicle | None:
        result = await self.db.execute(
            select(GarageVehicle)
            .join(CustomerGarage, CustomerGarage.id == GarageVehicle.garage_id)
            .where(CustomerGarage.shop == shop, GarageVehicle.id == vehicle_id)
        )
        return result.scalar_one_or_none()

    async def unset_primary(self, garage_id: UUID, keep_vehicle_id: UUID | None = None) -> None:
        """Clear the primary flag on every vehicle of the garage except one."""
        stmt = update(GarageVehicle).where(
            GarageVehicle.garage_id == garage_id, GarageVehicle.is_primary.is_(True)
        )
        if keep_vehicle_id is not None:
            stmt = stmt.where(GarageVehicle.id != keep_vehicle_id)
        await self.db.execute(stmt.values(is_primary=False).execution_options(synchronize_session="fetch"))

    async def remove_vehicle(self, vehicle: GarageVehicle) -> None:
        """Delete a vehicle: reminders go with it, alerts and purchases are detached."""
        await self.db.execute(delete(MaintenanceReminder).where(MaintenanceReminder.vehicle_id == vehicle.id))
        await self.db.execute(
            update(PriceAlert).where(PriceAlert.vehicle_id == vehicle.id).values(vehicle_id=None)
        )
        await self.db.execute(
            update(PurchaseHistory).where(PurchaseHistory.vehicle_id == vehicle.id).values(vehicle_id=None)
        )
        await self.db.delete(vehicle)
        await self.db.flush()

    async def remove_garage(self, garage: CustomerGarage) -> None:
        """Delete a garage and all of its children, children first."""
        vehicle_ids = select(GarageVehicle.id).where(GarageVehicle.garage_id == garage.id)
        await self.db.execute(delete(MaintenanceReminder).where(MaintenanceReminder.vehicle_id.in_(vehicle_ids)))
        await self.db.execute(delete(PriceAlert).where(PriceAlert.garage_id == garage.id))
        await self.db.execute(delete(PurchaseHistory).where(PurchaseHistory.garage_id == garage.id))
        await self.db.execute(delete(GarageVehicle).where(GarageVehicle.garage_id == garage.id))
        await self.db.delete(garage)
        await self.db.flush()

    # -- reminders ------------------------------------------------------------

    async def get_reminder(self, garage_id: UUID, reminder_id: UUID) -> MaintenanceReminder | None:
        result = await self.db.execute(
            select(MaintenanceReminder)
            .join(GarageVehicle, GarageVehicle.id == MaintenanceReminder.vehicle_id)
            .where(GarageVehicle.garage_id == garage_id, MaintenanceReminder.id == reminder_id)
        )
        return result.scalar_one_or_none()

    async def active_reminders(self, garage_id: UUID) -> list[MaintenanceReminder]:
        result = await self.db.execute(
            select(MaintenanceReminder)
            .join(GarageVehicle, GarageVehicle.id == MaintenanceReminder.vehicle_id)
            .where(GarageVehicle.garage_id == garage_id, MaintenanceReminder.is_active.is_(True))
            .order_by(MaintenanceReminder.next_due.asc())
        )
        return list(result.scalars().all())

    async def reminders_due_before(self, garage_id: UUID, until: datetime) -> list[MaintenanceReminder]:
        result = await self.db.execute(
            select(MaintenanceReminder)
            .join(GarageVehicle, GarageVehicle.id == MaintenanceReminder.vehicle_id)
            .where(
                GarageVehicle.garage_id == garage_id,
                MaintenanceReminder.is_active.is_(True),
                MaintenanceReminder.next_due.is_not(None),
                MaintenanceReminder.next_due <= until,
            )
            .order_by(MaintenanceReminder.next_due.asc())
        )
        return list(result.scalars().all())

    # -- alerts and purchases -------------------------------------------------

    async def active_alerts(self, garage_id: UUID) -> list[PriceAlert]:
        result = await self.db.execute(
            select(PriceAlert)
            .where(PriceAlert.garage_id == garage_id, PriceAlert.is_active.is_(True))
            .order_by(PriceAlert.created_at.desc())
        )
        return list(result.scalars().all())

    async def pending_alerts(self, shop: str) -> list[tuple[PriceAlert, TrackedProduct]]:
        """Active, untriggered alerts of a shop joined to their tracked product."""
        result = await self.db.execute(
            select(PriceAlert, TrackedProduct)
            .join(CustomerGarage, CustomerGarage.id == PriceAlert.garage_id)
            .join(
                TrackedProduct,
                (TrackedProduct.shop == CustomerGarage.shop) & (TrackedProduct.sku == PriceAlert.sku),
            )
            .where(
                CustomerGarage.shop == shop,
                PriceAlert.is_active.is_(True),
                PriceAlert.alert_triggered.is_(False),
            )
        )
        return [(alert, product) for alert, product in result.all()]

    async def recent_purchases(self, garage_id: UUID, limit: int = 10) -> list[PurchaseHistory]:
        result = await self.db.execute(
            select(PurchaseHistory)
            .where(PurchaseHistory.garage_id == garage_id)
            .order_by(PurchaseHistory.purchase_date.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def stats(self, shop: str) -> dict[str, int]:
        """Garage usage counters for a shop."""
        garages = select(CustomerGarage.id).where(CustomerGarage.shop == shop)

        async def scalar(query) -> int:
            return (await self.db.execute(query)).scalar() or 0

        return {
            "total_garages": await scalar(select(func.count()).select_from(garages.subquery())),
            "active_customers": await scalar(
                select(func.count(CustomerGarage.id)).where(
                    CustomerGarage.shop == shop, CustomerGarage.is_active.is_(True)
                )
            ),
            "total_vehicles": await scalar(
                select(func.count(GarageVehicle.id)).where(GarageVehicle.garage_id.in_(garages))
            ),
            "maintenance_reminders": await scalar(
                select(func.count(MaintenanceReminder.id))
                .join(GarageVehicle, GarageVehicle.id == MaintenanceReminder.vehicle_id)
                .where(GarageVehicle.garage_id.in_(garages), MaintenanceReminder.is_active.is_(True))
            ),
            "price_alerts": await scalar(
                select(func.count(PriceAlert.id)).where(
                    PriceAlert.garage_id.in_(garages), PriceAlert.is_active.is_(True)
                )
            ),
        }
