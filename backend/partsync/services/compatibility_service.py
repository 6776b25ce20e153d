"""
Vehicle compatibility service.

Keeps the shared vehicle taxonomy and per-product fitment edges in step with
Turn14, and answers fitment questions:
- Vehicle database sync
- Per-product and bulk compatibility sync
- Compatible products for a vehicle
- Exact-then-universal fitment check for a garage vehicle
- Year/make/model lookups and coverage statistics
"""

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from partsync.core.clock import Clock, SystemClock
from partsync.core.exceptions import DistributorAuthException, ProductNotFoundException
from partsync.core.log_sanitizer import sanitize_exception, sanitize_log
from partsync.core.logging import get_logger
from partsync.core.metrics import track_sync_item
from partsync.db.postgres.models import DistributorConfig, SyncJob, TrackedProduct
from partsync.db.postgres.repositories import (
    CompatibilityRepository,
    GarageRepository,
    SyncJobRepository,
    TrackedProductRepository,
    VehicleRecordRepository,
)
from partsync.db.postgres.types import SyncType
from partsync.services.distributor_client import (
    CompatibilityRecord,
    Turn14Client,
    VehicleFilters,
    get_distributor_config,
    mark_config_invalid,
)
from partsync.services.sync_engine import ClientFactory, JobLedger, SyncResult

logger = get_logger(__name__)

EDGE_KEY_FIELDS = ("year", "make", "model", "submodel")


def edge_row(record: CompatibilityRecord) -> dict[str, Any]:
    """Column values for one compatibility edge. Missing descriptors are stored as ''."""
    return {
        "year": record.year,
        "make": record.make or "",
        "model": record.model or "",
        "submodel": record.submodel or "",
        "engine": record.engine,
        "engine_size": record.engine_size,
        "fuel_type": record.fuel_type,
        "transmission": record.transmission,
        "drive_type": record.drive_type,
        "body_style": record.body_style,
        "distributor_vehicle_id": record.vehicle_id,
        "notes": record.notes,
        "restrictions": record.restrictions,
        "is_universal": record.is_universal,
    }


def dedupe_rows(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep the first row for each (year, make, model, submodel)."""
    seen: set[tuple[Any, ...]] = set()
    unique = []
    for row in rows:
        key = tuple(row[name] for name in EDGE_KEY_FIELDS)
        if key in seen:
            continue
        seen.add(key)
        unique.append(row)
    return unique


def _bulk_summary(result: SyncResult) -> dict[str, Any]:
    return {
        "processed": result.processed_items,
        "successful": result.success_items,
        "failed": result.failed_items,
        "errors": list(result.errors),
    }


class CompatibilityService:
    """
    Compatibility sync and matching for one shop.

    The vehicle taxonomy is shared by all shops; edges and products are
    scoped to `shop`.
    """

    def __init__(
        self,
        db: AsyncSession,
        shop: str,
        *,
        clock: Clock | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.db = db
        self.shop = shop
        self.clock = clock or SystemClock()
        self.client_factory = client_factory or Turn14Client.from_config
        self.products = TrackedProductRepository(db)
        self.vehicles = VehicleRecordRepository(db)
        self.edges = CompatibilityRepository(db)
        self.jobs = SyncJobRepository(db)

    async def _open_client(self) -> tuple[DistributorConfig, Turn14Client]:
        config = await get_distributor_config(self.db, self.shop)
        client = self.client_factory(config)
        try:
            await client.authenticate()
        except DistributorAuthException as e:
            await client.close()
            await self._invalidate(config, e)
            raise
        return config, client

    async def _invalidate(self, config: DistributorConfig, error: DistributorAuthException) -> None:
        await mark_config_invalid(self.db, config, sanitize_exception(error), self.clock.now())
        await self.db.commit()

    # =========================================================================
    # Vehicle Database
    # =========================================================================

    async def sync_vehicle_database(
        self,
        filters: VehicleFilters | None = None,
        page_size: int = 1000,
    ) -> dict[str, int]:
        """
        Upsert every distributor vehicle on (year, make, model, submodel).

        Pages through the vehicle listing until the last page. A vehicle
        that fails to store is logged and counted in `errors`. The run is
        recorded as a `vehicles` sync job.

        Returns:
            Dictionary with processed, created, updated and errors counts.
        """

        async def operation(job: SyncJob) -> dict[str, int]:
            return await self._sync_vehicles(job, filters, page_size)

        def summarize(result: dict[str, int]) -> tuple[dict[str, int], dict[str, Any]]:
            attempted = result["processed"] + result["errors"]
            counts = {
                "total_items": attempted,
                "processed_items": attempted,
                "success_items": result["processed"],
                "failed_items": result["errors"],
            }
            return counts, dict(result)

        _, result = await JobLedger(self.db, self.shop, self.clock).run(
            SyncType.VEHICLES, operation, summarize
        )
        return result

    async def _sync_vehicles(
        self,
        job: SyncJob,
        filters: VehicleFilters | None,
        page_size: int,
    ) -> dict[str, int]:
        config, client = await self._open_client()
        processed = created = updated = errors = 0
        logger.info(f"Starting vehicle database sync for {sanitize_log(self.shop)}")

        try:
            page_number = 1
            while True:
                try:
                    page = await client.list_vehicles(filters, page=page_number, limit=page_size)
                except DistributorAuthException as e:
                    await self._invalidate(config, e)
                    raise

                for vehicle in page.items:
                    try:
                        async with self.db.begin_nested():
                            _, was_created = await self.vehicles.upsert(
                                vehicle.model_dump(exclude={"vehicle_id"})
                                | {"distributor_vehicle_id": vehicle.vehicle_id},
                                self.clock.now(),
                            )
                    except Exception as e:
                        errors += 1
                        track_sync_item("vehicles", False)
                        logger.error(
                            f"Error processing vehicle {vehicle.year} {sanitize_log(vehicle.make)} "
                            f"{sanitize_log(vehicle.model)}: {sanitize_exception(e)}"
                        )
                        continue

                    if was_created:
                        created += 1
                    else:
                        updated += 1
                    processed += 1
                    track_sync_item("vehicles", True)

                await self.jobs.record_progress(
                    job,
                    {
                        "processed_items": processed + errors,
                        "success_items": processed,
                        "failed_items": errors,
                    },
                )
                await self.db.commit()
                if not page.has_next_page:
                    break
                page_number += 1
        finally:
            await client.close()

        logger.info(
            f"Vehicle database sync completed for {sanitize_log(self.shop)}: "
            f"{processed} processed, {created} created, {updated} updated"
        )
        return {"processed": processed, "created": created, "updated": updated, "errors": errors}

    # =========================================================================
    # Product Compatibility
    # =========================================================================

    async def _replace_edges(self, client: Turn14Client, product: TrackedProduct) -> dict[str, int]:
        records = await client.get_compatibility(product.sku)
        if records is None:
            logger.warning(f"No compatibility data found for {sanitize_log(product.sku)}")
            return {"processed": 0, "created": 0}

        rows = dedupe_rows([edge_row(record) for record in records])
        created = await self.edges.replace_for_product(product, rows)
        return {"processed": len(records), "created": created}

    async def sync_product_compatibility(self, sku: str) -> dict[str, int]:
        """
        Replace the fitment edges of one tracked product with the distributor's.

        The delete and the inserts share one savepoint, so a failure leaves
        the previous edges in place. An empty fitment list clears the edges;
        a response without any fitment list leaves them untouched. The run
        is recorded as a `compatibility` sync job.

        Raises:
            ProductNotFoundException: If the SKU is not tracked for the shop.
        """

        async def operation(job: SyncJob) -> dict[str, int]:
            product = await self.products.get_by_sku(self.shop, sku)
            if product is None:
                raise ProductNotFoundException(sku)

            config, client = await self._open_client()
            try:
                result = await self._replace_edges(client, product)
            except DistributorAuthException as e:
                await self._invalidate(config, e)
                raise
            finally:
                await client.close()
            track_sync_item("compatibility", True)
            return result

        def summarize(result: dict[str, int]) -> tuple[dict[str, int], dict[str, Any]]:
            counts = {"total_items": 1, "processed_items": 1, "success_items": 1, "failed_items": 0}
            return counts, {"sku": sku, **result}

        _, result = await JobLedger(self.db, self.shop, self.clock).run(
            SyncType.COMPATIBILITY, operation, summarize
        )
        logger.info(
            f"Compatibility sync for {sanitize_log(sku)}: "
            f"{result['processed']} processed, {result['created']} created"
        )
        return result

    async def bulk_sync_compatibility(
        self,
        limit: int = 10,
        brand_filter: str | None = None,
    ) -> dict[str, Any]:
        """
        Sync compatibility for up to `limit` active products, oldest first.

        A failing product is reported in `errors` and the batch continues;
        rejected credentials abort it. The error list is capped at
        SYNC_ERROR_LIST_LIMIT entries. The run is recorded as a
        `compatibility` sync job.

        Returns:
            Dictionary with processed, successful, failed and errors.
        """

        async def operation(job: SyncJob) -> SyncResult:
            return await self._sync_compatibility_batch(job, limit, brand_filter)

        def summarize(result: SyncResult) -> tuple[dict[str, int], dict[str, Any]]:
            return result.counts(), _bulk_summary(result)

        _, result = await JobLedger(self.db, self.shop, self.clock).run(
            SyncType.COMPATIBILITY, operation, summarize
        )
        logger.info(
            f"Bulk compatibility sync for {sanitize_log(self.shop)}: "
            f"{result.success_items} ok, {result.failed_items} failed of {result.processed_items}"
        )
        return _bulk_summary(result)

    async def _sync_compatibility_batch(
        self,
        job: SyncJob,
        limit: int,
        brand_filter: str | None,
    ) -> SyncResult:
        products = await self.products.list_for_compatibility(self.shop, limit, brand_filter)
        result = SyncResult(total_items=len(products))

        config, client = await self._open_client()
        try:
            for product in products:
                try:
                    await self._replace_edges(client, product)
                except DistributorAuthException as e:
                    await self._invalidate(config, e)
                    raise
                except Exception as e:
                    message = sanitize_exception(e)
                    result.failed_items += 1
                    result.add_error({"sku": product.sku, "error": message})
                    track_sync_item("compatibility", False)
                    logger.warning(f"Compatibility sync failed for {sanitize_log(product.sku)}: {message}")
                else:
                    result.success_items += 1
                    track_sync_item("compatibility", True)
                result.processed_items += 1
                await self.jobs.record_progress(job, result.counts())
                await self.db.commit()
        finally:
            await client.close()

        return result

    async def get_product_compatibility(self, sku: str) -> list[Any]:
        product = await self.products.get_by_sku(self.shop, sku)
        if product is None:
            raise ProductNotFoundException(sku)
        return await self.edges.list_for_product(product)

    # =========================================================================
    # Matching
    # =========================================================================

    async def find_compatible_products(
        self,
        year: int,
        make: str,
        model: str,
        submodel: str | None = None,
        category: str | None = None,
        brand: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[TrackedProduct], int]:
        """Active products with an exact fitment edge for the vehicle."""
        return await self.edges.find_products(
            self.shop,
            year,
            make,
            model,
            submodel=submodel,
            category=category,
            brand=brand,
            limit=limit,
            offset=offset,
        )

    async def check_compatibility(self, vehicle_id: UUID, sku: str) -> dict[str, Any]:
        """
        Decide whether a SKU fits a garage vehicle.

        An exact (year, make, model[, submodel]) edge wins; otherwise a
        universal edge for the SKU means it fits every vehicle.

        Returns:
            Dictionary with `compatible` and either the edge details or a reason.
        """
        vehicle = await GarageRepository(self.db).get_vehicle_for_shop(self.shop, vehicle_id)
        if vehicle is None:
            return {"compatible": False, "reason": "Vehicle not found"}

        exact = await self.edges.exact_match(
            self.shop, sku, vehicle.year, vehicle.make, vehicle.model, vehicle.submodel
        )
        if exact is not None:
            return {
                "compatible": True,
                "is_universal": False,
                "notes": exact.notes,
                "restrictions": exact.restrictions,
            }

        universal = await self.edges.universal_match(self.shop, sku)
        if universal is not None:
            return {
                "compatible": True,
                "is_universal": True,
                "notes": universal.notes,
                "restrictions": universal.restrictions,
            }

        return {"compatible": False, "reason": "No compatibility data found"}

    # =========================================================================
    # Lookups
    # =========================================================================

    async def search_vehicles(
        self,
        year: int | None = None,
        make: str | None = None,
        model: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ):
        return await self.vehicles.search(year=year, make=make, model=model, limit=limit, offset=offset)

    async def get_available_years(self) -> list[int]:
        return await self.vehicles.distinct_years()

    async def get_available_makes(self, year: int | None = None) -> list[str]:
        return await self.vehicles.distinct_makes(year)

    async def get_available_models(self, year: int, make: str) -> list[str]:
        return await self.vehicles.distinct_models(year, make)

    async def get_available_submodels(self, year: int, make: str, model: str) -> list[str]:
        return await self.vehicles.distinct_submodels(year, make, model)

    async def get_compatibility_stats(self) -> dict[str, int]:
        """Vehicle and edge totals plus the share of products with any edge."""
        total_products = await self.products.count(self.shop)
        with_compatibility = await self.edges.count_products(self.shop)
        return {
            "total_vehicles": await self.vehicles.count_active(),
            "total_compatibility_records": await self.edges.count(self.shop),
            "products_with_compatibility": with_compatibility,
            "total_products": total_products,
            "compatibility_percentage": (
                round(with_compatibility / total_products * 100) if total_products else 0
            ),
        }
