"""
Reconciliation engine: pulls Turn14 state and applies deltas to the storefront.

Operations:
- Inventory sync (stock levels)
- Pricing sync (distributor price with per-product markup)
- New product import for the shop's selected brands
- Full sync (inventory, pricing, new products, in that order)

Every item runs inside its own savepoint. A failing item is recorded on the
result and on the product and the batch moves on; the counters and the
item's effects are committed before the next item starts. Only setup
failures and rejected credentials abort a run.
"""

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar, assert_never
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from partsync.core.clock import Clock, SystemClock
from partsync.core.config import settings
from partsync.core.exceptions import ConfigurationException, DistributorAuthException, ValidationException
from partsync.core.log_sanitizer import sanitize_exception, sanitize_log
from partsync.core.logging import get_logger, log_event, sync_context
from partsync.core.metrics import track_sync_item, track_sync_job
from partsync.db.postgres.models import DistributorConfig, SyncJob, TrackedProduct
from partsync.db.postgres.repositories import SyncJobRepository, TrackedProductRepository
from partsync.db.postgres.types import ProductSyncStatus, SyncSettings, SyncTrigger, SyncType
from partsync.services.distributor_client import (
    InventoryFilters,
    Turn14Client,
    build_listing,
    calculate_final_price,
    get_distributor_config,
    mark_config_invalid,
)
from partsync.services.storefront import StorefrontPublisher, get_storefront_publisher

logger = get_logger(__name__)

ClientFactory = Callable[[DistributorConfig], Turn14Client]
PublisherFactory = Callable[[DistributorConfig], StorefrontPublisher]

COUNT_FIELDS = ("total_items", "processed_items", "success_items", "failed_items")


# =============================================================================
# Results
# =============================================================================


@dataclass
class SyncResult:
    """Aggregate outcome of one sync operation."""

    total_items: int = 0
    processed_items: int = 0
    success_items: int = 0
    failed_items: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    phases: dict[str, "SyncResult"] = field(default_factory=dict)

    def add_error(self, entry: dict[str, str]) -> None:
        """Append an error entry; the list is capped at SYNC_ERROR_LIST_LIMIT."""
        if len(self.errors) < settings.SYNC_ERROR_LIST_LIMIT:
            self.errors.append(entry)

    def counts(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in COUNT_FIELDS}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {**self.counts(), "errors": list(self.errors)}
        for name, phase in self.phases.items():
            data[name] = phase.to_dict()
        return data

    @classmethod
    def merge(cls, phases: dict[str, "SyncResult"]) -> "SyncResult":
        """Sum the counters of several phases and keep each phase for diagnostics."""
        merged = cls(phases=dict(phases))
        for phase in phases.values():
            for name in COUNT_FIELDS:
                setattr(merged, name, getattr(merged, name) + getattr(phase, name))
            for entry in phase.errors:
                merged.add_error(entry)
        return merged


@dataclass
class SyncOutcome:
    """A finished sync run: its ledger entry and its result."""

    job_id: UUID
    result: SyncResult


# =============================================================================
# Job Ledger
# =============================================================================

T = TypeVar("T")


class JobLedger:
    """
    Wraps one top-level sync operation in a SyncJob entry.

    The job goes pending -> running -> completed, or failed with the
    error message when anything escapes the operation. Failures are
    re-raised after they are recorded.

    Usage:
        ledger = JobLedger(db, shop, clock)
        job_id, value = await ledger.run(SyncType.VEHICLES, operation, summarize)
    """

    def __init__(self, db: AsyncSession, shop: str, clock: Clock):
        self.db = db
        self.shop = shop
        self.clock = clock
        self.jobs = SyncJobRepository(db)

    async def run(
        self,
        sync_type: SyncType,
        operation: Callable[[SyncJob], Awaitable[T]],
        summarize: Callable[[T], tuple[dict[str, int], dict[str, Any]]],
        *,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
        schedule_id: UUID | None = None,
    ) -> tuple[UUID, T]:
        """
        Run `operation` with a job around it.

        Args:
            sync_type: Job kind recorded on the ledger.
            operation: Receives the running job, for progress updates.
            summarize: Maps the operation's value to (counts, results)
                for the completed job.
            trigger: Manual or scheduled.
            schedule_id: Schedule that triggered the run, if any.

        Returns:
            Tuple of (job id, the operation's value).
        """
        job = await self.jobs.open(self.shop, sync_type, trigger, schedule_id, created_at=self.clock.now())
        job_id = job.id
        await self.jobs.mark_running(job, self.clock.now())
        await self.db.commit()

        started = time.monotonic()
        with sync_context(self.shop, str(job_id)):
            log_event(
                logger,
                logging.INFO,
                "sync_started",
                f"Starting {sync_type} sync for {sanitize_log(self.shop)}",
                sync_type=str(sync_type),
                trigger=str(trigger),
            )
            try:
                value = await operation(job)
            except Exception as e:
                await self.db.rollback()
                message = sanitize_exception(e)
                job = await self.jobs.get(job_id) or job
                await self.jobs.fail(job, self.clock.now(), message)
                await self.db.commit()
                track_sync_job(str(sync_type), "failed", str(trigger), time.monotonic() - started)
                logger.error(f"{sync_type} sync failed for {sanitize_log(self.shop)}: {message}")
                raise

            counts, results = summarize(value)
            await self.jobs.complete(job, self.clock.now(), counts, results)
            await self.db.commit()
            track_sync_job(str(sync_type), "completed", str(trigger), time.monotonic() - started)
            log_event(
                logger,
                logging.INFO,
                "sync_completed",
                f"{sync_type} sync completed for {sanitize_log(self.shop)}",
                **counts,
            )

        return job_id, value


def _summarize(result: SyncResult) -> tuple[dict[str, int], dict[str, Any]]:
    return result.counts(), result.to_dict()


# =============================================================================
# Sync Engine
# =============================================================================


class SyncEngine:
    """
    Runs catalog syncs for one shop.

    Usage:
        engine = SyncEngine(db, "demo.myshopify.com")
        outcome = await engine.run_sync(SyncType.INVENTORY)
    """

    def __init__(
        self,
        db: AsyncSession,
        shop: str,
        *,
        clock: Clock | None = None,
        client_factory: ClientFactory | None = None,
        publisher_factory: PublisherFactory | None = None,
    ):
        self.db = db
        self.shop = shop
        self.clock = clock or SystemClock()
        self.client_factory = client_factory or Turn14Client.from_config
        self.publisher_factory = publisher_factory or get_storefront_publisher
        self.products = TrackedProductRepository(db)
        self.jobs = SyncJobRepository(db)
        self._job: SyncJob | None = None
        self._carried = dict.fromkeys(COUNT_FIELDS, 0)

    # =========================================================================
    # Job Bookkeeping
    # =========================================================================

    async def run_sync(
        self,
        sync_type: SyncType,
        sync_settings: SyncSettings | None = None,
        schedule_id: UUID | None = None,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
    ) -> SyncOutcome:
        """
        Run one catalog sync with a SyncJob ledger entry around it.

        Args:
            sync_type: Which sync to run.
            sync_settings: Options for product imports; the shop's stored
                settings are used when omitted.
            schedule_id: Schedule that triggered the run, if any.
            trigger: Manual or scheduled.

        Returns:
            SyncOutcome with the job id and result.

        Raises:
            ValidationException: For job kinds the compatibility service owns.
        """

        async def operation(job: SyncJob) -> SyncResult:
            self._job = job
            self._carried = dict.fromkeys(COUNT_FIELDS, 0)
            try:
                return await self._dispatch(sync_type, sync_settings)
            finally:
                self._job = None

        job_id, result = await JobLedger(self.db, self.shop, self.clock).run(
            sync_type, operation, _summarize, trigger=trigger, schedule_id=schedule_id
        )
        return SyncOutcome(job_id=job_id, result=result)

    async def _dispatch(self, sync_type: SyncType, sync_settings: SyncSettings | None) -> SyncResult:
        match sync_type:
            case SyncType.INVENTORY:
                return await self.sync_inventory()
            case SyncType.PRICING:
                return await self.sync_pricing()
            case SyncType.PRODUCTS:
                return await self.sync_new_products(sync_settings)
            case SyncType.FULL:
                return await self.full_sync(sync_settings)
            case SyncType.VEHICLES | SyncType.COMPATIBILITY:
                raise ValidationException(
                    f"{sync_type} syncs run through the compatibility service",
                    field="sync_type",
                )
            case _:
                assert_never(sync_type)

    async def _checkpoint(self, result: SyncResult) -> None:
        """Persist the running counters and commit the item just processed."""
        if self._job is not None:
            counts = {name: self._carried[name] + value for name, value in result.counts().items()}
            await self.jobs.record_progress(self._job, counts)
        await self.db.commit()

    # =========================================================================
    # Setup
    # =========================================================================

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[tuple[DistributorConfig, Turn14Client, StorefrontPublisher]]:
        """
        Load the configuration and open authenticated distributor and storefront clients.

        Raises:
            ConfigurationException: Missing or disabled configuration, or no storefront token.
            DistributorAuthException: Credentials rejected; the configuration is deactivated.
        """
        config = await get_distributor_config(self.db, self.shop)
        client = self.client_factory(config)
        try:
            try:
                await client.authenticate()
            except DistributorAuthException as e:
                await self._invalidate(config, e)
                raise
            publisher = self.publisher_factory(config)
            try:
                yield config, client, publisher
            finally:
                await publisher.close()
        finally:
            await client.close()

    async def _invalidate(self, config: DistributorConfig, error: DistributorAuthException) -> None:
        await mark_config_invalid(self.db, config, sanitize_exception(error), self.clock.now())
        await self.db.commit()
        logger.error(f"Turn14 credentials rejected for {sanitize_log(self.shop)}, configuration deactivated")

    # =========================================================================
    # Per-item Isolation
    # =========================================================================

    async def _sync_tracked(
        self,
        operation: str,
        config: DistributorConfig,
        products: list[TrackedProduct],
        handler: Callable[[TrackedProduct], Awaitable[None]],
    ) -> SyncResult:
        """Run `handler` for each tracked product with failure isolation."""
        result = SyncResult(total_items=len(products))

        for product in products:
            try:
                async with self.db.begin_nested():
                    await handler(product)
            except DistributorAuthException as e:
                await self._invalidate(config, e)
                raise
            except Exception as e:
                message = sanitize_exception(e)
                await self.db.refresh(product)
                await self.products.record_error(
                    product,
                    operation,
                    message,
                    self.clock.now(),
                    settings.SYNC_ITEM_ERROR_HISTORY,
                )
                result.failed_items += 1
                result.add_error({"sku": product.sku, "error": message})
                track_sync_item(operation, False)
                logger.warning(f"{operation} sync failed for {sanitize_log(product.sku)}: {message}")
            else:
                result.success_items += 1
                track_sync_item(operation, True)

            result.processed_items += 1
            await self._checkpoint(result)

        return result

    # =========================================================================
    # Inventory
    # =========================================================================

    async def sync_inventory(self, product_ids: list[UUID] | None = None) -> SyncResult:
        """
        Sync stock levels for tracked products.

        A changed quantity is written to the storefront before the local
        record; an unchanged quantity only refreshes the sync status.

        Args:
            product_ids: Restrict the pass to these products.
        """
        async with self._connect() as (config, client, publisher):
            products = await self.products.list_syncable(self.shop, product_ids)

            async def handle(product: TrackedProduct) -> None:
                stock = (await client.get_stock([product.sku])).get(product.sku)
                if stock is None:
                    return
                new_quantity = stock.stock or 0
                if new_quantity != product.inventory_quantity:
                    if product.storefront_variant_id:
                        await publisher.update_inventory(product.storefront_variant_id, new_quantity)
                    await self.products.mark_synced(
                        product, self.clock.now(), inventory_quantity=new_quantity
                    )
                else:
                    await self.products.mark_synced(product, self.clock.now())

            result = await self._sync_tracked("inventory", config, products, handle)

        logger.info(
            f"Inventory sync for {sanitize_log(self.shop)}: "
            f"{result.success_items} ok, {result.failed_items} failed of {result.total_items}"
        )
        return result

    # =========================================================================
    # Pricing
    # =========================================================================

    async def sync_pricing(self, product_ids: list[UUID] | None = None) -> SyncResult:
        """
        Sync prices for tracked products.

        final = distributor price x (1 + markup/100), rounded to cents. The
        storefront is written only when the distributor price or the final
        price differs from what is stored.
        """
        async with self._connect() as (config, client, publisher):
            products = await self.products.list_syncable(self.shop, product_ids)

            async def handle(product: TrackedProduct) -> None:
                pricing = (await client.get_pricing([product.sku])).get(product.sku)
                if pricing is None:
                    return
                new_price = pricing.price or product.original_price
                final_price = calculate_final_price(new_price, product.price_markup)

                if new_price != product.original_price or final_price != product.current_price:
                    if product.storefront_variant_id:
                        await publisher.update_price(product.storefront_variant_id, final_price)
                    await self.products.mark_synced(
                        product,
                        self.clock.now(),
                        original_price=new_price,
                        current_price=final_price,
                    )
                else:
                    await self.products.mark_synced(product, self.clock.now())

            result = await self._sync_tracked("pricing", config, products, handle)

        logger.info(
            f"Pricing sync for {sanitize_log(self.shop)}: "
            f"{result.success_items} ok, {result.failed_items} failed of {result.total_items}"
        )
        return result

    # =========================================================================
    # New Products
    # =========================================================================

    async def sync_new_products(self, sync_settings: SyncSettings | None = None) -> SyncResult:
        """
        Import SKUs of the selected brands that are not tracked yet.

        One page of up to `max_new_products` items is fetched per brand.
        Already tracked SKUs count as processed and are skipped. A brand
        whose listing fails is recorded as a brand-level error.

        Raises:
            ConfigurationException: If no brands are selected.
        """
        async with self._connect() as (config, client, publisher):
            options = sync_settings or config.sync_settings
            if not config.selected_brands:
                raise ConfigurationException(
                    message="No brands selected for product sync",
                    details={"shop": self.shop},
                )

            existing = await self.products.existing_skus(self.shop)
            result = SyncResult()

            for brand in config.selected_brands:
                try:
                    page = await client.list_inventory(
                        InventoryFilters(brands=[brand]), page=1, limit=options.max_new_products
                    )
                except DistributorAuthException as e:
                    await self._invalidate(config, e)
                    raise
                except Exception as e:
                    message = sanitize_exception(e)
                    result.add_error({"brand": brand, "error": message})
                    logger.warning(f"Listing brand {sanitize_log(brand)} failed: {message}")
                    continue

                result.total_items += len(page.items)

                for item in page.items:
                    if item.sku in existing:
                        result.processed_items += 1
                        continue

                    try:
                        async with self.db.begin_nested():
                            ref = await publisher.create_listing(build_listing(item, options.default_markup))
                            await self.products.upsert(
                                self.shop,
                                item.sku,
                                {
                                    "title": item.name,
                                    "storefront_product_id": ref.id,
                                    "storefront_variant_id": ref.variant_id,
                                    "brand": item.brand or brand,
                                    "category": item.category,
                                    "original_price": item.price or 0.0,
                                    "current_price": calculate_final_price(item.price, options.default_markup),
                                    "price_markup": options.default_markup,
                                    "inventory_quantity": item.stock or 0,
                                    "sync_status": ProductSyncStatus.ACTIVE,
                                    "last_synced": self.clock.now(),
                                    "import_metadata": {
                                        "distributor_id": item.distributor_id,
                                        "imported_at": self.clock.now().isoformat(),
                                        "storefront_handle": ref.handle,
                                    },
                                },
                            )
                    except DistributorAuthException as e:
                        await self._invalidate(config, e)
                        raise
                    except Exception as e:
                        message = sanitize_exception(e)
                        result.failed_items += 1
                        result.add_error({"sku": item.sku, "error": message})
                        track_sync_item("products", False)
                        logger.warning(f"Import of {sanitize_log(item.sku)} failed: {message}")
                    else:
                        existing.add(item.sku)
                        result.success_items += 1
                        track_sync_item("products", True)

                    result.processed_items += 1
                    await self._checkpoint(result)

        logger.info(
            f"New product sync for {sanitize_log(self.shop)}: "
            f"{result.success_items} imported, {result.failed_items} failed"
        )
        return result

    # =========================================================================
    # Full Sync
    # =========================================================================

    async def full_sync(self, sync_settings: SyncSettings | None = None) -> SyncResult:
        """Inventory, then pricing, then new products; merged counts plus each phase."""
        phases: dict[str, SyncResult] = {}
        try:
            phases["inventory"] = await self.sync_inventory()
            self._carried = SyncResult.merge(phases).counts()
            phases["pricing"] = await self.sync_pricing()
            self._carried = SyncResult.merge(phases).counts()
            phases["new_products"] = await self.sync_new_products(sync_settings)
        finally:
            self._carried = dict.fromkeys(COUNT_FIELDS, 0)
        return SyncResult.merge(phases)
