"""
Tests for the Shopify Admin publisher.
"""

import json

import httpx
import pytest
from tenacity import wait_none

from conftest import SHOP
from partsync.core.exceptions import ConfigurationException, StorefrontException
from partsync.db.postgres.models import DistributorConfig
from partsync.services.storefront import ShopifyPublisher, get_storefront_publisher


class FakeShopify:
    """Minimal Admin API: product lookup by handle, creation and inventory levels."""

    def __init__(self) -> None:
        self.products: list[dict] = []
        self.requests: list[tuple[str, str]] = []
        self.bodies: list[dict] = []
        self.queued_statuses: list[int] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.split("/admin/api/")[1].split("/", 1)[1]
        self.requests.append((request.method, path))
        if request.content:
            self.bodies.append(json.loads(request.content))

        if self.queued_statuses:
            return httpx.Response(self.queued_statuses.pop(0), json={"errors": "scripted"})

        if path == "products.json" and request.method == "GET":
            handle = request.url.params["handle"]
            return httpx.Response(200, json={"products": [p for p in self.products if p["handle"] == handle]})

        if path == "products.json" and request.method == "POST":
            listing = json.loads(request.content)["product"]
            number = len(self.products) + 1
            product = {
                "id": 6000 + number,
                "handle": listing["handle"],
                "variants": [{"id": 7000 + number, "sku": listing["variants"][0]["sku"]}],
            }
            self.products.append(product)
            return httpx.Response(201, json={"product": product})

        if path.startswith("variants/") and request.method == "GET":
            return httpx.Response(200, json={"variant": {"id": 7001, "inventory_item_id": 8801}})

        if path.startswith("variants/") and request.method == "PUT":
            return httpx.Response(200, json={"variant": {"id": 7001}})

        if path == "locations.json":
            return httpx.Response(
                200, json={"locations": [{"id": 11, "primary": False}, {"id": 12, "primary": True}]}
            )

        if path == "inventory_levels/set.json":
            return httpx.Response(200, json={"inventory_level": {}})

        return httpx.Response(404, json={"errors": "Not Found"})


@pytest.fixture
def shopify() -> FakeShopify:
    return FakeShopify()


@pytest.fixture
def storefront(shopify) -> ShopifyPublisher:
    return ShopifyPublisher(
        SHOP,
        "shpat_test_token",
        max_attempts=3,
        wait=wait_none(),
        transport=httpx.MockTransport(shopify.handler),
    )


def listing(sku: str = "A100", handle: str = "cold-air-intake") -> dict:
    return {"title": "Cold Air Intake", "handle": handle, "variants": [{"sku": sku, "price": "120.00"}]}


class TestCreateListing:
    """Tests for create_listing."""

    @pytest.mark.asyncio
    async def test_creates_product(self, storefront, shopify):
        ref = await storefront.create_listing(listing())

        assert ref.id == "6001"
        assert ref.variant_id == "7001"
        assert ref.handle == "cold-air-intake"
        assert ("POST", "products.json") in shopify.requests

    @pytest.mark.asyncio
    async def test_existing_handle_is_reused(self, storefront, shopify):
        first = await storefront.create_listing(listing())
        second = await storefront.create_listing(listing())

        assert second == first
        assert len(shopify.products) == 1

    @pytest.mark.asyncio
    async def test_handle_taken_by_other_sku_creates_new_product(self, storefront, shopify):
        await storefront.create_listing(listing(sku="A100"))
        await storefront.create_listing(listing(sku="B200"))

        assert len(shopify.products) == 2

    @pytest.mark.asyncio
    async def test_throttling_is_retried(self, storefront, shopify):
        shopify.queued_statuses = [429, 503]

        ref = await storefront.create_listing(listing())

        assert ref.id == "6001"
        assert shopify.requests[:3] == [("GET", "products.json")] * 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, storefront, shopify):
        shopify.queued_statuses = [429, 429, 429]

        with pytest.raises(StorefrontException) as exc_info:
            await storefront.create_listing(listing())

        assert exc_info.value.upstream_status == 429
        assert len(shopify.requests) == 3

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self, storefront, shopify):
        shopify.queued_statuses = [400]

        with pytest.raises(StorefrontException):
            await storefront.create_listing(listing())

        assert len(shopify.requests) == 1


class TestVariantWrites:
    """Tests for inventory and price updates."""

    @pytest.mark.asyncio
    async def test_inventory_is_set_at_primary_location(self, storefront, shopify):
        await storefront.update_inventory("7001", 4)

        assert shopify.bodies[-1] == {"location_id": 12, "inventory_item_id": 8801, "available": 4}

    @pytest.mark.asyncio
    async def test_location_is_looked_up_once(self, storefront, shopify):
        await storefront.update_inventory("7001", 4)
        await storefront.update_inventory("7001", 0)

        assert shopify.requests.count(("GET", "locations.json")) == 1

    @pytest.mark.asyncio
    async def test_price_is_sent_as_decimal_string(self, storefront, shopify):
        await storefront.update_price("7001", 14.4)

        assert shopify.requests == [("PUT", "variants/7001.json")]
        assert shopify.bodies[-1] == {"variant": {"id": "7001", "price": "14.40"}}

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, storefront):
        await storefront.update_price("7001", 10.0)
        await storefront.close()
        await storefront.close()


class TestPublisherFactory:
    def test_requires_access_token(self):
        config = DistributorConfig(shop=SHOP, api_key="key", storefront_access_token=None)

        with pytest.raises(ConfigurationException):
            get_storefront_publisher(config)

    def test_builds_shopify_publisher(self):
        config = DistributorConfig(shop=SHOP, api_key="key", storefront_access_token="shpat_x")

        publisher = get_storefront_publisher(config)

        assert isinstance(publisher, ShopifyPublisher)
        assert publisher.shop == SHOP
