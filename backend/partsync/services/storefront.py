"""
Storefront publisher: catalog writes against the Shopify Admin REST API.

The sync engine only depends on the `StorefrontPublisher` protocol, so tests
substitute a recording fake and other storefronts can be plugged in later.
"""

from typing import Any, Protocol

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from partsync.core.config import settings
from partsync.core.exceptions import ConfigurationException, StorefrontException
from partsync.core.log_sanitizer import sanitize_log
from partsync.core.logging import get_logger
from partsync.core.metrics import track_storefront_write
from partsync.db.postgres.models import DistributorConfig

logger = get_logger(__name__)


class ListingRef(BaseModel):
    """Identifiers of a created storefront listing."""

    id: str
    variant_id: str | None = None
    handle: str | None = None


class StorefrontPublisher(Protocol):
    """Catalog write operations the sync engine needs from a storefront."""

    async def create_listing(self, listing: dict[str, Any]) -> ListingRef:
        ...

    async def update_inventory(self, variant_id: str, quantity: int) -> None:
        ...

    async def update_price(self, variant_id: str, price: float) -> None:
        ...

    async def close(self) -> None:
        ...


class _RetryableResponse(Exception):
    """429 or 5xx from the Admin API."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}")


class ShopifyPublisher:
    """
    Shopify Admin REST publisher for one shop.

    Throttling (429), 5xx responses and transport errors are retried with
    exponential backoff; anything else fails immediately with
    StorefrontException.
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        *,
        api_version: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        wait: wait_base | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.shop = shop
        self._access_token = access_token
        self._base_url = f"https://{shop}/admin/api/{api_version or settings.SHOPIFY_API_VERSION}"
        self._timeout = timeout or settings.SHOPIFY_TIMEOUT_SECONDS
        self._max_attempts = max_attempts or settings.SHOPIFY_MAX_RETRIES
        self._wait = wait or wait_exponential(multiplier=1, min=1, max=10)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._location_id: int | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
                headers={
                    "X-Shopify-Access-Token": self._access_token,
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
    ) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.request(method, path, params=params, json=json_body)

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Shopify {method} {path} returned {response.status_code}, retrying")
            raise _RetryableResponse(response.status_code, response.text)

        if response.status_code >= 400:
            raise StorefrontException(
                message=f"Shopify rejected {method} {path}: {sanitize_log(response.text)}",
                upstream_status=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an Admin API request with retry on throttling and transient failures.

        Raises:
            StorefrontException: When the request is rejected or retries are exhausted.
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((_RetryableResponse, httpx.TransportError)),
                stop=stop_after_attempt(self._max_attempts),
                wait=self._wait,
                reraise=True,
            ):
                with attempt:
                    return await self._send(method, path, params, json_body)
        except _RetryableResponse as e:
            raise StorefrontException(
                message=f"Shopify API unavailable after {self._max_attempts} attempts (HTTP {e.status_code}).",
                upstream_status=e.status_code,
            ) from e
        except httpx.TransportError as e:
            raise StorefrontException(
                message="Could not reach the Shopify Admin API.",
                original_error=e,
            ) from e
        raise StorefrontException(message="Shopify request was not attempted.")

    @staticmethod
    def _listing_ref(product: dict[str, Any]) -> ListingRef:
        variants = product.get("variants") or []
        variant_id = variants[0].get("id") if variants else None
        return ListingRef(
            id=str(product["id"]),
            variant_id=str(variant_id) if variant_id is not None else None,
            handle=product.get("handle"),
        )

    async def _find_by_handle(self, handle: str, sku: str | None) -> ListingRef | None:
        """Return an existing product with this handle whose first variant carries the SKU."""
        data = await self._request(
            "GET",
            "/products.json",
            params={"handle": handle, "fields": "id,handle,variants"},
        )
        for product in data.get("products", []):
            variants = product.get("variants") or []
            if sku is None or (variants and variants[0].get("sku") == sku):
                return self._listing_ref(product)
        return None

    async def create_listing(self, listing: dict[str, Any]) -> ListingRef:
        """
        Create a product, or return the existing one from an earlier attempt.

        Args:
            listing: Product payload built by `build_listing`.

        Returns:
            ListingRef with the product and first variant ids.
        """
        variants = listing.get("variants") or [{}]
        sku = variants[0].get("sku")
        success = False
        try:
            existing = await self._find_by_handle(listing["handle"], sku)
            if existing is not None:
                logger.info(f"Listing for {sanitize_log(sku)} already exists as product {existing.id}")
                success = True
                return existing

            data = await self._request("POST", "/products.json", json_body={"product": listing})
            ref = self._listing_ref(data["product"])
            success = True
            logger.info(f"Created listing {ref.id} for {sanitize_log(sku)} on {sanitize_log(self.shop)}")
            return ref
        finally:
            track_storefront_write("create_listing", success)

    async def _primary_location_id(self) -> int:
        if self._location_id is None:
            data = await self._request("GET", "/locations.json")
            locations = data.get("locations") or []
            if not locations:
                raise StorefrontException(message="Shop has no inventory locations.")
            primary = next((loc for loc in locations if loc.get("primary")), locations[0])
            self._location_id = int(primary["id"])
        return self._location_id

    async def update_inventory(self, variant_id: str, quantity: int) -> None:
        """Set the absolute available quantity of a variant at the primary location."""
        success = False
        try:
            data = await self._request("GET", f"/variants/{variant_id}.json")
            inventory_item_id = (data.get("variant") or {}).get("inventory_item_id")
            if not inventory_item_id:
                raise StorefrontException(
                    message=f"Variant {variant_id} has no inventory item.",
                    details={"variant_id": variant_id},
                )
            location_id = await self._primary_location_id()
            await self._request(
                "POST",
                "/inventory_levels/set.json",
                json_body={
                    "location_id": location_id,
                    "inventory_item_id": int(inventory_item_id),
                    "available": int(quantity),
                },
            )
            success = True
        finally:
            track_storefront_write("update_inventory", success)

    async def update_price(self, variant_id: str, price: float) -> None:
        success = False
        try:
            await self._request(
                "PUT",
                f"/variants/{variant_id}.json",
                json_body={"variant": {"id": variant_id, "price": f"{price:.2f}"}},
            )
            success = True
        finally:
            track_storefront_write("update_price", success)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "ShopifyPublisher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def get_storefront_publisher(config: DistributorConfig) -> StorefrontPublisher:
    """
    Build the publisher for a shop from its stored offline access token.

    Raises:
        ConfigurationException: If the shop has no storefront access token.
    """
    if not config.storefront_access_token:
        raise ConfigurationException(
            message=f"No storefront access token stored for shop: {config.shop}",
            details={"shop": config.shop},
        )
    return ShopifyPublisher(config.shop, config.storefront_access_token)
