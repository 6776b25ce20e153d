"""
Turn14 distributor API client.

Provides async access to the Turn14 catalog:
- Account check (credential validation)
- Brands and categories
- Paged inventory with filtering
- Product detail, pricing and live stock
- Vehicle taxonomy and per-SKU compatibility

Every transport or HTTP failure is normalized into the distributor exception
taxonomy in `partsync.core.exceptions`. No retries happen here: the sync
engine decides what a failure means for the current batch.
"""

import json
import math
import re
from datetime import datetime
from typing import Any, Generic, TypeVar
from urllib.parse import quote

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from partsync.core.config import settings
from partsync.core.exceptions import (
    ConfigurationException,
    DistributorAuthException,
    DistributorException,
    DistributorNotFoundException,
    DistributorRateLimitException,
    DistributorTransientException,
)
from partsync.core.log_sanitizer import mask_secret, sanitize_exception, sanitize_log
from partsync.core.logging import get_logger
from partsync.core.metrics import track_distributor_call
from partsync.db.postgres.models import DistributorConfig, utcnow
from partsync.db.postgres.repositories import DistributorConfigRepository
from partsync.db.postgres.types import DistributorEnvironment

logger = get_logger(__name__)

ItemT = TypeVar("ItemT")


# =============================================================================
# Pydantic Models
# =============================================================================


class DistributorCredentials(BaseModel):
    """Credentials for one Turn14 account."""

    api_key: str
    api_secret: str | None = None
    environment: DistributorEnvironment = DistributorEnvironment.PRODUCTION


class AuthResult(BaseModel):
    """Outcome of a successful credential check."""

    valid: bool = True
    account: dict[str, Any] = Field(default_factory=dict)


class InventoryFilters(BaseModel):
    """Query filters for the inventory listing."""

    brands: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    search: str | None = None
    price_min: float | None = None
    price_max: float | None = None
    in_stock: bool | None = None
    carb_compliant: bool | None = None
    prop65_warning: bool | None = None

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.brands:
            params["brands"] = ",".join(self.brands)
        if self.categories:
            params["categories"] = ",".join(self.categories)
        if self.search:
            params["search"] = self.search
        if self.price_min:
            params["price_min"] = self.price_min
        if self.price_max:
            params["price_max"] = self.price_max
        for name in ("in_stock", "carb_compliant", "prop65_warning"):
            value = getattr(self, name)
            if value is not None:
                params[name] = str(value).lower()
        return params


class VehicleFilters(BaseModel):
    """Query filters for the vehicle listing."""

    year: int | None = None
    make: str | None = None
    model: str | None = None

    def to_params(self) -> dict[str, Any]:
        return {key: value for key, value in self.model_dump().items() if value}


class _DistributorModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DistributorBrand(_DistributorModel):
    id: str | None = None
    name: str = Field(validation_alias=AliasChoices("name", "brand_name"))

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if value is not None else None


class DistributorProduct(_DistributorModel):
    """A catalog item as returned by the inventory and product endpoints."""

    sku: str = Field(validation_alias=AliasChoices("sku", "id"))
    distributor_id: str | None = Field(None, validation_alias=AliasChoices("id", "item_id"))
    name: str | None = Field(None, validation_alias=AliasChoices("item_name", "name", "title"))
    description: str | None = Field(None, validation_alias=AliasChoices("item_description", "description"))
    brand: str | None = Field(None, validation_alias=AliasChoices("brand_name", "brand"))
    manufacturer: str | None = None
    category: str | None = None
    price: float | None = None
    stock: int | None = Field(None, validation_alias=AliasChoices("inventory_quantity", "stock"))
    weight: float | None = None
    weight_unit: str | None = Field(None, validation_alias=AliasChoices("weight_unit", "weightUnit"))
    barcode: str | None = Field(None, validation_alias=AliasChoices("upc", "barcode"))
    dimensions: dict[str, Any] | None = None
    images: list[str] = Field(default_factory=list)
    carb_compliant: bool = Field(False, validation_alias=AliasChoices("carb_compliant", "carbCompliant"))
    prop65_warning: bool = Field(False, validation_alias=AliasChoices("prop65_warning", "prop65Warning"))
    fitments: list[dict[str, Any]] | None = None

    @field_validator("sku", "distributor_id", "barcode", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return str(value) if value is not None else None

    @field_validator("images", mode="before")
    @classmethod
    def _image_urls(cls, value: Any) -> list[str]:
        if not value:
            return []
        return [img.get("url", "") if isinstance(img, dict) else str(img) for img in value]

    @property
    def vendor(self) -> str:
        return self.manufacturer or self.brand or "Turn 14"


class DistributorPrice(_DistributorModel):
    sku: str = Field(validation_alias=AliasChoices("sku", "id"))
    price: float | None = None

    @field_validator("sku", mode="before")
    @classmethod
    def _coerce_sku(cls, value: Any) -> str:
        return str(value)


class DistributorStock(_DistributorModel):
    sku: str = Field(validation_alias=AliasChoices("sku", "id"))
    stock: int | None = Field(None, validation_alias=AliasChoices("inventory_quantity", "stock", "quantity"))

    @field_validator("sku", mode="before")
    @classmethod
    def _coerce_sku(cls, value: Any) -> str:
        return str(value)


class DistributorVehicle(_DistributorModel):
    """One entry of the distributor vehicle taxonomy."""

    year: int
    make: str
    model: str
    submodel: str | None = None
    engine: str | None = None
    engine_size: str | None = None
    fuel_type: str | None = None
    transmission: str | None = None
    drive_type: str | None = None
    body_style: str | None = None
    vehicle_id: str | None = Field(None, validation_alias=AliasChoices("vehicle_id", "id"))
    mmy_id: str | None = None

    @field_validator("vehicle_id", "mmy_id", "engine_size", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return str(value) if value is not None else None


class CompatibilityRecord(_DistributorModel):
    """One fitment row for a SKU. Universal rows carry no vehicle."""

    year: int | None = None
    make: str | None = None
    model: str | None = None
    submodel: str | None = None
    engine: str | None = None
    engine_size: str | None = None
    fuel_type: str | None = None
    transmission: str | None = None
    drive_type: str | None = None
    body_style: str | None = None
    vehicle_id: str | None = None
    mmy_id: str | None = None
    notes: str | None = None
    restrictions: str | None = None
    is_universal: bool = Field(False, validation_alias=AliasChoices("is_universal", "isUniversal"))

    @field_validator("vehicle_id", "mmy_id", "engine_size", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return str(value) if value is not None else None


class PagedResult(BaseModel, Generic[ItemT]):
    """One page of a distributor listing."""

    items: list[ItemT]
    total: int = 0
    page: int = 1
    limit: int = 100

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


# =============================================================================
# Turn14 Client
# =============================================================================


class Turn14Client:
    """
    Async client for the Turn14 REST API.

    Usage:
        async with Turn14Client(credentials) as client:
            page = await client.list_inventory(InventoryFilters(brands=["ACME"]))
    """

    def __init__(
        self,
        credentials: DistributorCredentials,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            credentials: Account credentials; the environment selects the base URL.
            base_url: Override for the API base URL.
            timeout: Request timeout in seconds (TURN14_TIMEOUT_SECONDS by default).
            transport: Optional httpx transport, used by tests.
        """
        self.credentials = credentials
        if base_url is None:
            base_url = (
                settings.TURN14_SANDBOX_API_BASE_URL
                if credentials.environment == DistributorEnvironment.SANDBOX
                else settings.TURN14_API_BASE_URL
            )
        self._base_url = base_url
        self._timeout = timeout or settings.TURN14_TIMEOUT_SECONDS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: DistributorConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "Turn14Client":
        """Build a client from a stored shop configuration."""
        return cls(
            DistributorCredentials(
                api_key=config.api_key,
                api_secret=config.api_secret,
                environment=config.environment,
            ),
            transport=transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.credentials.api_key}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "User-Agent": settings.TURN14_USER_AGENT,
                },
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        endpoint: str | None = None,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        resource_id: str | None = None,
    ) -> Any:
        """
        Make one API request and decode the JSON body.

        Args:
            method: HTTP method.
            path: Path relative to the base URL.
            endpoint: Normalized endpoint label for metrics (defaults to path).
            params: Query parameters.
            json_body: JSON request body.
            resource_id: SKU or id reported on NotFound.

        Returns:
            Decoded JSON response.

        Raises:
            DistributorException: Or one of its subclasses for every failure.
        """
        client = await self._get_client()

        with track_distributor_call(endpoint or path) as ctx:
            logger.debug(f"Turn14 {method} {sanitize_log(path)} params={sanitize_log(params)}")
            try:
                response = await client.request(method, path, params=params, json=json_body)
            except httpx.TimeoutException as e:
                logger.warning(f"Turn14 request timed out: {method} {sanitize_log(path)}")
                raise DistributorTransientException(
                    message="Turn14 API request timed out.",
                    original_error=e,
                ) from e
            except httpx.TransportError as e:
                logger.warning(f"Turn14 transport error: {sanitize_exception(e)}")
                raise DistributorTransientException(
                    message="Could not reach the Turn14 API.",
                    original_error=e,
                ) from e

            ctx["status_code"] = response.status_code
            self._raise_for_status(response, resource_id)

            try:
                return response.json()
            except json.JSONDecodeError as e:
                raise DistributorTransientException(
                    message="Turn14 API returned a malformed response.",
                    upstream_status=response.status_code,
                    original_error=e,
                ) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, resource_id: str | None) -> None:
        """Map an error response onto the distributor exception taxonomy."""
        status_code = response.status_code
        if status_code < 400:
            return

        if status_code in (401, 403):
            raise DistributorAuthException(upstream_status=status_code)

        if status_code == 404:
            raise DistributorNotFoundException(
                message=f"Not found at Turn14: {resource_id}" if resource_id else "Item not found at Turn14.",
                resource_id=resource_id,
            )

        if status_code == 429:
            try:
                retry_after = int(response.headers.get("Retry-After", 60))
            except ValueError:
                retry_after = 60
            logger.warning(f"Rate limited by Turn14, retry after {retry_after}s")
            raise DistributorRateLimitException(retry_after=retry_after)

        if status_code >= 500:
            raise DistributorTransientException(
                message=f"Turn14 API error: HTTP {status_code}",
                upstream_status=status_code,
            )

        message = response.reason_phrase or "Unknown API error"
        try:
            body = response.json()
            if isinstance(body, dict) and body.get("message"):
                message = str(body["message"])
        except json.JSONDecodeError:
            pass
        raise DistributorException(
            message=f"Turn14 API Error: {sanitize_log(message)}",
            upstream_status=status_code,
        )

    @staticmethod
    def _find_list(data: Any, *keys: str) -> list[Any] | None:
        """The list payload whether the API wrapped it in an object or not; None when there is none."""
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in keys:
                value = data.get(key)
                if isinstance(value, list):
                    return value
        return None

    @classmethod
    def _extract_list(cls, data: Any, *keys: str) -> list[Any]:
        return cls._find_list(data, *keys) or []

    # =========================================================================
    # Account and Reference Data
    # =========================================================================

    async def authenticate(self) -> AuthResult:
        """
        Check the credentials against the account endpoint.

        Raises:
            DistributorAuthException: If the credentials are rejected.
        """
        data = await self._request("GET", "/account")
        logger.info(f"Turn14 credentials accepted for key {mask_secret(self.credentials.api_key)}")
        return AuthResult(valid=True, account=data if isinstance(data, dict) else {})

    async def list_brands(self) -> list[DistributorBrand]:
        data = await self._request("GET", "/brands")
        return [DistributorBrand.model_validate(item) for item in self._extract_list(data, "brands", "data")]

    async def list_categories(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/categories")
        return self._extract_list(data, "categories", "data")

    # =========================================================================
    # Catalog
    # =========================================================================

    async def list_inventory(
        self,
        filters: InventoryFilters | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> PagedResult[DistributorProduct]:
        """
        Fetch one page of distributor inventory.

        Args:
            filters: Brand, category, price and compliance filters.
            page: 1-based page number.
            limit: Page size.

        Returns:
            PagedResult of DistributorProduct.
        """
        params = {"page": page, "limit": limit, **(filters or InventoryFilters()).to_params()}
        data = await self._request("GET", "/inventory", params=params)
        products = self._extract_list(data, "products", "items")
        total = data.get("total", len(products)) if isinstance(data, dict) else len(products)
        return PagedResult[DistributorProduct](
            items=[DistributorProduct.model_validate(item) for item in products],
            total=total or 0,
            page=page,
            limit=limit,
        )

    async def get_product(self, sku: str) -> DistributorProduct:
        data = await self._request(
            "GET",
            f"/products/{quote(sku, safe='')}",
            endpoint="/products/{sku}",
            resource_id=sku,
        )
        if isinstance(data, dict) and isinstance(data.get("product"), dict):
            data = data["product"]
        return DistributorProduct.model_validate(data)

    async def get_pricing(self, skus: list[str]) -> dict[str, DistributorPrice]:
        """
        Fetch current pricing for a set of SKUs.

        Returns:
            Mapping of SKU to price entry. SKUs the distributor does not
            price are absent.
        """
        data = await self._request("POST", "/pricing", json_body={"skus": list(skus)})
        entries = [DistributorPrice.model_validate(item) for item in self._extract_list(data, "items", "pricing")]
        return {entry.sku: entry for entry in entries}

    async def get_stock(self, skus: list[str]) -> dict[str, DistributorStock]:
        """
        Fetch real-time stock levels for a set of SKUs.

        Returns:
            Mapping of SKU to stock entry. Unknown SKUs are absent.
        """
        data = await self._request("POST", "/inventory/stock", json_body={"skus": list(skus)})
        entries = [DistributorStock.model_validate(item) for item in self._extract_list(data, "items", "stock")]
        return {entry.sku: entry for entry in entries}

    # =========================================================================
    # Vehicles and Compatibility
    # =========================================================================

    async def list_vehicles(
        self,
        filters: VehicleFilters | None = None,
        page: int = 1,
        limit: int = 1000,
    ) -> PagedResult[DistributorVehicle]:
        params = {"page": page, "limit": limit, **(filters or VehicleFilters()).to_params()}
        data = await self._request("GET", "/vehicles", params=params)
        vehicles = self._extract_list(data, "vehicles", "items")
        total = data.get("total", len(vehicles)) if isinstance(data, dict) else len(vehicles)
        return PagedResult[DistributorVehicle](
            items=[DistributorVehicle.model_validate(item) for item in vehicles],
            total=total or 0,
            page=page,
            limit=limit,
        )

    async def list_makes(self, year: int) -> list[str]:
        data = await self._request("GET", "/vehicles/makes", params={"year": year})
        return [str(make) for make in self._extract_list(data, "makes")]

    async def list_models(self, year: int, make: str) -> list[str]:
        data = await self._request("GET", "/vehicles/models", params={"year": year, "make": make})
        return [str(model) for model in self._extract_list(data, "models")]

    async def get_compatibility(self, sku: str) -> list[CompatibilityRecord] | None:
        """Fitment rows for a SKU. None when the response carries no fitment list at all."""
        data = await self._request(
            "GET",
            f"/products/{quote(sku, safe='')}/compatibility",
            endpoint="/products/{sku}/compatibility",
            resource_id=sku,
        )
        rows = self._find_list(data, "compatibility", "vehicles", "items")
        if rows is None:
            return None
        return [CompatibilityRecord.model_validate(row) for row in rows]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "Turn14Client":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# =============================================================================
# Configuration Helpers
# =============================================================================


async def get_distributor_config(db: AsyncSession, shop: str) -> DistributorConfig:
    """
    Load the Turn14 configuration for a shop.

    Raises:
        ConfigurationException: If the shop has no configuration or it is disabled.
    """
    config = await DistributorConfigRepository(db).get_by_shop(shop)
    if config is None:
        raise ConfigurationException(
            message=f"No Turn 14 configuration found for shop: {shop}",
            details={"shop": shop},
        )
    if not config.is_active:
        raise ConfigurationException(
            message=f"Turn 14 configuration is disabled for shop: {shop}",
            details={"shop": shop},
        )
    return config


async def authenticate(
    api_key: str,
    api_secret: str | None = None,
    environment: DistributorEnvironment = DistributorEnvironment.PRODUCTION,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AuthResult:
    """Check a set of credentials. Raises DistributorAuthException when rejected."""
    credentials = DistributorCredentials(api_key=api_key, api_secret=api_secret, environment=environment)
    async with Turn14Client(credentials, transport=transport) as client:
        return await client.authenticate()


async def validate_distributor_credentials(
    db: AsyncSession,
    shop: str,
    api_key: str,
    api_secret: str | None = None,
    environment: DistributorEnvironment = DistributorEnvironment.PRODUCTION,
    validated_at: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """
    Validate credentials and store them with the outcome.

    The configuration is saved either way; a rejected check leaves it
    inactive with the validation error recorded.

    Returns:
        Dictionary with is_valid, message and account_info or error.
    """
    repo = DistributorConfigRepository(db)
    config = await repo.save(
        shop,
        {"api_key": api_key, "api_secret": api_secret, "environment": environment},
    )
    validated_at = validated_at or utcnow()

    try:
        result = await authenticate(api_key, api_secret, environment, transport=transport)
    except DistributorException as e:
        error = sanitize_exception(e)
        await repo.record_validation(config, validated_at, error)
        logger.warning(f"Turn14 credential validation failed for {sanitize_log(shop)}: {error}")
        return {"is_valid": False, "error": error, "message": "Credential validation failed"}

    await repo.record_validation(config, validated_at, None)
    logger.info(f"Turn14 credentials validated for {sanitize_log(shop)}")
    return {
        "is_valid": True,
        "account_info": result.account,
        "message": "Credentials validated successfully",
    }


async def mark_config_invalid(db: AsyncSession, config: DistributorConfig, error: str, at: datetime) -> None:
    """Deactivate a configuration after the distributor rejected its credentials mid-run."""
    await DistributorConfigRepository(db).record_validation(config, at, error)


# =============================================================================
# Listing Transformation
# =============================================================================


_HANDLE_CHARS = re.compile(r"[^a-z0-9]+")
_HTML_TAGS = re.compile(r"<[^>]*>")
_HTML_ENTITIES = re.compile(r"&[^;\s]+;")

HANDLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 5000


def generate_handle(name: str | None, sku: str) -> str:
    """Storefront-safe handle: lowercase, dash-separated, at most 100 characters."""
    base = name or f"product-{sku}"
    return _HANDLE_CHARS.sub("-", base.lower()).strip("-")[:HANDLE_MAX_LENGTH]


def clean_description(description: str | None) -> str:
    if not description:
        return "No description available"
    text = _HTML_TAGS.sub("", description)
    text = _HTML_ENTITIES.sub(" ", text)
    return text.strip()[:DESCRIPTION_MAX_LENGTH]


def calculate_final_price(price: float | None, markup: float = 0.0) -> float:
    """Apply a percentage markup and round to cents."""
    return round((price or 0.0) * (1 + markup / 100), 2)


def build_listing(product: DistributorProduct, markup: float = 0.0) -> dict[str, Any]:
    """
    Build the storefront listing payload for a distributor product.

    Args:
        product: Distributor catalog item.
        markup: Percentage markup over the distributor price.

    Returns:
        Listing payload (draft status, single variant, turn14 metafields).
    """
    title = product.name or "Untitled Product"
    final_price = calculate_final_price(product.price, markup)

    tags = ["Turn14", product.manufacturer or product.brand, product.category]
    if product.carb_compliant:
        tags.append("CARB Compliant")
    if product.prop65_warning:
        tags.append("Prop 65 Warning")

    def metafield(key: str, value: str, value_type: str = "single_line_text_field") -> dict[str, str]:
        return {"namespace": "turn14", "key": key, "value": value, "type": value_type}

    metafields = [
        metafield("sku", product.sku),
        metafield("manufacturer", product.manufacturer or product.brand or ""),
        metafield("original_price", str(product.price if product.price is not None else 0)),
        metafield("carb_compliant", "true" if product.carb_compliant else "false"),
        metafield("prop65_warning", "true" if product.prop65_warning else "false"),
    ]
    if product.fitments:
        metafields.append(metafield("fitments", json.dumps(product.fitments), "json_string"))

    return {
        "title": title,
        "handle": generate_handle(product.name, product.sku),
        "body_html": clean_description(product.description),
        "vendor": product.vendor,
        "product_type": product.category or "Auto Parts",
        "tags": ",".join(tag for tag in tags if tag),
        "status": "draft",
        "variants": [
            {
                "price": f"{final_price:.2f}",
                "sku": product.sku,
                "inventory_quantity": product.stock or 0,
                "inventory_management": "shopify",
                "weight": product.weight or 1,
                "weight_unit": product.weight_unit or "lb",
                "barcode": product.barcode,
                "requires_shipping": True,
            }
        ],
        "images": [{"src": url, "alt": title} for url in product.images if url],
        "metafields": metafields,
    }
