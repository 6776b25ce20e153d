"""
Prometheus metrics for PartSync.

Provides Prometheus-format metrics for:
- HTTP request count and latency by endpoint
- Sync job outcomes and durations by sync type
- Per-item sync outcomes
- Turn14 API call counts, latency and errors
- Shopify write outcomes

Usage:
    from partsync.core.metrics import track_distributor_call

    with track_distributor_call("/inventory") as ctx:
        response = await client.get(url)
        ctx["status_code"] = response.status_code
"""

import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from fastapi import Request, Response
from prometheus_client import Counter, Histogram, Info
from starlette.middleware.base import BaseHTTPMiddleware

from partsync import __version__
from partsync.core.config import settings

# =============================================================================
# Application Info
# =============================================================================

APP_INFO = Info(
    "partsync_app",
    "PartSync application information",
)
APP_INFO.info(
    {
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "service": settings.PROJECT_NAME,
    }
)

# =============================================================================
# HTTP Request Metrics
# =============================================================================

REQUEST_COUNT = Counter(
    "partsync_http_requests_total",
    "Total HTTP request count",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "partsync_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# =============================================================================
# Sync Metrics
# =============================================================================

SYNC_JOBS = Counter(
    "partsync_sync_jobs_total",
    "Sync jobs by type and final status",
    ["sync_type", "status", "trigger"],
)

SYNC_DURATION = Histogram(
    "partsync_sync_job_duration_seconds",
    "Sync job duration in seconds",
    ["sync_type"],
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600],
)

SYNC_ITEMS = Counter(
    "partsync_sync_items_total",
    "Items processed by sync operations",
    ["operation", "outcome"],
)

# =============================================================================
# External API Metrics
# =============================================================================

DISTRIBUTOR_CALLS = Counter(
    "partsync_distributor_api_calls_total",
    "Turn14 API calls",
    ["endpoint", "status_code"],
)

DISTRIBUTOR_LATENCY = Histogram(
    "partsync_distributor_api_duration_seconds",
    "Turn14 API call latency in seconds",
    ["endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

DISTRIBUTOR_ERRORS = Counter(
    "partsync_distributor_api_errors_total",
    "Turn14 API errors by normalized error type",
    ["endpoint", "error_type"],
)

STOREFRONT_WRITES = Counter(
    "partsync_storefront_writes_total",
    "Shopify catalog writes",
    ["operation", "outcome"],
)


# =============================================================================
# Tracking Helpers
# =============================================================================


@contextmanager
def track_distributor_call(endpoint: str) -> Generator[dict[str, Any], None, None]:
    """
    Context manager for tracking Turn14 API call metrics.

    Args:
        endpoint: Normalized API endpoint (no SKUs or ids)
    """
    start_time = time.time()
    context: dict[str, Any] = {"status_code": 0}

    try:
        yield context
    except Exception as e:
        DISTRIBUTOR_ERRORS.labels(endpoint=endpoint, error_type=type(e).__name__).inc()
        raise
    finally:
        DISTRIBUTOR_CALLS.labels(
            endpoint=endpoint,
            status_code=str(context.get("status_code", 0)),
        ).inc()
        DISTRIBUTOR_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_time)


def track_sync_item(operation: str, success: bool) -> None:
    """Record one processed item of a batch sync operation."""
    SYNC_ITEMS.labels(operation=operation, outcome="success" if success else "failed").inc()


def track_sync_job(sync_type: str, status: str, trigger: str, duration: float) -> None:
    """Record a finished sync job."""
    SYNC_JOBS.labels(sync_type=sync_type, status=status, trigger=trigger).inc()
    SYNC_DURATION.labels(sync_type=sync_type).observe(duration)


def track_storefront_write(operation: str, success: bool) -> None:
    """Record a Shopify write attempt."""
    STOREFRONT_WRITES.labels(operation=operation, outcome="success" if success else "failed").inc()


# =============================================================================
# Metrics Middleware
# =============================================================================


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for automatic request count and latency collection."""

    EXCLUDED_ENDPOINTS = {"/api/v1/health", "/api/v1/health/live", "/api/v1/metrics"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        endpoint = self._normalize_endpoint(request.url.path)
        if endpoint in self.EXCLUDED_ENDPOINTS:
            return await call_next(request)

        method = request.method
        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
            REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(time.time() - start_time)

    def _normalize_endpoint(self, path: str) -> str:
        """Replace dynamic path parameters with placeholders."""
        normalized_parts = []
        for part in path.split("/"):
            if not part:
                continue
            if self._is_uuid(part) or part.isdigit():
                normalized_parts.append("{id}")
            else:
                normalized_parts.append(part)
        return "/" + "/".join(normalized_parts) if normalized_parts else "/"

    @staticmethod
    def _is_uuid(value: str) -> bool:
        """Check if value looks like a UUID."""
        import uuid as uuid_module

        try:
            uuid_module.UUID(value)
            return True
        except (ValueError, AttributeError):
            return False
