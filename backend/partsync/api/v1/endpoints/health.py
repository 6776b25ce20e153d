"""
Health check endpoints for PartSync.

Endpoints:
- /health/live - liveness probe (is the app running?)
- /health/ready - readiness probe (database reachable?)
- /health/detailed - database latency and scheduler state
"""

import time
from datetime import datetime, UTC
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from partsync.core.config import settings
from partsync.core.logging import get_logger
from partsync.db.postgres.session import check_database_connection

logger = get_logger(__name__)

router = APIRouter()

VERSION = "0.1.0"


# =============================================================================
# Response Models
# =============================================================================


class ServiceHealth(BaseModel):
    """Health status for a single component."""

    name: str
    status: str  # "healthy", "unhealthy", "stopped"
    latency_ms: float = 0.0
    details: dict[str, Any] = {}


class DetailedHealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    services: dict[str, ServiceHealth]
    checked_at: str


class ReadinessResponse(BaseModel):
    status: str
    checks: dict[str, bool]
    checked_at: str


class LivenessResponse(BaseModel):
    status: str
    checked_at: str


def _checked_at() -> str:
    return datetime.now(UTC).isoformat()


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/live", response_model=LivenessResponse)
async def liveness_check():
    """Liveness probe. Returns 200 whenever the process can serve requests."""
    return LivenessResponse(status="alive", checked_at=_checked_at())


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check():
    """
    Readiness probe.

    Raises:
        HTTPException: 503 if the database is unreachable
    """
    checks = {"database": await check_database_connection()}
    if not all(checks.values()):
        logger.warning("Readiness check failed", extra={"event": "readiness_failed", "checks": checks})
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks, "message": "Critical services unavailable"},
        )
    return ReadinessResponse(status="ready", checks=checks, checked_at=_checked_at())


@router.get("/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(request: Request):
    """Database connectivity with latency, plus whether the sync scheduler is running."""
    start_time = time.time()
    db_ok = await check_database_connection()
    latency = (time.time() - start_time) * 1000

    scheduler = getattr(request.app.state, "scheduler", None)
    scheduler_running = bool(scheduler and scheduler.is_running)

    services = {
        "database": ServiceHealth(
            name="Database",
            status="healthy" if db_ok else "unhealthy",
            latency_ms=round(latency, 2),
        ),
        "scheduler": ServiceHealth(
            name="Sync scheduler",
            status="healthy" if scheduler_running else "stopped",
            details={"enabled": settings.SCHEDULER_ENABLED},
        ),
    }

    return DetailedHealthResponse(
        status="healthy" if db_ok else "unhealthy",
        version=VERSION,
        environment=settings.ENVIRONMENT,
        services=services,
        checked_at=_checked_at(),
    )
