"""
PartSync - Turn14 to Shopify catalog sync
Main FastAPI Application Entry Point
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from partsync import __version__
from partsync.api.v1.router import api_router
from partsync.core.config import settings
from partsync.core.error_handlers import setup_exception_handlers
from partsync.core.logging import RequestLoggingMiddleware, get_logger, setup_logging
from partsync.core.metrics import MetricsMiddleware
from partsync.db.postgres.session import async_session_maker, create_schema, dispose_engine
from partsync.services.scheduler import SchedulerService

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    setup_logging()
    logger.info("Starting PartSync backend service")

    await create_schema()
    logger.info("Database schema ready")

    scheduler = SchedulerService(async_session_maker)
    app.state.scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down PartSync backend service")

    await scheduler.stop()

    await dispose_engine()
    logger.info("Database connections closed")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""

    # OpenAPI tags metadata for documentation
    tags_metadata = [
        {
            "name": "Health",
            "description": "Service health monitoring and readiness probes.",
        },
        {
            "name": "Distributor",
            "description": "Turn14 credentials, sync configuration and brand lookup.",
        },
        {
            "name": "Sync",
            "description": "Manual sync runs, sync status, statistics and the job ledger.",
        },
        {
            "name": "Schedules",
            "description": "Recurring sync schedules. Due schedules are run by the background scheduler.",
        },
        {
            "name": "Compatibility",
            "description": "Vehicle database, product fitment sync and compatibility lookups.",
        },
        {
            "name": "Garage",
            "description": "Customer garages: saved vehicles, maintenance reminders, price alerts and purchases.",
        },
        {
            "name": "Metrics",
            "description": "Prometheus metrics for monitoring.",
        },
    ]

    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="""
# PartSync API

Keeps a Shopify store's auto parts catalog in step with the Turn14 distributor.

## Features

- **Inventory, pricing and new-product sync** with per-item isolation and a job ledger
- **Scheduled syncs** (hourly, daily, weekly), never overlapping for one shop
- **Vehicle fitment** synced per product, searchable by year/make/model
- **Customer garages** with maintenance reminders and price alerts

## Shop

Every endpoint is scoped to a shop passed in the `X-Shop-Domain` header.
        """,
        version=__version__,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
        openapi_tags=tags_metadata,
    )

    # Metrics collection middleware (collects request metrics for Prometheus)
    application.add_middleware(MetricsMiddleware)

    # Request logging middleware (must be added before CORS)
    application.add_middleware(RequestLoggingMiddleware)

    # CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "X-Requested-With",
            "X-Request-ID",
            "X-Shop-Domain",
        ],
        expose_headers=["X-Request-ID"],
    )

    # Security headers middleware
    @application.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # Setup exception handlers
    setup_exception_handlers(application)

    # Include API router
    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Root health check endpoint for container orchestration
    @application.get("/health", tags=["Health"])
    async def health_check():
        """Basic health check endpoint for container orchestration."""
        return {
            "status": "healthy",
            "version": __version__,
            "service": "partsync-backend",
            "environment": settings.ENVIRONMENT,
        }

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "partsync.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
