"""
Logging configuration for PartSync.

Provides:
- Structured JSON logging with request correlation
- Request ID tracking across the request lifecycle
- Shop and sync job correlation for background sync runs
- Error context enrichment with stack traces
"""

from __future__ import annotations

import logging
import os
import sys
import time
import traceback
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, UTC
from typing import Any, Optional, TYPE_CHECKING

from pythonjsonlogger import jsonlogger
from starlette.middleware.base import BaseHTTPMiddleware

from partsync import __version__
from partsync.core.config import settings

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

# Context variables for request and sync correlation
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
shop_var: ContextVar[Optional[str]] = ContextVar("shop", default=None)
sync_job_id_var: ContextVar[Optional[str]] = ContextVar("sync_job_id", default=None)


class StructuredJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter with context fields.

    Adds:
    - Timestamp in ISO format (RFC 3339 compliant)
    - Log level with severity number
    - Service name, version, and environment
    - Request ID, shop and sync job ID from context
    - Exception info with full stack trace when present
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._hostname = os.uname().nodename if hasattr(os, "uname") else "unknown"
        self._pid = os.getpid()

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(UTC).isoformat()
        log_record["level"] = record.levelname
        log_record["level_num"] = record.levelno
        log_record["logger"] = record.name

        log_record["service"] = {
            "name": settings.PROJECT_NAME,
            "version": __version__,
            "environment": settings.ENVIRONMENT,
        }
        log_record["host"] = {
            "name": self._hostname,
            "pid": self._pid,
        }
        log_record["source"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_record["request_id"] = request_id

        shop = shop_var.get()
        if shop:
            log_record["shop"] = shop

        sync_job_id = sync_job_id_var.get()
        if sync_job_id:
            log_record["sync_job_id"] = sync_job_id

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            log_record["error"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "module": exc_type.__module__,
                "stack_trace": self.formatException(record.exc_info),
                "frames": self._extract_stack_frames(exc_tb),
            }
            if exc_value.__cause__:
                log_record["error"]["cause"] = {
                    "type": type(exc_value.__cause__).__name__,
                    "message": str(exc_value.__cause__),
                }

        self._remove_none_values(log_record)

    def _extract_stack_frames(self, tb, limit: int = 10) -> list[dict[str, Any]]:
        """Extract structured stack frame information."""
        frames = []
        if tb is None:
            return frames

        for frame_info in traceback.extract_tb(tb, limit=limit):
            frames.append({
                "file": frame_info.filename,
                "line": frame_info.lineno,
                "function": frame_info.name,
            })
        return frames

    def _remove_none_values(self, d: dict[str, Any]) -> None:
        """Recursively remove None values from dictionary."""
        keys_to_remove = []
        for key, value in d.items():
            if value is None:
                keys_to_remove.append(key)
            elif isinstance(value, dict):
                self._remove_none_values(value)
        for key in keys_to_remove:
            del d[key]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request logging and correlation.

    Generates (or propagates) an X-Request-ID, logs request completion with
    timing and exposes the ID on the response.
    """

    # High-frequency probe paths are not logged in detail
    EXCLUDED_PATHS = {"/health", "/api/v1/health", "/api/v1/health/live", "/api/v1/metrics"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_token = request_id_var.set(request_id)
        request.state.request_id = request_id

        logger = get_logger("request")
        should_log_detailed = request.url.path not in self.EXCLUDED_PATHS
        start_time = time.time()

        try:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000

            if response.status_code >= 500:
                log_level = logging.ERROR
            elif response.status_code >= 400 or duration_ms > 5000:
                log_level = logging.WARNING
            else:
                log_level = logging.INFO

            if should_log_detailed:
                logger.log(
                    log_level,
                    f"Request completed: {request.method} {request.url.path} - {response.status_code} ({duration_ms:.2f}ms)",
                    extra={
                        "event": "request_complete",
                        "http": {
                            "method": request.method,
                            "path": request.url.path,
                            "status_code": response.status_code,
                        },
                        "timing": {"duration_ms": round(duration_ms, 2)},
                    },
                )

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                extra={
                    "event": "request_error",
                    "http": {"method": request.method, "path": request.url.path},
                    "timing": {"duration_ms": round(duration_ms, 2)},
                },
                exc_info=True,
            )
            raise

        finally:
            request_id_var.reset(request_id_token)


@contextmanager
def sync_context(shop: str, job_id: str | None = None) -> Iterator[None]:
    """
    Bind shop and sync job ID to every log line emitted inside the block.

    Usage:
        with sync_context(shop, str(job.id)):
            await engine.sync_inventory(shop)
    """
    shop_token = shop_var.set(shop)
    job_token = sync_job_id_var.set(job_id)
    try:
        yield
    finally:
        sync_job_id_var.reset(job_token)
        shop_var.reset(shop_token)


# Logger levels by module
LOGGER_CONFIG: dict[str, int] = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.ERROR,
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


def setup_logging() -> None:
    """
    Configure application logging with structured JSON output.

    JSON format for production, human-readable for development, with
    Sentry integration when a DSN is configured.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)

    if settings.LOG_FORMAT == "json":
        formatter = StructuredJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s"
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    for logger_name, level in LOGGER_CONFIG.items():
        logging.getLogger(logger_name).setLevel(level)

    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=f"partsync@{__version__}",
            integrations=[
                FastApiIntegration(),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            traces_sample_rate=0.1 if settings.ENVIRONMENT == "production" else 1.0,
            send_default_pii=False,
        )
        logging.info("Sentry SDK initialized successfully")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    message: str,
    **extra_fields: Any,
) -> None:
    """
    Log a structured event with additional context.

    Args:
        logger: Logger instance to use
        level: Log level
        event: Event type identifier
        message: Human-readable message
        **extra_fields: Additional fields to include in log
    """
    logger.log(
        level,
        message,
        extra={"event": event, **extra_fields},
    )
