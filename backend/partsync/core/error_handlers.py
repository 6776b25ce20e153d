"""
Global exception handlers for the FastAPI application.

This module provides:
- Structured error responses: {"error": {code, message, details, request_id}}
- Request ID tracing
- Error logging with context
- Generic messages on customer-facing routes
"""

import traceback
import uuid
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import (
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as SQLAlchemyTimeoutError,
)

from partsync.core.config import settings
from partsync.core.exceptions import (
    DistributorException,
    ErrorCode,
    PartSyncException,
    StorefrontException,
    get_error_message,
)
from partsync.core.logging import get_logger

logger = get_logger(__name__)

# Routes consumed by the storefront widget on behalf of shoppers
CUSTOMER_FACING_PREFIXES = ("/api/v1/garage",)


# =============================================================================
# Error Response Builder
# =============================================================================


def build_error_response(
    request_id: str,
    code: ErrorCode,
    message: str,
    details: dict[str, Any] | None = None,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
) -> ORJSONResponse:
    """
    Build a standardized error response.

    Args:
        request_id: Unique request identifier
        code: Error code enum
        message: Error message
        details: Additional error details
        status_code: HTTP status code
    """
    content = {
        "error": {
            "code": code.value,
            "message": message,
            "details": details or {},
            "request_id": request_id,
        }
    }
    return ORJSONResponse(status_code=status_code, content=content)


def get_request_id(request: Request) -> str:
    """Extract request ID from request state."""
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def is_customer_facing(request: Request) -> bool:
    return request.url.path.startswith(CUSTOMER_FACING_PREFIXES)


# =============================================================================
# Exception Handlers
# =============================================================================


async def partsync_exception_handler(request: Request, exc: PartSyncException) -> ORJSONResponse:
    """Handle PartSync exceptions."""
    request_id = get_request_id(request)

    logger.warning(
        f"PartSync exception: {exc.message}",
        extra={
            "request_id": request_id,
            "error_code": exc.code.value,
            "path": request.url.path,
        },
    )

    message = exc.message
    details = exc.details
    if is_customer_facing(request) and isinstance(exc, (DistributorException, StorefrontException)):
        message = get_error_message(exc.code)
        details = {}

    return build_error_response(
        request_id=request_id,
        code=exc.code,
        message=message,
        details=details,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    """Handle request validation errors."""
    request_id = get_request_id(request)

    errors = []
    for error in exc.errors():
        errors.append(
            {
                "field": " -> ".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
        )

    logger.warning(
        "Validation error",
        extra={"request_id": request_id, "path": request.url.path},
    )

    return build_error_response(
        request_id=request_id,
        code=ErrorCode.VALIDATION_ERROR,
        message="Validation error",
        details={"validation_errors": errors},
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> ORJSONResponse:
    """Handle SQLAlchemy database errors."""
    request_id = get_request_id(request)

    if isinstance(exc, OperationalError):
        code = ErrorCode.DATABASE_CONNECTION
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, IntegrityError):
        code = ErrorCode.DATABASE_INTEGRITY
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, SQLAlchemyTimeoutError):
        code = ErrorCode.DATABASE_TIMEOUT
        status_code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        code = ErrorCode.DATABASE_ERROR
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    log_details = {
        "request_id": request_id,
        "error_type": type(exc).__name__,
        "path": request.url.path,
    }
    if settings.DEBUG:
        log_details["error_message"] = str(exc)
        log_details["traceback"] = traceback.format_exc()

    logger.error(f"Database error: {type(exc).__name__}", extra=log_details)

    details = {}
    if settings.DEBUG:
        details["error_type"] = type(exc).__name__
        details["error_message"] = str(exc)[:200]

    return build_error_response(
        request_id=request_id,
        code=code,
        message=get_error_message(code),
        details=details,
        status_code=status_code,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    """Handle all unhandled exceptions."""
    request_id = get_request_id(request)

    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra={
            "request_id": request_id,
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=True,
    )

    details = {}
    if settings.DEBUG and not is_customer_facing(request):
        details["error_type"] = type(exc).__name__
        details["error_message"] = str(exc)[:200]

    return build_error_response(
        request_id=request_id,
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred",
        details=details,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


# =============================================================================
# Setup Function
# =============================================================================


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(PartSyncException, partsync_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)

    # Generic handler for unhandled exceptions (must be last)
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.info("Exception handlers registered")
