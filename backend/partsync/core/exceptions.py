"""
Custom exception classes for PartSync.

This module defines a hierarchy of exceptions with:
- Structured error responses
- Proper HTTP status codes
- Error codes for client-side handling
- The distributor error taxonomy the sync engine dispatches on
"""

from enum import StrEnum
from typing import Any

from fastapi import HTTPException, status

# =============================================================================
# Error Codes Enum
# =============================================================================


class ErrorCode(StrEnum):
    """Standardized error codes for client-side handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    CONFIGURATION_ERROR = "ERR_1003"
    RATE_LIMITED = "ERR_1005"
    REQUEST_TIMEOUT = "ERR_1006"

    # Database errors (2xxx)
    DATABASE_ERROR = "ERR_2000"
    DATABASE_CONNECTION = "ERR_2001"
    DATABASE_TIMEOUT = "ERR_2002"
    DATABASE_INTEGRITY = "ERR_2003"

    # Distributor / storefront errors (3xxx)
    DISTRIBUTOR_ERROR = "ERR_3000"
    DISTRIBUTOR_AUTH = "ERR_3001"
    DISTRIBUTOR_RATE_LIMITED = "ERR_3002"
    DISTRIBUTOR_NOT_FOUND = "ERR_3003"
    DISTRIBUTOR_UNAVAILABLE = "ERR_3004"
    STOREFRONT_ERROR = "ERR_3010"

    # Business logic errors (4xxx)
    SYNC_ERROR = "ERR_4001"
    GARAGE_CAPACITY = "ERR_4002"
    VEHICLE_NOT_FOUND = "ERR_4003"
    PRODUCT_NOT_FOUND = "ERR_4004"


# =============================================================================
# Default Error Messages
# =============================================================================


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INTERNAL_ERROR: "An internal error occurred. Please try again later.",
    ErrorCode.VALIDATION_ERROR: "Invalid data. Please check the submitted values.",
    ErrorCode.NOT_FOUND: "The requested resource was not found.",
    ErrorCode.CONFIGURATION_ERROR: "The distributor connection is not configured.",
    ErrorCode.RATE_LIMITED: "Too many requests. Please wait and try again.",
    ErrorCode.REQUEST_TIMEOUT: "The request timed out. Please try again.",
    ErrorCode.DATABASE_ERROR: "A database error occurred. Please try again later.",
    ErrorCode.DATABASE_CONNECTION: "Could not connect to the database.",
    ErrorCode.DATABASE_TIMEOUT: "The database operation timed out.",
    ErrorCode.DATABASE_INTEGRITY: "A data integrity error occurred.",
    ErrorCode.DISTRIBUTOR_ERROR: "The distributor API returned an error.",
    ErrorCode.DISTRIBUTOR_AUTH: "The distributor rejected the configured credentials.",
    ErrorCode.DISTRIBUTOR_RATE_LIMITED: "The distributor API rate limit was exceeded.",
    ErrorCode.DISTRIBUTOR_NOT_FOUND: "The distributor has no record of the requested item.",
    ErrorCode.DISTRIBUTOR_UNAVAILABLE: "The distributor API is temporarily unavailable.",
    ErrorCode.STOREFRONT_ERROR: "The storefront rejected a catalog update.",
    ErrorCode.SYNC_ERROR: "The sync run failed.",
    ErrorCode.GARAGE_CAPACITY: "The garage has reached its vehicle limit.",
    ErrorCode.VEHICLE_NOT_FOUND: "The requested vehicle was not found.",
    ErrorCode.PRODUCT_NOT_FOUND: "The requested product is not tracked.",
}


def get_error_message(code: ErrorCode, fallback: str | None = None) -> str:
    """Get the default message for an error code."""
    return ERROR_MESSAGES.get(code, fallback or "An unknown error occurred.")


# =============================================================================
# Base Exception Classes
# =============================================================================


class PartSyncException(Exception):
    """
    Base exception class for all PartSync exceptions.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional error context
        status_code: HTTP status code
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            }
        }

    def to_http_exception(self) -> HTTPException:
        """Convert to FastAPI HTTPException."""
        return HTTPException(
            status_code=self.status_code,
            detail=self.to_dict(),
        )


# =============================================================================
# Validation / Resource Exceptions
# =============================================================================


class ValidationException(PartSyncException):
    """Exception for validation errors."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        error_details = details or {}
        if field:
            error_details["field"] = field

        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            details=error_details,
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class NotFoundException(PartSyncException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ):
        details = {}
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message=message,
            code=ErrorCode.NOT_FOUND,
            details=details,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ConfigurationException(PartSyncException):
    """Missing or disabled configuration; raised before any network call."""

    def __init__(
        self,
        message: str = "Turn14 configuration not found or inactive.",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.CONFIGURATION_ERROR,
            details=details,
            status_code=status.HTTP_409_CONFLICT,
        )


# =============================================================================
# Database Exceptions
# =============================================================================


class DatabaseException(PartSyncException):
    """Base exception for database errors."""

    def __init__(
        self,
        message: str = "A database error occurred.",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ):
        error_details = details or {}
        if original_error:
            error_details["original_error"] = str(original_error)

        super().__init__(
            message=message,
            code=code,
            details=error_details,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
        self.original_error = original_error


class DatabaseConnectionException(DatabaseException):
    """Exception for database connection errors."""

    def __init__(
        self,
        message: str = "Could not connect to the database.",
        original_error: Exception | None = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.DATABASE_CONNECTION,
            details={"type": "connection"},
            original_error=original_error,
        )


# =============================================================================
# Distributor Exceptions
# =============================================================================


class DistributorException(PartSyncException):
    """
    Base exception for Turn14 API errors.

    Every transport or HTTP failure of the distributor client is normalized
    into this class or one of its subclasses.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.DISTRIBUTOR_ERROR,
        details: dict[str, Any] | None = None,
        upstream_status: int | None = None,
        original_error: Exception | None = None,
    ):
        error_details = details or {}
        if upstream_status:
            error_details["upstream_status"] = upstream_status
        if original_error:
            error_details["original_error"] = str(original_error)

        super().__init__(
            message=message,
            code=code,
            details=error_details,
            status_code=status.HTTP_502_BAD_GATEWAY,
        )
        self.upstream_status = upstream_status
        self.original_error = original_error


class DistributorAuthException(DistributorException):
    """Invalid or expired distributor credentials. Fatal to a whole sync run."""

    def __init__(
        self,
        message: str = "Invalid Turn14 API credentials.",
        upstream_status: int | None = 401,
        original_error: Exception | None = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.DISTRIBUTOR_AUTH,
            upstream_status=upstream_status,
            original_error=original_error,
        )
        self.status_code = status.HTTP_401_UNAUTHORIZED


class DistributorRateLimitException(DistributorException):
    """Distributor rate limit exceeded."""

    def __init__(
        self,
        retry_after: int = 60,
        original_error: Exception | None = None,
    ):
        super().__init__(
            message=f"Turn14 API rate limit exceeded. Retry in {retry_after} seconds.",
            code=ErrorCode.DISTRIBUTOR_RATE_LIMITED,
            details={"retry_after_seconds": retry_after},
            upstream_status=429,
            original_error=original_error,
        )
        self.retry_after = retry_after
        self.status_code = status.HTTP_429_TOO_MANY_REQUESTS


class DistributorNotFoundException(DistributorException):
    """Distributor has no record of the requested SKU or vehicle."""

    def __init__(
        self,
        message: str = "Item not found at Turn14.",
        resource_id: str | None = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.DISTRIBUTOR_NOT_FOUND,
            details={"resource_id": resource_id} if resource_id else None,
            upstream_status=404,
        )
        self.status_code = status.HTTP_404_NOT_FOUND


class DistributorTransientException(DistributorException):
    """Timeouts, connection failures and 5xx responses."""

    def __init__(
        self,
        message: str = "Turn14 API is temporarily unavailable.",
        upstream_status: int | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.DISTRIBUTOR_UNAVAILABLE,
            upstream_status=upstream_status,
            original_error=original_error,
        )
        self.status_code = status.HTTP_503_SERVICE_UNAVAILABLE


# =============================================================================
# Storefront Exceptions
# =============================================================================


class StorefrontException(PartSyncException):
    """Exception for Shopify Admin API write failures."""

    def __init__(
        self,
        message: str = "Shopify rejected the catalog update.",
        upstream_status: int | None = None,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ):
        error_details = details or {}
        if upstream_status:
            error_details["upstream_status"] = upstream_status
        if original_error:
            error_details["original_error"] = str(original_error)

        super().__init__(
            message=message,
            code=ErrorCode.STOREFRONT_ERROR,
            details=error_details,
            status_code=status.HTTP_502_BAD_GATEWAY,
        )
        self.upstream_status = upstream_status
        self.original_error = original_error


# =============================================================================
# Business Logic Exceptions
# =============================================================================


class GarageCapacityException(PartSyncException):
    """Raised when a garage already holds its maximum number of vehicles."""

    def __init__(self, max_vehicles: int):
        super().__init__(
            message=f"Vehicle limit reached. Maximum {max_vehicles} vehicles allowed.",
            code=ErrorCode.GARAGE_CAPACITY,
            details={"max_vehicles": max_vehicles},
            status_code=status.HTTP_409_CONFLICT,
        )
        self.max_vehicles = max_vehicles


class VehicleNotFoundException(NotFoundException):
    """Exception when a garage vehicle is not found."""

    def __init__(self, vehicle_id: str | None = None):
        super().__init__(
            message="Vehicle not found.",
            resource_type="vehicle",
            resource_id=vehicle_id,
        )
        self.code = ErrorCode.VEHICLE_NOT_FOUND


class ProductNotFoundException(NotFoundException):
    """Exception when a SKU is not tracked for the shop."""

    def __init__(self, sku: str):
        super().__init__(
            message=f"Product not found: {sku}",
            resource_type="product",
            resource_id=sku,
        )
        self.code = ErrorCode.PRODUCT_NOT_FOUND
