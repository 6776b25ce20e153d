# Core module
"""
Core module for the PartSync backend.

This module provides:
- Configuration management (config.py)
- Custom exceptions and error codes (exceptions.py)
- Global error handlers (error_handlers.py)
- Structured logging (logging.py)
- Injectable clock (clock.py)
- Prometheus metrics (metrics.py)
"""

from partsync.core.clock import Clock, FrozenClock, SystemClock
from partsync.core.config import get_settings, settings
from partsync.core.exceptions import (
    # Base exceptions
    PartSyncException,
    ValidationException,
    NotFoundException,
    ConfigurationException,
    # Database exceptions
    DatabaseException,
    DatabaseConnectionException,
    # External API exceptions
    DistributorException,
    DistributorAuthException,
    DistributorRateLimitException,
    DistributorNotFoundException,
    DistributorTransientException,
    StorefrontException,
    # Business logic exceptions
    GarageCapacityException,
    VehicleNotFoundException,
    ProductNotFoundException,
    # Error codes
    ErrorCode,
    get_error_message,
)
from partsync.core.logging import get_logger, log_event, setup_logging, sync_context

__all__ = [
    # Clock
    "Clock",
    "FrozenClock",
    "SystemClock",
    # Config
    "settings",
    "get_settings",
    # Exceptions
    "PartSyncException",
    "ValidationException",
    "NotFoundException",
    "ConfigurationException",
    "DatabaseException",
    "DatabaseConnectionException",
    "DistributorException",
    "DistributorAuthException",
    "DistributorRateLimitException",
    "DistributorNotFoundException",
    "DistributorTransientException",
    "StorefrontException",
    "GarageCapacityException",
    "VehicleNotFoundException",
    "ProductNotFoundException",
    "ErrorCode",
    "get_error_message",
    # Logging
    "setup_logging",
    "get_logger",
    "log_event",
    "sync_context",
]
