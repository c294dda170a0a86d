"""
Core module for ResortPOS.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- api_client: HTTP client for the Hono backend
- database: SQLAlchemy engine and session factory
"""

from .exceptions import (
    ResortPosError,
    DatabaseUnavailableError,
    HonoApiError,
    ApiConfigurationError,
    ValidationFailedError,
    RequestTimeoutError,
    RequestAbortedError,
    OrderNotFoundError,
    StaleOrderError,
    InvalidTransitionError,
)
from .api_client import HonoClient

__all__ = [
    "ResortPosError",
    "DatabaseUnavailableError",
    "HonoApiError",
    "ApiConfigurationError",
    "ValidationFailedError",
    "RequestTimeoutError",
    "RequestAbortedError",
    "OrderNotFoundError",
    "StaleOrderError",
    "InvalidTransitionError",
    "HonoClient",
]
