"""
Custom exceptions for ResortPOS.

Exception Hierarchy:
    ResortPosError (base)
    ├── DatabaseUnavailableError   - Database cannot be opened (startup failure)
    ├── HonoApiError               - Remote Hono call failed (runtime, graceful)
    │   ├── ApiConfigurationError  - HONO_API_URL / HONO_API_KEY missing
    │   ├── ValidationFailedError  - 400 with a structured issue list
    │   ├── RequestTimeoutError    - Our own timeout fired
    │   └── RequestAbortedError    - Caller-supplied abort signal fired
    ├── OrderNotFoundError         - No order row with that ID
    ├── StaleOrderError            - Optimistic concurrency check failed
    └── InvalidTransitionError     - Checkout event not accepted in current step

Usage:
    Startup errors cause the app to fail fast.
    Runtime errors are caught at the service boundary (CashDeskService) and
    turned into ActionResult failures, or flashed by routes.
"""

from typing import Optional, Dict, Any, List


class ResortPosError(Exception):
    """
    Base exception for all ResortPOS errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# STARTUP ERRORS - Application will not start if these occur
# =============================================================================

class DatabaseUnavailableError(ResortPosError):
    """
    The orders database could not be opened or its schema created.

    This is a FATAL error - order search, statistics and the swap saga all
    read from the database.

    Typical causes:
    - Incorrect DATABASE_URL in .env
    - Database server unreachable
    - Missing DB driver for the URL scheme
    """

    def __init__(self, database_url: str, reason: str = ""):
        message = f"Database unavailable: {reason}" if reason else "Database unavailable"
        details = {
            "database_url": _redact_url(database_url),
            "resolution": "Check DATABASE_URL in .env and that the database is reachable"
        }
        super().__init__(message, details)
        self.database_url = database_url


def _redact_url(url: str) -> str:
    """Hide the password part of a database URL."""
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


# =============================================================================
# RUNTIME ERRORS - Application continues, but operation fails gracefully
# =============================================================================

class HonoApiError(ResortPosError):
    """
    Base class for failures talking to the Hono backend.

    Carries the error taxonomy value (``error_type``) that routes branch on,
    plus the optional debug ``session_id`` the backend returns for failed
    submissions.
    """

    def __init__(
        self,
        message: str,
        error_type: str = "unknown",
        status_code: Optional[int] = None,
        session_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = dict(details or {})
        if status_code is not None:
            error_details["status_code"] = status_code
        if session_id is not None:
            error_details["session_id"] = session_id
        super().__init__(message, error_details)
        self.error_type = error_type
        self.status_code = status_code
        self.session_id = session_id


class ApiConfigurationError(HonoApiError):
    """
    HONO_API_URL or HONO_API_KEY is not set.

    Not a startup failure: the error is returned to whoever triggered the
    call so the rest of the admin UI stays usable.
    """

    def __init__(
        self,
        message: str = "API URL or API KEY is not set",
        error_type: str = "unknown",
    ):
        super().__init__(
            message,
            error_type=error_type,
            details={"resolution": "Set HONO_API_URL and HONO_API_KEY in .env"},
        )


class ValidationFailedError(HonoApiError):
    """
    The backend rejected the payload with a structured issue list.

    Each issue is ``{"path": [...], "message": "..."}``.
    """

    def __init__(
        self,
        issues: List[Dict[str, Any]],
        message: str = "Validation failed",
        status_code: int = 400,
        session_id: Optional[int] = None,
    ):
        super().__init__(
            message,
            error_type="validation",
            status_code=status_code,
            session_id=session_id,
            details={"issue_count": len(issues)},
        )
        self.issues = issues


class RequestTimeoutError(HonoApiError):
    """Our own per-request timeout fired before the backend answered."""

    def __init__(self, timeout_seconds: float, message: Optional[str] = None):
        if message is None:
            message = f"Request timed out after {timeout_seconds:g} seconds"
        super().__init__(
            message,
            error_type="timeout",
            details={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class RequestAbortedError(HonoApiError):
    """The caller's abort signal fired (operator navigated away or cancelled)."""

    def __init__(self, message: str = "Request was aborted"):
        super().__init__(message, error_type="aborted")


class OrderNotFoundError(ResortPosError):
    """No order row exists with the requested ID."""

    def __init__(self, order_id: int):
        super().__init__("Order not found", {"order_id": order_id})
        self.order_id = order_id


class StaleOrderError(ResortPosError):
    """
    An admin write carried an outdated order version.

    Another operator changed the order after this one loaded it. The write
    is rejected and the operator must reload.
    """

    def __init__(self, order_id: int, expected_version: int, actual_version: int):
        message = (
            f"Order {order_id} was modified by someone else "
            f"(expected version {expected_version}, found {actual_version})"
        )
        details = {
            "order_id": order_id,
            "expected_version": expected_version,
            "actual_version": actual_version,
            "resolution": "Reload the order and try again",
        }
        super().__init__(message, details)
        self.order_id = order_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class InvalidTransitionError(ResortPosError):
    """A checkout event was applied in a step that does not accept it."""

    def __init__(self, step: str, event: str):
        super().__init__(
            f"Event {event} is not allowed in step {step}",
            {"step": step, "event": event},
        )
        self.step = step
        self.event = event
