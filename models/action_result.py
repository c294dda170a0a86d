"""
Discriminated result of a cash-desk action.

Every remote operation surfaced to the UI returns an ActionResult instead of
raising. Routes branch on ``error_type`` to pick inline field errors, flash
messages or a retry affordance.

Wire shape (``to_dict``):
    {"success": True, "data": ...}
    {"success": False, "error": "...", "errorType": "...", ["issues": [...]], ["sessionId": N]}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorType(Enum):
    """
    Error taxonomy shared by every remote call.

    The first four apply everywhere; the rest are endpoint specific.
    """

    VALIDATION = "validation"
    """Structured per-field issues from the backend."""

    TIMEOUT = "timeout"
    """Our own request timeout fired."""

    ABORTED = "aborted"
    """The caller's abort signal fired."""

    UNKNOWN = "unknown"
    """Anything else, including network failures and non-2xx responses."""

    CONFIG_ERROR = "config_error"
    """Terminal payments: missing API config, Stripe config or resort."""

    TERMINAL_ERROR = "terminal_error"
    """Card reader not found or busy."""

    NOT_FOUND = "not_found"
    """Invoice or order not found by the payment backend."""

    ALREADY_PAID = "already_paid"
    """Retry requested on an invoice with no remaining amount."""

    API_KEY_INVALID = "api_key_invalid"
    """Product catalog: API key rejected."""

    SALES_CHANNEL_NOT_FOUND = "sales_channel_not_found"
    """Product catalog: no cash-desk sales channel for the resort."""


@dataclass
class ActionResult:
    """Outcome of one cash-desk action."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    issues: List[Dict[str, Any]] = field(default_factory=list)
    session_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_type: str = ErrorType.UNKNOWN.value,
        issues: Optional[List[Dict[str, Any]]] = None,
        session_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> "ActionResult":
        return cls(
            success=False,
            error=error,
            error_type=error_type,
            issues=list(issues or []),
            session_id=session_id,
            details=dict(details or {}),
        )

    @property
    def is_validation_error(self) -> bool:
        return not self.success and self.error_type == ErrorType.VALIDATION.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON shape returned by status endpoints."""
        if self.success:
            return {"success": True, "data": self.data}
        result: Dict[str, Any] = {
            "success": False,
            "error": self.error,
            "errorType": self.error_type,
        }
        if self.issues:
            result["issues"] = list(self.issues)
        if self.session_id is not None:
            result["sessionId"] = self.session_id
        return result


# =============================================================================
# ISSUE FORMATTING
# =============================================================================

def format_issue_path(path: Sequence[Any]) -> str:
    """["devices", 0, "productId"] -> "devices.0.productId"."""
    return ".".join(str(part) for part in (path or []))


def pricing_issue_messages(issues: Sequence[Dict[str, Any]]) -> List[str]:
    """One line per issue as shown on the price review page."""
    return [
        f"Error in {format_issue_path(issue.get('path', []))}: {issue.get('message', '')}"
        for issue in issues
    ]


def submission_error_message(result: Optional[ActionResult]) -> str:
    """
    Headline shown on the submission page for a failed submit.

    A single validation issue is rendered verbatim with its path; several
    issues are summarised by count.
    """
    if result is None:
        return "Unknown error occurred"

    if result.error_type == ErrorType.VALIDATION.value:
        if not result.issues:
            return "Validation error occurred"
        if len(result.issues) == 1:
            issue = result.issues[0]
            path = format_issue_path(issue.get("path", []))
            return f"Validation error in {path}: {issue.get('message', '')}"
        return f"{len(result.issues)} validation errors occurred"

    return result.error or "An error occurred during submission"
