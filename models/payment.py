"""
Terminal payment state.

Transient: one PaymentState exists per checkout saga while the payment step
runs. It is written by the payment poll thread and read by the status
endpoint, always under PaymentService's lock.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class PaymentStatus(Enum):
    """
    Status of a terminal payment.

    Lifecycle:
        IDLE -> CREATING -> PROCESSING -> POLLING -> (SUCCEEDED | FAILED | TIMEOUT | CANCELED)
        FAILED / TIMEOUT -> (retry) -> POLLING
    """

    IDLE = "idle"
    """Nothing sent to the terminal yet."""

    CREATING = "creating"
    """create-terminal-payment in flight."""

    PROCESSING = "processing"
    """Payment created on the terminal, waiting for the card."""

    POLLING = "polling"
    """Poll loop checking payment status."""

    SUCCEEDED = "succeeded"
    """Payment captured."""

    FAILED = "failed"
    """Payment declined, errored or creation failed."""

    TIMEOUT = "timeout"
    """Poll attempts exhausted without a final status."""

    CANCELED = "canceled"
    """Payment or polling cancelled."""


FINAL_STATUSES = frozenset({
    PaymentStatus.SUCCEEDED,
    PaymentStatus.FAILED,
    PaymentStatus.TIMEOUT,
    PaymentStatus.CANCELED,
})


@dataclass
class PaymentState:
    """Progress of one terminal payment."""

    status: PaymentStatus = PaymentStatus.IDLE
    order_id: Optional[int] = None
    resort_id: Optional[int] = None
    terminal_id: str = ""
    invoice_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    total_amount: Optional[float] = None
    currency: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    poll_attempts: int = 0
    max_poll_attempts: int = 60
    retry_count: int = 0
    updated_at: Optional[datetime] = None

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES

    @property
    def can_retry(self) -> bool:
        return self.status in (PaymentStatus.FAILED, PaymentStatus.TIMEOUT, PaymentStatus.CANCELED)

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def copy(self) -> "PaymentState":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON shape of the payment status endpoint."""
        return {
            "status": self.status.value,
            "orderId": self.order_id,
            "terminalId": self.terminal_id,
            "invoiceId": self.invoice_id,
            "paymentIntentId": self.payment_intent_id,
            "totalAmount": self.total_amount,
            "currency": self.currency,
            "error": self.error,
            "errorType": self.error_type,
            "pollAttempts": self.poll_attempts,
            "maxPollAttempts": self.max_poll_attempts,
            "retryCount": self.retry_count,
            "final": self.is_final,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
