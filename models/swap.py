"""
Lifepass swap saga models.

A swap moves an active ticket from an old lifepass to a new one in three
remote steps:

    1. Swap on Myth          (swap-active-lifepass)
    2. Create New Skipass    (create-skipass on the new device)
    3. Cancel Old Skipass    (cancel-skipass on the old device)

Progress is persisted (SwapSagaRecord) so a swap interrupted by a failure
or a closed browser can be resumed at the step where it stopped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SwapStep(Enum):
    """
    Next step to run. COMPLETE means all three steps succeeded.
    """

    SWAP_ON_MYTH = "1"
    CREATE_NEW_SKIPASS = "2"
    CANCEL_OLD_SKIPASS = "3"
    COMPLETE = "complete"

    @property
    def label(self) -> str:
        return _STEP_LABELS[self]

    @property
    def next(self) -> "SwapStep":
        order = list(SwapStep)
        index = order.index(self)
        return order[min(index + 1, len(order) - 1)]


_STEP_LABELS = {
    SwapStep.SWAP_ON_MYTH: "Swap on Myth",
    SwapStep.CREATE_NEW_SKIPASS: "Create New Skipass",
    SwapStep.CANCEL_OLD_SKIPASS: "Cancel Old Skipass",
    SwapStep.COMPLETE: "Complete",
}


@dataclass
class PassStatus:
    """Where one lifepass stands during a swap."""

    on_myth: bool
    skipass_active: bool
    active_pass: bool

    def to_dict(self) -> Dict[str, bool]:
        return {
            "onMyth": self.on_myth,
            "skipassActive": self.skipass_active,
            "activePass": self.active_pass,
        }


@dataclass
class SwapProgress:
    """
    Read model of a persisted swap saga.
    """

    id: int
    order_id: int
    resort_id: int
    old_pass_id: str
    new_pass_id: str
    old_device_code: Optional[str] = None
    current_step: SwapStep = SwapStep.SWAP_ON_MYTH
    completed_steps: List[str] = field(default_factory=list)
    last_error: Optional[str] = None
    last_error_details: Optional[Dict[str, Any]] = None
    attempts: Dict[str, int] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def device_code(self) -> str:
        """Myth deviceCode of the old pass, sent to every swap step."""
        return self.old_device_code or self.old_pass_id

    @property
    def is_complete(self) -> bool:
        return self.current_step == SwapStep.COMPLETE

    def is_done(self, step: SwapStep) -> bool:
        return step.value in self.completed_steps

    @property
    def old_pass_status(self) -> PassStatus:
        swapped = self.is_done(SwapStep.SWAP_ON_MYTH)
        return PassStatus(
            on_myth=not swapped,
            skipass_active=not self.is_done(SwapStep.CANCEL_OLD_SKIPASS),
            active_pass=not swapped,
        )

    @property
    def new_pass_status(self) -> PassStatus:
        swapped = self.is_done(SwapStep.SWAP_ON_MYTH)
        return PassStatus(
            on_myth=swapped,
            skipass_active=self.is_done(SwapStep.CREATE_NEW_SKIPASS),
            active_pass=swapped,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "resortId": self.resort_id,
            "oldPassId": self.old_pass_id,
            "oldDeviceCode": self.device_code,
            "newPassId": self.new_pass_id,
            "currentStep": self.current_step.value,
            "currentStepLabel": self.current_step.label,
            "completedSteps": list(self.completed_steps),
            "lastError": self.last_error,
            "attempts": dict(self.attempts),
            "oldPassStatus": self.old_pass_status.to_dict(),
            "newPassStatus": self.new_pass_status.to_dict(),
        }


def format_myth_swap_error(data: Any) -> str:
    """
    Operator-facing message for a failed Myth swap response.

    Prefers the provider's ``details.response.detail``; otherwise joins the
    error code (underscores as spaces) and the message, skipping a bare
    "Bad Request".
    """
    if not isinstance(data, dict):
        return "Unknown error"

    details = data.get("details")
    if isinstance(details, dict):
        response = details.get("response")
        if isinstance(response, dict) and isinstance(response.get("detail"), str):
            return response["detail"]

    parts = []
    error = data.get("error")
    if isinstance(error, str) and error:
        parts.append(error.replace("_", " "))
    message = data.get("message")
    if isinstance(message, str) and message and message != "Bad Request":
        parts.append(message)
    return ": ".join(parts) or "Unknown error"
