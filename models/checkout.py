"""
Checkout state machine.

The order-creation wizard is an explicit state machine:

    FORM_ENTRY -> PRICE_REVIEW -> PAYMENT -> SUBMISSION -> DONE

``transition(state, event)`` is a pure reducer: it returns a new
CheckoutState and never touches the network. Events that the current step
does not accept raise InvalidTransitionError. CheckoutSaga (services) is the
only caller that performs remote work and feeds the outcomes back in as
events.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

from core.exceptions import InvalidTransitionError
from models.action_result import (
    ActionResult,
    ErrorType,
    pricing_issue_messages,
    submission_error_message,
)
from models.order_draft import OrderDraft, needs_resubmit
from models.pricing import CalculatedOrderPrice


class CheckoutStep(Enum):
    """
    Wizard page currently shown to the operator.
    """

    FORM_ENTRY = "form_entry"
    """Resort, date, customer and devices."""

    PRICE_REVIEW = "price_review"
    """Priced lines and total, waiting for the operator to accept."""

    PAYMENT = "payment"
    """Order intent reserved, terminal payment running or bypass offered."""

    SUBMISSION = "submission"
    """Posting the order to the ticketing systems."""

    DONE = "done"
    """Order submitted. Terminal state."""


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class DraftSubmitted:
    draft: OrderDraft


@dataclass(frozen=True)
class PriceCalculated:
    price: CalculatedOrderPrice


@dataclass(frozen=True)
class PricingFailed:
    error: str
    error_type: str
    issues: Tuple[Dict[str, Any], ...] = ()


@dataclass(frozen=True)
class PriceAccepted:
    pass


@dataclass(frozen=True)
class OrderIntentCreated:
    order_id: int


@dataclass(frozen=True)
class PaymentCompleted:
    pass


@dataclass(frozen=True)
class PaymentBypassed:
    pass


@dataclass(frozen=True)
class DevicesEdited:
    draft: OrderDraft


@dataclass(frozen=True)
class SubmissionFailed:
    result: ActionResult


@dataclass(frozen=True)
class SubmissionRetried:
    pass


@dataclass(frozen=True)
class NewIntentRequested:
    order_id: int


@dataclass(frozen=True)
class SubmissionSucceeded:
    data: Any = None


@dataclass(frozen=True)
class WentBack:
    pass


@dataclass(frozen=True)
class Reset:
    pass


# =============================================================================
# STATE
# =============================================================================

@dataclass(frozen=True)
class CheckoutState:
    """Snapshot of one operator's checkout."""

    step: CheckoutStep = CheckoutStep.FORM_ENTRY
    draft: Optional[OrderDraft] = None
    price: Optional[CalculatedOrderPrice] = None
    order_id: Optional[int] = None
    payment_bypassed: bool = False

    pricing_error: Optional[str] = None
    pricing_error_type: Optional[str] = None
    pricing_issues: Tuple[Dict[str, Any], ...] = ()

    submission_error: Optional[ActionResult] = None
    retry_count: int = 0
    original_device_ids: Tuple[str, ...] = ()
    submission_result: Any = None

    @property
    def device_ids(self) -> Tuple[str, ...]:
        return tuple(self.draft.device_ids) if self.draft else ()

    @property
    def resubmit(self) -> bool:
        """Device IDs or device count changed since the order was first priced."""
        return needs_resubmit(self.original_device_ids, self.device_ids)

    @property
    def pricing_messages(self):
        return pricing_issue_messages(self.pricing_issues)

    @property
    def pricing_retryable(self) -> bool:
        return (
            self.pricing_error is not None
            and self.pricing_error_type != ErrorType.VALIDATION.value
        )

    @property
    def submission_message(self) -> Optional[str]:
        if self.submission_error is None:
            return None
        return submission_error_message(self.submission_error)

    @property
    def device_count_matches_price(self) -> bool:
        if self.price is None or self.draft is None:
            return False
        return len(self.draft.devices) == self.price.item_count


# =============================================================================
# REDUCER
# =============================================================================

def _draft_submitted(state: CheckoutState, event: DraftSubmitted) -> CheckoutState:
    return replace(
        state,
        step=CheckoutStep.PRICE_REVIEW,
        draft=event.draft,
        price=None,
        pricing_error=None,
        pricing_error_type=None,
        pricing_issues=(),
    )


def _price_calculated(state: CheckoutState, event: PriceCalculated) -> CheckoutState:
    return replace(
        state,
        price=event.price,
        pricing_error=None,
        pricing_error_type=None,
        pricing_issues=(),
    )


def _pricing_failed(state: CheckoutState, event: PricingFailed) -> CheckoutState:
    return replace(
        state,
        price=None,
        pricing_error=event.error,
        pricing_error_type=event.error_type,
        pricing_issues=tuple(event.issues),
    )


def _price_accepted(state: CheckoutState, event: PriceAccepted) -> CheckoutState:
    if state.price is None:
        raise InvalidTransitionError(state.step.value, "PriceAccepted (no price)")
    return replace(
        state,
        step=CheckoutStep.PAYMENT,
        original_device_ids=state.device_ids,
    )


def _order_intent_created(state: CheckoutState, event: OrderIntentCreated) -> CheckoutState:
    return replace(state, order_id=event.order_id)


def _enter_submission(state: CheckoutState, bypassed: bool) -> CheckoutState:
    return replace(
        state,
        step=CheckoutStep.SUBMISSION,
        payment_bypassed=bypassed,
        submission_error=None,
        retry_count=0,
    )


def _payment_completed(state: CheckoutState, event: PaymentCompleted) -> CheckoutState:
    return _enter_submission(state, bypassed=False)


def _payment_bypassed(state: CheckoutState, event: PaymentBypassed) -> CheckoutState:
    if state.order_id is None:
        raise InvalidTransitionError(state.step.value, "PaymentBypassed (no order ID)")
    return _enter_submission(state, bypassed=True)


def _devices_edited(state: CheckoutState, event: DevicesEdited) -> CheckoutState:
    return replace(state, draft=event.draft)


def _submission_failed(state: CheckoutState, event: SubmissionFailed) -> CheckoutState:
    return replace(state, submission_error=event.result)


def _submission_retried(state: CheckoutState, event: SubmissionRetried) -> CheckoutState:
    return replace(state, retry_count=state.retry_count + 1, submission_error=None)


def _new_intent_requested(state: CheckoutState, event: NewIntentRequested) -> CheckoutState:
    return replace(
        state,
        order_id=event.order_id,
        submission_error=None,
        retry_count=0,
    )


def _submission_succeeded(state: CheckoutState, event: SubmissionSucceeded) -> CheckoutState:
    return replace(
        state,
        step=CheckoutStep.DONE,
        submission_error=None,
        submission_result=event.data,
    )


_PREVIOUS_STEP = {
    CheckoutStep.PRICE_REVIEW: CheckoutStep.FORM_ENTRY,
    CheckoutStep.PAYMENT: CheckoutStep.PRICE_REVIEW,
    CheckoutStep.SUBMISSION: CheckoutStep.PAYMENT,
}


def _went_back(state: CheckoutState, event: WentBack) -> CheckoutState:
    return replace(state, step=_PREVIOUS_STEP[state.step], submission_error=None)


def _reset(state: CheckoutState, event: Reset) -> CheckoutState:
    return CheckoutState()


_S = CheckoutStep

# event type -> (steps that accept it, handler)
_TRANSITIONS: Dict[Type, Tuple[frozenset, Callable]] = {
    DraftSubmitted: (frozenset({_S.FORM_ENTRY, _S.PRICE_REVIEW}), _draft_submitted),
    PriceCalculated: (frozenset({_S.PRICE_REVIEW}), _price_calculated),
    PricingFailed: (frozenset({_S.PRICE_REVIEW}), _pricing_failed),
    PriceAccepted: (frozenset({_S.PRICE_REVIEW}), _price_accepted),
    OrderIntentCreated: (frozenset({_S.PRICE_REVIEW, _S.PAYMENT, _S.SUBMISSION}), _order_intent_created),
    PaymentCompleted: (frozenset({_S.PAYMENT}), _payment_completed),
    PaymentBypassed: (frozenset({_S.PAYMENT}), _payment_bypassed),
    DevicesEdited: (frozenset({_S.SUBMISSION}), _devices_edited),
    SubmissionFailed: (frozenset({_S.SUBMISSION}), _submission_failed),
    SubmissionRetried: (frozenset({_S.SUBMISSION}), _submission_retried),
    NewIntentRequested: (frozenset({_S.SUBMISSION}), _new_intent_requested),
    SubmissionSucceeded: (frozenset({_S.SUBMISSION}), _submission_succeeded),
    WentBack: (frozenset(_PREVIOUS_STEP), _went_back),
    Reset: (frozenset(_S), _reset),
}


def accepts(state: CheckoutState, event_type: Type) -> bool:
    """Whether ``event_type`` is allowed in the state's current step."""
    allowed, _ = _TRANSITIONS[event_type]
    return state.step in allowed


def transition(state: CheckoutState, event: Any) -> CheckoutState:
    """
    Apply one event and return the new state.

    Raises:
        InvalidTransitionError: the current step does not accept the event
    """
    try:
        allowed, handler = _TRANSITIONS[type(event)]
    except KeyError:
        raise InvalidTransitionError(state.step.value, type(event).__name__)

    if state.step not in allowed:
        raise InvalidTransitionError(state.step.value, type(event).__name__)

    return handler(state, event)
