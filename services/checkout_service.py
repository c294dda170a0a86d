"""
Checkout saga: runs the order-creation wizard for one operator session.

ARCHITECTURE:
    - CheckoutState + transition() (models.checkout) decide WHAT happens
    - CheckoutSaga performs the remote calls and feeds outcomes back as events
    - CheckoutRegistry maps the saga ID kept in the Flask session to its saga

Each saga owns:
    - a threading.Lock guarding its state and order-intent tracker
    - an abort threading.Event passed to in-flight calls
    - its terminal payment, held by PaymentService under the saga ID

Steps inside one saga are strictly sequential. The only background thread
is the payment poller; it advances the saga through ``_on_payment_succeeded``
which applies PaymentCompleted at most once.

Usage:
    registry = CheckoutRegistry(cash_desk, payments, repository)
    saga = registry.get_or_create(session.get("checkout_id"))
    saga.submit_draft(draft)
    saga.calculate_price()
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.exceptions import InvalidTransitionError
from logging_config import get_logger, get_saga_logger
from models.action_result import ActionResult, ErrorType
from models.checkout import (
    CheckoutState,
    CheckoutStep,
    DevicesEdited,
    DraftSubmitted,
    NewIntentRequested,
    OrderIntentCreated,
    PaymentBypassed,
    PaymentCompleted,
    PriceAccepted,
    PriceCalculated,
    PricingFailed,
    Reset,
    SubmissionFailed,
    SubmissionRetried,
    SubmissionSucceeded,
    WentBack,
    transition,
)
from models.order_draft import OrderDraft
from models.payment import PaymentState, PaymentStatus
from services.cash_desk_service import CashDeskService
from services.order_repository import OrderRepository
from services.payment_service import PaymentService


logger = get_logger(__name__)


@dataclass
class OrderIntentTracker:
    """
    Guards order-intent creation for one saga.

    The same logical order (same hash) never gets a second order ID.
    """

    is_creating: bool = False
    order_id: Optional[int] = None
    order_data_hash: Optional[str] = None

    def reset(self) -> None:
        self.is_creating = False
        self.order_id = None
        self.order_data_hash = None


class CheckoutSaga:
    """
    One operator's order-creation wizard.
    """

    def __init__(
        self,
        saga_id: str,
        cash_desk: CashDeskService,
        payment_service: PaymentService,
        order_repository: OrderRepository,
    ):
        self.saga_id = saga_id
        self._cash_desk = cash_desk
        self._payments = payment_service
        self._repository = order_repository

        self._lock = threading.RLock()
        self._state = CheckoutState()
        self.abort_event = threading.Event()
        self.tracker = OrderIntentTracker()

        self.catalog: Optional[Dict[str, Any]] = None
        self.terminals: List[Dict[str, Any]] = []

        self._log = get_saga_logger(saga_id)

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> CheckoutState:
        with self._lock:
            return self._state

    @property
    def step(self) -> CheckoutStep:
        return self.state.step

    @property
    def payment(self) -> PaymentState:
        return self._payments.get_state(self.saga_id)

    @property
    def max_payment_retries(self) -> int:
        return self._payments.max_retries

    def apply(self, event: Any) -> CheckoutState:
        """
        Run one event through the reducer.

        Raises:
            InvalidTransitionError: the current step does not accept the event
        """
        with self._lock:
            previous = self._state.step
            self._state = transition(self._state, event)
            if self._state.step != previous:
                self._log.info(f"{previous.value} -> {self._state.step.value} ({type(event).__name__})")
            return self._state

    # =========================================================================
    # FORM ENTRY / PRICE REVIEW
    # =========================================================================

    def load_catalog(self, resort_id: int, start_date: Optional[str] = None) -> ActionResult:
        """Products and card readers for the order form."""
        products = self._cash_desk.get_products(resort_id, start_date)
        if products.success:
            self.catalog = products.data
        readers = self._cash_desk.get_card_readers(resort_id)
        if readers.success:
            data = readers.data
            if isinstance(data, dict):
                data = data.get("readers") or data.get("data") or []
            self.terminals = list(data or [])
        else:
            self.terminals = []
            self._log.warning(f"Card readers unavailable: {readers.error}")
        return products

    def submit_draft(self, draft: OrderDraft) -> CheckoutState:
        self.abort_event.clear()
        return self.apply(DraftSubmitted(draft))

    def calculate_price(self) -> ActionResult:
        """Price the current draft (30 second timeout)."""
        draft = self.state.draft
        if draft is None:
            raise InvalidTransitionError(self.step.value, "calculate_price (no draft)")

        self.abort_event.clear()
        result = self._cash_desk.calculate_order_price(
            draft.pricing_payload(), abort_event=self.abort_event,
        )
        if result.success:
            self.apply(PriceCalculated(result.data))
        else:
            self.apply(PricingFailed(result.error, result.error_type, tuple(result.issues)))
        return result

    def accept_price(self) -> ActionResult:
        """Accept the price, move to Payment and reserve the order ID."""
        self.apply(PriceAccepted())
        return self.ensure_order_intent()

    # =========================================================================
    # ORDER INTENT
    # =========================================================================

    def ensure_order_intent(self) -> ActionResult:
        """
        Reserve an order ID for the current draft, at most once per hash.

        data: {"orderId": int} or {"orderId": None, "pending": True} while
        another request is creating it.
        """
        with self._lock:
            draft = self._state.draft
            if draft is None:
                return ActionResult.failure("No order data", ErrorType.VALIDATION.value)
            data_hash = draft.order_data_hash()

            if self.tracker.order_data_hash != data_hash:
                if self.tracker.order_data_hash is not None:
                    self._log.info("Order data changed, discarding previous order intent")
                    self._payments.discard(self.saga_id)
                self.tracker.reset()
                self.tracker.order_data_hash = data_hash

            if self.tracker.is_creating:
                return ActionResult.ok({"orderId": None, "pending": True})

            if self.tracker.order_id is not None:
                if self._state.order_id != self.tracker.order_id:
                    self._state = transition(self._state, OrderIntentCreated(self.tracker.order_id))
                return ActionResult.ok({"orderId": self.tracker.order_id})

            self.tracker.is_creating = True
            try:
                result = self._cash_desk.create_order_intent(
                    draft.pricing_payload(), abort_event=self.abort_event,
                )
                if not result.success:
                    return result
                order_id = int(result.data["id"])
                self.tracker.order_id = order_id
                self._state = transition(self._state, OrderIntentCreated(order_id))
                self._log.info(f"Order intent {order_id} created")
                return ActionResult.ok({"orderId": order_id})
            finally:
                self.tracker.is_creating = False

    # =========================================================================
    # PAYMENT
    # =========================================================================

    def start_payment(self, terminal_id: Optional[str] = None) -> ActionResult:
        """Send the payment to the card reader and start polling."""
        state = self.state
        if state.step != CheckoutStep.PAYMENT:
            raise InvalidTransitionError(state.step.value, "start_payment")
        if self.resume_paid_payment():
            return ActionResult.failure(
                "Payment already completed for this order", ErrorType.ALREADY_PAID.value,
            )
        if state.order_id is None:
            return ActionResult.failure("Order ID is missing", ErrorType.VALIDATION.value)

        terminal = terminal_id or state.draft.terminal_id
        if not terminal:
            return ActionResult.failure(
                "No terminal selected. Select a card reader or bypass payment.",
                ErrorType.TERMINAL_ERROR.value,
            )

        return self._payments.start(
            self.saga_id,
            state.draft.freeze(),
            state.order_id,
            terminal,
            on_succeeded=self._on_payment_succeeded,
        )

    def resume_paid_payment(self) -> bool:
        """
        Move a saga that is back on Payment straight to Submission when its
        payment already succeeded. Returns True if it did.
        """
        if self.payment.status != PaymentStatus.SUCCEEDED:
            return False
        self._on_payment_succeeded()
        return self.step == CheckoutStep.SUBMISSION

    def _on_payment_succeeded(self) -> None:
        """Called by the poll thread; advances to Submission exactly once."""
        with self._lock:
            if self._state.step != CheckoutStep.PAYMENT:
                self._log.debug("Payment success ignored, saga already past Payment")
                return
            self._state = transition(self._state, PaymentCompleted())
        self._log.info("Payment completed, ready for submission")

    def retry_payment(self) -> ActionResult:
        if self.step != CheckoutStep.PAYMENT:
            raise InvalidTransitionError(self.step.value, "retry_payment")
        return self._payments.retry(self.saga_id, on_succeeded=self._on_payment_succeeded)

    def cancel_payment(self) -> None:
        self._payments.cancel(self.saga_id)

    def bypass_payment(self) -> CheckoutState:
        if self.resume_paid_payment():
            return self.state
        self._payments.cancel(self.saga_id)
        self._log.warning(f"Payment bypassed for order {self.state.order_id}")
        return self.apply(PaymentBypassed())

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(self) -> ActionResult:
        """
        Post the order to submit-order (60 second timeout).

        Resubmit is set automatically when the device list changed since the
        price was accepted. On success the order is re-read from the backend
        and stored locally.
        """
        state = self.state
        if state.step != CheckoutStep.SUBMISSION:
            raise InvalidTransitionError(state.step.value, "submit")

        if state.order_id is None:
            result = ActionResult.failure(
                "Order ID is missing. Create a new order intent.", ErrorType.VALIDATION.value,
            )
            self.apply(SubmissionFailed(result))
            return result

        resubmit = state.resubmit
        if not resubmit and not state.device_count_matches_price:
            result = ActionResult.failure(
                "Device count does not match the calculated price",
                ErrorType.VALIDATION.value,
                issues=[{
                    "path": ["devices"],
                    "message": "Device count does not match the calculated price",
                }],
            )
            self.apply(SubmissionFailed(result))
            return result

        payload = state.draft.submission_payload(
            state.order_id, payment_bypassed=state.payment_bypassed, resubmit=resubmit,
        )
        self.abort_event.clear()
        result = self._cash_desk.submit_order(payload, abort_event=self.abort_event)
        if not result.success:
            self.apply(SubmissionFailed(result))
            return result

        self._store_submitted_order(state.order_id)
        self.apply(SubmissionSucceeded(result.data))
        return result

    def _store_submitted_order(self, order_id: int) -> None:
        retrieved = self._cash_desk.retrieve_order(order_id)
        if not retrieved.success:
            self._log.warning(f"Order {order_id} submitted but retrieval failed: {retrieved.error}")
            self._repository.invalidate()
            return
        data = retrieved.data or {}
        order = data.get("order", data) if isinstance(data, dict) else {}
        if isinstance(order, dict) and order.get("id") is not None:
            self._repository.upsert_from_backend(order)
        else:
            self._repository.invalidate()

    def retry_submission(self) -> ActionResult:
        self.apply(SubmissionRetried())
        return self.submit()

    def create_new_intent_and_resubmit(self) -> ActionResult:
        """Discard the current order ID, reserve a fresh one and submit again."""
        state = self.state
        if state.step != CheckoutStep.SUBMISSION:
            raise InvalidTransitionError(state.step.value, "create_new_intent")

        with self._lock:
            self.tracker.reset()
        result = self._cash_desk.create_order_intent(
            state.draft.pricing_payload(), abort_event=self.abort_event,
        )
        if not result.success:
            self.apply(SubmissionFailed(result))
            return result

        order_id = int(result.data["id"])
        with self._lock:
            self.tracker.order_id = order_id
            self.tracker.order_data_hash = state.draft.order_data_hash()
        self.apply(NewIntentRequested(order_id))
        self._log.info(f"Replaced order intent with {order_id}")
        return self.submit()

    def edit_devices(self, device_ids: List[str]) -> CheckoutState:
        """Change device IDs on the submission page (sets resubmit when they differ)."""
        draft = self.state.draft
        return self.apply(DevicesEdited(draft.with_device_ids(device_ids)))

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    def go_back(self) -> CheckoutState:
        if self.step == CheckoutStep.PAYMENT:
            self._payments.cancel(self.saga_id)
        return self.apply(WentBack())

    def reset(self) -> CheckoutState:
        self.abort_event.set()
        self._payments.discard(self.saga_id)
        with self._lock:
            self.tracker.reset()
        self.catalog = None
        self.terminals = []
        return self.apply(Reset())


class CheckoutRegistry:
    """
    Thread-safe map of saga ID -> CheckoutSaga.
    """

    def __init__(
        self,
        cash_desk: CashDeskService,
        payment_service: PaymentService,
        order_repository: OrderRepository,
    ):
        self._cash_desk = cash_desk
        self._payments = payment_service
        self._repository = order_repository
        self._sagas: Dict[str, CheckoutSaga] = {}
        self._lock = threading.Lock()

    def get(self, saga_id: Optional[str]) -> Optional[CheckoutSaga]:
        if not saga_id:
            return None
        with self._lock:
            return self._sagas.get(saga_id)

    def get_or_create(self, saga_id: Optional[str] = None) -> CheckoutSaga:
        with self._lock:
            saga = self._sagas.get(saga_id) if saga_id else None
            if saga is None:
                saga_id = saga_id or str(uuid.uuid4())
                saga = CheckoutSaga(saga_id, self._cash_desk, self._payments, self._repository)
                self._sagas[saga_id] = saga
                logger.info(f"Checkout saga {saga_id[:8]} created")
            return saga

    def discard(self, saga_id: str) -> None:
        with self._lock:
            saga = self._sagas.pop(saga_id, None)
        if saga is not None:
            saga.abort_event.set()
            self._payments.discard(saga_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sagas)

    def shutdown(self) -> None:
        with self._lock:
            sagas = list(self._sagas.values())
        for saga in sagas:
            saga.abort_event.set()
        logger.info(f"Aborted {len(sagas)} checkout saga(s)")
