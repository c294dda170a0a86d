"""
Terminal payment driver with thread-per-payment polling.

Each checkout saga gets at most one payment poll thread. The thread creates
the payment on the card reader, then polls its status until it is final.
Routes read progress through ``get_state`` (a copy, taken under the lock).

Poll algorithm:
    1. Initial status check (a payment that is already paid finishes here)
    2. Loop: wait interval, poll_attempts += 1, check status
       - API errors and exceptions are transient: keep polling
       - succeeded         -> SUCCEEDED
       - failed / canceled -> FAILED / CANCELED with the provider message
    3. Attempts exhausted  -> TIMEOUT ("Payment verification timed out")

Guards:
    - A second poll for the same key while one runs is rejected
    - cancel(key) stops the loop at the next wait ("Polling was cancelled")
    - retry(key) is capped at max_retries per payment

Thread Safety:
    - PaymentState objects are only mutated under self._lock
    - FrozenOrderDraft is immutable - safe to pass to the poll thread
    - on_succeeded is called from the poll thread, outside the lock

Usage:
    payments = PaymentService(cash_desk, poll_interval_seconds=2, max_poll_attempts=60)
    payments.start(saga_id, draft.freeze(), order_id, terminal_id, on_succeeded=saga.payment_succeeded)
    state = payments.get_state(saga_id)
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, Optional, Set

from logging_config import get_logger, get_saga_logger, set_thread_name
from models.action_result import ActionResult, ErrorType
from models.order_draft import FrozenOrderDraft
from models.payment import PaymentState, PaymentStatus
from services.cash_desk_service import CashDeskService


logger = get_logger(__name__)

POLL_TIMEOUT_STATE_MESSAGE = "Payment verification timed out. Please check manually."
POLL_TIMEOUT_RESULT_MESSAGE = "Payment verification timed out"


class PaymentService:
    """
    Creates terminal payments and polls them to a final status.

    Attributes:
        poll_interval_seconds: Wait between status checks (default 2)
        max_poll_attempts: Checks after the initial one (default 60)
        max_retries: Manual retries allowed per payment (default 3)
    """

    def __init__(
        self,
        cash_desk: CashDeskService,
        poll_interval_seconds: float = 2.0,
        max_poll_attempts: int = 60,
        max_retries: int = 3,
    ):
        self._cash_desk = cash_desk
        self.poll_interval_seconds = poll_interval_seconds
        self.max_poll_attempts = max_poll_attempts
        self.max_retries = max_retries

        self._lock = threading.Lock()
        self._states: Dict[str, PaymentState] = {}
        self._polling: Set[str] = set()
        self._cancel_events: Dict[str, threading.Event] = {}
        self._active_threads: Dict[str, threading.Thread] = {}

        logger.info(
            f"PaymentService initialized (interval={poll_interval_seconds}s, "
            f"attempts={max_poll_attempts}, retries={max_retries})"
        )

    # =========================================================================
    # STATE ACCESS
    # =========================================================================

    def get_state(self, key: str) -> PaymentState:
        """Copy of the current state; IDLE if no payment exists for key."""
        with self._lock:
            state = self._states.get(key)
            return state.copy() if state else PaymentState(max_poll_attempts=self.max_poll_attempts)

    def is_active(self, key: str) -> bool:
        """True while a payment thread for key is running."""
        with self._lock:
            thread = self._active_threads.get(key)
            return thread is not None and thread.is_alive()

    def _update(self, key: str, **changes) -> PaymentState:
        with self._lock:
            state = self._states.setdefault(key, PaymentState(max_poll_attempts=self.max_poll_attempts))
            for name, value in changes.items():
                setattr(state, name, value)
            state.touch()
            return state.copy()

    def discard(self, key: str) -> None:
        """Cancel polling and forget the payment (saga reset or replaced)."""
        self.cancel(key)
        with self._lock:
            self._states.pop(key, None)
            self._cancel_events.pop(key, None)

    # =========================================================================
    # THREAD MANAGEMENT
    # =========================================================================

    def start(
        self,
        key: str,
        draft: FrozenOrderDraft,
        order_id: int,
        terminal_id: str,
        on_succeeded: Optional[Callable[[], None]] = None,
    ) -> ActionResult:
        """
        Start a payment thread: create the terminal payment, then poll it.

        Returns immediately. Rejected if a payment thread for key is running.
        """
        with self._lock:
            thread = self._active_threads.get(key)
            if thread is not None and thread.is_alive():
                return ActionResult.failure("Polling already in progress")
            self._states[key] = PaymentState(
                order_id=order_id,
                resort_id=draft.resort_id,
                terminal_id=terminal_id,
                max_poll_attempts=self.max_poll_attempts,
            )
            self._cancel_events[key] = threading.Event()

            thread = threading.Thread(
                target=self._payment_thread_main,
                args=(key, draft, order_id, terminal_id, on_succeeded),
                name=f"Payment-{key[:8]}",
                daemon=True,
            )
            self._active_threads[key] = thread

        logger.info(f"Starting terminal payment for order {order_id} on {terminal_id}")
        thread.start()
        return ActionResult.ok()

    def _spawn_poll(self, key: str, on_succeeded: Optional[Callable[[], None]]) -> None:
        with self._lock:
            thread = threading.Thread(
                target=self._poll_thread_main,
                args=(key, on_succeeded),
                name=f"Payment-{key[:8]}",
                daemon=True,
            )
            self._active_threads[key] = thread
        thread.start()

    def _payment_thread_main(
        self,
        key: str,
        draft: FrozenOrderDraft,
        order_id: int,
        terminal_id: str,
        on_succeeded: Optional[Callable[[], None]],
    ) -> None:
        set_thread_name(f"Payment-{key[:8]}")
        saga_logger = get_saga_logger(key)
        try:
            created = self.create_payment(key, draft, order_id, terminal_id)
            if not created.success:
                return
            with self._lock:
                cancel_event = self._cancel_events.get(key)
            if cancel_event is not None and cancel_event.is_set():
                self._update(key, status=PaymentStatus.CANCELED,
                             error="Polling was cancelled", error_type=ErrorType.ABORTED.value)
                saga_logger.info("Payment cancelled while it was being created")
                return
            self.poll(key, on_succeeded)
        except Exception as e:
            saga_logger.error(f"Payment thread failed: {e}", exc_info=True)
            self._update(key, status=PaymentStatus.FAILED, error=str(e),
                         error_type=ErrorType.UNKNOWN.value)
        finally:
            with self._lock:
                if self._active_threads.get(key) is threading.current_thread():
                    self._active_threads.pop(key, None)
            saga_logger.info("Payment thread exiting")

    def _poll_thread_main(self, key: str, on_succeeded: Optional[Callable[[], None]]) -> None:
        set_thread_name(f"Payment-{key[:8]}")
        saga_logger = get_saga_logger(key)
        try:
            self.poll(key, on_succeeded)
        except Exception as e:
            saga_logger.error(f"Poll thread failed: {e}", exc_info=True)
            self._update(key, status=PaymentStatus.FAILED, error=str(e),
                         error_type=ErrorType.UNKNOWN.value)
        finally:
            with self._lock:
                if self._active_threads.get(key) is threading.current_thread():
                    self._active_threads.pop(key, None)

    def shutdown(self, timeout_per_thread: float = 5.0) -> None:
        """
        Cancel all polls and wait for payment threads to exit.

        Call this during application shutdown.
        """
        with self._lock:
            active = list(self._active_threads.items())
            for event in self._cancel_events.values():
                event.set()

        if not active:
            logger.info("No active payment threads to wait for")
            return

        logger.info(f"Waiting for {len(active)} payment threads to stop...")
        for key, thread in active:
            if thread.is_alive():
                thread.join(timeout=timeout_per_thread)
                if thread.is_alive():
                    logger.warning(f"Payment thread {key[:8]} did not stop in time")
        logger.info("Payment service shutdown complete")

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def create_payment(
        self,
        key: str,
        draft: FrozenOrderDraft,
        order_id: int,
        terminal_id: str,
    ) -> ActionResult:
        """Create the payment on the card reader and record its identifiers."""
        self._update(key, status=PaymentStatus.CREATING, error=None, error_type=None,
                     order_id=order_id, resort_id=draft.resort_id, terminal_id=terminal_id)

        result = self._cash_desk.create_terminal_payment(
            draft.terminal_payment_payload(order_id, terminal_id)
        )
        if not result.success:
            self._update(key, status=PaymentStatus.FAILED, error=result.error,
                         error_type=result.error_type)
            return result

        data = result.data or {}
        self._update(
            key,
            status=PaymentStatus.PROCESSING,
            invoice_id=data.get("invoiceId"),
            payment_intent_id=data.get("paymentIntentId"),
            client_secret=data.get("clientSecret"),
            total_amount=data.get("totalAmount"),
            currency=data.get("currency"),
        )
        get_saga_logger(key).info(
            f"Terminal payment created: invoice={data.get('invoiceId')} "
            f"amount={data.get('totalAmount')} {data.get('currency')}"
        )
        return result

    def _check(self, state: PaymentState) -> Optional[Dict]:
        """One status check. None means "no usable answer, keep polling"."""
        try:
            result = self._cash_desk.check_payment_status(
                state.resort_id, invoice_id=state.invoice_id, order_id=state.order_id,
            )
        except Exception as e:
            logger.warning(f"Payment status check raised: {e}")
            return None
        if not result.success:
            logger.warning(f"Payment status check failed [{result.error_type}]: {result.error}")
            return None
        return result.data or {}

    def _finish(
        self,
        key: str,
        body: Dict,
        on_succeeded: Optional[Callable[[], None]],
    ) -> Optional[ActionResult]:
        """Apply a status body; returns a result when the status is final."""
        status = body.get("status")
        if status == "succeeded":
            self._update(key, status=PaymentStatus.SUCCEEDED, error=None, error_type=None)
            get_saga_logger(key).info("Payment succeeded")
            if on_succeeded is not None:
                on_succeeded()
            return ActionResult.ok(body)
        if status in ("failed", "canceled"):
            message = body.get("errorMessage") or f"Payment {status}"
            final = PaymentStatus.FAILED if status == "failed" else PaymentStatus.CANCELED
            self._update(key, status=final, error=message, error_type=ErrorType.UNKNOWN.value)
            get_saga_logger(key).warning(f"Payment {status}: {message}")
            return ActionResult.failure(message)
        return None

    def poll(self, key: str, on_succeeded: Optional[Callable[[], None]] = None) -> ActionResult:
        """
        Poll until the payment is final, cancelled or attempts run out.

        Blocking; runs on the payment thread.
        """
        with self._lock:
            if key in self._polling:
                return ActionResult.failure("Polling already in progress")
            state = self._states.get(key)
            if state is None or (not state.invoice_id and not state.order_id):
                return ActionResult.failure("No payment to poll", ErrorType.VALIDATION.value)
            self._polling.add(key)
            cancel_event = self._cancel_events.setdefault(key, threading.Event())
            state.status = PaymentStatus.POLLING
            state.poll_attempts = 0
            state.touch()
            snapshot = state.copy()

        try:
            body = self._check(snapshot)
            if body is not None:
                done = self._finish(key, body, on_succeeded)
                if done is not None:
                    return done

            attempts = 0
            while attempts < self.max_poll_attempts:
                if cancel_event.wait(self.poll_interval_seconds):
                    self._update(key, status=PaymentStatus.CANCELED,
                                 error="Polling was cancelled", error_type=ErrorType.ABORTED.value)
                    return ActionResult.failure("Polling was cancelled", ErrorType.ABORTED.value)

                attempts += 1
                self._update(key, poll_attempts=attempts)

                body = self._check(snapshot)
                if body is None:
                    continue
                done = self._finish(key, body, on_succeeded)
                if done is not None:
                    return done

            self._update(key, status=PaymentStatus.TIMEOUT, error=POLL_TIMEOUT_STATE_MESSAGE,
                         error_type=ErrorType.TIMEOUT.value)
            get_saga_logger(key).warning(f"Payment not final after {attempts} attempts")
            return ActionResult.failure(POLL_TIMEOUT_RESULT_MESSAGE, ErrorType.TIMEOUT.value)

        finally:
            with self._lock:
                self._polling.discard(key)

    def cancel(self, key: str) -> None:
        with self._lock:
            event = self._cancel_events.get(key)
        if event is not None:
            event.set()

    def retry(self, key: str, on_succeeded: Optional[Callable[[], None]] = None) -> ActionResult:
        """
        Re-send the payment to the terminal and resume polling.

        Allowed after FAILED / TIMEOUT / CANCELED, at most max_retries times.
        """
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return ActionResult.failure("No payment to retry", ErrorType.VALIDATION.value)
            if key in self._polling:
                return ActionResult.failure("Polling already in progress")
            if not state.can_retry:
                return ActionResult.failure(
                    f"Payment cannot be retried while {state.status.value}",
                    ErrorType.VALIDATION.value,
                )
            if state.retry_count >= self.max_retries:
                return ActionResult.failure(
                    f"Maximum retry attempts ({self.max_retries}) reached",
                    ErrorType.VALIDATION.value,
                )
            state.retry_count += 1
            state.status = PaymentStatus.PROCESSING
            state.error = None
            state.error_type = None
            state.touch()
            self._cancel_events[key] = threading.Event()
            snapshot = state.copy()

        result = self._cash_desk.retry_terminal_payment(
            snapshot.terminal_id,
            invoice_id=snapshot.invoice_id,
            order_id=snapshot.order_id,
            resort_id=snapshot.resort_id,
        )
        if not result.success:
            self._update(key, status=PaymentStatus.FAILED, error=result.error,
                         error_type=result.error_type)
            return result

        data = result.data or {}
        self._update(
            key,
            invoice_id=data.get("invoiceId") or snapshot.invoice_id,
            payment_intent_id=data.get("paymentIntentId") or snapshot.payment_intent_id,
            client_secret=data.get("clientSecret") or snapshot.client_secret,
        )
        logger.info(f"Payment retry {snapshot.retry_count}/{self.max_retries} sent to {snapshot.terminal_id}")
        self._spawn_poll(key, on_succeeded)
        return result
