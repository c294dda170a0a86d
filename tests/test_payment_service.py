"""
Tests for PaymentService: creation, the poll loop and retries.

poll() is called directly on the test thread where possible; retry() always
spawns a poll thread, which is joined through is_active().
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import make_draft
from models.action_result import ActionResult
from models.payment import PaymentStatus
from services.payment_service import (
    POLL_TIMEOUT_RESULT_MESSAGE,
    POLL_TIMEOUT_STATE_MESSAGE,
    PaymentService,
)


KEY = "checkout-key-1"

CREATED = ActionResult.ok({
    "invoiceId": "in_1",
    "paymentIntentId": "pi_1",
    "clientSecret": "secret",
    "totalAmount": 100.0,
    "currency": "eur",
})


# Fixtures

@pytest.fixture
def payments(cash_desk):
    cash_desk.create_terminal_payment.return_value = CREATED
    service = PaymentService(cash_desk, poll_interval_seconds=0.0, max_poll_attempts=3, max_retries=1)
    yield service
    service.shutdown(timeout_per_thread=1.0)


def created(payments):
    """Payment created on the terminal, ready to poll."""
    payments.create_payment(KEY, make_draft().freeze(), 42, "tmr_1")
    return payments


def status(value, **extra):
    return ActionResult.ok({"status": value, **extra})


def wait_idle(payments, timeout=2.0):
    deadline = time.monotonic() + timeout
    while payments.is_active(KEY) and time.monotonic() < deadline:
        time.sleep(0.01)


# Creation

class TestCreatePayment:

    def test_records_identifiers(self, payments, cash_desk):
        created(payments)

        state = payments.get_state(KEY)
        assert state.status == PaymentStatus.PROCESSING
        assert state.invoice_id == "in_1"
        assert state.total_amount == 100.0
        payload = cash_desk.create_terminal_payment.call_args[0][0]
        assert payload["terminalId"] == "tmr_1"
        assert payload["orderId"] == 42
        assert payload["devices"][0] == {"productId": "p1", "consumerCategoryId": "adult", "insurance": False}

    def test_creation_failure(self, payments, cash_desk):
        cash_desk.create_terminal_payment.return_value = ActionResult.failure(
            "Terminal not found", "terminal_error",
        )
        created(payments)

        state = payments.get_state(KEY)
        assert state.status == PaymentStatus.FAILED
        assert state.error_type == "terminal_error"
        assert state.can_retry is True

    def test_unknown_key_is_idle(self, payments):
        assert payments.get_state("nope").status == PaymentStatus.IDLE


# Polling

class TestPoll:
    """Poll loop outcomes."""

    def test_success_after_transient_errors(self, payments, cash_desk):
        cash_desk.check_payment_status.side_effect = [
            status("processing"),
            ActionResult.failure("Bad gateway"),
            status("succeeded"),
        ]
        on_succeeded = MagicMock()

        result = created(payments).poll(KEY, on_succeeded)

        assert result.success is True
        on_succeeded.assert_called_once_with()
        state = payments.get_state(KEY)
        assert state.status == PaymentStatus.SUCCEEDED
        assert state.poll_attempts == 2

    def test_initial_check_can_finish(self, payments, cash_desk):
        cash_desk.check_payment_status.return_value = status("succeeded")

        created(payments).poll(KEY)

        assert cash_desk.check_payment_status.call_count == 1
        assert payments.get_state(KEY).poll_attempts == 0

    def test_declined_uses_provider_message(self, payments, cash_desk):
        cash_desk.check_payment_status.return_value = status("failed", errorMessage="Card declined")

        result = created(payments).poll(KEY)

        assert result.error == "Card declined"
        assert payments.get_state(KEY).status == PaymentStatus.FAILED

    def test_canceled_without_message(self, payments, cash_desk):
        cash_desk.check_payment_status.return_value = status("canceled")

        result = created(payments).poll(KEY)

        assert result.error == "Payment canceled"
        assert payments.get_state(KEY).status == PaymentStatus.CANCELED

    def test_attempts_exhausted(self, payments, cash_desk):
        cash_desk.check_payment_status.return_value = status("processing")

        result = created(payments).poll(KEY)

        assert result.error == POLL_TIMEOUT_RESULT_MESSAGE
        assert result.error_type == "timeout"
        state = payments.get_state(KEY)
        assert state.status == PaymentStatus.TIMEOUT
        assert state.error == POLL_TIMEOUT_STATE_MESSAGE
        assert state.poll_attempts == 3
        assert cash_desk.check_payment_status.call_count == 4

    def test_exceptions_in_check_keep_polling(self, payments, cash_desk):
        cash_desk.check_payment_status.side_effect = [RuntimeError("boom"), status("succeeded")]

        result = created(payments).poll(KEY)

        assert result.success is True

    def test_cancel_stops_the_loop(self, payments, cash_desk):
        def check(*args, **kwargs):
            payments.cancel(KEY)
            return status("processing")

        cash_desk.check_payment_status.side_effect = check

        result = created(payments).poll(KEY)

        assert result.error == "Polling was cancelled"
        assert result.error_type == "aborted"
        assert payments.get_state(KEY).status == PaymentStatus.CANCELED

    def test_second_poll_is_rejected_while_running(self, payments, cash_desk):
        nested = []

        def check(*args, **kwargs):
            if not nested:
                nested.append(payments.poll(KEY))
            return status("succeeded")

        cash_desk.check_payment_status.side_effect = check

        created(payments).poll(KEY)

        assert nested[0].error == "Polling already in progress"

    def test_nothing_to_poll(self, payments):
        result = payments.poll("unknown")

        assert result.error == "No payment to poll"


# Retry

class TestRetry:

    def test_retry_resumes_polling(self, payments, cash_desk):
        cash_desk.check_payment_status.side_effect = [
            status("failed", errorMessage="Card declined"),
            status("succeeded"),
        ]
        cash_desk.retry_terminal_payment.return_value = ActionResult.ok({
            "paymentIntentId": "pi_2", "invoiceId": "in_1", "remainingAmountCents": 10000,
        })
        on_succeeded = MagicMock()
        created(payments).poll(KEY)

        result = payments.retry(KEY, on_succeeded)
        wait_idle(payments)

        assert result.success is True
        cash_desk.retry_terminal_payment.assert_called_once_with(
            "tmr_1", invoice_id="in_1", order_id=42, resort_id=1,
        )
        state = payments.get_state(KEY)
        assert state.status == PaymentStatus.SUCCEEDED
        assert state.payment_intent_id == "pi_2"
        assert state.retry_count == 1
        on_succeeded.assert_called_once_with()

    def test_retry_limit(self, payments, cash_desk):
        cash_desk.check_payment_status.return_value = status("failed")
        cash_desk.retry_terminal_payment.return_value = ActionResult.ok({})
        created(payments).poll(KEY)
        payments.retry(KEY)
        wait_idle(payments)

        result = payments.retry(KEY)

        assert result.error == "Maximum retry attempts (1) reached"
        assert cash_desk.retry_terminal_payment.call_count == 1

    def test_retry_not_allowed_after_success(self, payments, cash_desk):
        cash_desk.check_payment_status.return_value = status("succeeded")
        created(payments).poll(KEY)

        result = payments.retry(KEY)

        assert result.is_validation_error
        cash_desk.retry_terminal_payment.assert_not_called()

    def test_failed_retry_marks_payment_failed(self, payments, cash_desk):
        cash_desk.check_payment_status.return_value = status("failed")
        cash_desk.retry_terminal_payment.return_value = ActionResult.failure(
            "Reader is currently busy", "terminal_error",
        )
        created(payments).poll(KEY)

        result = payments.retry(KEY)

        assert result.error_type == "terminal_error"
        assert payments.get_state(KEY).status == PaymentStatus.FAILED


# Threads

class TestThreads:

    def test_start_runs_create_and_poll(self, payments, cash_desk):
        cash_desk.check_payment_status.return_value = status("succeeded")
        on_succeeded = MagicMock()

        result = payments.start(KEY, make_draft().freeze(), 42, "tmr_1", on_succeeded)
        wait_idle(payments)

        assert result.success is True
        assert payments.get_state(KEY).status == PaymentStatus.SUCCEEDED
        on_succeeded.assert_called_once_with()

    def test_cancel_during_creation_is_kept(self, payments, cash_desk):
        release = threading.Event()
        creating = threading.Event()

        def create(*args, **kwargs):
            creating.set()
            release.wait(2.0)
            return CREATED

        cash_desk.create_terminal_payment.side_effect = create
        cash_desk.check_payment_status.return_value = status("processing")

        payments.start(KEY, make_draft().freeze(), 42, "tmr_1")
        assert creating.wait(2.0)
        payments.cancel(KEY)
        release.set()
        wait_idle(payments)

        state = payments.get_state(KEY)
        assert state.status == PaymentStatus.CANCELED
        assert state.error == "Polling was cancelled"
        cash_desk.check_payment_status.assert_not_called()

    def test_retry_after_cancel_polls_again(self, payments, cash_desk):
        checks = []

        def check(*args, **kwargs):
            checks.append(1)
            if len(checks) == 1:
                payments.cancel(KEY)
                return status("processing")
            return status("succeeded")

        cash_desk.check_payment_status.side_effect = check
        cash_desk.retry_terminal_payment.return_value = ActionResult.ok({})
        first = created(payments).poll(KEY)

        payments.retry(KEY)
        wait_idle(payments)

        assert first.error == "Polling was cancelled"
        assert payments.get_state(KEY).status == PaymentStatus.SUCCEEDED

    def test_discard_forgets_state(self, payments, cash_desk):
        cash_desk.check_payment_status.return_value = status("succeeded")
        created(payments).poll(KEY)

        payments.discard(KEY)

        assert payments.get_state(KEY).status == PaymentStatus.IDLE
