"""
Terminal payment routes (checkout step 3).

The payment page reserves the order ID on entry, then polls
/api/checkout/payment-status while the payment thread waits for the card.
"""

from flask import (
    Blueprint,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)

from core.exceptions import InvalidTransitionError
from logging_config import get_logger
from models.checkout import CheckoutStep
from routes.checkout_session import current_saga, redirect_to_step


# Module logger
logger = get_logger(__name__)

payment_bp = Blueprint("payment", __name__)


def _payment_saga():
    saga = current_saga()
    if saga is None or saga.state.draft is None:
        flash("No checkout in progress.", "warning")
        return None, redirect(url_for("order_form.order_form"))
    if saga.step != CheckoutStep.PAYMENT:
        return None, redirect_to_step(saga)
    return saga, None


@payment_bp.route("/checkout/payment", methods=["GET"])
def payment():
    """
    Display the payment step.

    Ensures an order intent exists for the current draft (reused when the
    order data has not changed). A saga that came back here after a
    successful payment goes straight on to submission.
    """
    saga, response = _payment_saga()
    if saga is None:
        return response

    if saga.resume_paid_payment():
        flash("Payment already completed for this order.", "info")
        return redirect(url_for("submit.submission"))

    result = saga.ensure_order_intent()
    if not result.success:
        flash(f"Could not create order: {result.error}", "error")

    return render_template(
        "payment.html",
        state=saga.state,
        payment=saga.payment,
        terminals=saga.terminals,
        max_retries=saga.max_payment_retries,
    )


@payment_bp.route("/checkout/payment/start", methods=["POST"])
def start():
    """Send the payment to the selected card reader."""
    saga, response = _payment_saga()
    if saga is None:
        return response

    result = saga.start_payment(request.form.get("terminal_id") or None)
    if not result.success:
        flash(result.error, "error")
    return redirect(url_for("payment.payment"))


@payment_bp.route("/checkout/payment/retry", methods=["POST"])
def retry():
    saga, response = _payment_saga()
    if saga is None:
        return response

    result = saga.retry_payment()
    if not result.success:
        flash(result.error, "error")
    return redirect(url_for("payment.payment"))


@payment_bp.route("/checkout/payment/cancel", methods=["POST"])
def cancel():
    saga, response = _payment_saga()
    if saga is None:
        return response
    saga.cancel_payment()
    flash("Payment polling cancelled.", "info")
    return redirect(url_for("payment.payment"))


@payment_bp.route("/checkout/payment/bypass", methods=["POST"])
def bypass():
    """Skip the terminal payment (paid by other means)."""
    saga, response = _payment_saga()
    if saga is None:
        return response
    try:
        saga.bypass_payment()
    except InvalidTransitionError as e:
        logger.warning(f"Bypass rejected: {e}")
        flash("Cannot bypass payment without an order ID.", "error")
        return redirect(url_for("payment.payment"))
    return redirect(url_for("submit.submission"))
