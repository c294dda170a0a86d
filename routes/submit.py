"""
Order submission routes (checkout step 4).

Posts the order to the ticketing systems. On failure the operator can
retry, edit device IDs (sets resubmit) or create a new order intent.
"""

import bleach
from flask import (
    Blueprint,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)

from logging_config import get_logger
from models.checkout import CheckoutStep
from routes.checkout_session import current_saga, redirect_to_step


# Module logger
logger = get_logger(__name__)

submit_bp = Blueprint("submit", __name__)


def _submission_saga():
    saga = current_saga()
    if saga is None or saga.state.draft is None:
        flash("No checkout in progress.", "warning")
        return None, redirect(url_for("order_form.order_form"))
    if saga.step != CheckoutStep.SUBMISSION:
        return None, redirect_to_step(saga)
    return saga, None


@submit_bp.route("/checkout/submit", methods=["GET"])
def submission():
    """Display the submission page with the last error, if any."""
    saga, response = _submission_saga()
    if saga is None:
        return response
    return render_template("submit.html", state=saga.state)


@submit_bp.route("/checkout/submit", methods=["POST"])
def submit():
    """
    Submit the order.

    Resubmit is set automatically when the device list changed since the
    price was accepted.
    """
    saga, response = _submission_saga()
    if saga is None:
        return response

    result = saga.submit()
    if result.success:
        logger.info(f"Order {saga.state.order_id} submitted")
        return redirect(url_for("confirmation.confirmation"))

    flash(saga.state.submission_message, "error")
    return redirect(url_for("submit.submission"))


@submit_bp.route("/checkout/submit/retry", methods=["POST"])
def retry():
    saga, response = _submission_saga()
    if saga is None:
        return response

    result = saga.retry_submission()
    if result.success:
        return redirect(url_for("confirmation.confirmation"))
    flash(saga.state.submission_message, "error")
    return redirect(url_for("submit.submission"))


@submit_bp.route("/checkout/submit/new-intent", methods=["POST"])
def new_intent():
    """Discard the current order ID, reserve a new one and submit again."""
    saga, response = _submission_saga()
    if saga is None:
        return response

    result = saga.create_new_intent_and_resubmit()
    if result.success:
        return redirect(url_for("confirmation.confirmation"))
    flash(saga.state.submission_message, "error")
    return redirect(url_for("submit.submission"))


@submit_bp.route("/checkout/submit/devices", methods=["POST"])
def edit_devices():
    """Replace device IDs before resubmitting."""
    saga, response = _submission_saga()
    if saga is None:
        return response

    device_ids = [
        bleach.clean(value.strip(), tags=[], strip=True)
        for value in request.form.getlist("device_id")
        if value.strip()
    ]
    if not device_ids:
        flash("At least one device ID is required.", "error")
        return redirect(url_for("submit.submission"))

    state = saga.edit_devices(device_ids)
    if state.resubmit:
        flash("Device list changed: the order will be resubmitted.", "info")
    return redirect(url_for("submit.submission"))
