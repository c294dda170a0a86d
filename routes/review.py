"""
Price review route (checkout step 2).

Prices the draft on first view. Validation issues are listed per field;
any other failure offers Retry.
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
from models.pricing import describe_item
from routes.checkout_session import current_saga, redirect_to_step


# Module logger
logger = get_logger(__name__)

review_bp = Blueprint("review", __name__)


@review_bp.route("/checkout/review", methods=["GET"])
def review():
    """
    Display priced lines and total.

    The price is calculated once per draft; use the Retry action to price
    again after a failure.
    """
    saga = current_saga()
    if saga is None or saga.state.draft is None:
        flash("Please complete the order form before review.", "warning")
        return redirect(url_for("order_form.order_form"))
    if saga.step != CheckoutStep.PRICE_REVIEW:
        return redirect_to_step(saga)

    state = saga.state
    if state.price is None and state.pricing_error is None:
        saga.calculate_price()
        state = saga.state

    lines = []
    if state.price is not None:
        for device, item in zip(state.draft.devices, state.price.order_item_prices):
            lines.append({
                "device_id": device.device_id,
                "item": item,
                **describe_item(saga.catalog, item.product_id, item.consumer_category_id,
                                state.draft.language_code),
            })

    return render_template("review.html", state=state, lines=lines)


@review_bp.route("/checkout/review/retry", methods=["POST"])
def retry_pricing():
    saga = current_saga()
    if saga is None or saga.step != CheckoutStep.PRICE_REVIEW:
        return redirect(url_for("order_form.order_form"))
    result = saga.calculate_price()
    if not result.success and not result.is_validation_error:
        flash(f"Pricing failed again: {result.error}", "error")
    return redirect(url_for("review.review"))


@review_bp.route("/checkout/review/accept", methods=["POST"])
def accept():
    """Accept the price, reserve the order ID and go to payment."""
    saga = current_saga()
    if saga is None:
        return redirect(url_for("order_form.order_form"))
    try:
        result = saga.accept_price()
    except InvalidTransitionError as e:
        logger.warning(f"Accept rejected: {e}")
        flash("There is no price to accept yet.", "warning")
        return redirect_to_step(saga)

    if not result.success:
        flash(f"Could not create order: {result.error}", "error")
    return redirect(url_for("payment.payment"))


@review_bp.route("/checkout/back", methods=["POST"])
def back():
    saga = current_saga()
    if saga is None:
        return redirect(url_for("order_form.order_form"))
    try:
        saga.go_back()
    except InvalidTransitionError as e:
        logger.debug(f"Back ignored: {e}")
    return redirect_to_step(saga)
