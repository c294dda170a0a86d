"""
Confirmation route (checkout done).

Shows the submitted order and its receipt link.
"""

from flask import (
    Blueprint,
    flash,
    redirect,
    render_template,
    url_for,
)

from models.checkout import CheckoutStep
from routes.checkout_session import current_saga, redirect_to_step


confirmation_bp = Blueprint("confirmation", __name__)


@confirmation_bp.route("/checkout/done", methods=["GET"])
def confirmation():
    saga = current_saga()
    if saga is None:
        flash("No order to confirm. Please start a new order.", "warning")
        return redirect(url_for("order_form.order_form"))
    if saga.step != CheckoutStep.DONE:
        return redirect_to_step(saga)

    return render_template("confirmation.html", state=saga.state)
