"""
Checkout saga lookup for the wizard routes.

The saga ID lives in the Flask session under "checkout_id"; the saga itself
lives in the CheckoutRegistry stored in app.config.
"""

from typing import Optional

from flask import current_app, redirect, session, url_for

from models.checkout import CheckoutStep
from services.checkout_service import CheckoutSaga


SESSION_KEY = "checkout_id"

STEP_ENDPOINTS = {
    CheckoutStep.FORM_ENTRY: "order_form.order_form",
    CheckoutStep.PRICE_REVIEW: "review.review",
    CheckoutStep.PAYMENT: "payment.payment",
    CheckoutStep.SUBMISSION: "submit.submission",
    CheckoutStep.DONE: "confirmation.confirmation",
}


def current_saga(create: bool = False) -> Optional[CheckoutSaga]:
    registry = current_app.config["CHECKOUT_REGISTRY"]
    saga_id = session.get(SESSION_KEY)
    if not create:
        return registry.get(saga_id)
    saga = registry.get_or_create(saga_id)
    if saga_id != saga.saga_id:
        session[SESSION_KEY] = saga.saga_id
        session.modified = True
    return saga


def redirect_to_step(saga: CheckoutSaga):
    """Redirect to the page for the saga's current step."""
    return redirect(url_for(STEP_ENDPOINTS[saga.step]))
