"""
Order form route (checkout step 1).

Collects resort, start date, customer contact and one line per lifepass.
Only presence is checked here; the pricing endpoint validates the rest.
"""

from datetime import date

import bleach
from flask import (
    Blueprint,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)

from core.exceptions import InvalidTransitionError
from logging_config import get_logger
from models.checkout import CheckoutStep
from models.order_draft import LANGUAGE_CODES, OrderDevice, OrderDraft
from models.pricing import catalog_options
from routes.checkout_session import current_saga, redirect_to_step


# Module logger
logger = get_logger(__name__)

order_form_bp = Blueprint("order_form", __name__)

# Constants
MAX_TEXT_LENGTH = 200
MAX_DEVICES = 50


def _sanitize_text(text: str, max_length: int = None) -> str:
    """Sanitize user input text."""
    if not text:
        return ""
    text = text.strip()
    text = bleach.clean(text, tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def _draft_from_form(form) -> OrderDraft:
    """Build a draft from the posted form; invalid numbers become empty values."""
    try:
        resort_id = int(form.get("resort_id", "0") or 0)
    except ValueError:
        resort_id = 0

    try:
        start_date = date.fromisoformat(form.get("start_date", ""))
    except ValueError:
        start_date = None

    language = form.get("language_code", "en")
    if language not in LANGUAGE_CODES:
        language = "en"

    device_ids = form.getlist("device_id")
    product_ids = form.getlist("product_id")
    category_ids = form.getlist("consumer_category_id")
    insurance = form.getlist("insurance")

    devices = []
    for index, device_id in enumerate(device_ids[:MAX_DEVICES]):
        device_id = _sanitize_text(device_id, MAX_TEXT_LENGTH)
        product_id = product_ids[index] if index < len(product_ids) else ""
        category_id = category_ids[index] if index < len(category_ids) else ""
        # Completely blank rows are ignored
        if not (device_id or product_id or category_id):
            continue
        devices.append(OrderDevice(
            device_id=device_id,
            product_id=_sanitize_text(product_id, MAX_TEXT_LENGTH),
            consumer_category_id=_sanitize_text(category_id, MAX_TEXT_LENGTH),
            insurance=index < len(insurance) and insurance[index] == "yes",
        ))

    return OrderDraft(
        resort_id=resort_id,
        start_date=start_date,
        name=_sanitize_text(form.get("name", ""), MAX_TEXT_LENGTH),
        telephone=_sanitize_text(form.get("telephone", ""), MAX_TEXT_LENGTH),
        email=_sanitize_text(form.get("email", ""), MAX_TEXT_LENGTH),
        language_code=language,
        devices=devices,
        terminal_id=_sanitize_text(form.get("terminal_id", ""), MAX_TEXT_LENGTH),
    )


@order_form_bp.route("/checkout/new", methods=["GET", "POST"])
def order_form():
    """
    Handle the order form.

    GET: Display the form (loads catalog and card readers once a resort is chosen)
    POST: Check required fields, store the draft, go to price review
    """
    saga = current_saga(create=True)
    if saga.step not in (CheckoutStep.FORM_ENTRY, CheckoutStep.PRICE_REVIEW):
        return redirect_to_step(saga)

    if request.method == "POST":
        draft = _draft_from_form(request.form)
        missing = draft.missing_fields()
        if missing:
            flash(f"Please fill in: {', '.join(missing)}", "error")
            return render_template(
                "order_form.html",
                draft=draft,
                products=catalog_options(saga.catalog, draft.language_code),
                terminals=saga.terminals,
                languages=LANGUAGE_CODES,
                rows=max(len(draft.devices), 1),
            ), 400

        try:
            saga.submit_draft(draft)
        except InvalidTransitionError as e:
            logger.warning(f"Draft rejected: {e}")
            return redirect_to_step(saga)

        logger.info(f"Draft submitted: resort {draft.resort_id}, {len(draft.devices)} device(s)")
        return redirect(url_for("review.review"))

    current = saga.state.draft
    draft = OrderDraft.from_dict(current.to_dict()) if current else OrderDraft()
    resort_id = request.args.get("resort_id", type=int)
    if resort_id:
        draft.resort_id = resort_id
        result = saga.load_catalog(resort_id, request.args.get("start_date"))
        if not result.success:
            flash(f"Could not load products: {result.error}", "error")

    rows = request.args.get("rows", type=int) or max(len(draft.devices), 1)
    return render_template(
        "order_form.html",
        draft=draft,
        products=catalog_options(saga.catalog, draft.language_code),
        terminals=saga.terminals,
        languages=LANGUAGE_CODES,
        rows=min(max(rows, 1), MAX_DEVICES),
    )


@order_form_bp.route("/checkout/reset", methods=["POST"])
def reset():
    """Abandon the current checkout and start over."""
    saga = current_saga()
    if saga is not None:
        saga.reset()
        current_app.config["CHECKOUT_REGISTRY"].discard(saga.saga_id)
    flash("Checkout reset.", "info")
    return redirect(url_for("order_form.order_form"))
