"""
Order detail and admin routes.

Handles:
- /orders/<id> - Detail view
- /orders/<id>/toggle-test, /toggle-error, /notes - Admin mutations (versioned)
- /orders/bulk - Bulk test/live, error flag and notes
- /orders/<id>/receipt - Receipt redirect
- /orders/<id>/stripe, /skidata, /myth - External read paths (JSON)
- /orders/<id>/skidata/cancel, /skidata/cancel-ticket-items - Skidata admin (JSON)

Mutations take the ``version`` the page was rendered with; a stale version
is turned into a flash message by the app's StaleOrderError handler.
"""

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

from core.exceptions import OrderNotFoundError
from logging_config import get_logger
from services.order_repository import NOTE_TYPES


# Module logger
logger = get_logger(__name__)

orders_bp = Blueprint("orders", __name__)

MAX_NOTE_LENGTH = 2000


def _repository():
    return current_app.config["ORDER_REPOSITORY"]


def _cash_desk():
    return current_app.config["CASH_DESK_SERVICE"]


def _expected_version():
    return request.form.get("version", type=int)


def _json_result(result):
    if result.success:
        return result.to_dict(), 200
    return result.to_dict(), 400 if result.is_validation_error else 502


def _order_or_404(order_id: int):
    try:
        return _repository().get(order_id)
    except OrderNotFoundError:
        return None


@orders_bp.route("/orders/<int:order_id>", methods=["GET"])
def detail(order_id: int):
    """
    Display one order: overview, client, price, devices, notes, sessions
    and swaps.
    """
    order = _order_or_404(order_id)
    if order is None:
        flash("Order not found", "error")
        return redirect(url_for("search.search"))

    sessions = current_app.config["SESSION_LOG_SERVICE"].sessions_for_order(order["sessionIds"])
    swaps = current_app.config["SWAP_SERVICE"].list_for_order(order_id)
    return render_template(
        "order_detail.html",
        order=order,
        sessions=sessions,
        swaps=swaps,
        note_types=NOTE_TYPES,
    )


@orders_bp.route("/orders/<int:order_id>/toggle-test", methods=["POST"])
def toggle_test(order_id: int):
    _, message = _repository().toggle_test_order(order_id, _expected_version())
    flash(message, "success")
    return redirect(url_for("orders.detail", order_id=order_id))


@orders_bp.route("/orders/<int:order_id>/toggle-error", methods=["POST"])
def toggle_error(order_id: int):
    _, message = _repository().toggle_error(order_id, _expected_version())
    flash(message, "success")
    return redirect(url_for("orders.detail", order_id=order_id))


@orders_bp.route("/orders/<int:order_id>/notes", methods=["POST"])
def add_note(order_id: int):
    text = bleach.clean(request.form.get("text", "").strip(), tags=[], strip=True)[:MAX_NOTE_LENGTH]
    note_type = request.form.get("type", "note")
    try:
        _repository().add_note(
            order_id, text, note_type,
            created_by=request.form.get("created_by", "admin") or "admin",
            expected_version=_expected_version(),
        )
    except ValueError as e:
        flash(str(e), "error")
    else:
        flash("Note added", "success")
    return redirect(url_for("orders.detail", order_id=order_id))


@orders_bp.route("/orders/bulk", methods=["POST"])
def bulk():
    """
    Apply one action to the selected orders.

    Form fields: action (test|live|error|clear-error|note), order_ids, text, type
    """
    repository = _repository()
    order_ids = [int(v) for v in request.form.getlist("order_ids") if v.isdigit()]
    action = request.form.get("action", "")

    try:
        if action in ("test", "live"):
            message = repository.bulk_set_test_order(order_ids, action == "test")
        elif action in ("error", "clear-error"):
            message = repository.bulk_set_error(order_ids, action == "error")
        elif action == "note":
            text = bleach.clean(request.form.get("text", "").strip(), tags=[], strip=True)
            message = repository.add_bulk_note(
                order_ids, text[:MAX_NOTE_LENGTH], request.form.get("type", "note"),
            )
        else:
            raise ValueError(f"Unknown bulk action: {action}")
    except ValueError as e:
        flash(str(e), "error")
    else:
        logger.info(f"Bulk {action}: {message}")
        flash(message, "success")

    return redirect(request.referrer or url_for("search.search"))


@orders_bp.route("/orders/<int:order_id>/receipt", methods=["GET"])
def receipt(order_id: int):
    base = current_app.config["RECEIPT_BASE_URL"].rstrip("/")
    return redirect(f"{base}/{order_id}/receipt")


# =============================================================================
# EXTERNAL READ PATHS (JSON)
# =============================================================================

@orders_bp.route("/orders/<int:order_id>/stripe", methods=["GET"])
def stripe_transaction(order_id: int):
    result = _cash_desk().get_stripe_transaction_data(order_id)
    return _json_result(result)


@orders_bp.route("/orders/<int:order_id>/skidata", methods=["GET"])
def skidata_order(order_id: int):
    order = _order_or_404(order_id)
    if order is None:
        return {"success": False, "error": "Order not found", "errorType": "not_found"}, 404
    if not order["skidataOrderId"]:
        return {"success": False, "error": "Order has no Skidata order", "errorType": "validation"}, 400

    result = _cash_desk().get_skidata_order(order["resortId"], order["skidataOrderId"])
    return _json_result(result)


@orders_bp.route("/orders/<int:order_id>/myth", methods=["GET"])
def myth_order(order_id: int):
    order = _order_or_404(order_id)
    if order is None:
        return {"success": False, "error": "Order not found", "errorType": "not_found"}, 404
    if not order["mythOrderId"]:
        return {"success": False, "error": "Order has no Myth order", "errorType": "validation"}, 400

    result = _cash_desk().get_myth_order(order["mythOrderId"])
    return _json_result(result)


@orders_bp.route("/orders/<int:order_id>/skidata/cancel", methods=["POST"])
def skidata_cancel(order_id: int):
    order = _order_or_404(order_id)
    if order is None:
        return {"success": False, "error": "Order not found", "errorType": "not_found"}, 404

    result = _cash_desk().cancel_skidata_orders(
        [order["skidataOrderId"]] if order["skidataOrderId"] else [], order["resortId"],
    )
    if result.success:
        _repository().invalidate()
    return _json_result(result)


@orders_bp.route("/orders/<int:order_id>/skidata/cancel-ticket-items", methods=["POST"])
def skidata_cancel_ticket_items(order_id: int):
    """JSON body: {orderItemId, ticketItemIds[], cancelationDate}"""
    order = _order_or_404(order_id)
    if order is None:
        return {"success": False, "error": "Order not found", "errorType": "not_found"}, 404

    body = request.get_json(silent=True) or {}
    ticket_item_ids = [str(t) for t in body.get("ticketItemIds", []) if str(t).strip()]
    if not body.get("orderItemId") or not ticket_item_ids or not body.get("cancelationDate"):
        return {
            "success": False,
            "error": "orderItemId, ticketItemIds and cancelationDate are required",
            "errorType": "validation",
        }, 400

    result = _cash_desk().cancel_skidata_ticket_items(
        order["skidataOrderId"] or "", str(body["orderItemId"]), ticket_item_ids,
        str(body["cancelationDate"]), order["resortId"],
    )
    if result.success:
        _repository().invalidate()
    return _json_result(result)
