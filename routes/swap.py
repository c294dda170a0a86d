"""
Lifepass swap and return routes.

A swap is started from the order page, then each of its three steps is run
explicitly from /swap/<saga_id>. A failed step can be re-run; completed
steps are never sent again.
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


# Module logger
logger = get_logger(__name__)

swap_bp = Blueprint("swap", __name__)


def _clean(value: str) -> str:
    return bleach.clean((value or "").strip(), tags=[], strip=True)


@swap_bp.route("/orders/<int:order_id>/swap", methods=["GET", "POST"])
def start(order_id: int):
    """
    GET: Swap form with the order's lifepasses
    POST: Create (or resume) the swap saga for old -> new pass
    """
    repository = current_app.config["ORDER_REPOSITORY"]
    swaps = current_app.config["SWAP_SERVICE"]
    try:
        order = repository.get(order_id)
    except OrderNotFoundError:
        flash("Order not found", "error")
        return redirect(url_for("search.search"))

    if request.method == "POST":
        try:
            saga = swaps.start(
                order_id,
                order["resortId"],
                _clean(request.form.get("old_pass_id", "")),
                _clean(request.form.get("new_pass_id", "")),
            )
        except ValueError as e:
            flash(str(e), "error")
            return redirect(url_for("swap.start", order_id=order_id))
        return redirect(url_for("swap.progress", saga_id=saga.id))

    return render_template(
        "swap_start.html",
        order=order,
        swaps=swaps.list_for_order(order_id),
    )


@swap_bp.route("/swap/<int:saga_id>", methods=["GET"])
def progress(saga_id: int):
    swaps = current_app.config["SWAP_SERVICE"]
    saga = swaps.get(saga_id)
    if saga is None:
        flash("Swap not found", "error")
        return redirect(url_for("search.search"))

    allocations = swaps.find_allocations(saga.new_pass_id, exclude_order_id=saga.order_id)
    return render_template("swap_progress.html", saga=saga, allocations=allocations)


@swap_bp.route("/swap/<int:saga_id>/run", methods=["POST"])
def run_step(saga_id: int):
    """Run the saga's current step."""
    result = current_app.config["SWAP_SERVICE"].run_next_step(saga_id)
    if result.success:
        saga = result.data
        if saga.is_complete:
            flash("Lifepass swap complete", "success")
        else:
            flash(f"Step done. Next: {saga.current_step.label}", "success")
    else:
        flash(result.error, "error")
    return redirect(url_for("swap.progress", saga_id=saga_id))


@swap_bp.route("/swap/<int:saga_id>/status", methods=["GET"])
def status(saga_id: int):
    saga = current_app.config["SWAP_SERVICE"].get(saga_id)
    if saga is None:
        return {"success": False, "error": "Swap not found", "errorType": "not_found"}, 404
    return {"success": True, "data": saga.to_dict()}, 200


@swap_bp.route("/orders/<int:order_id>/return-lifepass", methods=["POST"])
def return_lifepass(order_id: int):
    device_ids = [_clean(v) for v in request.form.getlist("device_ids") if v.strip()]
    result = current_app.config["SWAP_SERVICE"].return_lifepass(order_id, device_ids)
    if result.success:
        flash(result.data["message"], "success")
    else:
        flash(result.error, "error")
    return redirect(url_for("orders.detail", order_id=order_id))
