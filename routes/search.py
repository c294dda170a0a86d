"""
Order search route.
"""

import bleach
from flask import Blueprint, current_app, flash, render_template, request

from logging_config import get_logger
from services.order_repository import SEARCH_TYPES


# Module logger
logger = get_logger(__name__)

search_bp = Blueprint("search", __name__)


@search_bp.route("/orders", methods=["GET"])
def search():
    """
    Search orders by order number, device ID or phone number.

    Without a query the most recent orders are listed.
    """
    repository = current_app.config["ORDER_REPOSITORY"]

    search_type = request.args.get("type", "orderNumber")
    value = bleach.clean(request.args.get("q", "").strip(), tags=[], strip=True)

    orders = []
    if value:
        try:
            orders = repository.search(search_type, value)
        except ValueError as e:
            flash(str(e), "error")
            return render_template(
                "search.html", orders=[], search_type=search_type, value=value,
                search_types=SEARCH_TYPES,
            ), 400

        if orders:
            flash(f"Found {len(orders)} order(s)", "success")
        else:
            flash("No orders found", "info")
    else:
        orders = repository.list_recent()

    return render_template(
        "search.html", orders=orders, search_type=search_type, value=value,
        search_types=SEARCH_TYPES,
    )
