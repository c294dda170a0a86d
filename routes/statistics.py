"""
Revenue statistics and sales tax routes.

Charts are out of scope; the aggregates are shown as tables or returned as
JSON with ?format=json. The weekly sales report downloads as CSV.
"""

from datetime import date, datetime, time, timedelta

from flask import Blueprint, Response, current_app, flash, redirect, render_template, request, url_for

from logging_config import get_logger
from services.statistics_service import weekly_export_filename


# Module logger
logger = get_logger(__name__)

statistics_bp = Blueprint("statistics", __name__)

DEFAULT_RANGE_DAYS = 30
WEEKLY_RANGE_DAYS = 7


def _date_range(default_days):
    """
    ``from``/``to`` query args as dates; defaults to the last ``default_days``.

    Raises:
        ValueError: malformed date
    """
    today = date.today()
    day_from = date.fromisoformat(request.args.get("from") or (today - timedelta(days=default_days)).isoformat())
    day_to = date.fromisoformat(request.args.get("to") or today.isoformat())
    return day_from, day_to


def _span(day_from, day_to):
    return datetime.combine(day_from, time.min), datetime.combine(day_to, time.max)


@statistics_bp.route("/statistics", methods=["GET"])
def statistics():
    """
    Query args: resort_id (required), from, to (YYYY-MM-DD), include_test, format
    """
    service = current_app.config["STATISTICS_SERVICE"]
    resort_id = request.args.get("resort_id", type=int)
    include_test = request.args.get("include_test") == "1"
    as_json = request.args.get("format") == "json"

    try:
        day_from, day_to = _date_range(DEFAULT_RANGE_DAYS)
    except ValueError:
        if as_json:
            return {"success": False, "error": "Invalid date range", "errorType": "validation"}, 400
        flash("Invalid date range", "error")
        return render_template("statistics.html", stats=None, resort_id=resort_id,
                               day_from=None, day_to=None, include_test=include_test), 400

    stats = None
    if resort_id:
        stats = service.get_statistics(resort_id, *_span(day_from, day_to), include_test_orders=include_test)

    if as_json:
        if stats is None:
            return {"success": False, "error": "resort_id is required", "errorType": "validation"}, 400
        return {"success": True, "data": stats}, 200

    return render_template(
        "statistics.html",
        stats=stats,
        resort_id=resort_id,
        day_from=day_from,
        day_to=day_to,
        include_test=include_test,
    )


@statistics_bp.route("/statistics/sales-tax", methods=["GET"])
def sales_tax():
    """
    Query args: resort_id (required), from, to (YYYY-MM-DD), include_test, format
    """
    service = current_app.config["STATISTICS_SERVICE"]
    resort_id = request.args.get("resort_id", type=int)
    include_test = request.args.get("include_test") == "1"
    as_json = request.args.get("format") == "json"

    try:
        day_from, day_to = _date_range(WEEKLY_RANGE_DAYS)
    except ValueError:
        if as_json:
            return {"success": False, "error": "Invalid date range", "errorType": "validation"}, 400
        flash("Invalid date range", "error")
        return render_template("sales_tax.html", report=None, resort_id=resort_id,
                               day_from=None, day_to=None, include_test=include_test), 400

    report = None
    if resort_id:
        report = service.get_sales_tax(resort_id, *_span(day_from, day_to))

    if as_json:
        if report is None:
            return {"success": False, "error": "resort_id is required", "errorType": "validation"}, 400
        return {"success": True, "data": report}, 200

    return render_template(
        "sales_tax.html",
        report=report,
        resort_id=resort_id,
        day_from=day_from,
        day_to=day_to,
        include_test=include_test,
    )


@statistics_bp.route("/statistics/weekly-export", methods=["GET"])
def weekly_export():
    """Weekly sales report as a CSV attachment."""
    service = current_app.config["STATISTICS_SERVICE"]
    resort_id = request.args.get("resort_id", type=int)
    include_test = request.args.get("include_test") == "1"

    try:
        day_from, day_to = _date_range(WEEKLY_RANGE_DAYS)
    except ValueError:
        flash("Invalid date range", "error")
        return redirect(url_for("statistics.sales_tax", resort_id=resort_id))
    if not resort_id:
        flash("Resort ID is required", "error")
        return redirect(url_for("statistics.sales_tax"))

    content = service.weekly_export(resort_id, *_span(day_from, day_to), include_test_orders=include_test)
    filename = weekly_export_filename(day_from, day_to)
    logger.info(f"Weekly export for resort {resort_id}: {filename}")
    return Response(
        content,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
