"""
Session log routes.
"""

from datetime import date, datetime, time

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

sessions_bp = Blueprint("sessions", __name__)


def _parse_day(value, end_of_day: bool = False):
    if not value:
        return None
    try:
        day = date.fromisoformat(value)
    except ValueError:
        return None
    return datetime.combine(day, time.max if end_of_day else time.min)


@sessions_bp.route("/sessions", methods=["GET"])
def list_sessions():
    """Sessions newest first, with status and date filters."""
    service = current_app.config["SESSION_LOG_SERVICE"]
    page = request.args.get("page", 1, type=int)
    status = request.args.get("status") or None

    listing = service.list_sessions(
        page=page,
        per_page=current_app.config["SESSIONS_PER_PAGE"],
        status=status,
        date_from=_parse_day(request.args.get("from")),
        date_to=_parse_day(request.args.get("to"), end_of_day=True),
    )
    return render_template("sessions.html", listing=listing, status=status)


@sessions_bp.route("/sessions/<int:session_id>", methods=["GET"])
def session_detail(session_id: int):
    service = current_app.config["SESSION_LOG_SERVICE"]
    try:
        detail = service.get_session(session_id)
    except LookupError as e:
        flash(str(e), "error")
        return redirect(url_for("sessions.list_sessions"))
    return render_template("session_detail.html", session_row=detail, log=detail["log"])
