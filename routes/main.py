"""
Main routes (home, health).
"""

from flask import Blueprint, current_app, redirect, url_for

main_bp = Blueprint("main", __name__)


@main_bp.route("/")
def index():
    """Redirect root to order search (home page)."""
    return redirect(url_for("search.search"))


@main_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {},
    }

    client = current_app.config.get("HONO_CLIENT")
    if client and client.is_configured:
        health_status["checks"]["hono_api"] = "configured"
    else:
        health_status["checks"]["hono_api"] = "not_configured"
        health_status["status"] = "degraded"

    if current_app.config.get("ORDER_REPOSITORY"):
        health_status["checks"]["database"] = "ok"
    else:
        health_status["checks"]["database"] = "not_available"
        health_status["status"] = "degraded"

    registry = current_app.config.get("CHECKOUT_REGISTRY")
    health_status["checks"]["active_checkouts"] = len(registry) if registry else 0

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
