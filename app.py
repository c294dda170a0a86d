"""
ResortPOS - Flask Application Entry Point.

This is a slim app factory that:
1. Opens the orders database (fail-fast)
2. Creates the Hono client and the services on top of it
3. Registers route blueprints
4. Sets up error handlers and context processors

ARCHITECTURE:
    Main Thread
    ├── Database initialization (create missing tables)
    ├── Flask request handling
    └── Cleanup on shutdown (cancel and join payment threads)

    Payment Threads (one per terminal payment)
    └── Create payment, poll status every 2 seconds, advance the checkout

A missing HONO_API_URL / HONO_API_KEY is NOT a startup failure: every
remote action reports "API URL or API KEY is not set" instead.
"""

from __future__ import annotations

import atexit
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, flash, redirect, request, url_for

from logging_config import setup_logging, get_logger
from core.api_client import HonoClient
from core.database import init_database
from core.exceptions import DatabaseUnavailableError, OrderNotFoundError, StaleOrderError
from services.cache_service import TaggedCache
from services.cash_desk_service import CashDeskService
from services.checkout_service import CheckoutRegistry
from services.order_repository import OrderRepository
from services.payment_service import PaymentService
from services.session_log_service import SessionLogService
from services.statistics_service import StatisticsService
from services.swap_service import SwapService
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)

STALE_ORDER_MESSAGE = "This order was modified by someone else. Reload and try again."


def create_app(config_object: str = "config.Config") -> Flask:
    """
    Application factory - creates and configures Flask app.

    FAIL-FAST: If the database cannot be opened, the app will not start.

    Args:
        config_object: Import path of the config class

    Returns:
        Configured Flask application

    Raises:
        DatabaseUnavailableError: If the database engine or schema fails
    """
    # Use override=True so .env file always takes precedence over shell environment
    env_file = Path(__file__).parent / ".env"
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)

    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        app_name="resort_pos",
        log_level=log_level,
        enable_file_logging=enable_file_logging,
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting ResortPOS in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # CORE INITIALIZATION (FAIL-FAST)
    # =========================================================================

    try:
        session_factory = init_database(app.config["DATABASE_URL"])
        logger.info("Database initialized successfully")
    except DatabaseUnavailableError as e:
        logger.error(f"FATAL: Cannot start application - {e}")
        raise

    client = HonoClient(
        app.config["HONO_API_URL"],
        app.config["HONO_API_KEY"],
        timeout_seconds=app.config["REQUEST_TIMEOUT_SECONDS"],
        submit_timeout_seconds=app.config["SUBMIT_TIMEOUT_SECONDS"],
        swap_timeout_seconds=app.config["SWAP_TIMEOUT_SECONDS"],
        return_timeout_seconds=app.config["RETURN_LIFEPASS_TIMEOUT_SECONDS"],
    )
    if not client.is_configured:
        logger.warning("HONO_API_URL or HONO_API_KEY is not set - remote actions will fail")
    app.config["HONO_CLIENT"] = client

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    cache = TaggedCache(
        ttl_seconds=app.config["ORDERS_CACHE_TTL_SECONDS"],
        maxsize=app.config["ORDERS_CACHE_MAXSIZE"],
    )
    repository = OrderRepository(session_factory, cache)
    cash_desk = CashDeskService(client)
    payment_service = PaymentService(
        cash_desk,
        poll_interval_seconds=app.config["PAYMENT_POLL_INTERVAL_SECONDS"],
        max_poll_attempts=app.config["PAYMENT_MAX_POLL_ATTEMPTS"],
        max_retries=app.config["PAYMENT_MAX_RETRIES"],
    )
    checkout_registry = CheckoutRegistry(cash_desk, payment_service, repository)

    app.config["ORDERS_CACHE"] = cache
    app.config["ORDER_REPOSITORY"] = repository
    app.config["CASH_DESK_SERVICE"] = cash_desk
    app.config["PAYMENT_SERVICE"] = payment_service
    app.config["CHECKOUT_REGISTRY"] = checkout_registry
    app.config["SWAP_SERVICE"] = SwapService(cash_desk, repository, session_factory)
    app.config["STATISTICS_SERVICE"] = StatisticsService(repository)
    app.config["SESSION_LOG_SERVICE"] = SessionLogService(session_factory)
    logger.info("Services initialized")

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")
        checkout_registry.shutdown()
        payment_service.shutdown()
        logger.info("Shutdown complete")

    atexit.register(cleanup)

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # CONTEXT PROCESSORS
    # =========================================================================

    @app.context_processor
    def inject_display_helpers():
        """Inject receipt URL builder and currency into all templates."""
        base = app.config["RECEIPT_BASE_URL"].rstrip("/")
        return {
            "receipt_url": lambda order_id: f"{base}/{order_id}/receipt",
            "currency": app.config["CURRENCY_SYMBOL"],
        }

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(StaleOrderError)
    def handle_stale_order(e):
        logger.warning(f"Stale write rejected: {e}")
        flash(STALE_ORDER_MESSAGE, "warning")
        return redirect(url_for("orders.detail", order_id=e.order_id))

    @app.errorhandler(OrderNotFoundError)
    def handle_order_not_found(e):
        flash("Order not found", "error")
        return redirect(url_for("search.search"))

    @app.errorhandler(404)
    def handle_not_found(e):
        if request.path.startswith("/api/"):
            return {"success": False, "error": "Not found", "errorType": "not_found"}, 404
        flash("Page not found.", "warning")
        return redirect(url_for("search.search"))

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        if request.path.startswith("/api/"):
            return {"success": False, "error": "An unexpected error occurred", "errorType": "unknown"}, 500
        flash("An unexpected error occurred. Please try again.", "error")
        return redirect(url_for("search.search"))

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
