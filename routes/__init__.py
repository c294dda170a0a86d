"""
Flask route blueprints for ResortPOS.

This module contains all route handlers organized by functionality:
- main: Home redirect and health check
- search / orders: Order search, detail and admin actions
- order_form, review, payment, submit, confirmation: Checkout wizard steps
- swap: Lifepass swap saga and lifepass return
- sessions: Backend session logs
- statistics: Revenue statistics
- api: AJAX endpoints (payment status polling, device status)

Each blueprint is registered with the Flask app in create_app().
"""

from .main import main_bp
from .search import search_bp
from .orders import orders_bp
from .order_form import order_form_bp
from .review import review_bp
from .payment import payment_bp
from .submit import submit_bp
from .confirmation import confirmation_bp
from .swap import swap_bp
from .sessions import sessions_bp
from .statistics import statistics_bp
from .api import api_bp

__all__ = [
    "main_bp",
    "search_bp",
    "orders_bp",
    "order_form_bp",
    "review_bp",
    "payment_bp",
    "submit_bp",
    "confirmation_bp",
    "swap_bp",
    "sessions_bp",
    "statistics_bp",
    "api_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    for blueprint in (
        main_bp,
        search_bp,
        orders_bp,
        order_form_bp,
        review_bp,
        payment_bp,
        submit_bp,
        confirmation_bp,
        swap_bp,
        sessions_bp,
        statistics_bp,
        api_bp,
    ):
        app.register_blueprint(blueprint)
