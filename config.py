"""
Configuration for ResortPOS.

HONO_API_URL / HONO_API_KEY are read here but NOT validated at startup:
a missing value is reported to the operator on the first remote call.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env early so environment variables are available for the Config class
load_dotenv(override=True)

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    SESSION_COOKIE_NAME = "resort_pos_session"
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # Hono backend (pricing, orders, Stripe/Skidata/Myth pass-through)
    HONO_API_URL = os.environ.get("HONO_API_URL", "")
    HONO_API_KEY = os.environ.get("HONO_API_KEY", "")

    # Orders / session log database
    DATABASE_URL = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'resort_pos.db'}"
    )

    # ==========================================================================
    # Remote call timeouts (seconds)
    # ==========================================================================
    REQUEST_TIMEOUT_SECONDS = float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "30"))
    SUBMIT_TIMEOUT_SECONDS = float(os.environ.get("SUBMIT_TIMEOUT_SECONDS", "60"))
    SWAP_TIMEOUT_SECONDS = float(os.environ.get("SWAP_TIMEOUT_SECONDS", "60"))
    RETURN_LIFEPASS_TIMEOUT_SECONDS = float(
        os.environ.get("RETURN_LIFEPASS_TIMEOUT_SECONDS", "10")
    )

    # ==========================================================================
    # Terminal payment polling
    # ==========================================================================
    # 60 attempts x 2 seconds = 2 minute ceiling before the payment is
    # reported as timed out and the operator has to check manually.
    # ==========================================================================
    PAYMENT_POLL_INTERVAL_SECONDS = float(
        os.environ.get("PAYMENT_POLL_INTERVAL_SECONDS", "2")
    )
    PAYMENT_MAX_POLL_ATTEMPTS = int(os.environ.get("PAYMENT_MAX_POLL_ATTEMPTS", "60"))
    PAYMENT_MAX_RETRIES = int(os.environ.get("PAYMENT_MAX_RETRIES", "3"))

    # Display
    RECEIPT_BASE_URL = os.environ.get(
        "RECEIPT_BASE_URL", "https://mtech-api.jordangigg.workers.dev/api/orders"
    )
    CURRENCY_SYMBOL = os.environ.get("CURRENCY_SYMBOL", "€")
    SESSIONS_PER_PAGE = int(os.environ.get("SESSIONS_PER_PAGE", "25"))

    # Cached order search results, invalidated by the "orders" tag
    ORDERS_CACHE_TTL_SECONDS = float(os.environ.get("ORDERS_CACHE_TTL_SECONDS", "60"))
    ORDERS_CACHE_MAXSIZE = int(os.environ.get("ORDERS_CACHE_MAXSIZE", "1024"))


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    ENVIRONMENT = "testing"
    SECRET_KEY = "test-secret-key"
    DATABASE_URL = "sqlite://"
    HONO_API_URL = "http://hono.test"
    HONO_API_KEY = "test-key"
    PAYMENT_POLL_INTERVAL_SECONDS = 0.0
    PAYMENT_MAX_POLL_ATTEMPTS = 5
