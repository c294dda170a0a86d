"""
Shared fixtures for the ResortPOS test suite.

Every database fixture uses its own in-memory sqlite engine, so tests never
see each other's rows.
"""

from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from core.database import init_database, session_scope
from models.order_draft import OrderDevice, OrderDraft
from models.pricing import CalculatedOrderPrice
from models.records import OrderRecord, SessionRecord
from services.cache_service import TaggedCache
from services.order_repository import OrderRepository


# Fixtures

@pytest.fixture
def session_factory():
    """Fresh in-memory database."""
    return init_database("sqlite://")


@pytest.fixture
def repository(session_factory):
    """OrderRepository over the in-memory database."""
    return OrderRepository(session_factory, TaggedCache(ttl_seconds=60))


@pytest.fixture
def cash_desk():
    """CashDeskService stand-in; each test configures the calls it needs."""
    return MagicMock()


@pytest.fixture
def add_order(session_factory):
    """Insert an OrderRecord directly and return its ID."""

    def _add(order_id, **fields):
        fields.setdefault("resort_id", 1)
        with session_scope(session_factory) as db:
            db.add(OrderRecord(id=order_id, **fields))
        return order_id

    return _add


@pytest.fixture
def add_session(session_factory):
    """Insert a SessionRecord directly and return its ID."""

    def _add(session_id, **fields):
        with session_scope(session_factory) as db:
            db.add(SessionRecord(id=session_id, **fields))
        return session_id

    return _add


@pytest.fixture
def app():
    """Flask app wired with TestingConfig (in-memory db, fake Hono URL)."""
    from app import create_app

    flask_app = create_app("config.TestingConfig")
    yield flask_app
    flask_app.config["PAYMENT_SERVICE"].shutdown(timeout_per_thread=1.0)


@pytest.fixture
def client(app):
    return app.test_client()


# Builders

def make_draft(device_ids=("1001", "1002"), terminal_id="tmr_1"):
    """Two-line draft for resort 1 starting 2026-01-10."""
    return OrderDraft(
        resort_id=1,
        start_date=date(2026, 1, 10),
        name="Ada Lovelace",
        telephone="+44 7700 900123",
        email="ada@example.com",
        language_code="en",
        devices=[OrderDevice(device_id, "p1", "adult") for device_id in device_ids],
        terminal_id=terminal_id,
    )


def price_block(gross):
    return {
        "basePrice": {"amountGross": gross, "amountNet": gross, "currencyCode": "EUR"},
        "bestPrice": {"amountGross": gross, "amountNet": gross, "currencyCode": "EUR"},
        "success": True,
    }


def make_price(item_count=2, line_gross=50.0, days=2):
    """CalculatedOrderPrice with ``item_count`` identical lines."""
    return CalculatedOrderPrice.from_dict({
        "startDate": "2026-01-10",
        "daysValidity": days,
        "cumulatedPrice": price_block(line_gross * item_count),
        "orderItemPrices": [
            {
                "productId": "p1",
                "consumerCategoryId": "adult",
                "productPrice": price_block(line_gross),
                "success": True,
            }
            for _ in range(item_count)
        ],
    })


def naive(year, month, day, hour=12):
    return datetime(year, month, day, hour, 0, 0)
