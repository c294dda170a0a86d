"""
Unit tests for HonoClient and the CashDeskService result facade.

httpx.Client is patched so no request leaves the process; responses are
real httpx.Response objects.
"""

import threading
from unittest.mock import MagicMock, patch

import httpx
import pytest

from core.api_client import HonoClient
from core.exceptions import (
    ApiConfigurationError,
    HonoApiError,
    RequestAbortedError,
    RequestTimeoutError,
    ValidationFailedError,
)
from services.cash_desk_service import CashDeskService


# Fixtures

@pytest.fixture
def hono():
    """Configured client with the production timeouts."""
    return HonoClient("http://hono.test/", "secret", timeout_seconds=30.0)


@pytest.fixture
def cash_desk_service(hono):
    return CashDeskService(hono)


@pytest.fixture
def http():
    """Patch httpx.Client; yields the mock whose .request() the test configures."""
    with patch("core.api_client.httpx.Client") as client_cls:
        session = MagicMock()
        client_cls.return_value.__enter__.return_value = session
        session.client_cls = client_cls
        yield session


def respond(status, body=None):
    if body is None:
        return httpx.Response(status)
    return httpx.Response(status, json=body)


# Transport

class TestTransport:
    """Headers, configuration and the shared failure modes."""

    def test_sends_api_key_and_strips_trailing_slash(self, hono, http):
        http.request.return_value = respond(200, {"id": "7"})

        hono.create_order_intent({"resortId": 1})

        method, url = http.request.call_args[0]
        assert method == "POST"
        assert url == "http://hono.test/api/cash-desk/create-order-intent"
        assert http.request.call_args[1]["headers"]["x-api-key"] == "secret"

    def test_missing_configuration_raises_before_any_request(self, http):
        client = HonoClient("", "")

        assert client.is_configured is False
        with pytest.raises(ApiConfigurationError) as exc_info:
            client.calculate_order_price({})
        assert exc_info.value.message == "API URL or API KEY is not set"
        http.request.assert_not_called()

    def test_timeout_maps_to_timeout_error(self, hono, http):
        http.request.side_effect = httpx.ReadTimeout("read timed out")

        with pytest.raises(RequestTimeoutError) as exc_info:
            hono.calculate_order_price({})
        assert exc_info.value.message == "Request timed out after 30 seconds"
        assert exc_info.value.error_type == "timeout"

    def test_abort_event_set_before_call(self, hono, http):
        abort = threading.Event()
        abort.set()

        with pytest.raises(RequestAbortedError):
            hono.calculate_order_price({}, abort_event=abort)
        http.request.assert_not_called()

    def test_response_after_abort_is_discarded(self, hono, http):
        abort = threading.Event()

        def late_response(*args, **kwargs):
            abort.set()
            return respond(200, {"id": 1})

        http.request.side_effect = late_response

        with pytest.raises(RequestAbortedError):
            hono.create_order_intent({}, abort_event=abort)

    def test_network_error_is_unknown(self, hono, http):
        http.request.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(HonoApiError) as exc_info:
            hono.get_card_readers(1)
        assert exc_info.value.error_type == "unknown"


# Endpoint parsing

class TestOrderEndpoints:

    def test_pricing_validation_issues(self, hono, http):
        issues = [{"path": ["products", 0, "productId"], "message": "Required"}]
        http.request.return_value = respond(400, issues)

        with pytest.raises(ValidationFailedError) as exc_info:
            hono.calculate_order_price({})
        assert exc_info.value.issues == issues
        assert exc_info.value.error_type == "validation"

    def test_order_intent_id_is_coerced_to_int(self, hono, http):
        http.request.return_value = respond(200, {"id": "42", "status": "intent"})

        assert hono.create_order_intent({})["id"] == 42

    def test_order_intent_without_id_fails(self, hono, http):
        http.request.return_value = respond(200, {"status": "intent"})

        with pytest.raises(HonoApiError, match="did not contain an order ID"):
            hono.create_order_intent({})

    def test_submit_failure_carries_session_id(self, hono, http):
        http.request.return_value = respond(500, {"error": "Skidata down", "sessionId": 991})

        with pytest.raises(HonoApiError) as exc_info:
            hono.submit_order({"orderId": 1})
        assert exc_info.value.message == "Skidata down"
        assert exc_info.value.session_id == 991

    def test_submit_list_body_on_other_status(self, hono, http):
        http.request.return_value = respond(422, [{"path": ["devices"], "message": "Required"}])

        with pytest.raises(HonoApiError) as exc_info:
            hono.submit_order({"orderId": 1})
        assert exc_info.value.message == "Validation errors occurred"
        assert exc_info.value.error_type == "unknown"
        assert exc_info.value.status_code == 422

    def test_submit_uses_long_timeout(self, hono, http):
        http.request.return_value = respond(200, {"success": True})

        hono.submit_order({"orderId": 1})

        assert http.client_cls.call_args[1]["timeout"] == 60.0


class TestErrorClassification:
    """Endpoint-specific errorType values."""

    @pytest.mark.parametrize("status, body, expected", [
        (401, {"message": "Invalid API key"}, "api_key_invalid"),
        (404, {"message": "No cash desk sales channel for resort"}, "sales_channel_not_found"),
        (422, {"message": "startDate is invalid"}, "validation"),
        (500, None, "sales_channel_not_found"),
    ])
    def test_products(self, hono, http, status, body, expected):
        http.request.return_value = respond(status, body)

        with pytest.raises(HonoApiError) as exc_info:
            hono.get_products(1)
        assert exc_info.value.error_type == expected

    @pytest.mark.parametrize("message, expected", [
        ("Terminal not found", "terminal_error"),
        ("Stripe configuration missing", "config_error"),
        ("Resort not found", "config_error"),
    ])
    def test_create_terminal_payment(self, hono, http, message, expected):
        http.request.return_value = respond(400, {"message": message})

        with pytest.raises(HonoApiError) as exc_info:
            hono.create_terminal_payment({})
        assert exc_info.value.error_type == expected

    @pytest.mark.parametrize("message, expected", [
        ("Reader not found", "not_found"),
        ("Reader is currently busy", "terminal_error"),
        ("Invoice already paid", "already_paid"),
    ])
    def test_retry_terminal_payment(self, hono, http, message, expected):
        http.request.return_value = respond(400, {"message": message})

        with pytest.raises(HonoApiError) as exc_info:
            hono.retry_terminal_payment("tmr_1", invoice_id="in_1")
        assert exc_info.value.error_type == expected

    def test_check_payment_status_requires_an_identifier(self, hono, http):
        with pytest.raises(ValidationFailedError, match="Either invoiceId or orderId"):
            hono.check_payment_status(1)
        http.request.assert_not_called()

    def test_unconfigured_terminal_payment_is_config_error(self, http):
        with pytest.raises(ApiConfigurationError) as exc_info:
            HonoClient("", "").create_terminal_payment({})
        assert exc_info.value.error_type == "config_error"


# CashDeskService

class TestCashDeskService:
    """ActionResult shapes returned to routes and the checkout saga."""

    def test_pricing_timeout_result(self, cash_desk_service, http):
        http.request.side_effect = httpx.ReadTimeout("read timed out")

        result = cash_desk_service.calculate_order_price({"resortId": 1})

        assert result.to_dict() == {
            "success": False,
            "error": "Request timed out after 30 seconds",
            "errorType": "timeout",
        }

    def test_pricing_success_is_parsed(self, cash_desk_service, http):
        http.request.return_value = respond(200, {
            "startDate": "2026-01-10",
            "daysValidity": 3,
            "cumulatedPrice": {"bestPrice": {"amountGross": 120.0, "currencyCode": "EUR"}},
            "orderItemPrices": [{"productId": "p1", "consumerCategoryId": "adult"}],
        })

        result = cash_desk_service.calculate_order_price({"resortId": 1})

        assert result.success is True
        assert result.data.total_gross == 120.0
        assert result.data.item_count == 1

    def test_validation_issues_are_kept(self, cash_desk_service, http):
        issues = [{"path": ["devices", 0, "productId"], "message": "Required"}]
        http.request.return_value = respond(400, issues)

        result = cash_desk_service.submit_order({"orderId": 1})

        assert result.is_validation_error
        assert result.to_dict()["issues"] == issues

    def test_swap_failure_gets_display_message(self, cash_desk_service, http):
        http.request.return_value = respond(400, {
            "success": False,
            "error": "DEVICE_ALREADY_ACTIVE",
            "message": "Bad Request",
        })

        result = cash_desk_service.swap_active_lifepass(1, 1, "111", "222")

        assert result.success is False
        assert result.error == "Failed to swap pass. Please try again."
        assert result.details["display"] == "DEVICE ALREADY ACTIVE"

    def test_swap_without_config_reports_server_configuration(self):
        result = CashDeskService(HonoClient("", "")).swap_active_lifepass(1, 1, "111", "222")

        assert result.error == "Server configuration error"

    def test_return_lifepass_requires_a_device(self, cash_desk_service, http):
        result = cash_desk_service.return_lifepass(["  ", ""])

        assert result.error == "No lifepass selected"
        http.request.assert_not_called()

    def test_return_lifepass_message(self, cash_desk_service, http):
        http.request.return_value = respond(200, {"success": True})

        result = cash_desk_service.return_lifepass(["111", "222"])

        assert result.data["message"] == "Successfully returned 2 lifepass(es)"
        assert http.request.call_args[1]["json"] == {"deviceIdsArray": ["111", "222"]}

    def test_unexpected_exception_becomes_unknown(self, hono):
        service = CashDeskService(hono)
        with patch.object(hono, "get_myth_order", side_effect=RuntimeError("boom")):
            result = service.get_myth_order("M-1")

        assert result.to_dict() == {"success": False, "error": "boom", "errorType": "unknown"}
