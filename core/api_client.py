"""
HTTP client for the Hono backend.

Every remote collaborator (pricing, order intents, submissions, terminal
payments, Stripe/Skidata/Myth read paths, lifepass swap and return) is
reached through one Hono endpoint. This module owns the transport details
and turns every failure into a typed HonoApiError subclass:

    ValidationFailedError  - 400 with an issue array (errorType "validation")
    RequestTimeoutError    - our own timeout fired  (errorType "timeout")
    RequestAbortedError    - the caller's abort Event was set (errorType "aborted")
    ApiConfigurationError  - HONO_API_URL / HONO_API_KEY not set
    HonoApiError           - everything else (errorType "unknown" or endpoint specific)

The client never returns error dicts; callers that need the discriminated
{success, data | error, errorType} shape go through CashDeskService.

THREAD SAFETY:
    A fresh httpx.Client is opened per request, so one HonoClient instance can
    be shared by Flask worker threads and payment poll threads.

ABORT SIGNAL:
    ``abort_event`` is a threading.Event owned by the caller (the checkout
    saga). It is checked before sending, and again when the request fails or
    returns; a response that arrives after the event was set is discarded.

Usage:
    client = HonoClient(base_url, api_key, timeout_seconds=30.0)
    price = client.calculate_order_price(payload)
    intent = client.create_order_intent(payload, abort_event=saga.abort_event)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional

import httpx

from .exceptions import (
    ApiConfigurationError,
    HonoApiError,
    RequestAbortedError,
    RequestTimeoutError,
    ValidationFailedError,
)


class HonoClient:
    """
    Thin wrapper over the Hono REST API.

    One method per endpoint. Each method returns the decoded JSON body on
    success and raises a HonoApiError subclass on failure.

    Attributes:
        base_url: Hono root URL (no trailing slash)
        is_configured: True when both URL and API key are set
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        submit_timeout_seconds: float = 60.0,
        swap_timeout_seconds: float = 60.0,
        return_timeout_seconds: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self._api_key = api_key or ""
        self.timeout_seconds = timeout_seconds
        self.submit_timeout_seconds = submit_timeout_seconds
        self.swap_timeout_seconds = swap_timeout_seconds
        self.return_timeout_seconds = return_timeout_seconds
        self._logger = logger or logging.getLogger("resort_pos.core.api_client")

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self._api_key)

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        abort_event: Optional[threading.Event] = None,
        timeout_message: Optional[str] = None,
        config_error_type: str = "unknown",
    ) -> httpx.Response:
        """
        Send one request and return the raw response (any status code).

        Raises:
            ApiConfigurationError: URL or key missing
            RequestAbortedError: abort_event set before or during the call
            RequestTimeoutError: timeout elapsed
            HonoApiError: network failure
        """
        if not self.is_configured:
            self._logger.error(f"{method} {path}: HONO_API_URL or HONO_API_KEY is not set")
            raise ApiConfigurationError(error_type=config_error_type)

        if abort_event is not None and abort_event.is_set():
            raise RequestAbortedError()

        timeout = self.timeout_seconds if timeout is None else timeout
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json", "x-api-key": self._api_key}

        self._logger.debug(f"{method} {path} (timeout={timeout}s)")
        start_time = time.time()

        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.request(method, url, json=payload, headers=headers)
        except httpx.TimeoutException:
            if abort_event is not None and abort_event.is_set():
                raise RequestAbortedError()
            self._logger.error(f"{method} {path} timed out after {timeout}s")
            raise RequestTimeoutError(timeout, message=timeout_message)
        except httpx.HTTPError as e:
            if abort_event is not None and abort_event.is_set():
                raise RequestAbortedError()
            self._logger.error(f"{method} {path} failed: {e}")
            raise HonoApiError(str(e) or "Network error", error_type="unknown")

        elapsed = time.time() - start_time
        self._logger.info(f"{method} {path} -> {response.status_code} in {elapsed:.2f}s")

        if abort_event is not None and abort_event.is_set():
            raise RequestAbortedError()

        return response

    @staticmethod
    def _body(response: httpx.Response) -> Any:
        """Decoded JSON body, or None when the body is not JSON."""
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _error_message(
        body: Any, response: httpx.Response, *keys: str, default: Optional[str] = None
    ) -> str:
        """First non-empty string among ``keys`` in the body, else status text, else ``default``."""
        if isinstance(body, dict):
            for key in keys:
                value = body.get(key)
                if isinstance(value, str) and value:
                    return value
        return response.reason_phrase or default or f"HTTP {response.status_code}"

    # =========================================================================
    # PRICING / ORDER INTENT / SUBMISSION / RETRIEVAL
    # =========================================================================

    def calculate_order_price(
        self,
        payload: Dict[str, Any],
        abort_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        POST /api/click-and-collect/calculate-order-price

        Args:
            payload: {resortId, startDate, products: [{productId, consumerCategoryId, insurance}]}

        Returns:
            CalculatedOrderPrice JSON
        """
        response = self._request(
            "POST", "/api/click-and-collect/calculate-order-price",
            payload, abort_event=abort_event,
        )
        body = self._body(response)

        if response.status_code == 400 and isinstance(body, list):
            raise ValidationFailedError(body)
        if not response.is_success:
            raise HonoApiError(
                self._error_message(body, response, "message"),
                error_type="unknown",
                status_code=response.status_code,
            )
        return body

    def create_order_intent(
        self,
        payload: Dict[str, Any],
        abort_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        POST /api/cash-desk/create-order-intent

        Returns:
            {id, status, createdAt, updatedAt} with ``id`` coerced to int
        """
        response = self._request(
            "POST", "/api/cash-desk/create-order-intent",
            payload, abort_event=abort_event,
        )
        if not response.is_success:
            raise HonoApiError(
                f"API request failed with status {response.status_code}",
                error_type="unknown",
                status_code=response.status_code,
            )
        body = self._body(response) or {}
        try:
            body["id"] = int(body["id"])
        except (KeyError, TypeError, ValueError):
            raise HonoApiError(
                "Order intent response did not contain an order ID",
                error_type="unknown",
                status_code=response.status_code,
                details={"body": body},
            )
        return body

    def submit_order(
        self,
        payload: Dict[str, Any],
        abort_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        POST /api/cash-desk/submit-order (60s)

        On failure the backend may include a debug ``sessionId`` which is
        carried on the raised error.
        """
        response = self._request(
            "POST", "/api/cash-desk/submit-order", payload,
            timeout=self.submit_timeout_seconds, abort_event=abort_event,
        )
        body = self._body(response)

        if not response.is_success:
            session_id = body.get("sessionId") if isinstance(body, dict) else None
            if response.status_code == 400 and isinstance(body, list):
                raise ValidationFailedError(body, session_id=session_id)
            if isinstance(body, list):
                message = "Validation errors occurred"
            else:
                message = self._error_message(
                    body, response, "error", "message",
                    default="An error occurred during order submission",
                )
            raise HonoApiError(
                message,
                error_type="unknown",
                status_code=response.status_code,
                session_id=session_id,
            )
        return body if body is not None else {}

    def retrieve_order(
        self,
        order_id: int,
        abort_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """POST /api/kiosk/retrieve-order -> the persisted order row."""
        response = self._request(
            "POST", "/api/kiosk/retrieve-order",
            {"orderId": int(order_id)}, abort_event=abort_event,
        )
        body = self._body(response)
        if not response.is_success:
            raise HonoApiError(
                self._error_message(body, response, "message", "error"),
                status_code=response.status_code,
            )
        return body

    # =========================================================================
    # CATALOG / TERMINALS / DEVICES
    # =========================================================================

    def get_products(self, resort_id: int, start_date: Optional[str] = None) -> Any:
        """
        POST /api/cash-desk/products

        Errors are classified as api_key_invalid, sales_channel_not_found,
        validation (other 4xx) or unknown.
        """
        payload: Dict[str, Any] = {"resortId": resort_id}
        if start_date:
            payload["startDate"] = start_date
        response = self._request("POST", "/api/cash-desk/products", payload)
        body = self._body(response)

        if response.is_success:
            return body

        status = response.status_code
        if body is None:
            error_type = "sales_channel_not_found" if status == 500 else "unknown"
            raise HonoApiError(
                f"{status} {response.reason_phrase}".strip(),
                error_type=error_type,
                status_code=status,
            )

        message = self._error_message(body, response, "message", "error")
        lowered = message.lower()
        if "api key" in lowered or status in (401, 403):
            error_type = "api_key_invalid"
        elif "sales channel" in lowered:
            error_type = "sales_channel_not_found"
        elif 400 <= status < 500:
            error_type = "validation"
        else:
            error_type = "unknown"
        raise HonoApiError(message, error_type=error_type, status_code=status)

    def get_card_readers(self, resort_id: int) -> Any:
        """GET /api/cash-desk/card-readers/{resortId}"""
        response = self._request("GET", f"/api/cash-desk/card-readers/{resort_id}")
        body = self._body(response)
        if not response.is_success:
            raise HonoApiError(
                self._error_message(body, response, "message", "error"),
                status_code=response.status_code,
            )
        return body

    def get_device_status(
        self,
        device_id: str,
        abort_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """POST /api/cash-desk/device-status -> {success, error, data: {devices: [...]}}"""
        response = self._request(
            "POST", "/api/cash-desk/device-status",
            {"deviceId": device_id}, abort_event=abort_event,
        )
        if not response.is_success:
            raise HonoApiError(
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )
        return self._body(response) or {}

    # =========================================================================
    # TERMINAL PAYMENTS
    # =========================================================================

    def create_terminal_payment(
        self,
        payload: Dict[str, Any],
        abort_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        POST /api/cash-desk/create-terminal-payment

        Returns:
            {invoiceId, paymentIntentId, clientSecret, terminalId, totalAmount, currency, orderId}
        """
        response = self._request(
            "POST", "/api/cash-desk/create-terminal-payment", payload,
            abort_event=abort_event, config_error_type="config_error",
        )
        body = self._body(response)
        if response.is_success:
            return body

        status = response.status_code
        if isinstance(body, dict):
            message = self._error_message(body, response, "message", "error")
            lowered = message.lower()
            if "terminal not found" in lowered or "reader not found" in lowered:
                error_type = "terminal_error"
            elif ("stripe configuration" in lowered or "resort not found" in lowered
                    or status in (401, 403)):
                error_type = "config_error"
            elif 400 <= status < 500:
                error_type = "validation"
            else:
                error_type = "unknown"
        else:
            message = f"{status} {response.reason_phrase}".strip()
            error_type = "config_error" if status in (401, 403) else "unknown"
        raise HonoApiError(message, error_type=error_type, status_code=status)

    def check_payment_status(
        self,
        resort_id: int,
        invoice_id: Optional[str] = None,
        order_id: Optional[int] = None,
        abort_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        POST /api/cash-desk/check-payment-status

        Returns the payment status body. ``success: False`` in that body means
        "not paid yet", not an API error.
        """
        if not invoice_id and not order_id:
            raise ValidationFailedError(
                [{"path": ["invoiceId"], "message": "Either invoiceId or orderId must be provided"}],
                message="Either invoiceId or orderId must be provided",
            )
        payload: Dict[str, Any] = {"resortId": resort_id}
        if invoice_id:
            payload["invoiceId"] = invoice_id
        if order_id:
            payload["orderId"] = int(order_id)

        response = self._request(
            "POST", "/api/cash-desk/check-payment-status", payload,
            abort_event=abort_event,
        )
        body = self._body(response)
        if response.is_success:
            return body

        status = response.status_code
        if isinstance(body, dict):
            message = self._error_message(body, response, "message", "error")
            if "not found" in message.lower() or status == 404:
                error_type = "not_found"
            elif 400 <= status < 500:
                error_type = "validation"
            else:
                error_type = "unknown"
        else:
            message = f"{status} {response.reason_phrase}".strip()
            error_type = "not_found" if status == 404 else "unknown"
        raise HonoApiError(message, error_type=error_type, status_code=status)

    def retry_terminal_payment(
        self,
        terminal_id: str,
        invoice_id: Optional[str] = None,
        order_id: Optional[int] = None,
        resort_id: Optional[int] = None,
        abort_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        POST /api/cash-desk/retry-terminal-payment

        Returns:
            {message, paymentIntentId, clientSecret, remainingAmountCents, invoiceId, orderId?}
        """
        payload: Dict[str, Any] = {"terminalId": terminal_id}
        if invoice_id:
            payload["invoiceId"] = invoice_id
        if order_id:
            payload["orderId"] = int(order_id)
        if resort_id is not None:
            payload["resortId"] = resort_id

        response = self._request(
            "POST", "/api/cash-desk/retry-terminal-payment", payload,
            abort_event=abort_event,
        )
        body = self._body(response)
        if response.is_success:
            return body

        status = response.status_code
        if isinstance(body, dict):
            message = self._error_message(body, response, "message", "error")
            lowered = message.lower()
            # "not found" wins over terminal_error, including "reader not found"
            if "not found" in lowered or status == 404:
                error_type = "not_found"
            elif "reader is currently busy" in lowered:
                error_type = "terminal_error"
            elif "already paid" in lowered or "no remaining amount" in lowered:
                error_type = "already_paid"
            elif 400 <= status < 500:
                error_type = "validation"
            else:
                error_type = "unknown"
        else:
            message = f"{status} {response.reason_phrase}".strip()
            error_type = "not_found" if status == 404 else "unknown"
        raise HonoApiError(message, error_type=error_type, status_code=status)

    # =========================================================================
    # LIFEPASS SWAP / SKIPASS / RETURN
    # =========================================================================

    def _swap_call(
        self,
        path: str,
        payload: Dict[str, Any],
        failure_message: str,
        timeout: float,
    ) -> Dict[str, Any]:
        """
        Shared shape of the swap and skipass endpoints.

        Failure is a non-2xx status OR a body with ``success`` falsy. The raw
        body is kept in ``details["data"]`` for provider-specific display.
        """
        response = self._request(
            "POST", path, payload, timeout=timeout,
            timeout_message="Request timed out. Please try again.",
        )
        body = self._body(response)
        if not response.is_success or not isinstance(body, dict) or not body.get("success"):
            raise HonoApiError(
                failure_message,
                error_type="unknown",
                status_code=response.status_code,
                details={"data": body},
            )
        return body

    def swap_active_lifepass(
        self, order_id: int, resort_id: int, old_pass_id: str, new_pass_id: str
    ) -> Dict[str, Any]:
        """POST /api/cash-desk/swap-active-lifepass (60s)"""
        return self._swap_call(
            "/api/cash-desk/swap-active-lifepass",
            {
                "orderId": order_id,
                "resortId": resort_id,
                "oldPassId": old_pass_id,
                "newPassId": new_pass_id,
            },
            "Failed to swap pass. Please try again.",
            self.swap_timeout_seconds,
        )

    def create_skipass(self, order_id: int, old_pass_id: str, new_pass_id: str) -> Dict[str, Any]:
        """POST /api/cash-desk/create-skipass (60s)"""
        return self._swap_call(
            "/api/cash-desk/create-skipass",
            {"orderId": order_id, "oldPassId": old_pass_id, "newPassId": new_pass_id},
            "Failed to create skipass. Please try again.",
            self.swap_timeout_seconds,
        )

    def cancel_skipass(self, order_id: int, device_id: int) -> Dict[str, Any]:
        """POST /api/cash-desk/cancel-skipass (60s)"""
        return self._swap_call(
            "/api/cash-desk/cancel-skipass",
            {"orderId": order_id, "deviceId": device_id},
            "Failed to cancel skipass. Please try again.",
            self.swap_timeout_seconds,
        )

    def return_lifepass(self, device_ids: List[str]) -> Dict[str, Any]:
        """POST /api/cash-desk/return-lifepass (10s)"""
        return self._swap_call(
            "/api/cash-desk/return-lifepass",
            {"deviceIdsArray": list(device_ids)},
            "Failed to return lifepass. Please try again.",
            self.return_timeout_seconds,
        )

    # =========================================================================
    # STRIPE / SKIDATA / MYTH READ PATHS
    # =========================================================================

    def _passthrough(self, path: str, payload: Dict[str, Any]) -> Any:
        response = self._request("POST", path, payload)
        body = self._body(response)
        if not response.is_success:
            raise HonoApiError(
                self._error_message(body, response, "message", "error"),
                status_code=response.status_code,
                details={"data": body} if body is not None else None,
            )
        return body

    def get_stripe_transaction_data(self, order_id: int) -> Any:
        """POST /api/cash-desk/get-stripe-transaction-data"""
        return self._passthrough(
            "/api/cash-desk/get-stripe-transaction-data", {"orderId": order_id}
        )

    def get_skidata_order(self, resort_id: int, skidata_order_id: str) -> Any:
        """POST /api/skidata/get-order"""
        return self._passthrough(
            "/api/skidata/get-order",
            {"resortId": resort_id, "skidataOrderId": skidata_order_id},
        )

    def cancel_skidata_orders(self, order_ids: List[str], resort_id: int) -> Any:
        """POST /api/skidata/cancel-orders"""
        if not order_ids:
            raise ValidationFailedError(
                [{"path": ["orderIds"], "message": "At least one order ID is required"}],
                message="At least one order ID is required",
            )
        return self._passthrough(
            "/api/skidata/cancel-orders",
            {"orderIds": [str(o) for o in order_ids], "resortId": resort_id},
        )

    def cancel_skidata_ticket_items(
        self,
        order_id: str,
        order_item_id: str,
        ticket_item_ids: List[str],
        cancelation_date: str,
        resort_id: int,
    ) -> Any:
        """POST /api/skidata/cancel-ticket-item"""
        if not ticket_item_ids:
            raise ValidationFailedError(
                [{"path": ["ticketItemIdList"], "message": "At least one ticket item is required"}],
                message="At least one ticket item is required",
            )
        return self._passthrough(
            "/api/skidata/cancel-ticket-item",
            {
                "orderId": order_id,
                "orderItemId": order_item_id,
                "ticketItemIdList": list(ticket_item_ids),
                "cancelationDate": cancelation_date,
                "resortId": resort_id,
            },
        )

    def get_myth_order(self, order_id: str) -> Any:
        """POST /api/myth/get-order"""
        return self._passthrough("/api/myth/get-order", {"orderId": order_id})
