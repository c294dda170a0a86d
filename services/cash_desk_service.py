"""
Cash-desk actions.

The boundary between the typed-exception HonoClient and the UI: every
method here returns an ActionResult and never raises. HonoApiError
subclasses keep their error_type; anything unexpected is logged with its
traceback and reported as "unknown".

Usage:
    cash_desk = CashDeskService(hono_client)
    result = cash_desk.calculate_order_price(draft.pricing_payload())
    if result.success:
        price = result.data
    elif result.is_validation_error:
        show(result.issues)
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from core.api_client import HonoClient
from core.exceptions import HonoApiError, ValidationFailedError
from logging_config import get_logger
from models.action_result import ActionResult
from models.device import validate_device_status
from models.pricing import CalculatedOrderPrice
from models.swap import format_myth_swap_error


logger = get_logger(__name__)


class CashDeskService:
    """
    ActionResult-returning facade over HonoClient.
    """

    def __init__(self, client: HonoClient):
        self._client = client

    @property
    def client(self) -> HonoClient:
        return self._client

    def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> ActionResult:
        try:
            return ActionResult.ok(fn(*args, **kwargs))
        except ValidationFailedError as e:
            logger.warning(f"{operation}: validation failed ({len(e.issues)} issue(s))")
            return ActionResult.failure(
                e.message, e.error_type, issues=e.issues, session_id=e.session_id,
            )
        except HonoApiError as e:
            logger.error(f"{operation} failed [{e.error_type}]: {e}")
            return ActionResult.failure(
                e.message, e.error_type, session_id=e.session_id, details=e.details,
            )
        except Exception as e:
            logger.error(f"{operation} raised unexpectedly: {e}", exc_info=True)
            return ActionResult.failure(str(e) or "An unexpected error occurred")

    # =========================================================================
    # ORDER CREATION
    # =========================================================================

    def calculate_order_price(
        self, payload: Dict[str, Any], abort_event: Optional[threading.Event] = None
    ) -> ActionResult:
        """data: CalculatedOrderPrice"""
        result = self._call(
            "calculate-order-price", self._client.calculate_order_price, payload,
            abort_event=abort_event,
        )
        if result.success:
            try:
                result.data = CalculatedOrderPrice.from_dict(result.data or {})
            except (TypeError, ValueError, AttributeError) as e:
                logger.error(f"calculate-order-price returned an unreadable body: {e}")
                return ActionResult.failure("Invalid price response from server")
        return result

    def create_order_intent(
        self, payload: Dict[str, Any], abort_event: Optional[threading.Event] = None
    ) -> ActionResult:
        """data: {id, status, createdAt, updatedAt}"""
        return self._call(
            "create-order-intent", self._client.create_order_intent, payload,
            abort_event=abort_event,
        )

    def submit_order(
        self, payload: Dict[str, Any], abort_event: Optional[threading.Event] = None
    ) -> ActionResult:
        logger.info(
            f"Submitting order {payload.get('orderId')} "
            f"(bypassed={payload.get('paymentBypassed')}, resubmit={payload.get('resubmit')})"
        )
        return self._call(
            "submit-order", self._client.submit_order, payload, abort_event=abort_event,
        )

    def retrieve_order(
        self, order_id: int, abort_event: Optional[threading.Event] = None
    ) -> ActionResult:
        return self._call(
            "retrieve-order", self._client.retrieve_order, order_id, abort_event=abort_event,
        )

    def get_products(self, resort_id: int, start_date: Optional[str] = None) -> ActionResult:
        return self._call("products", self._client.get_products, resort_id, start_date)

    def get_card_readers(self, resort_id: int) -> ActionResult:
        return self._call("card-readers", self._client.get_card_readers, resort_id)

    def check_device_status(self, device_id: str) -> ActionResult:
        """data: DeviceValidation"""
        result = self._call("device-status", self._client.get_device_status, device_id)
        if result.success:
            result.data = validate_device_status(result.data)
        return result

    # =========================================================================
    # TERMINAL PAYMENTS
    # =========================================================================

    def create_terminal_payment(self, payload: Dict[str, Any]) -> ActionResult:
        return self._call(
            "create-terminal-payment", self._client.create_terminal_payment, payload,
        )

    def check_payment_status(
        self,
        resort_id: int,
        invoice_id: Optional[str] = None,
        order_id: Optional[int] = None,
    ) -> ActionResult:
        return self._call(
            "check-payment-status", self._client.check_payment_status,
            resort_id, invoice_id=invoice_id, order_id=order_id,
        )

    def retry_terminal_payment(
        self,
        terminal_id: str,
        invoice_id: Optional[str] = None,
        order_id: Optional[int] = None,
        resort_id: Optional[int] = None,
    ) -> ActionResult:
        return self._call(
            "retry-terminal-payment", self._client.retry_terminal_payment,
            terminal_id, invoice_id=invoice_id, order_id=order_id, resort_id=resort_id,
        )

    # =========================================================================
    # LIFEPASS SWAP / RETURN
    # =========================================================================

    def _swap_result(self, operation: str, fn: Callable[..., Any], *args) -> ActionResult:
        result = self._call(operation, fn, *args)
        if not result.success and "data" in result.details:
            # Provider-specific explanation for the operator
            result.details["display"] = format_myth_swap_error(result.details["data"])
        return result

    def swap_active_lifepass(
        self, order_id: int, resort_id: int, old_pass_id: str, new_pass_id: str
    ) -> ActionResult:
        result = self._swap_result(
            "swap-active-lifepass", self._client.swap_active_lifepass,
            order_id, resort_id, old_pass_id, new_pass_id,
        )
        if not result.success and result.error == "API URL or API KEY is not set":
            result.error = "Server configuration error"
        return result

    def create_skipass(self, order_id: int, old_pass_id: str, new_pass_id: str) -> ActionResult:
        return self._swap_result(
            "create-skipass", self._client.create_skipass, order_id, old_pass_id, new_pass_id,
        )

    def cancel_skipass(self, order_id: int, device_id: Any) -> ActionResult:
        return self._swap_result(
            "cancel-skipass", self._client.cancel_skipass, order_id, device_id,
        )

    def return_lifepass(self, device_ids: List[str]) -> ActionResult:
        ids = [str(d).strip() for d in device_ids if str(d).strip()]
        if not ids:
            return ActionResult.failure("No lifepass selected", "validation")
        result = self._call("return-lifepass", self._client.return_lifepass, ids)
        if result.success:
            result.data = {
                "response": result.data,
                "message": f"Successfully returned {len(ids)} lifepass(es)",
            }
        return result

    # =========================================================================
    # STRIPE / SKIDATA / MYTH
    # =========================================================================

    def get_stripe_transaction_data(self, order_id: int) -> ActionResult:
        return self._call(
            "get-stripe-transaction-data", self._client.get_stripe_transaction_data, order_id,
        )

    def get_skidata_order(self, resort_id: int, skidata_order_id: str) -> ActionResult:
        return self._call(
            "skidata get-order", self._client.get_skidata_order, resort_id, skidata_order_id,
        )

    def cancel_skidata_orders(self, order_ids: List[str], resort_id: int) -> ActionResult:
        return self._call(
            "skidata cancel-orders", self._client.cancel_skidata_orders, order_ids, resort_id,
        )

    def cancel_skidata_ticket_items(
        self,
        order_id: str,
        order_item_id: str,
        ticket_item_ids: List[str],
        cancelation_date: str,
        resort_id: int,
    ) -> ActionResult:
        return self._call(
            "skidata cancel-ticket-item", self._client.cancel_skidata_ticket_items,
            order_id, order_item_id, ticket_item_ids, cancelation_date, resort_id,
        )

    def get_myth_order(self, order_id: str) -> ActionResult:
        return self._call("myth get-order", self._client.get_myth_order, order_id)
