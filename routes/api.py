"""
API routes (AJAX endpoints).

Handles:
- /api/checkout/payment-status - Poll terminal payment status
- /api/checkout/state - Current checkout step
- /api/devices/<id>/status - Lifepass device validation
- /api/devices/<code>/orders - Other orders holding a device code
"""

from flask import Blueprint, current_app

from logging_config import get_logger
from routes.checkout_session import STEP_ENDPOINTS, current_saga


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/api/checkout/payment-status", methods=["GET"])
def payment_status():
    """
    Payment progress for the current checkout.

    ``step`` tells the page when the payment thread has advanced the
    checkout to submission.
    """
    saga = current_saga()
    if saga is None:
        return {"success": False, "error": "No checkout in progress", "errorType": "validation"}, 404

    payment = saga.payment
    return {
        "success": True,
        "data": {
            **payment.to_dict(),
            "step": saga.step.value,
            "canRetry": payment.can_retry and payment.retry_count < saga.max_payment_retries,
        },
    }, 200


@api_bp.route("/api/checkout/state", methods=["GET"])
def checkout_state():
    saga = current_saga()
    if saga is None:
        return {"success": True, "data": {"step": None}}, 200
    state = saga.state
    return {
        "success": True,
        "data": {
            "step": state.step.value,
            "endpoint": STEP_ENDPOINTS[state.step],
            "orderId": state.order_id,
            "resubmit": state.resubmit,
            "retryCount": state.retry_count,
        },
    }, 200


@api_bp.route("/api/devices/<device_id>/status", methods=["GET"])
def device_status(device_id: str):
    """Device status with validation criteria for the swap form."""
    result = current_app.config["CASH_DESK_SERVICE"].check_device_status(device_id)
    if not result.success:
        return result.to_dict(), 400 if result.is_validation_error else 502
    return {"success": True, "data": result.data.to_dict()}, 200


@api_bp.route("/api/devices/<device_code>/orders", methods=["GET"])
def device_orders(device_code: str):
    """Orders referencing a device code (advisory, never blocks a swap)."""
    repository = current_app.config["ORDER_REPOSITORY"]
    return {"success": True, "data": repository.find_by_device_code(device_code)}, 200
