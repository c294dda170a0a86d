"""
Data models for ResortPOS.

This module contains dataclasses for:
- OrderDraft: Order being assembled at the cash desk (FrozenOrderDraft for threads)
- CalculatedOrderPrice: Pricing result snapshot
- CheckoutState: Wizard state and its pure reducer (models.checkout)
- PaymentState: Terminal payment progress
- SwapProgress: Lifepass swap saga progress
- SessionLog: Backend request log with its task tree
- ActionResult: Discriminated success/error result of remote actions

SQLAlchemy table mappings live in models.records.
"""

from .action_result import ActionResult, ErrorType
from .order_draft import OrderDraft, OrderDevice, FrozenOrderDraft
from .pricing import CalculatedOrderPrice, CalculatedPrice, PriceDetails, OrderItemPrice
from .payment import PaymentState, PaymentStatus
from .checkout import CheckoutState, CheckoutStep, transition
from .swap import SwapProgress, SwapStep
from .session_log import SessionLog, TaskNode

__all__ = [
    "ActionResult",
    "ErrorType",
    "OrderDraft",
    "OrderDevice",
    "FrozenOrderDraft",
    "CalculatedOrderPrice",
    "CalculatedPrice",
    "PriceDetails",
    "OrderItemPrice",
    "PaymentState",
    "PaymentStatus",
    "CheckoutState",
    "CheckoutStep",
    "transition",
    "SwapProgress",
    "SwapStep",
    "SessionLog",
    "TaskNode",
]
