"""
Services layer for ResortPOS.

This module contains the business logic services:
- CashDeskService: ActionResult facade over the Hono client
- PaymentService: Terminal payment threads and poll loop
- CheckoutSaga / CheckoutRegistry: Order-creation wizard per operator session
- SwapService: Persisted lifepass swap saga and lifepass return
- OrderRepository: Order search, detail and admin mutations
- StatisticsService: Revenue statistics
- SessionLogService: Backend session log inspection

Thread Model:
    Main Thread (Flask)
    └── PaymentService threads (one per terminal payment)
"""

from .cache_service import TaggedCache, ORDERS_TAG
from .cash_desk_service import CashDeskService
from .payment_service import PaymentService
from .checkout_service import CheckoutRegistry, CheckoutSaga, OrderIntentTracker
from .order_repository import OrderRepository
from .swap_service import SwapService
from .statistics_service import StatisticsService, compute_statistics
from .session_log_service import SessionLogService

__all__ = [
    "TaggedCache",
    "ORDERS_TAG",
    "CashDeskService",
    "PaymentService",
    "CheckoutRegistry",
    "CheckoutSaga",
    "OrderIntentTracker",
    "OrderRepository",
    "SwapService",
    "StatisticsService",
    "compute_statistics",
    "SessionLogService",
]
