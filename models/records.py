"""
SQLAlchemy table mappings.

- OrderRecord: one cash-desk / kiosk order with its price snapshot and the
  downstream Stripe / Skidata / Myth submissions. ``version`` is the
  optimistic concurrency column: every UPDATE is issued with
  ``WHERE version = <loaded version>`` and bumps it.
- SessionRecord: backend request log, read-only here.
- SwapSagaRecord: persisted progress of a lifepass swap.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


ORDER_STATUSES = (
    "ordered", "awaiting-collection", "order-active",
    "cancelled", "cancelled-refunded", "order-complete",
)

PAYMENT_STATUSES = (
    "intent-payment-pending", "payment-processing", "payment-requires-action",
    "payment-sent-to-terminal", "deposit-paid", "fully-paid", "payment-failed",
    "payment-cancelled", "payment-expired", "partially-funded", "capturable",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class OrderRecord(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    order_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payment_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    resort_id: Mapped[int] = mapped_column(Integer, index=True)
    sales_channel: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    client_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    order_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    calculated_order_price: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    stripe_payment_intent_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    stripe_invoice_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    skidata_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    skidata_order_submission_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    myth_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    myth_order_submission_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    myth_order_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    otp: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    test_order: Mapped[bool] = mapped_column(Boolean, default=False)
    was_error: Mapped[bool] = mapped_column(Boolean, default=False)
    errors: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    session_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    device_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def client_name(self) -> str:
        return (self.client_details or {}).get("name", "")

    @property
    def myth_devices(self) -> List[Dict[str, Any]]:
        return list((self.myth_order_submission_data or {}).get("devices", []) or [])

    def to_dict(self) -> Dict[str, Any]:
        """Row in the camelCase shape the backend and templates use."""
        return {
            "id": self.id,
            "status": self.status,
            "orderStatus": self.order_status,
            "paymentStatus": self.payment_status,
            "resortId": self.resort_id,
            "salesChannel": self.sales_channel,
            "clientDetails": self.client_details or {},
            "orderDetails": self.order_details or {},
            "calculatedOrderPrice": self.calculated_order_price,
            "stripePaymentIntentIds": list(self.stripe_payment_intent_ids or []),
            "stripeInvoiceId": self.stripe_invoice_id,
            "skidataOrderId": self.skidata_order_id,
            "skidataOrderSubmissionData": self.skidata_order_submission_data,
            "mythOrderId": self.myth_order_id,
            "mythOrderSubmissionData": self.myth_order_submission_data,
            "mythOrderData": self.myth_order_data,
            "testOrder": bool(self.test_order),
            "wasError": bool(self.was_error),
            "errors": list(self.errors or []),
            "notes": list(self.notes or []),
            "sessionIds": list(self.session_ids or []),
            "deviceIds": list(self.device_ids or []),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "version": self.version,
        }


class SessionRecord(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    session_label: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    session_log: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    connection_info: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    apikey_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class SwapSagaRecord(Base):
    __tablename__ = "swap_sagas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, index=True)
    resort_id: Mapped[int] = mapped_column(Integer)
    old_pass_id: Mapped[str] = mapped_column(String(50))
    old_device_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    new_pass_id: Mapped[str] = mapped_column(String(50))
    current_step: Mapped[str] = mapped_column(String(20), default="1")
    completed_steps: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_error_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    attempts: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
