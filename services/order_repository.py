"""
Order persistence: search, detail and admin mutations.

Optimistic concurrency:
    Admin writes take the ``version`` the operator last saw. A mismatch is
    rejected with StaleOrderError before anything is written. Two writers
    racing past that check are still caught at UPDATE time by SQLAlchemy's
    ``version_id_col`` (UPDATE ... WHERE version = ?), which also bumps the
    version on every successful write.

Every successful write invalidates the "orders" cache tag.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import String, cast, or_, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from core.database import session_scope
from core.exceptions import OrderNotFoundError, StaleOrderError
from logging_config import get_logger
from models.records import OrderRecord, utcnow
from services.cache_service import ORDERS_TAG, TaggedCache


logger = get_logger(__name__)

SEARCH_TYPES = ("orderNumber", "deviceId", "phoneNumber")
NOTE_TYPES = ("note", "error")
PAID_PAYMENT_STATUS = "fully-paid"
COMPLETE_ORDER_STATUS = "order-complete"


def _devices_in(data: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not isinstance(data, dict):
        return []
    devices = data.get("devices")
    return [d for d in devices if isinstance(d, dict)] if isinstance(devices, list) else []


def record_device_entries(record: OrderRecord) -> List[Dict[str, Any]]:
    """Myth device entries of an order, from the submission and the stored Myth order."""
    entries = _devices_in(record.myth_order_submission_data)
    myth_data = record.myth_order_data or {}
    entries += _devices_in(myth_data.get("orderDetails") if isinstance(myth_data, dict) else None)
    return entries


class OrderRepository:
    """
    Read and write access to the ``orders`` table.
    """

    def __init__(self, session_factory: sessionmaker, cache: Optional[TaggedCache] = None):
        self._factory = session_factory
        self._cache = cache or TaggedCache()

    @property
    def cache(self) -> TaggedCache:
        return self._cache

    def invalidate(self) -> None:
        """Revalidate the "orders" tag after any order write."""
        self._cache.invalidate_tag(ORDERS_TAG)

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, order_id: int) -> Dict[str, Any]:
        """
        Raises:
            OrderNotFoundError: no such order
        """
        with session_scope(self._factory) as db:
            record = db.get(OrderRecord, order_id)
            if record is None:
                raise OrderNotFoundError(order_id)
            return record.to_dict()

    def find(self, order_id: int) -> Optional[Dict[str, Any]]:
        try:
            return self.get(order_id)
        except OrderNotFoundError:
            return None

    def list_recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        with session_scope(self._factory) as db:
            rows = db.scalars(
                select(OrderRecord).order_by(OrderRecord.created_at.desc()).limit(limit)
            ).all()
            return [row.to_dict() for row in rows]

    def search(self, search_type: str, value: str) -> List[Dict[str, Any]]:
        """
        Find orders by order number, lifepass device code or phone number.

        Results are newest first and cached under the "orders" tag.

        Raises:
            ValueError: unknown search type, empty value or non-numeric order number
        """
        value = (value or "").strip()
        if search_type not in SEARCH_TYPES or not value:
            raise ValueError("Invalid search data")
        if search_type == "orderNumber" and not value.isdigit():
            raise ValueError("Invalid search data")

        cache_key = ("search", search_type, value)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        with session_scope(self._factory) as db:
            query = select(OrderRecord).order_by(OrderRecord.created_at.desc())

            if search_type == "orderNumber":
                rows = db.scalars(query.where(OrderRecord.id == int(value))).all()

            elif search_type == "deviceId":
                # Coarse text prefilter, exact match on the decoded JSON below
                candidates = db.scalars(query.where(or_(
                    cast(OrderRecord.myth_order_submission_data, String).contains(value),
                    cast(OrderRecord.myth_order_data, String).contains(value),
                ))).all()
                rows = [
                    r for r in candidates
                    if any(str(d.get("deviceCode", "")) == value for d in record_device_entries(r))
                ]

            else:
                candidates = db.scalars(query.where(
                    cast(OrderRecord.client_details, String).contains(value)
                )).all()
                rows = [
                    r for r in candidates
                    if value in str((r.client_details or {}).get("mobile", ""))
                ]

            results = [row.to_dict() for row in rows]

        self._cache.set(cache_key, results, tags=[ORDERS_TAG])
        logger.info(f"Search {search_type}={value!r}: {len(results)} order(s)")
        return results

    def find_by_device_code(self, device_code: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Orders referencing a lifepass device code, newest first.

        Each entry carries the matching device's allocation info. Codes
        shorter than 3 characters return nothing.
        """
        device_code = (device_code or "").strip()
        if len(device_code) < 3:
            return []

        with session_scope(self._factory) as db:
            candidates = db.scalars(
                select(OrderRecord)
                .where(or_(
                    cast(OrderRecord.myth_order_submission_data, String).contains(device_code),
                    cast(OrderRecord.myth_order_data, String).contains(device_code),
                ))
                .order_by(OrderRecord.created_at.desc())
            ).all()

            results = []
            for record in candidates:
                match = next(
                    (d for d in record_device_entries(record)
                     if str(d.get("deviceCode", "")) == device_code),
                    None,
                )
                if match is None:
                    continue
                submission = record.myth_order_submission_data or {}
                results.append({
                    "id": record.id,
                    "orderStatus": record.order_status,
                    "paymentStatus": record.payment_status,
                    "resortId": record.resort_id,
                    "clientEmail": (record.client_details or {}).get("email"),
                    "createdAt": record.created_at.isoformat() if record.created_at else None,
                    "mythOrderId": record.myth_order_id,
                    "deviceInfo": {
                        "deviceCode": match.get("deviceCode"),
                        "deviceId": match.get("deviceId"),
                        "deviceAllocated": match.get("deviceAllocated"),
                        "dtaCode": match.get("dtaCode"),
                    },
                    "mythFrom": submission.get("from"),
                    "mythTo": submission.get("to"),
                })
                if len(results) >= limit:
                    break
            return results

    def list_for_statistics(
        self,
        resort_id: int,
        date_from: datetime,
        date_to: datetime,
        include_test_orders: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Paid or completed orders of one resort created within [date_from, date_to].
        """
        with session_scope(self._factory) as db:
            query = select(OrderRecord).where(
                OrderRecord.resort_id == resort_id,
                OrderRecord.created_at >= date_from,
                OrderRecord.created_at <= date_to,
                or_(
                    OrderRecord.payment_status == PAID_PAYMENT_STATUS,
                    OrderRecord.order_status == COMPLETE_ORDER_STATUS,
                    OrderRecord.status.in_((PAID_PAYMENT_STATUS, COMPLETE_ORDER_STATUS)),
                ),
            )
            if not include_test_orders:
                query = query.where(or_(
                    OrderRecord.test_order == False,  # noqa: E712
                    OrderRecord.test_order.is_(None),
                ))
            rows = db.scalars(query.order_by(OrderRecord.created_at)).all()
            return [row.to_dict() for row in rows]

    # =========================================================================
    # WRITES
    # =========================================================================

    def _current_version(self, order_id: int) -> int:
        with session_scope(self._factory) as db:
            record = db.get(OrderRecord, order_id)
            return record.version if record is not None else -1

    def _mutate(
        self,
        order_id: int,
        expected_version: Optional[int],
        change: Callable[[OrderRecord], None],
    ) -> Dict[str, Any]:
        """
        Load, check version, apply ``change`` and commit.

        Raises:
            OrderNotFoundError: no such order
            StaleOrderError: expected_version does not match the stored version
        """
        try:
            with session_scope(self._factory) as db:
                record = db.get(OrderRecord, order_id)
                if record is None:
                    raise OrderNotFoundError(order_id)
                if expected_version is not None and record.version != expected_version:
                    raise StaleOrderError(order_id, expected_version, record.version)
                change(record)
                db.flush()
                result = record.to_dict()
        except StaleDataError as e:
            actual = self._current_version(order_id)
            logger.warning(f"Concurrent write on order {order_id} detected at UPDATE")
            raise StaleOrderError(order_id, expected_version or -1, actual) from e

        self.invalidate()
        return result

    def toggle_test_order(self, order_id: int, expected_version: Optional[int]) -> Tuple[Dict[str, Any], str]:
        def change(record: OrderRecord) -> None:
            record.test_order = not record.test_order

        order = self._mutate(order_id, expected_version, change)
        message = "Order marked as test order" if order["testOrder"] else "Order marked as live order"
        logger.info(f"Order {order_id}: {message}")
        return order, message

    def toggle_error(self, order_id: int, expected_version: Optional[int]) -> Tuple[Dict[str, Any], str]:
        def change(record: OrderRecord) -> None:
            record.was_error = not record.was_error

        order = self._mutate(order_id, expected_version, change)
        message = "Order marked as having an error" if order["wasError"] else "Order error cleared"
        logger.info(f"Order {order_id}: {message}")
        return order, message

    @staticmethod
    def _new_note(text: str, note_type: str, created_by: str) -> Dict[str, Any]:
        if note_type not in NOTE_TYPES:
            raise ValueError(f"Invalid note type: {note_type}")
        if not text.strip():
            raise ValueError("Note text is required")
        return {
            "id": uuid.uuid4().hex,
            "text": text.strip(),
            "type": note_type,
            "createdAt": utcnow().isoformat(),
            "createdBy": created_by,
            "resolution": None,
        }

    def add_note(
        self,
        order_id: int,
        text: str,
        note_type: str = "note",
        created_by: str = "admin",
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Append a note; an "error" note also flags the order as errored."""
        note = self._new_note(text, note_type, created_by)

        def change(record: OrderRecord) -> None:
            # Reassign so the JSON column is marked dirty
            record.notes = list(record.notes or []) + [note]
            if note_type == "error":
                record.was_error = True

        return self._mutate(order_id, expected_version, change)

    def add_bulk_note(
        self,
        order_ids: Sequence[int],
        text: str,
        note_type: str = "note",
        created_by: str = "admin",
    ) -> str:
        if not order_ids:
            raise ValueError("No orders selected")
        for order_id in order_ids:
            self.add_note(order_id, text, note_type, created_by)
        return f"Note added to {len(order_ids)} order(s)"

    def _bulk_update(self, order_ids: Sequence[int], change: Callable[[OrderRecord], None]) -> int:
        if not order_ids:
            raise ValueError("No orders selected")
        with session_scope(self._factory) as db:
            records = db.scalars(select(OrderRecord).where(OrderRecord.id.in_(list(order_ids)))).all()
            for record in records:
                change(record)
            count = len(records)
        self.invalidate()
        return count

    def bulk_set_test_order(self, order_ids: Sequence[int], is_test: bool) -> str:
        def change(record: OrderRecord) -> None:
            record.test_order = is_test

        count = self._bulk_update(order_ids, change)
        return f"{count} order(s) marked as {'test' if is_test else 'live'}"

    def bulk_set_error(self, order_ids: Sequence[int], has_error: bool) -> str:
        def change(record: OrderRecord) -> None:
            record.was_error = has_error

        count = self._bulk_update(order_ids, change)
        if has_error:
            return f"{count} order(s) marked as having an error"
        return f"{count} order(s) error cleared"

    # =========================================================================
    # SYNC FROM BACKEND
    # =========================================================================

    _BACKEND_FIELDS = {
        "status": "status",
        "orderStatus": "order_status",
        "paymentStatus": "payment_status",
        "resortId": "resort_id",
        "salesChannel": "sales_channel",
        "clientDetails": "client_details",
        "orderDetails": "order_details",
        "calculatedOrderPrice": "calculated_order_price",
        "stripePaymentIntentIds": "stripe_payment_intent_ids",
        "stripeInvoiceId": "stripe_invoice_id",
        "skidataOrderId": "skidata_order_id",
        "skidataOrderSubmissionData": "skidata_order_submission_data",
        "mythOrderId": "myth_order_id",
        "mythOrderSubmissionData": "myth_order_submission_data",
        "mythOrderData": "myth_order_data",
        "otp": "otp",
        "testOrder": "test_order",
        "wasError": "was_error",
        "errors": "errors",
        "sessionIds": "session_ids",
        "deviceIds": "device_ids",
    }

    def upsert_from_backend(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Store the order row returned by retrieve-order.

        Notes are local to this admin and are never overwritten.
        """
        order_id = int(data["id"])
        with session_scope(self._factory) as db:
            record = db.get(OrderRecord, order_id)
            if record is None:
                record = OrderRecord(id=order_id, resort_id=int(data.get("resortId") or 0))
                db.add(record)
            for key, attr in self._BACKEND_FIELDS.items():
                if key in data:
                    value = data[key]
                    if key == "resortId":
                        value = int(value or 0)
                    setattr(record, attr, value)
            created = data.get("createdAt")
            if isinstance(created, str) and created:
                try:
                    record.created_at = datetime.fromisoformat(created.replace("Z", "+00:00"))
                except ValueError:
                    logger.warning(f"Order {order_id}: unparseable createdAt {created!r}")
            db.flush()
            result = record.to_dict()
        self.invalidate()
        logger.info(f"Order {order_id} synced from backend")
        return result
