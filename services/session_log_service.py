"""
Read-only access to backend session logs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import String, cast, func, select
from sqlalchemy.orm import sessionmaker

from core.database import session_scope
from logging_config import get_logger
from models.records import OrderRecord, SessionRecord
from models.session_log import SessionLog, safe_serialize


logger = get_logger(__name__)


def _row_summary(row: SessionRecord) -> Dict[str, Any]:
    log = row.session_log or {}
    return {
        "id": row.id,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
        "lastActivityAt": row.last_activity_at.isoformat() if row.last_activity_at else None,
        "status": row.status,
        "sessionLabel": row.session_label,
        "orderId": log.get("orderId") if isinstance(log, dict) else None,
    }


class SessionLogService:
    """
    Session list, detail and per-order lookup.
    """

    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory

    def list_sessions(
        self,
        page: int = 1,
        per_page: int = 25,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Sessions newest first.

        Returns:
            {"sessions": [...], "page", "perPage", "total", "pages"}
        """
        page = max(1, int(page))
        per_page = max(1, min(int(per_page), 200))

        conditions = []
        if status:
            conditions.append(SessionRecord.status == status)
        if date_from is not None:
            conditions.append(SessionRecord.created_at >= date_from)
        if date_to is not None:
            conditions.append(SessionRecord.created_at <= date_to)

        with session_scope(self._factory) as db:
            total = db.scalar(select(func.count(SessionRecord.id)).where(*conditions)) or 0
            rows = db.scalars(
                select(SessionRecord)
                .where(*conditions)
                .order_by(SessionRecord.created_at.desc(), SessionRecord.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            ).all()
            sessions = [_row_summary(row) for row in rows]

        return {
            "sessions": sessions,
            "page": page,
            "perPage": per_page,
            "total": total,
            "pages": (total + per_page - 1) // per_page,
        }

    def get_session(self, session_id: int) -> Dict[str, Any]:
        """
        One session with its parsed log and task tree.

        Raises:
            LookupError: no session with that ID
        """
        with session_scope(self._factory) as db:
            row = db.get(SessionRecord, session_id)
            if row is None:
                raise LookupError(f"Session with ID {session_id} not found")

            log = SessionLog.from_dict(session_id, row.session_log)
            order_id = log.order_id
            if order_id is None:
                order_id = self._order_for_session(db, session_id)

            return {
                **_row_summary(row),
                "orderId": order_id,
                "connectionInfo": safe_serialize(row.connection_info),
                "log": log,
            }

    @staticmethod
    def _order_for_session(db, session_id: int) -> Optional[int]:
        # Coarse text prefilter, exact match on the decoded JSON list below
        for order_id, session_ids in db.execute(
            select(OrderRecord.id, OrderRecord.session_ids).where(
                OrderRecord.session_ids.is_not(None),
                cast(OrderRecord.session_ids, String).contains(str(session_id)),
            )
        ):
            if session_id in (session_ids or []):
                return order_id
        return None

    def sessions_for_order(self, session_ids: List[int]) -> List[Dict[str, Any]]:
        """Sessions listed on an order, skipping rows without created_at or status."""
        ids = [int(s) for s in session_ids or [] if str(s).isdigit()]
        if not ids:
            return []
        with session_scope(self._factory) as db:
            rows = db.scalars(
                select(SessionRecord)
                .where(SessionRecord.id.in_(ids))
                .order_by(SessionRecord.created_at.desc())
            ).all()
            return [
                _row_summary(row) for row in rows
                if row.created_at is not None and row.status
            ]
