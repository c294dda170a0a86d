"""
Lifepass swap and return.

A swap is a persisted three-step saga (see models.swap). Each call to
``run_next_step`` sends exactly one remote request for the saga's current
step:

    success -> step recorded in completed_steps, saga advances
    failure -> saga stays at the step, last_error and attempts[step] updated

A step already in completed_steps is never sent again, so re-running after
a failure only repeats the failed step. Two concurrent runs of the same
saga are rejected.

Usage:
    swaps = SwapService(cash_desk, repository, session_factory)
    saga = swaps.start(order_id, resort_id, "12345", "67890")
    result = swaps.run_next_step(saga.id)
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from core.database import session_scope
from logging_config import get_logger
from models.action_result import ActionResult, ErrorType
from models.records import SwapSagaRecord
from models.swap import SwapProgress, SwapStep
from services.cash_desk_service import CashDeskService
from services.order_repository import OrderRepository


logger = get_logger(__name__)


def _progress(record: SwapSagaRecord) -> SwapProgress:
    return SwapProgress(
        id=record.id,
        order_id=record.order_id,
        resort_id=record.resort_id,
        old_pass_id=record.old_pass_id,
        new_pass_id=record.new_pass_id,
        old_device_code=record.old_device_code,
        current_step=SwapStep(record.current_step),
        completed_steps=list(record.completed_steps or []),
        last_error=record.last_error,
        last_error_details=record.last_error_details,
        attempts=dict(record.attempts or {}),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class SwapService:
    """
    Runs lifepass swap sagas and lifepass returns.
    """

    def __init__(
        self,
        cash_desk: CashDeskService,
        repository: OrderRepository,
        session_factory: sessionmaker,
    ):
        self._cash_desk = cash_desk
        self._repository = repository
        self._factory = session_factory
        self._running: Set[int] = set()
        self._lock = threading.Lock()

    # =========================================================================
    # SAGA LIFECYCLE
    # =========================================================================

    def start(self, order_id: int, resort_id: int, old_pass_id: str, new_pass_id: str) -> SwapProgress:
        """
        Create a swap saga, or return the unfinished one for the same passes.

        Raises:
            ValueError: a pass ID is missing or both are the same
        """
        old_pass_id = (old_pass_id or "").strip()
        new_pass_id = (new_pass_id or "").strip()
        if not new_pass_id:
            raise ValueError("Please enter a new pass ID")
        if not old_pass_id:
            raise ValueError("Please select the pass to swap")
        if old_pass_id == new_pass_id:
            raise ValueError("The new pass ID must differ from the old one")

        device_code = self._old_device_code(order_id, old_pass_id)
        with session_scope(self._factory) as db:
            existing = db.scalars(
                select(SwapSagaRecord).where(
                    SwapSagaRecord.order_id == order_id,
                    SwapSagaRecord.old_pass_id == old_pass_id,
                    SwapSagaRecord.new_pass_id == new_pass_id,
                    SwapSagaRecord.current_step != SwapStep.COMPLETE.value,
                )
            ).first()
            if existing is not None:
                logger.info(f"Resuming swap saga {existing.id} at step {existing.current_step}")
                return _progress(existing)

            record = SwapSagaRecord(
                order_id=order_id,
                resort_id=resort_id,
                old_pass_id=old_pass_id,
                new_pass_id=new_pass_id,
                old_device_code=device_code,
                current_step=SwapStep.SWAP_ON_MYTH.value,
                completed_steps=[],
                attempts={},
            )
            db.add(record)
            db.flush()
            logger.info(f"Swap saga {record.id} created: order {order_id} {old_pass_id} -> {new_pass_id}")
            return _progress(record)

    def get(self, saga_id: int) -> Optional[SwapProgress]:
        with session_scope(self._factory) as db:
            record = db.get(SwapSagaRecord, saga_id)
            return _progress(record) if record is not None else None

    def list_for_order(self, order_id: int) -> List[SwapProgress]:
        with session_scope(self._factory) as db:
            rows = db.scalars(
                select(SwapSagaRecord)
                .where(SwapSagaRecord.order_id == order_id)
                .order_by(SwapSagaRecord.created_at.desc())
            ).all()
            return [_progress(row) for row in rows]

    # =========================================================================
    # STEPS
    # =========================================================================

    def _old_device_code(self, order_id: int, old_pass_id: str) -> str:
        """Myth deviceCode of the old pass; falls back to the pass ID itself."""
        order = self._repository.find(order_id)
        devices = ((order or {}).get("mythOrderSubmissionData") or {}).get("devices") or []
        for device in devices:
            if not isinstance(device, dict):
                continue
            if old_pass_id in (str(device.get("deviceId", "")), str(device.get("deviceCode", ""))):
                return str(device.get("deviceCode") or old_pass_id)
        return old_pass_id

    def _send(self, progress: SwapProgress) -> ActionResult:
        step = progress.current_step
        if step == SwapStep.SWAP_ON_MYTH:
            return self._cash_desk.swap_active_lifepass(
                progress.order_id, progress.resort_id,
                progress.device_code, progress.new_pass_id,
            )
        if step == SwapStep.CREATE_NEW_SKIPASS:
            return self._cash_desk.create_skipass(
                progress.order_id, progress.device_code, progress.new_pass_id,
            )
        old = progress.device_code
        return self._cash_desk.cancel_skipass(progress.order_id, int(old) if old.isdigit() else old)

    def run_next_step(self, saga_id: int) -> ActionResult:
        """
        Send the saga's current step.

        data: SwapProgress after the step (also on failure, via details["progress"])
        """
        with self._lock:
            if saga_id in self._running:
                return ActionResult.failure("Swap step already in progress")
            self._running.add(saga_id)

        try:
            progress = self.get(saga_id)
            if progress is None:
                return ActionResult.failure(f"Swap {saga_id} not found", ErrorType.NOT_FOUND.value)
            if progress.is_complete:
                return ActionResult.ok(progress)

            step = progress.current_step
            if progress.is_done(step):
                progress = self._advance(saga_id, step, record_completion=False)
                return ActionResult.ok(progress)

            logger.info(f"Swap {saga_id}: running step {step.value} ({step.label})")
            result = self._send(progress)

            if result.success:
                progress = self._advance(saga_id, step, record_completion=True)
                self._repository.invalidate()
                logger.info(f"Swap {saga_id}: step {step.value} done")
                return ActionResult.ok(progress)

            message = result.details.get("display") or result.error or "Unknown error"
            progress = self._record_failure(saga_id, step, message, result.details.get("data"))
            logger.error(f"Swap {saga_id}: step {step.value} failed: {message}")
            return ActionResult.failure(
                message, result.error_type, details={"progress": progress},
            )
        finally:
            with self._lock:
                self._running.discard(saga_id)

    def _advance(self, saga_id: int, step: SwapStep, record_completion: bool) -> SwapProgress:
        with session_scope(self._factory) as db:
            record = db.get(SwapSagaRecord, saga_id)
            completed = list(record.completed_steps or [])
            if record_completion and step.value not in completed:
                completed.append(step.value)
            record.completed_steps = completed
            record.current_step = step.next.value
            record.last_error = None
            record.last_error_details = None
            db.flush()
            return _progress(record)

    def _record_failure(
        self,
        saga_id: int,
        step: SwapStep,
        message: str,
        details: Any,
    ) -> SwapProgress:
        with session_scope(self._factory) as db:
            record = db.get(SwapSagaRecord, saga_id)
            attempts = dict(record.attempts or {})
            attempts[step.value] = attempts.get(step.value, 0) + 1
            record.attempts = attempts
            record.last_error = message
            record.last_error_details = details if isinstance(details, dict) else None
            db.flush()
            return _progress(record)

    # =========================================================================
    # ADVISORY LOOKUPS / RETURN
    # =========================================================================

    def find_allocations(self, device_code: str, exclude_order_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Other orders holding this device code as allocated (advisory only)."""
        matches = self._repository.find_by_device_code(device_code)
        return [
            m for m in matches
            if m["id"] != exclude_order_id and m["deviceInfo"].get("deviceAllocated") is True
        ]

    def return_lifepass(self, order_id: int, device_ids: List[str]) -> ActionResult:
        result = self._cash_desk.return_lifepass(device_ids)
        if result.success:
            self._repository.invalidate()
            logger.info(f"Order {order_id}: {result.data['message']}")
        return result
