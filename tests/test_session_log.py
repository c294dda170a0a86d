"""
Tests for session log parsing and SessionLogService.
"""

import pytest

from conftest import naive
from models.session_log import SessionLog, build_task_tree, safe_serialize, task_summary
from services.session_log_service import SessionLogService


TASKS = [
    {"id": "1", "description": "Submit order", "status": "completed",
     "startTime": "2026-01-10T09:00:00Z", "endTime": "2026-01-10T09:00:02Z"},
    {"id": "2", "parentId": "1", "description": "Skidata", "status": "failed",
     "error": {"message": "Timeout"}},
    {"id": "3", "parentId": "2", "description": "Retry", "status": "bogus"},
    {"id": "4", "parentId": "missing", "description": "Orphan", "status": "warning"},
]


# Fixtures

@pytest.fixture
def logs(session_factory):
    return SessionLogService(session_factory)


# Parsing

class TestTaskTree:

    def test_tree_and_levels(self):
        roots = build_task_tree(TASKS)

        assert [r.id for r in roots] == ["1", "4"]
        assert [n.level for n in roots[0].walk()] == [0, 1, 2]
        assert roots[0].duration_ms == 2000.0

    def test_unknown_status_becomes_pending(self):
        roots = build_task_tree(TASKS)

        assert roots[0].children[0].children[0].status == "pending"

    def test_summary(self):
        summary = task_summary(TASKS)

        assert summary["completed"] == 1
        assert summary["failed"] == 1
        assert summary["pending"] == 1
        assert summary["warning"] == 1
        assert summary["total"] == 4


class TestSafeSerialize:

    def test_depth_limit(self):
        nested = {"a": {"b": {"c": 1}}}

        assert safe_serialize(nested, max_depth=1) == {"a": {"b": "[Max Depth Reached]"}}

    def test_datetimes_and_objects(self):
        assert safe_serialize({"at": naive(2026, 1, 10), "obj": object})["at"] == "2026-01-10T12:00:00"


class TestSessionLog:

    def test_order_id_from_string(self):
        log = SessionLog.from_dict(5, {"orderId": "42", "taskTracker": {"tasks": TASKS}})

        assert log.order_id == 42
        assert log.summary["total"] == 4

    def test_error_actions(self):
        log = SessionLog.from_dict(5, {"actions": [{"type": "info"}, {"type": "error", "message": "x"}]})

        assert log.error_actions == [{"type": "error", "message": "x"}]


# Service

class TestSessionLogService:

    def test_pagination_newest_first(self, logs, add_session):
        for session_id in range(1, 6):
            add_session(session_id, created_at=naive(2026, 1, session_id), status="completed")

        page = logs.list_sessions(page=2, per_page=2)

        assert [s["id"] for s in page["sessions"]] == [3, 2]
        assert page["total"] == 5
        assert page["pages"] == 3

    def test_status_filter(self, logs, add_session):
        add_session(1, created_at=naive(2026, 1, 1), status="completed")
        add_session(2, created_at=naive(2026, 1, 2), status="failed")

        page = logs.list_sessions(status="failed")

        assert [s["id"] for s in page["sessions"]] == [2]

    def test_missing_session(self, logs):
        with pytest.raises(LookupError, match="Session with ID 9 not found"):
            logs.get_session(9)

    def test_order_id_falls_back_to_orders(self, logs, add_session, add_order):
        add_session(7, created_at=naive(2026, 1, 1), status="failed", session_log={"status": "failed"})
        add_order(42, session_ids=[6, 7])

        detail = logs.get_session(7)

        assert detail["orderId"] == 42
        assert detail["log"].status == "failed"

    def test_order_fallback_needs_an_exact_session_id(self, logs, add_session, add_order):
        add_session(7, created_at=naive(2026, 1, 1), status="failed", session_log={"status": "failed"})
        add_session(8, created_at=naive(2026, 1, 1), status="failed", session_log={"status": "failed"})
        add_order(41, session_ids=[17, 70])
        add_order(42, session_ids=[6, 7])

        assert logs.get_session(7)["orderId"] == 42
        assert logs.get_session(8)["orderId"] is None

    def test_sessions_for_order_skips_incomplete_rows(self, logs, add_session):
        add_session(1, created_at=naive(2026, 1, 1), status="completed")
        add_session(2, created_at=None, status="completed")
        add_session(3, created_at=naive(2026, 1, 2), status=None)

        assert [s["id"] for s in logs.sessions_for_order([1, 2, 3, "x"])] == [1]
