"""
Session log read models.

A session log is written by the Hono backend for every kiosk / cash-desk
request: the request and response bodies, a list of actions and a flat task
list whose ``parentId`` links form a tree. This codebase only reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


MAX_SERIALIZE_DEPTH = 10
TASK_STATUSES = ("pending", "in_progress", "completed", "failed", "warning")


def safe_serialize(value: Any, depth: int = 0, max_depth: int = MAX_SERIALIZE_DEPTH) -> Any:
    """
    Convert arbitrary nested data into JSON-safe values.

    Nesting deeper than ``max_depth`` is replaced by "[Max Depth Reached]".
    """
    if depth > max_depth:
        return "[Max Depth Reached]"
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): safe_serialize(v, depth + 1, max_depth) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [safe_serialize(v, depth + 1, max_depth) for v in value]
    return str(value)


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


@dataclass
class TaskNode:
    """One task of the backend's task tracker, with its children attached."""

    id: str
    description: str
    status: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = None
    error: Optional[Dict[str, Any]] = None
    response_data: Any = None
    parent_id: Optional[str] = None
    level: int = 0
    children: List["TaskNode"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskNode":
        start = _parse_time(data.get("startTime"))
        end = _parse_time(data.get("endTime"))
        duration = data.get("duration")
        if duration is None and start is not None and end is not None:
            duration = (end - start).total_seconds() * 1000.0
        status = data.get("status", "pending")
        return cls(
            id=str(data.get("id", "")),
            description=data.get("description", ""),
            status=status if status in TASK_STATUSES else "pending",
            start_time=start,
            end_time=end,
            duration_ms=duration,
            error=data.get("error"),
            response_data=safe_serialize(data.get("responseData")),
            parent_id=str(data["parentId"]) if data.get("parentId") else None,
        )

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


def build_task_tree(tasks: List[Dict[str, Any]]) -> List[TaskNode]:
    """
    Rebuild the task tree from the flat task list.

    Tasks whose parent is missing become roots. Levels are assigned from
    the root (0) down.
    """
    nodes = [TaskNode.from_dict(task) for task in tasks or [] if isinstance(task, dict)]
    by_id = {node.id: node for node in nodes}

    roots = []
    for node in nodes:
        parent = by_id.get(node.parent_id) if node.parent_id else None
        if parent is not None and parent is not node:
            parent.children.append(node)
        else:
            roots.append(node)

    def assign_levels(node: TaskNode, level: int, seen: set) -> None:
        if node.id in seen:
            return
        seen.add(node.id)
        node.level = level
        for child in node.children:
            assign_levels(child, level + 1, seen)

    seen: set = set()
    for root in roots:
        assign_levels(root, 0, seen)
    return roots


def task_summary(tasks: List[Dict[str, Any]]) -> Dict[str, int]:
    """Number of tasks per status, plus the total."""
    summary = {status: 0 for status in TASK_STATUSES}
    for task in tasks or []:
        status = task.get("status", "pending") if isinstance(task, dict) else "pending"
        summary[status if status in summary else "pending"] += 1
    summary["total"] = sum(summary.values())
    return summary


@dataclass
class SessionLog:
    """
    Parsed ``session_log`` JSON of one session row.
    """

    session_id: int
    status: str = ""
    created_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    actions: List[Dict[str, Any]] = field(default_factory=list)
    request_object: Any = None
    response_object: Any = None
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    order_id: Optional[int] = None

    @property
    def task_tree(self) -> List[TaskNode]:
        return build_task_tree(self.tasks)

    @property
    def summary(self) -> Dict[str, int]:
        return task_summary(self.tasks)

    @property
    def error_actions(self) -> List[Dict[str, Any]]:
        return [a for a in self.actions if a.get("type") == "error"]

    @classmethod
    def from_dict(cls, session_id: int, data: Optional[Dict[str, Any]]) -> "SessionLog":
        data = data or {}
        tracker = data.get("taskTracker") or {}
        return cls(
            session_id=session_id,
            status=data.get("status", ""),
            created_at=_parse_time(data.get("createdAt")),
            last_activity_at=_parse_time(data.get("lastActivityAt")),
            actions=[safe_serialize(a) for a in data.get("actions", []) if isinstance(a, dict)],
            request_object=safe_serialize(data.get("requestObject")),
            response_object=safe_serialize(data.get("responseObject")),
            tasks=list(tracker.get("tasks", []) or []),
            order_id=parse_order_id(data.get("orderId")),
        )


def parse_order_id(value: Any) -> Optional[int]:
    """Order IDs are stored as int or as a numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
