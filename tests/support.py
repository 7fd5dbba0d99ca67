"""Shared test helpers (imported by conftest and by test modules)."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Any

from task_approvals.models import Task

SIMPLE_STEPS: list[dict[str, Any]] = [
    {"name": "Info", "fields": [{"key": "amount", "label": "Amount", "type": "text"}]},
    {"name": "Approval", "fields": []},
]


class TickingClock:
    """Deterministic clock: every call returns one second later than the last."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=UTC)
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            self._now += timedelta(seconds=1)
            return self._now


def assert_task_invariants(task: Task) -> None:
    approved = sum(1 for step in task.steps if step.status == "approved")
    if task.status == "rejected":
        assert task.steps[task.current_step_index].status == "rejected"
    else:
        assert task.current_step_index == approved
    if task.status == "approved":
        assert approved == len(task.steps)
    if task.status == "pending":
        assert all(step.status != "rejected" for step in task.steps)
        assert approved < len(task.steps)
