"""Workflow engine: the entry point for every task read and mutation.

The engine never keeps a task between calls. Each mutation is a
read-transform-write through ``TaskStorage.atomic_update``, and the transform
re-checks every precondition against the freshly locked task. Of two racing
calls on the same step, the second one therefore sees the first one's result
and fails with ConflictError instead of overwriting it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, get_args

from task_approvals.errors import (
    ConflictError,
    SubmissionValidationError,
    TaskNotFoundError,
)
from task_approvals.models import DecisionAction, Task, TaskStatus, utc_now
from task_approvals.storage.base import TaskStorage
from task_approvals.workflow.factory import TaskFactory
from task_approvals.workflow.transitions import apply_decision, apply_submission

logger = logging.getLogger(__name__)

DECISION_ACTIONS: tuple[str, ...] = get_args(DecisionAction)


class WorkflowEngine:
    def __init__(
        self,
        storage: TaskStorage,
        factory: TaskFactory,
        *,
        require_complete_submissions: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._factory = factory
        self._require_complete = require_complete_submissions
        self._clock = clock

    def create_task(self, template_id: str, title: str) -> Task:
        task = self._storage.insert_task(self._factory.create(template_id, title))
        logger.info(
            "task_create event=created task_id=%s template_id=%s steps=%s",
            task.id,
            task.template_id,
            len(task.steps),
        )
        return task

    def get_task(self, task_id: str) -> Task:
        task = self._storage.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[Task]:
        return self._storage.list_tasks(status=status, limit=limit)

    def submit_step(self, task_id: str, step_index: int, data: dict[str, Any]) -> Task:
        if not isinstance(data, dict):
            raise SubmissionValidationError(
                "Submission data must be an object",
                issues=[{"key": "data", "message": "expected an object"}],
            )

        def transform(task: Task) -> Task:
            return apply_submission(
                task,
                step_index,
                data,
                now=self._clock(),
                require_complete=self._require_complete,
            )

        try:
            updated = self._storage.atomic_update(task_id, transform)
        except (ConflictError, SubmissionValidationError) as exc:
            logger.warning(
                "step_submit event=rejected task_id=%s step_index=%s code=%s reason=%s",
                task_id,
                step_index,
                exc.code,
                exc,
            )
            raise
        logger.info(
            "step_submit event=accepted task_id=%s step_index=%s fields=%s",
            task_id,
            step_index,
            sorted(updated.steps[step_index].form_data),
        )
        return updated

    def decide(self, task_id: str, step_index: int, action: DecisionAction) -> Task:
        if action not in DECISION_ACTIONS:
            raise SubmissionValidationError(
                f"Unknown decision action: {action}",
                issues=[{"key": "action", "message": f"must be one of: {', '.join(DECISION_ACTIONS)}"}],
            )

        def transform(task: Task) -> Task:
            return apply_decision(task, step_index, action, now=self._clock())

        try:
            updated = self._storage.atomic_update(task_id, transform)
        except ConflictError as exc:
            logger.warning(
                "step_decision event=rejected task_id=%s step_index=%s action=%s reason=%s",
                task_id,
                step_index,
                action,
                exc,
            )
            raise
        logger.info(
            "step_decision event=applied task_id=%s step_index=%s action=%s "
            "task_status=%s current_step_index=%s",
            task_id,
            step_index,
            action,
            updated.status,
            updated.current_step_index,
        )
        return updated
