"""Pure state-machine rules for steps and tasks.

Nothing here touches storage: every function takes a Task and returns a new
Task (or raises). The engine runs these inside the repository's atomic update,
so the precondition checks always see the latest committed state.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Literal

from task_approvals.errors import ConflictError, IllegalTransitionError
from task_approvals.fields import validate_submission
from task_approvals.models import DecisionAction, Step, StepStatus, Task, TaskStatus

StepEvent = Literal["submit", "approve", "reject"]

STEP_TRANSITIONS: dict[tuple[StepStatus, StepEvent], StepStatus] = {
    ("pending", "submit"): "in_review",
    ("in_review", "approve"): "approved",
    ("in_review", "reject"): "rejected",
}


def next_step_status(current: StepStatus, event: StepEvent) -> StepStatus:
    try:
        return STEP_TRANSITIONS[(current, event)]
    except KeyError:
        raise IllegalTransitionError(f"Illegal step transition: {current} --{event}-->") from None


def derive_task_status(steps: Sequence[Step]) -> TaskStatus:
    """Single source of truth for a task's overall status."""
    if any(step.status == "rejected" for step in steps):
        return "rejected"
    if all(step.status == "approved" for step in steps):
        return "approved"
    return "pending"


def derive_current_step_index(steps: Sequence[Step]) -> int:
    """Number of leading approved steps.

    That is the first step still needing work while the task is pending, the
    rejected step after a rejection, and ``len(steps)`` once all are approved.
    """
    index = 0
    for step in steps:
        if step.status != "approved":
            break
        index += 1
    return index


def check_gate(task: Task, step_index: int, expected: StepStatus) -> Step:
    """Return the step at ``step_index`` if it may be acted on, else raise ConflictError."""
    if task.status != "pending":
        raise ConflictError(f"Task {task.id} is {task.status}; no further actions are accepted")
    if step_index != task.current_step_index:
        raise ConflictError(
            f"Step {step_index} is not the current step of task {task.id} "
            f"(current step is {task.current_step_index})"
        )
    step = task.steps[step_index]
    if step.status != expected:
        raise ConflictError(
            f"Step {step_index} of task {task.id} is {step.status}, expected {expected}"
        )
    return step


def apply_submission(
    task: Task,
    step_index: int,
    data: dict[str, Any],
    *,
    now: datetime,
    require_complete: bool = True,
) -> Task:
    step = check_gate(task, step_index, "pending")
    form_data = validate_submission(step.name, step.fields, data, require_complete=require_complete)
    updated = step.model_copy(
        update={
            "status": next_step_status(step.status, "submit"),
            "form_data": form_data,
            "submitted_at": now,
        }
    )
    return _replace_step(task, step_index, updated, now=now)


def apply_decision(task: Task, step_index: int, action: DecisionAction, *, now: datetime) -> Task:
    step = check_gate(task, step_index, "in_review")
    updated = step.model_copy(
        update={
            "status": next_step_status(step.status, action),
            "decision": action,
            "decided_at": now,
        }
    )
    return _replace_step(task, step_index, updated, now=now)


def _replace_step(task: Task, step_index: int, step: Step, *, now: datetime) -> Task:
    steps = list(task.steps)
    steps[step_index] = step
    next_index = derive_current_step_index(steps)
    if next_index < task.current_step_index:
        raise IllegalTransitionError("current_step_index must never decrease")
    return task.model_copy(
        update={
            "steps": steps,
            "current_step_index": next_index,
            "status": derive_task_status(steps),
            "updated_at": now,
        }
    )
