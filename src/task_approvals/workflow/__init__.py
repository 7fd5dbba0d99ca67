"""Template store, task factory and the workflow state machine."""

from task_approvals.workflow.engine import WorkflowEngine
from task_approvals.workflow.factory import TaskFactory
from task_approvals.workflow.templates import TemplateStore
from task_approvals.workflow.transitions import (
    STEP_TRANSITIONS,
    derive_current_step_index,
    derive_task_status,
)

__all__ = [
    "STEP_TRANSITIONS",
    "TaskFactory",
    "TemplateStore",
    "WorkflowEngine",
    "derive_current_step_index",
    "derive_task_status",
]
