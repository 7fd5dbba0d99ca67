"""Exception taxonomy shared by the engine, storage backends and the API."""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """Base class for every error the service reports to callers."""

    code = "internal"


class NotFoundError(WorkflowError):
    code = "not_found"


class TemplateNotFoundError(NotFoundError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template {template_id} not found")
        self.template_id = template_id


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class ConflictError(WorkflowError):
    """Operation is stale or out of turn for the task's current state."""

    code = "conflict"


class IllegalTransitionError(ConflictError):
    pass


class SubmissionValidationError(WorkflowError):
    """Submitted data does not fit the schema of the step (or request)."""

    code = "validation_error"

    def __init__(self, message: str, issues: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.issues = issues or []


class StorageError(WorkflowError):
    """Persistence layer failed; surfaced as an internal error, never retried here."""

    code = "internal"
