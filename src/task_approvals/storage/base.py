"""Storage interfaces for templates and the task repository."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from task_approvals.models import Task, TaskStatus, Template

TaskTransform = Callable[[Task], Task]


class TemplateStorage(Protocol):
    def insert_template_if_absent(self, template: Template) -> Template: ...

    def get_template(self, template_id: str) -> Template | None: ...

    def list_templates(self) -> list[Template]: ...


class TaskStorage(Protocol):
    def insert_task(self, task: Task) -> Task: ...

    def get_task(self, task_id: str) -> Task | None: ...

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[Task]: ...

    def atomic_update(self, task_id: str, transform: TaskTransform) -> Task:
        """Read, transform and write back one task as a single atomic unit.

        Calls for the same task id are serialised. Raises TaskNotFoundError for
        an unknown id; any exception raised by ``transform`` propagates and
        nothing is written.
        """
        ...


class Storage(TemplateStorage, TaskStorage, Protocol):
    def migrate(self) -> None: ...
