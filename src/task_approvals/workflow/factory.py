"""Task factory: turns a template into a fresh, independent task."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime

from task_approvals.errors import SubmissionValidationError
from task_approvals.models import Step, Task, Template, utc_now
from task_approvals.workflow.templates import TemplateStore


def _new_task_id() -> str:
    return str(uuid.uuid4())


class TaskFactory:
    """Builds Task objects; persisting them is the caller's job."""

    def __init__(
        self,
        templates: TemplateStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = _new_task_id,
    ) -> None:
        self._templates = templates
        self._clock = clock
        self._id_factory = id_factory

    def create(self, template_id: str, title: str) -> Task:
        template = self._templates.get(template_id)
        return self.instantiate(template, title)

    def instantiate(self, template: Template, title: str) -> Task:
        clean_title = title.strip()
        if not clean_title:
            raise SubmissionValidationError(
                "Task title must not be empty",
                issues=[{"key": "title", "message": "field is required"}],
            )

        # Deep copies: a task's steps must never share state with the template
        # or with any other task.
        steps = [
            Step(name=definition.name, fields=[field.model_copy(deep=True) for field in definition.fields])
            for definition in template.steps
        ]
        if template.steps[0].immediately_reviewable:
            steps[0].status = "in_review"

        now = self._clock()
        return Task(
            id=self._id_factory(),
            title=clean_title,
            template_id=template.id,
            steps=steps,
            current_step_index=0,
            status="pending",
            created_at=now,
            updated_at=now,
        )
