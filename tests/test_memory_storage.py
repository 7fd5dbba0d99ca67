from __future__ import annotations

from datetime import UTC, datetime

import pytest

from task_approvals.errors import TaskNotFoundError
from task_approvals.models import Task, Template
from task_approvals.storage.memory import InMemoryStorage
from task_approvals.workflow import TaskFactory, TemplateStore, WorkflowEngine


def test_atomic_update_on_missing_task(storage: InMemoryStorage) -> None:
    with pytest.raises(TaskNotFoundError):
        storage.atomic_update("missing", lambda task: task)


def test_failed_transform_persists_nothing(
    storage: InMemoryStorage, engine: WorkflowEngine, simple_template: Template
) -> None:
    task = engine.create_task(simple_template.id, "Laptop")

    def broken(current: Task) -> Task:
        current.steps[0].status = "approved"
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        storage.atomic_update(task.id, broken)
    assert storage.get_task(task.id) == task


def test_returned_tasks_are_private_copies(
    storage: InMemoryStorage, engine: WorkflowEngine, simple_template: Template
) -> None:
    task = engine.create_task(simple_template.id, "Laptop")
    fetched = storage.get_task(task.id)
    fetched.steps[0].form_data["amount"] = "1"
    fetched.title = "changed"

    assert storage.get_task(task.id) == task
    assert storage.list_tasks()[0] == task


def test_duplicate_task_ids_are_refused(
    storage: InMemoryStorage, engine: WorkflowEngine, simple_template: Template
) -> None:
    task = engine.create_task(simple_template.id, "Laptop")
    with pytest.raises(ValueError, match="already exists"):
        storage.insert_task(task)


def test_insert_template_if_absent_keeps_first(
    storage: InMemoryStorage, simple_template: Template
) -> None:
    newer = simple_template.model_copy(update={"created_at": simple_template.created_at.replace(year=2030)})
    stored = storage.insert_template_if_absent(newer)
    assert stored == simple_template
    assert storage.get_template(simple_template.id) == simple_template
    assert storage.get_template("tmpl_unknown") is None


def test_tasks_created_in_the_same_instant_list_newest_insert_first(
    storage: InMemoryStorage, simple_template: Template, templates: TemplateStore
) -> None:
    frozen = datetime(2024, 6, 1, tzinfo=UTC)
    engine = WorkflowEngine(storage, TaskFactory(templates, clock=lambda: frozen), clock=lambda: frozen)
    created = [engine.create_task(simple_template.id, f"task {index}") for index in range(5)]

    listed = storage.list_tasks()
    assert [task.id for task in listed] == [task.id for task in reversed(created)]
    assert [task.id for task in storage.list_tasks(limit=2)] == [created[4].id, created[3].id]
