"""In-memory storage backend (single process, used by default and in tests)."""

from __future__ import annotations

import itertools
import threading

from task_approvals.errors import TaskNotFoundError
from task_approvals.models import Task, TaskStatus, Template
from task_approvals.storage.base import TaskTransform


class InMemoryStorage:
    """Thread-safe in-memory implementation of the template and task stores.

    Writers on one task id are serialised by a per-task lock, so updates on
    different tasks never wait for each other. Stored tasks are replaced
    wholesale, never mutated in place, and readers get deep copies.
    """

    def __init__(self) -> None:
        self._templates: dict[str, Template] = {}
        self._tasks: dict[str, Task] = {}
        # Guards the dicts above and the lock registry, never held during a transform.
        self._registry_lock = threading.Lock()
        self._task_locks: dict[str, threading.Lock] = {}
        # Insertion sequence, breaks created_at ties in listings.
        self._insert_order: dict[str, int] = {}
        self._sequence = itertools.count()

    def migrate(self) -> None:
        return None

    def insert_template_if_absent(self, template: Template) -> Template:
        with self._registry_lock:
            stored = self._templates.setdefault(template.id, template)
        return stored.model_copy(deep=True)

    def get_template(self, template_id: str) -> Template | None:
        with self._registry_lock:
            template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    def list_templates(self) -> list[Template]:
        with self._registry_lock:
            templates = list(self._templates.values())
        templates.sort(key=lambda item: item.created_at)
        return [template.model_copy(deep=True) for template in templates]

    def insert_task(self, task: Task) -> Task:
        stored = task.model_copy(deep=True)
        with self._registry_lock:
            if stored.id in self._tasks:
                raise ValueError(f"Task {stored.id} already exists")
            self._tasks[stored.id] = stored
            self._task_locks[stored.id] = threading.Lock()
            self._insert_order[stored.id] = next(self._sequence)
        return stored.model_copy(deep=True)

    def get_task(self, task_id: str) -> Task | None:
        with self._registry_lock:
            task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[Task]:
        with self._registry_lock:
            tasks = list(self._tasks.values())
            order = dict(self._insert_order)
        if status is not None:
            tasks = [task for task in tasks if task.status == status]
        tasks.sort(key=lambda item: (item.created_at, order[item.id]), reverse=True)
        return [task.model_copy(deep=True) for task in tasks[:limit]]

    def atomic_update(self, task_id: str, transform: TaskTransform) -> Task:
        with self._registry_lock:
            task_lock = self._task_locks.get(task_id)
        if task_lock is None:
            raise TaskNotFoundError(task_id)

        with task_lock:
            with self._registry_lock:
                current = self._tasks[task_id]
            # The transform works on a private copy; a raise leaves the stored task untouched.
            updated = transform(current.model_copy(deep=True))
            stored = updated.model_copy(deep=True)
            with self._registry_lock:
                self._tasks[task_id] = stored
        return stored.model_copy(deep=True)
