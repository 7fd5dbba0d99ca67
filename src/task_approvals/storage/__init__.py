"""Storage backends for templates and tasks."""

from task_approvals.storage.base import Storage, TaskStorage, TaskTransform, TemplateStorage
from task_approvals.storage.memory import InMemoryStorage
from task_approvals.storage.postgres import PostgresStorage

__all__ = [
    "InMemoryStorage",
    "PostgresStorage",
    "Storage",
    "TaskStorage",
    "TaskTransform",
    "TemplateStorage",
]
