"""PostgreSQL storage backend.

Beginner terms:
- Migration: creating/updating database tables before normal reads/writes.
- JSONB: PostgreSQL JSON type; a task's step sequence is stored as one JSONB array.
- Row lock: ``SELECT ... FOR UPDATE`` makes concurrent writers on the same task
  wait for each other until the transaction commits or rolls back.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from task_approvals.errors import StorageError, TaskNotFoundError
from task_approvals.models import Step, StepDefinition, Task, TaskStatus, Template
from task_approvals.storage.base import TaskTransform

logger = logging.getLogger(__name__)


class PostgresStorage:
    """Persist templates and tasks in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        # Only guards schema migration; task writes rely on row locks instead.
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        """Create required tables and indexes if they do not already exist."""
        with self._lock, self._driver_errors("migrate"), self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS templates (
                    template_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    checksum TEXT NOT NULL,
                    steps_json JSONB NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id UUID PRIMARY KEY,
                    title TEXT NOT NULL,
                    template_id TEXT NOT NULL REFERENCES templates(template_id),
                    status TEXT NOT NULL,
                    current_step_index INTEGER NOT NULL,
                    steps_json JSONB NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            # Insertion sequence breaks created_at ties when listing.
            conn.execute("ALTER TABLE tasks ADD COLUMN IF NOT EXISTS seq BIGSERIAL")
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_status
                ON tasks(status)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_created_at_seq
                ON tasks(created_at DESC, seq DESC)
                """)
            conn.commit()

    def insert_template_if_absent(self, template: Template) -> Template:
        with self._driver_errors("insert_template"), self._connect() as conn:
            conn.execute(
                """
                INSERT INTO templates (template_id, name, checksum, steps_json, created_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (template_id) DO NOTHING
                """,
                (
                    template.id,
                    template.name,
                    template.checksum,
                    self._json_wrapper([step.model_dump(mode="json") for step in template.steps]),
                    template.created_at,
                ),
            )
            row = conn.execute(
                "SELECT * FROM templates WHERE template_id = %s",
                (template.id,),
            ).fetchone()
            conn.commit()
        if row is None:
            raise StorageError(f"Template {template.id} was not persisted")
        return self._row_to_template(row)

    def get_template(self, template_id: str) -> Template | None:
        with self._driver_errors("get_template"), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM templates WHERE template_id = %s",
                (template_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_template(row)

    def list_templates(self) -> list[Template]:
        with self._driver_errors("list_templates"), self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM templates ORDER BY created_at ASC, template_id ASC"
            ).fetchall()
        return [self._row_to_template(row) for row in rows]

    def insert_task(self, task: Task) -> Task:
        with self._driver_errors("insert_task"), self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tasks (
                    task_id,
                    title,
                    template_id,
                    status,
                    current_step_index,
                    steps_json,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    task.id,
                    task.title,
                    task.template_id,
                    task.status,
                    task.current_step_index,
                    self._steps_json(task),
                    task.created_at,
                    task.updated_at,
                ),
            )
            conn.commit()
        return task

    def get_task(self, task_id: str) -> Task | None:
        with self._driver_errors("get_task"), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE task_id::text = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[Task]:
        with self._driver_errors("list_tasks"), self._connect() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM tasks ORDER BY created_at DESC, seq DESC LIMIT %s",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM tasks
                    WHERE status = %s
                    ORDER BY created_at DESC, seq DESC
                    LIMIT %s
                    """,
                    (status, limit),
                ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def atomic_update(self, task_id: str, transform: TaskTransform) -> Task:
        # Leaving the connection block with an exception rolls the transaction
        # back, which also releases the row lock.
        with self._driver_errors("atomic_update"), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE task_id::text = %s FOR UPDATE",
                (task_id,),
            ).fetchone()
            if row is None:
                raise TaskNotFoundError(task_id)
            updated = transform(self._row_to_task(row))
            conn.execute(
                """
                UPDATE tasks
                SET title = %s,
                    status = %s,
                    current_step_index = %s,
                    steps_json = %s,
                    updated_at = %s
                WHERE task_id::text = %s
                """,
                (
                    updated.title,
                    updated.status,
                    updated.current_step_index,
                    self._steps_json(updated),
                    updated.updated_at,
                    task_id,
                ),
            )
            conn.commit()
        return updated

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @contextmanager
    def _driver_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except self._psycopg.Error as exc:
            logger.error("storage event=driver_error operation=%s error=%s", operation, exc)
            raise StorageError(f"Storage operation '{operation}' failed") from exc

    def _steps_json(self, task: Task) -> Any:
        return self._json_wrapper([step.model_dump(mode="json") for step in task.steps])

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        """Import psycopg and helpers with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_list(raw: Any) -> list[dict[str, Any]]:
        parsed = json.loads(raw) if isinstance(raw, str) else raw
        if not isinstance(parsed, list):
            raise StorageError(f"Expected a JSON array of steps, got {type(parsed)!r}")
        for position, item in enumerate(parsed):
            if not isinstance(item, dict):
                raise StorageError(f"Step {position} is not a JSON object, got {type(item)!r}")
        return parsed

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        """Parse datetime value from database driver output."""
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_template(cls, row: Any) -> Template:
        return Template(
            id=str(row["template_id"]),
            name=row["name"],
            checksum=row["checksum"],
            steps=[
                StepDefinition.model_validate(item)
                for item in cls._parse_json_list(row["steps_json"])
            ],
            created_at=cls._parse_datetime(row["created_at"]),
        )

    @classmethod
    def _row_to_task(cls, row: Any) -> Task:
        """Map one DB row to the canonical Task model."""
        return Task(
            id=str(row["task_id"]),
            title=row["title"],
            template_id=str(row["template_id"]),
            status=row["status"],
            current_step_index=int(row["current_step_index"]),
            steps=[Step.model_validate(item) for item in cls._parse_json_list(row["steps_json"])],
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )
