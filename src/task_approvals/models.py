"""Pydantic models shared across API, workflow engine, and storage.

Beginner terms used in this file:
- Template: an immutable workflow definition (ordered step definitions).
- Task: one running copy of a template that moves through its steps.
- Literal: restricts a field to a fixed set of allowed string values.
- Structured date: timestamps are written to JSON as {"$date": "<ISO-8601>"}.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, field_validator

from task_approvals.fields import FieldSpec

# Lifecycle states. Terminal states never change once reached.
TaskStatus = Literal["pending", "approved", "rejected"]
StepStatus = Literal["pending", "in_review", "approved", "rejected"]
DecisionAction = Literal["approve", "reject"]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _unwrap_structured_date(value: Any) -> Any:
    if isinstance(value, dict) and "$date" in value:
        return value["$date"]
    return value


def _to_structured_date(value: datetime) -> dict[str, str]:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return {"$date": value.isoformat()}


StructuredDatetime = Annotated[
    datetime,
    BeforeValidator(_unwrap_structured_date),
    PlainSerializer(_to_structured_date, return_type=dict[str, str], when_used="json"),
]


class StepDefinition(BaseModel):
    """One step of a template: a name plus the form the submitter fills in."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1)
    fields: list[FieldSpec] = Field(default_factory=list)
    # Step 0 of a new task starts in review instead of waiting for a submission.
    immediately_reviewable: bool = False

    @field_validator("fields", mode="before")
    @classmethod
    def _default_field_type(cls, value: Any) -> Any:
        # Untyped fields render as plain text inputs on the client.
        if isinstance(value, list):
            return [
                {**item, "type": "text"} if isinstance(item, dict) and "type" not in item else item
                for item in value
            ]
        return value

    @field_validator("fields")
    @classmethod
    def _unique_keys(cls, value: list[FieldSpec]) -> list[FieldSpec]:
        seen: set[str] = set()
        for field in value:
            if field.key in seen:
                raise ValueError(f"duplicate field key: {field.key}")
            seen.add(field.key)
        return value


class Template(BaseModel):
    """Immutable, content-addressed workflow definition."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = Field(min_length=1)
    steps: list[StepDefinition] = Field(min_length=1)
    checksum: str
    created_at: StructuredDatetime


class Step(BaseModel):
    """Per-task copy of a step definition plus its runtime state."""

    name: str
    fields: list[FieldSpec] = Field(default_factory=list)
    status: StepStatus = "pending"
    form_data: dict[str, Any] = Field(default_factory=dict)
    decision: DecisionAction | None = None
    submitted_at: StructuredDatetime | None = None
    decided_at: StructuredDatetime | None = None


class Task(BaseModel):
    """Canonical task record shape returned by API/storage."""

    id: str
    title: str
    template_id: str
    steps: list[Step] = Field(min_length=1)
    current_step_index: int = Field(default=0, ge=0)
    status: TaskStatus = "pending"
    created_at: StructuredDatetime
    updated_at: StructuredDatetime

    @property
    def current_step(self) -> Step | None:
        if self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None


class StepSummary(BaseModel):
    name: str
    status: StepStatus


class TaskSummary(BaseModel):
    """List projection of a task (no form schemas or submitted data)."""

    id: str
    title: str
    status: TaskStatus
    created_at: StructuredDatetime
    current_step_index: int
    steps: list[StepSummary]

    @classmethod
    def from_task(cls, task: Task) -> TaskSummary:
        return cls(
            id=task.id,
            title=task.title,
            status=task.status,
            created_at=task.created_at,
            current_step_index=task.current_step_index,
            steps=[StepSummary(name=step.name, status=step.status) for step in task.steps],
        )
