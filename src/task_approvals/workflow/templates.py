"""Template store: the canonical seed template plus custom registrations.

Template ids are derived from a SHA-256 checksum of the template content, so
seeding (or registering the same definition) any number of times, even from
concurrent requests, always resolves to one stored definition.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from task_approvals.errors import SubmissionValidationError, TemplateNotFoundError
from task_approvals.models import StepDefinition, Template, utc_now
from task_approvals.storage.base import TemplateStorage

logger = logging.getLogger(__name__)

CANONICAL_TEMPLATE_NAME = "Purchase Request"

CANONICAL_TEMPLATE_STEPS: tuple[dict[str, Any], ...] = (
    {
        "name": "Request Details",
        "fields": [
            {"key": "item", "label": "Item", "type": "text", "required": True, "max_length": 200},
            {"key": "amount", "label": "Amount", "type": "number", "required": True, "min_value": 0},
            {
                "key": "category",
                "label": "Category",
                "type": "select",
                "required": True,
                "options": ["Hardware", "Software", "Travel", "Other"],
            },
            {"key": "needed_by", "label": "Needed by", "type": "date"},
            {"key": "justification", "label": "Justification", "type": "textarea"},
        ],
    },
    {
        "name": "Manager Review",
        "fields": [
            {"key": "budget_checked", "label": "Budget checked", "type": "checkbox", "required": True},
            {"key": "notes", "label": "Notes", "type": "textarea"},
        ],
    },
    {"name": "Finance Approval", "fields": []},
)


def template_checksum(name: str, steps: Sequence[StepDefinition]) -> str:
    payload = {"name": name, "steps": [step.model_dump(mode="json") for step in steps]}
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def template_id_for(checksum: str) -> str:
    return f"tmpl_{checksum[:16]}"


class TemplateStore:
    """Creates, resolves and lists immutable templates."""

    def __init__(
        self,
        storage: TemplateStorage,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._clock = clock

    def seed(self) -> Template:
        """Create (or return the existing) canonical template."""
        return self.register(CANONICAL_TEMPLATE_NAME, CANONICAL_TEMPLATE_STEPS)

    def register(
        self,
        name: str,
        steps: Sequence[StepDefinition | dict[str, Any]],
    ) -> Template:
        clean_name = name.strip()
        if not clean_name:
            raise SubmissionValidationError(
                "Template name must not be empty",
                issues=[{"key": "name", "message": "field is required"}],
            )
        definitions = _parse_step_definitions(steps)
        checksum = template_checksum(clean_name, definitions)
        template_id = template_id_for(checksum)

        existing = self._storage.get_template(template_id)
        if existing is not None:
            return existing

        stored = self._storage.insert_template_if_absent(
            Template(
                id=template_id,
                name=clean_name,
                steps=definitions,
                checksum=checksum,
                created_at=self._clock(),
            )
        )
        logger.info(
            "template_register event=stored template_id=%s name=%s steps=%s",
            stored.id,
            stored.name,
            len(stored.steps),
        )
        return stored

    def get(self, template_id: str) -> Template:
        template = self._storage.get_template(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def list_templates(self) -> list[Template]:
        return self._storage.list_templates()


def _parse_step_definitions(
    steps: Sequence[StepDefinition | dict[str, Any]],
) -> list[StepDefinition]:
    if not steps:
        raise SubmissionValidationError(
            "Template must define at least one step",
            issues=[{"key": "steps", "message": "at least one step is required"}],
        )
    definitions: list[StepDefinition] = []
    issues: list[dict[str, Any]] = []
    for index, raw in enumerate(steps):
        if isinstance(raw, StepDefinition):
            definitions.append(raw)
            continue
        try:
            definitions.append(StepDefinition.model_validate(raw))
        except ValidationError as exc:
            for error in exc.errors():
                location = ".".join(str(part) for part in error["loc"])
                key = f"steps.{index}.{location}" if location else f"steps.{index}"
                issues.append({"key": key, "message": error["msg"]})
    if issues:
        raise SubmissionValidationError("Template definition is invalid", issues=issues)
    return definitions
