from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from task_approvals.errors import SubmissionValidationError, TemplateNotFoundError
from task_approvals.storage.memory import InMemoryStorage
from task_approvals.workflow.templates import (
    CANONICAL_TEMPLATE_NAME,
    TemplateStore,
    template_checksum,
)

from support import SIMPLE_STEPS


def test_seed_creates_canonical_template(templates: TemplateStore) -> None:
    template = templates.seed()
    assert template.name == CANONICAL_TEMPLATE_NAME
    assert [step.name for step in template.steps] == [
        "Request Details",
        "Manager Review",
        "Finance Approval",
    ]
    assert template.id == f"tmpl_{template.checksum[:16]}"
    assert template.checksum == template_checksum(template.name, template.steps)


def test_seed_is_idempotent(templates: TemplateStore, storage: InMemoryStorage) -> None:
    first = templates.seed()
    second = templates.seed()
    assert first == second
    assert len(storage.list_templates()) == 1


def test_concurrent_seeds_store_one_definition(storage: InMemoryStorage) -> None:
    store = TemplateStore(storage)
    with ThreadPoolExecutor(max_workers=8) as pool:
        seeded = list(pool.map(lambda _: store.seed(), range(16)))
    assert len({template.id for template in seeded}) == 1
    assert len({template.created_at for template in seeded}) == 1
    assert len(storage.list_templates()) == 1


def test_get_unknown_template_raises_not_found(templates: TemplateStore) -> None:
    with pytest.raises(TemplateNotFoundError, match="tmpl_missing"):
        templates.get("tmpl_missing")


def test_register_is_content_addressed(templates: TemplateStore) -> None:
    first = templates.register("Simple", SIMPLE_STEPS)
    again = templates.register("  Simple ", SIMPLE_STEPS)
    other = templates.register("Simple", SIMPLE_STEPS[:1])
    assert first.id == again.id
    assert other.id != first.id
    assert templates.get(first.id) == first
    assert [item.id for item in templates.list_templates()] == [first.id, other.id]


def test_register_rejects_invalid_definitions(templates: TemplateStore) -> None:
    with pytest.raises(SubmissionValidationError) as exc:
        templates.register("Broken", [{"name": "A", "fields": [{"key": "x", "type": "slider"}]}])
    assert exc.value.issues[0]["key"].startswith("steps.0.fields")

    with pytest.raises(SubmissionValidationError, match="at least one step"):
        templates.register("Empty", [])

    with pytest.raises(SubmissionValidationError, match="name must not be empty"):
        templates.register("   ", SIMPLE_STEPS)
