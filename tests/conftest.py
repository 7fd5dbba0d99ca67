from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from support import SIMPLE_STEPS, TickingClock
from task_approvals.api.main import create_app
from task_approvals.config.settings import Settings
from task_approvals.models import Template
from task_approvals.storage.memory import InMemoryStorage
from task_approvals.workflow import TaskFactory, TemplateStore, WorkflowEngine


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def templates(storage: InMemoryStorage, clock: TickingClock) -> TemplateStore:
    return TemplateStore(storage, clock=clock)


@pytest.fixture
def engine(
    storage: InMemoryStorage, templates: TemplateStore, clock: TickingClock
) -> WorkflowEngine:
    return WorkflowEngine(storage, TaskFactory(templates, clock=clock), clock=clock)


@pytest.fixture
def simple_template(templates: TemplateStore) -> Template:
    return templates.register("Simple", SIMPLE_STEPS)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def client(storage: InMemoryStorage, settings: Settings) -> Iterator[TestClient]:
    app = create_app(storage=storage, settings_override=settings)
    with TestClient(app) as test_client:
        yield test_client
