"""FastAPI app entrypoint for the task approvals service.

Beginner terms used in this file:
- FastAPI app: the main web application object.
- Router: a group of routes mounted under a common prefix (``/api`` by default).
- response_model: Pydantic model used to validate/shape API responses.
- app.state: a place to store shared runtime objects (storage, template store, engine).
- Exception handler: turns one of our domain errors into an HTTP error response.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from task_approvals import __version__
from task_approvals.config.settings import Settings, get_settings
from task_approvals.errors import (
    ConflictError,
    NotFoundError,
    StorageError,
    SubmissionValidationError,
    WorkflowError,
)
from task_approvals.models import (
    DecisionAction,
    StepDefinition,
    Task,
    TaskStatus,
    TaskSummary,
    Template,
)
from task_approvals.storage import InMemoryStorage, PostgresStorage, Storage
from task_approvals.workflow import TaskFactory, TemplateStore, WorkflowEngine

logger = logging.getLogger(__name__)


class CreateTaskRequest(BaseModel):
    template_id: str = Field(min_length=1)
    title: str = Field(min_length=1)


class RegisterTemplateRequest(BaseModel):
    name: str = Field(min_length=1)
    steps: list[StepDefinition] = Field(min_length=1)


class SubmitStepRequest(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)


class DecisionRequest(BaseModel):
    action: DecisionAction


def build_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "postgres":
        database_url = settings.resolved_database_url()
        if not database_url:
            raise RuntimeError(
                "Missing database URL. Set TASK_APPROVALS_DATABASE_URL "
                "or DATABASE_URL before starting the app."
            )
        return PostgresStorage(database_url)
    return InMemoryStorage()


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: Storage | None,
) -> None:
    """Open storage, migrate, and wire the template store and engine once per app."""
    if not hasattr(app.state, "storage"):
        app.state.storage = storage_override or build_storage(settings)
        app.state.storage.migrate()

    if not hasattr(app.state, "templates"):
        app.state.templates = TemplateStore(app.state.storage)
        if settings.seed_on_startup:
            seeded = app.state.templates.seed()
            logger.info("startup event=seeded template_id=%s", seeded.id)

    if not hasattr(app.state, "engine"):
        app.state.engine = WorkflowEngine(
            app.state.storage,
            TaskFactory(app.state.templates),
            require_complete_submissions=settings.require_complete_submissions,
        )


def create_app(
    *,
    storage: Storage | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    """Application factory.

    Storage is opened on startup (lifespan), so importing this module never
    touches the database. Tests pass their own storage (usually
    ``InMemoryStorage``), which is wired immediately.
    """
    settings = settings_override or get_settings()
    logging.getLogger("task_approvals").setLevel(settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(app, settings=settings, storage_override=storage)
        yield

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, version=__version__, lifespan=app_lifespan)
    app.state.settings = settings

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure_runtime_state(app, settings=settings, storage_override=storage)

    def _get_templates(request: Request) -> TemplateStore:
        if not hasattr(request.app.state, "templates"):
            _ensure_runtime_state(request.app, settings=settings, storage_override=storage)
        return request.app.state.templates

    def _get_engine(request: Request) -> WorkflowEngine:
        if not hasattr(request.app.state, "engine"):
            _ensure_runtime_state(request.app, settings=settings, storage_override=storage)
        return request.app.state.engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)

    # Multiple health endpoints map to the same function for compatibility with
    # different probes/load balancers.
    @app.get("/health")
    @app.get("/healthz")
    @app.get("/live")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    router = APIRouter()

    @router.post("/templates/seed", response_model=Template)
    def seed_template(request: Request) -> Template:
        return _get_templates(request).seed()

    @router.post("/templates", response_model=Template)
    def register_template(payload: RegisterTemplateRequest, request: Request) -> Template:
        return _get_templates(request).register(payload.name, payload.steps)

    @router.get("/templates", response_model=list[Template])
    def list_templates(request: Request) -> list[Template]:
        return _get_templates(request).list_templates()

    @router.get("/templates/{template_id}", response_model=Template)
    def get_template(template_id: str, request: Request) -> Template:
        return _get_templates(request).get(template_id)

    @router.post("/tasks", response_model=Task)
    def create_task(payload: CreateTaskRequest, request: Request) -> Task:
        return _get_engine(request).create_task(payload.template_id, payload.title)

    @router.get("/tasks", response_model=list[TaskSummary])
    def list_tasks(
        request: Request,
        status: TaskStatus | None = None,
        limit: int | None = Query(default=None, ge=1),
    ) -> list[TaskSummary]:
        tasks = _get_engine(request).list_tasks(status=status, limit=settings.clamp_limit(limit))
        return [TaskSummary.from_task(task) for task in tasks]

    @router.get("/tasks/{task_id}", response_model=Task)
    def get_task(task_id: str, request: Request) -> Task:
        return _get_engine(request).get_task(task_id)

    @router.post("/tasks/{task_id}/steps/{step_index}/submit", response_model=Task)
    def submit_step(
        task_id: str, step_index: int, payload: SubmitStepRequest, request: Request
    ) -> Task:
        return _get_engine(request).submit_step(task_id, step_index, payload.data)

    @router.post("/tasks/{task_id}/steps/{step_index}/decision", response_model=Task)
    def decide_step(
        task_id: str, step_index: int, payload: DecisionRequest, request: Request
    ) -> Task:
        return _get_engine(request).decide(task_id, step_index, payload.action)

    app.include_router(router, prefix=settings.api_prefix)
    return app


def _error_response(status_code: int, exc: WorkflowError, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": exc.code, **extra},
    )


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(404, exc)

    @app.exception_handler(ConflictError)
    async def conflict(_: Request, exc: ConflictError) -> JSONResponse:
        return _error_response(409, exc)

    @app.exception_handler(SubmissionValidationError)
    async def invalid_submission(_: Request, exc: SubmissionValidationError) -> JSONResponse:
        return _error_response(422, exc, issues=exc.issues)

    @app.exception_handler(StorageError)
    async def storage_failure(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("request event=storage_error path=%s error=%s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal storage error", "code": exc.code},
        )


# Module-level app for `uvicorn task_approvals.api.main:app`.
app = create_app()
