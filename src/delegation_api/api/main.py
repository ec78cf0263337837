"""FastAPI app entrypoint for the task delegation service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from delegation_api.config.settings import Settings, get_settings
from delegation_api.email_client import ResendEmailClient
from delegation_api.errors import OrchestratorError
from delegation_api.executors.capabilities import ResendEmailSender
from delegation_api.executors.registry import ExecutorRegistry, build_registry
from delegation_api.interpretation import InterpretationGateway, build_interpretation_gateway
from delegation_api.models import (
    AuditEntry,
    CancelTaskRequest,
    ErrorBody,
    SubmitTaskRequest,
    SubmitTaskResponse,
    Task,
)
from delegation_api.notifier import (
    EmailNotifier,
    LogOnlyNotifier,
    NotificationDispatcher,
    Notifier,
)
from delegation_api.orchestrator import Orchestrator
from delegation_api.storage.base import AuditLog, TaskStorage
from delegation_api.storage.postgres import PostgresAuditLog, PostgresTaskStorage

logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings,
    *,
    storage: TaskStorage | None = None,
    audit_log: AuditLog | None = None,
    gateway: InterpretationGateway | None = None,
    registry: ExecutorRegistry | None = None,
    notifier: Notifier | None = None,
) -> Orchestrator:
    """Wire every collaborator from settings; explicit arguments win."""
    if storage is None or audit_log is None:
        database_url = settings.database_url.strip()
        if not database_url:
            raise RuntimeError(
                "Missing database URL. Set DELEGATION_DATABASE_URL before starting the app."
            )
        if storage is None:
            storage = PostgresTaskStorage(database_url)
            storage.migrate()
        if audit_log is None:
            audit_log = PostgresAuditLog(database_url)
            audit_log.migrate()

    email_client: ResendEmailClient | None = None
    if settings.email_api_key:
        email_client = ResendEmailClient(
            api_key=settings.email_api_key,
            sender=settings.email_sender,
            base_url=settings.email_endpoint,
            timeout_s=settings.email_timeout_s,
        )

    if gateway is None:
        gateway = build_interpretation_gateway(
            mode=settings.interpretation_mode,
            api_key=settings.interpretation_api_key,
            model=settings.interpretation_model,
            base_url=settings.interpretation_endpoint,
            timeout_s=settings.interpretation_timeout_s,
            max_retries=settings.interpretation_max_retries,
            backoff_s=settings.interpretation_backoff_s,
        )
    if registry is None:
        registry = build_registry(
            email_sender=ResendEmailSender(email_client) if email_client else None,
            timeouts=settings.executor_timeouts,
            default_timeout_s=settings.default_executor_timeout_s,
        )
    if notifier is None:
        notifier = EmailNotifier(email_client) if email_client else LogOnlyNotifier()

    dispatcher = NotificationDispatcher(
        notifier,
        enabled=settings.notifier_enabled,
        max_workers=settings.notifier_max_workers,
    )
    logger.info(
        "app_wiring event=ready interpretation_mode=%s notifier_enabled=%s categories=%s",
        settings.interpretation_mode,
        settings.notifier_enabled,
        ",".join(registry.categories()),
    )
    return Orchestrator(
        storage=storage,
        audit_log=audit_log,
        gateway=gateway,
        registry=registry,
        dispatcher=dispatcher,
    )


def create_app(
    *,
    orchestrator: Orchestrator | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    logging.getLogger("delegation_api").setLevel(settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not hasattr(app.state, "orchestrator"):
            app.state.orchestrator = build_orchestrator(settings)
        yield
        app.state.orchestrator.dispatcher.shutdown()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    # Keep test paths reliable when lifespan is not executed by the client.
    if orchestrator is not None:
        app.state.orchestrator = orchestrator

    def _orchestrator(request: Request) -> Orchestrator:
        if not hasattr(request.app.state, "orchestrator"):
            request.app.state.orchestrator = build_orchestrator(settings)
        return request.app.state.orchestrator

    @app.exception_handler(OrchestratorError)
    async def orchestrator_error_handler(_: Request, exc: OrchestratorError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.http_status,
            content=ErrorBody(error_code=exc.error_code, message=exc.message).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        problems = [
            f"{_field_path(error.get('loc', ()))}: {error.get('msg', 'invalid value')}"
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=ErrorBody(
                error_code="validation_error",
                message="; ".join(problems) or "Invalid request",
            ).model_dump(),
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/executors")
    def executors(request: Request) -> dict[str, list[str]]:
        return {"categories": _orchestrator(request).registry.categories()}

    @app.post("/tasks", response_model=SubmitTaskResponse)
    def submit_task(payload: SubmitTaskRequest, request: Request) -> SubmitTaskResponse:
        result = _orchestrator(request).submit(
            payload.category,
            payload.prompt,
            payload.requester_id,
            payload.requester_contact,
        )
        return SubmitTaskResponse(
            task_id=result.task_id,
            status=result.status,
            interpretation_summary=result.interpretation_summary,
        )

    @app.get("/tasks", response_model=list[Task])
    def list_tasks(
        request: Request,
        requester_id: str = Query(min_length=1),
        limit: int = Query(default=50, ge=1, le=200),
    ) -> list[Task]:
        return _orchestrator(request).list_tasks(requester_id, limit=limit)

    @app.get("/tasks/{task_id}", response_model=Task)
    def get_task(task_id: str, request: Request) -> Task:
        return _orchestrator(request).get_task(task_id)

    @app.post("/tasks/{task_id}/cancel", response_model=Task)
    def cancel_task(task_id: str, payload: CancelTaskRequest, request: Request) -> Task:
        return _orchestrator(request).cancel(task_id, payload.requester_id)

    @app.get("/tasks/{task_id}/audit", response_model=list[AuditEntry])
    def get_audit_trail(task_id: str, request: Request) -> list[AuditEntry]:
        return _orchestrator(request).audit_trail(task_id)

    return app


def _field_path(location: tuple[object, ...] | list[object]) -> str:
    # Drop the "body"/"query" prefix FastAPI puts first.
    parts = [str(part) for part in location[1:]]
    return ".".join(parts) or "request"


# Module-level app for `uvicorn delegation_api.api.main:app`.
app = create_app()
