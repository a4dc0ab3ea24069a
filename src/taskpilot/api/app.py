"""FastAPI application setup."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskpilot import __version__
from taskpilot.api.dependencies import (
    close_autopilot,
    close_scheduler,
    close_state_store,
    close_webhook_guard,
    init_autopilot,
    init_event_manager,
    init_scheduler,
    init_settings,
    init_state_store,
    init_webhook_guard,
)
from taskpilot.api.models import APIResponse, SafetyErrorData
from taskpilot.api.routes import attempts, autopilot, events, projects, webhooks
from taskpilot.autopilot import (
    AutopilotNotRunningError,
    AutopilotService,
    NoTaskToExecuteError,
    SafetyCheckFailedError,
)
from taskpilot.config import Settings
from taskpilot.runner import RunnerClient
from taskpilot.scheduler import AttemptScheduler, InvalidAttemptStateError
from taskpilot.state_store import (
    AttemptNotFoundError,
    ProjectExistsError,
    ProjectNotFoundError,
    ScopeCapacityError,
    SessionNotFoundError,
    StateStoreError,
    TaskNotFoundError,
)
from taskpilot.webhooks import (
    InvalidPayloadError,
    InvalidSignatureError,
    WebhookGuard,
    WebhookSecretMissingError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=APIResponse[None](data=None, error=message).model_dump(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    settings: Settings = app.state.settings
    init_settings(settings)
    store = init_state_store(settings.db_path)
    event_manager = init_event_manager()

    runner = RunnerClient(settings.runner_url) if settings.runner_url else None
    if runner is None:
        logger.warning("No runner configured; attempts are tracked but not executed")
    scheduler = AttemptScheduler(state_store=store, runner=runner, event_manager=event_manager)
    init_scheduler(scheduler)
    init_autopilot(
        AutopilotService(
            state_store=store,
            scheduler=scheduler,
            event_manager=event_manager,
            settings=settings,
        )
    )
    init_webhook_guard(WebhookGuard(state_store=store, event_manager=event_manager))

    yield
    # Shutdown
    close_webhook_guard()
    close_autopilot()
    close_scheduler()
    close_state_store()


def create_app(db_path: str | None = None, settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: Database path, overriding the one in settings.
        settings: Settings to run with. Defaults to Settings.from_env().
    """
    settings = settings or Settings.from_env()
    if db_path is not None:
        settings.db_path = db_path

    app = FastAPI(
        title="Taskpilot API",
        description="REST API for Taskpilot - autopilot task execution",
        version=__version__,
        lifespan=lifespan,
    )

    # Store config for lifespan manager
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(ProjectNotFoundError)
    async def project_not_found_handler(
        _request: Request, _exc: ProjectNotFoundError
    ) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "Project not found")

    @app.exception_handler(TaskNotFoundError)
    async def task_not_found_handler(_request: Request, _exc: TaskNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "Task not found")

    @app.exception_handler(AttemptNotFoundError)
    async def attempt_not_found_handler(
        _request: Request, _exc: AttemptNotFoundError
    ) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "Attempt not found")

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(
        _request: Request, _exc: SessionNotFoundError
    ) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "Autopilot session not found")

    @app.exception_handler(ProjectExistsError)
    async def project_exists_handler(_request: Request, _exc: ProjectExistsError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, "Project with this repo already exists")

    @app.exception_handler(ScopeCapacityError)
    async def scope_capacity_handler(_request: Request, exc: ScopeCapacityError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(InvalidAttemptStateError)
    async def invalid_attempt_state_handler(
        _request: Request, exc: InvalidAttemptStateError
    ) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(AutopilotNotRunningError)
    async def not_running_handler(
        _request: Request, exc: AutopilotNotRunningError
    ) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(NoTaskToExecuteError)
    async def no_task_handler(_request: Request, exc: NoTaskToExecuteError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(SafetyCheckFailedError)
    async def safety_check_handler(
        _request: Request, exc: SafetyCheckFailedError
    ) -> JSONResponse:
        code = exc.code.value if exc.code is not None else None
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=APIResponse[SafetyErrorData](
                data=SafetyErrorData(code=code), error=exc.reason
            ).model_dump(),
        )

    @app.exception_handler(InvalidSignatureError)
    async def invalid_signature_handler(
        _request: Request, _exc: InvalidSignatureError
    ) -> JSONResponse:
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid signature")

    @app.exception_handler(InvalidPayloadError)
    async def invalid_payload_handler(_request: Request, exc: InvalidPayloadError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(WebhookSecretMissingError)
    async def webhook_secret_handler(
        _request: Request, _exc: WebhookSecretMissingError
    ) -> JSONResponse:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Webhook secret not configured")

    @app.exception_handler(StateStoreError)
    async def state_store_error_handler(_request: Request, _exc: StateStoreError) -> JSONResponse:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    # Include routers
    app.include_router(projects.router, prefix="/api/v1")
    app.include_router(autopilot.router, prefix="/api/v1")
    app.include_router(attempts.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")
    app.include_router(events.router, prefix="/api/v1")

    return app


def main() -> None:
    """Run the API server with file logging."""
    import uvicorn  # noqa: PLC0415

    from taskpilot.logging import setup_logging  # noqa: PLC0415

    setup_logging()
    uvicorn.run(create_app(), host="127.0.0.1", port=8000)
