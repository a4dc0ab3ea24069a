"""Fixtures for route tests: the real app with its dependencies overridden."""

from collections.abc import Generator
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from taskpilot.api.app import create_app
from taskpilot.api.dependencies import (
    get_autopilot,
    get_event_manager,
    get_scheduler,
    get_settings,
    get_state_store,
    get_webhook_guard,
)
from taskpilot.api.events import EventManager
from taskpilot.autopilot import AutopilotService
from taskpilot.config import Settings
from taskpilot.scheduler import AttemptScheduler
from taskpilot.state_store import StateStore
from taskpilot.webhooks import WebhookGuard

@pytest.fixture
def webhook_secret() -> str:
    """Shared secret for webhook signatures."""
    return "test-webhook-secret"


@pytest.fixture
def settings(webhook_secret: str) -> Settings:
    """Settings with signature checks on."""
    return Settings(db_path=":memory:", webhook_secret=webhook_secret)


@pytest.fixture
def mock_runner() -> MagicMock:
    """Create a mock runner that accepts every attempt."""
    return MagicMock()


@pytest.fixture
def app(store: StateStore, settings: Settings, mock_runner: MagicMock) -> FastAPI:
    """Create the app with every dependency bound to the in-memory store.

    The lifespan is not run, so no global state is touched.
    """
    event_manager = EventManager()
    scheduler = AttemptScheduler(state_store=store, runner=mock_runner, event_manager=event_manager)
    service = AutopilotService(
        state_store=store, scheduler=scheduler, event_manager=event_manager, settings=settings
    )
    guard = WebhookGuard(state_store=store, event_manager=event_manager)

    app = create_app(settings=settings)

    def override_get_state_store() -> Generator[StateStore, None, None]:
        yield store

    def override_get_event_manager() -> Generator[EventManager, None, None]:
        yield event_manager

    def override_get_scheduler() -> Generator[AttemptScheduler, None, None]:
        yield scheduler

    def override_get_autopilot() -> Generator[AutopilotService, None, None]:
        yield service

    def override_get_webhook_guard() -> Generator[WebhookGuard, None, None]:
        yield guard

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_state_store] = override_get_state_store
    app.dependency_overrides[get_event_manager] = override_get_event_manager
    app.dependency_overrides[get_scheduler] = override_get_scheduler
    app.dependency_overrides[get_autopilot] = override_get_autopilot
    app.dependency_overrides[get_webhook_guard] = override_get_webhook_guard
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create a test client without running the lifespan."""
    return TestClient(app, raise_server_exceptions=False)
