"""FastAPI dependencies for dependency injection."""

from __future__ import annotations

from collections.abc import Generator  # noqa: TC003
from typing import Annotated

from fastapi import Depends

from taskpilot.api.events import EventManager
from taskpilot.autopilot import AutopilotService
from taskpilot.config import Settings
from taskpilot.scheduler import AttemptScheduler
from taskpilot.state_store import StateStore
from taskpilot.webhooks import WebhookGuard

# Global Settings instance (initialized on app startup)
_settings: Settings | None = None


def init_settings(settings: Settings) -> Settings:
    """Initialize the global Settings instance."""
    global _settings  # noqa: PLW0603
    _settings = settings
    return _settings


def get_settings() -> Settings:
    """Dependency that provides the Settings instance."""
    if _settings is None:
        raise RuntimeError("Settings not initialized. Call init_settings() first.")
    return _settings


SettingsDep = Annotated[Settings, Depends(get_settings)]

# Global StateStore instance (initialized on app startup)
_state_store: StateStore | None = None


def init_state_store(db_path: str = "taskpilot.db") -> StateStore:
    """Initialize the global StateStore instance."""
    global _state_store  # noqa: PLW0603
    _state_store = StateStore(db_path)
    return _state_store


def close_state_store() -> None:
    """Close the global StateStore instance."""
    global _state_store  # noqa: PLW0603
    if _state_store is not None:
        _state_store.close()
        _state_store = None


def get_state_store() -> Generator[StateStore, None, None]:
    """Dependency that provides the StateStore instance."""
    if _state_store is None:
        raise RuntimeError("StateStore not initialized. Call init_state_store() first.")
    yield _state_store


StateStoreDep = Annotated[StateStore, Depends(get_state_store)]

# Global EventManager instance
_event_manager: EventManager | None = None


def init_event_manager() -> EventManager:
    """Initialize the global EventManager instance."""
    global _event_manager  # noqa: PLW0603
    _event_manager = EventManager()
    return _event_manager


def get_event_manager() -> Generator[EventManager, None, None]:
    """Dependency that provides the EventManager instance."""
    if _event_manager is None:
        raise RuntimeError("EventManager not initialized. Call init_event_manager() first.")
    yield _event_manager


EventManagerDep = Annotated[EventManager, Depends(get_event_manager)]

# Global AttemptScheduler instance (initialized on app startup)
_scheduler: AttemptScheduler | None = None


def init_scheduler(scheduler: AttemptScheduler) -> None:
    """Initialize the global AttemptScheduler instance."""
    global _scheduler  # noqa: PLW0603
    _scheduler = scheduler


def close_scheduler() -> None:
    """Close the global AttemptScheduler instance and its runner client."""
    global _scheduler  # noqa: PLW0603
    if _scheduler is not None:
        close = getattr(_scheduler.runner, "close", None)
        if close is not None:
            close()
    _scheduler = None


def get_scheduler() -> Generator[AttemptScheduler, None, None]:
    """Dependency that provides the AttemptScheduler instance."""
    if _scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")
    yield _scheduler


SchedulerDep = Annotated[AttemptScheduler, Depends(get_scheduler)]

# Global AutopilotService instance (initialized on app startup)
_autopilot: AutopilotService | None = None


def init_autopilot(service: AutopilotService) -> None:
    """Initialize the global AutopilotService instance."""
    global _autopilot  # noqa: PLW0603
    _autopilot = service


def close_autopilot() -> None:
    """Close the global AutopilotService instance."""
    global _autopilot  # noqa: PLW0603
    _autopilot = None


def get_autopilot() -> Generator[AutopilotService, None, None]:
    """Dependency that provides the AutopilotService instance."""
    if _autopilot is None:
        raise RuntimeError("AutopilotService not initialized. Call init_autopilot() first.")
    yield _autopilot


AutopilotDep = Annotated[AutopilotService, Depends(get_autopilot)]

# Global WebhookGuard instance (initialized on app startup)
_webhook_guard: WebhookGuard | None = None


def init_webhook_guard(guard: WebhookGuard) -> None:
    """Initialize the global WebhookGuard instance."""
    global _webhook_guard  # noqa: PLW0603
    _webhook_guard = guard


def close_webhook_guard() -> None:
    """Close the global WebhookGuard instance."""
    global _webhook_guard  # noqa: PLW0603
    _webhook_guard = None


def get_webhook_guard() -> Generator[WebhookGuard, None, None]:
    """Dependency that provides the WebhookGuard instance."""
    if _webhook_guard is None:
        raise RuntimeError("WebhookGuard not initialized. Call init_webhook_guard() first.")
    yield _webhook_guard


WebhookGuardDep = Annotated[WebhookGuard, Depends(get_webhook_guard)]
