"""State Store - Persistent storage for projects, tasks, attempts and autopilot sessions."""

from taskpilot.state_store.exceptions import (
    AttemptNotFoundError,
    ProjectExistsError,
    ProjectNotFoundError,
    ScopeCapacityError,
    SessionNotFoundError,
    StateStoreError,
    TaskNotFoundError,
)
from taskpilot.state_store.models import (
    Attempt,
    AttemptState,
    AutopilotSession,
    PRStatus,
    ProcessedWebhook,
    Project,
    Task,
    TaskStatus,
)
from taskpilot.state_store.store import DeliveryOutcome, StateStore

__all__ = [
    "Attempt",
    "AttemptNotFoundError",
    "AttemptState",
    "AutopilotSession",
    "DeliveryOutcome",
    "PRStatus",
    "ProcessedWebhook",
    "Project",
    "ProjectExistsError",
    "ProjectNotFoundError",
    "ScopeCapacityError",
    "SessionNotFoundError",
    "StateStore",
    "StateStoreError",
    "Task",
    "TaskNotFoundError",
    "TaskStatus",
]
