"""Custom exceptions for State Store."""


class StateStoreError(Exception):
    """Base exception for State Store errors."""


class ProjectNotFoundError(StateStoreError):
    """Project with given ID does not exist."""


class ProjectExistsError(StateStoreError):
    """Project with given repo already exists."""


class TaskNotFoundError(StateStoreError):
    """Task with given ID does not exist."""


class AttemptNotFoundError(StateStoreError):
    """Attempt with given ID does not exist."""


class SessionNotFoundError(StateStoreError):
    """Autopilot session with given ID does not exist."""


class ScopeCapacityError(StateStoreError):
    """A second running attempt was written for a scope that already has one."""
