"""Exceptions for the Autopilot module."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskpilot.autopilot.models import AutopilotStatus
    from taskpilot.autopilot.safety import SafetyCheckResult


class AutopilotError(Exception):
    """Base exception for autopilot errors."""

    pass


class AutopilotNotRunningError(AutopilotError):
    """The operation needs a RUNNING autopilot."""

    def __init__(self, status: AutopilotStatus) -> None:
        super().__init__(f"Cannot execute: autopilot is {status}")
        self.status = status


class NoTaskToExecuteError(AutopilotError):
    """The task queue has no task at the current index."""

    pass


class SafetyCheckFailedError(AutopilotError):
    """A pre-execution safety check failed."""

    def __init__(self, result: SafetyCheckResult) -> None:
        super().__init__(result.reason or "Safety check failed")
        self.reason = result.reason
        self.code = result.code
