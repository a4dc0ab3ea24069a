"""Autopilot - Batch-by-batch task execution with STEP/AUTO modes and approval gates."""

from taskpilot.autopilot import machine
from taskpilot.autopilot.exceptions import (
    AutopilotError,
    AutopilotNotRunningError,
    NoTaskToExecuteError,
    SafetyCheckFailedError,
)
from taskpilot.autopilot.models import (
    AutopilotMode,
    AutopilotState,
    AutopilotStatus,
    AutopilotStatusInfo,
    CompletionResult,
    ExecutionResult,
)
from taskpilot.autopilot.safety import SafetyCheckResult, SafetyCode, run_safety_checks
from taskpilot.autopilot.service import AutopilotService

__all__ = [
    "AutopilotError",
    "AutopilotMode",
    "AutopilotNotRunningError",
    "AutopilotService",
    "AutopilotState",
    "AutopilotStatus",
    "AutopilotStatusInfo",
    "CompletionResult",
    "ExecutionResult",
    "NoTaskToExecuteError",
    "SafetyCheckFailedError",
    "SafetyCheckResult",
    "SafetyCode",
    "machine",
    "run_safety_checks",
]
