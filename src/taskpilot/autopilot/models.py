"""Data models for the Autopilot module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from taskpilot.backlog import Batch

if TYPE_CHECKING:
    from taskpilot.state_store import Attempt


class AutopilotMode(StrEnum):
    """How the autopilot advances after each task."""

    OFF = "OFF"
    STEP = "STEP"
    AUTO = "AUTO"


class AutopilotStatus(StrEnum):
    """Autopilot run status."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    WAITING_APPROVAL = "WAITING_APPROVAL"
    DONE = "DONE"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({AutopilotStatus.DONE, AutopilotStatus.FAILED})


@dataclass(frozen=True)
class AutopilotState:
    """Immutable state record of one autopilot run.

    Transitions never mutate a state; they return a new one (or the same
    object when the transition does not apply).

    Attributes:
        status: Current run status.
        mode: STEP pauses after every task, AUTO continues until done.
        batches: Batches in execution order.
        batch_index: Index of the active batch, None when no batch is active.
        task_queue: Flattened task IDs in execution order.
        current_task_index: Index into task_queue of the next task to run.
        current_attempt_id: Attempt executing the current task, if any.
        completed_tasks: Task IDs completed so far, in completion order.
        pause_reason: Why the run is paused.
        error: Why the run failed.
    """

    status: AutopilotStatus = AutopilotStatus.IDLE
    mode: AutopilotMode = AutopilotMode.OFF
    batches: tuple[Batch, ...] = ()
    batch_index: int | None = None
    task_queue: tuple[str, ...] = ()
    current_task_index: int = 0
    current_attempt_id: str | None = None
    completed_tasks: tuple[str, ...] = field(default=())
    pause_reason: str | None = None
    error: str | None = None

    @property
    def current_task_id(self) -> str | None:
        if 0 <= self.current_task_index < len(self.task_queue):
            return self.task_queue[self.current_task_index]
        return None

    @property
    def current_batch(self) -> Batch | None:
        if self.batch_index is None or not 0 <= self.batch_index < len(self.batches):
            return None
        return self.batches[self.batch_index]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "status": self.status.value,
            "mode": self.mode.value,
            "batches": [batch.to_dict() for batch in self.batches],
            "batch_index": self.batch_index,
            "task_queue": list(self.task_queue),
            "current_task_index": self.current_task_index,
            "current_attempt_id": self.current_attempt_id,
            "completed_tasks": list(self.completed_tasks),
            "pause_reason": self.pause_reason,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AutopilotState:
        """Rebuild a state from to_dict() output."""
        return cls(
            status=AutopilotStatus(data.get("status", AutopilotStatus.IDLE.value)),
            mode=AutopilotMode(data.get("mode", AutopilotMode.OFF.value)),
            batches=tuple(Batch.from_dict(b) for b in data.get("batches", [])),
            batch_index=data.get("batch_index"),
            task_queue=tuple(data.get("task_queue", [])),
            current_task_index=int(data.get("current_task_index", 0)),
            current_attempt_id=data.get("current_attempt_id"),
            completed_tasks=tuple(data.get("completed_tasks", [])),
            pause_reason=data.get("pause_reason"),
            error=data.get("error"),
        )


@dataclass
class AutopilotStatusInfo:
    """Read-only projection of an AutopilotState for polling clients.

    Attributes:
        status: Current run status.
        mode: Current mode.
        current_batch: Active batch, if any.
        batch_index: Index of the active batch, if any.
        total_batches: Number of batches.
        progress: Batch progress as "X/Y".
        current_task_id: Task at current_task_index, if any.
        current_task_index: Index of the next task to run.
        total_tasks: Length of the task queue.
        task_progress: Completed tasks as "X/Y".
        completed_tasks: Number of completed tasks.
        pause_reason: Why the run is paused.
        error: Why the run failed.
    """

    status: AutopilotStatus
    mode: AutopilotMode
    current_batch: Batch | None
    batch_index: int | None
    total_batches: int
    progress: str
    current_task_id: str | None
    current_task_index: int
    total_tasks: int
    task_progress: str
    completed_tasks: int
    pause_reason: str | None = None
    error: str | None = None


@dataclass
class ExecutionResult:
    """Result of executing the next task.

    Attributes:
        status: Autopilot status after the attempt was recorded.
        task_id: Task the attempt executes.
        attempt: The attempt created (or already executing) for the task.
    """

    status: AutopilotStatusInfo
    task_id: str
    attempt: Attempt


@dataclass
class CompletionResult:
    """Result of reporting a task attempt's outcome.

    Attributes:
        status: Autopilot status after the report was applied.
        ignored: True when the attempt was not the current one.
        next_attempt: Attempt started for the following task in AUTO mode.
    """

    status: AutopilotStatusInfo
    ignored: bool = False
    next_attempt: Attempt | None = None
