"""AutopilotService - Persists autopilot sessions and drives task execution."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING

from taskpilot.autopilot import machine
from taskpilot.autopilot.exceptions import (
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
from taskpilot.autopilot.safety import run_safety_checks
from taskpilot.backlog import Batch, chunk_backlog
from taskpilot.config import Settings
from taskpilot.scheduler import SchedulerError
from taskpilot.state_store import StateStoreError, TaskNotFoundError, TaskStatus

if TYPE_CHECKING:
    from taskpilot.api.events import EventManager
    from taskpilot.scheduler import AttemptScheduler
    from taskpilot.state_store import AutopilotSession, StateStore, Task

logger = logging.getLogger(__name__)

DEFAULT_FAILURE = "Task execution failed"


class AutopilotService:
    """Drives autopilot sessions on top of the pure state machine.

    Every operation loads the session state, applies one transition, saves the
    result and emits an event. Operations on the same session are serialized
    by a per-session lock, so there is one writer per session at a time.
    """

    def __init__(
        self,
        state_store: StateStore,
        scheduler: AttemptScheduler,
        event_manager: EventManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the AutopilotService.

        Args:
            state_store: StateStore for session persistence.
            scheduler: AttemptScheduler that runs task attempts.
            event_manager: EventManager for autopilot_updated events.
            settings: Safety and batching settings. Defaults to Settings().
        """
        self.state_store = state_store
        self.scheduler = scheduler
        self.event_manager = event_manager
        self.settings = settings or Settings()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _session_lock(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    # --- Session lifecycle ---

    def create_session(
        self,
        project_id: str,
        steps: Sequence[str] | None = None,
        task_ids: Sequence[str] | None = None,
        batches: Sequence[Batch] | None = None,
    ) -> AutopilotSession:
        """Create an IDLE autopilot session for a project.

        The backlog comes from the first of these that is given: explicit
        batches, plan steps (a task is created for each step), explicit task
        IDs, or the project's todo tasks in backlog order.

        Raises:
            ProjectNotFoundError: If project doesn't exist
            TaskNotFoundError: If a task ID is unknown or belongs to another project
        """
        self.state_store.get_project(project_id)

        if batches is None:
            if steps is not None:
                tasks = [
                    self.state_store.create_task(project_id, title=step.strip())
                    for step in steps
                    if step.strip()
                ]
            elif task_ids is not None:
                tasks = [self._project_task(project_id, task_id) for task_id in task_ids]
            else:
                tasks = self.state_store.list_tasks(project_id, status=TaskStatus.TODO)
            batches = self._chunk([(task.id, task.title) for task in tasks])

        state = machine.create_state(batches)
        record = self.state_store.create_autopilot_session(project_id, _dump(state))
        logger.info(
            "Created autopilot session %s for project %s: %d tasks in %d batches",
            record.id,
            project_id,
            len(state.task_queue),
            len(state.batches),
        )
        return record

    def _project_task(self, project_id: str, task_id: str) -> Task:
        task = self.state_store.get_task(task_id)
        if task.project_id != project_id:
            raise TaskNotFoundError(f"Task '{task_id}' does not belong to project '{project_id}'")
        return task

    def _chunk(self, tasks: list[tuple[str, str]]) -> list[Batch]:
        """Batch tasks by title, then swap titles for task IDs position by position."""
        if not tasks:
            return []
        labels = [title.strip() or task_id for task_id, title in tasks]
        batches = chunk_backlog(
            labels,
            min_batch_size=self.settings.min_batch_size,
            max_batch_size=self.settings.max_batch_size,
        )
        ids = iter(task_id for task_id, _ in tasks)
        return [
            replace(batch, task_ids=tuple(next(ids) for _ in batch.task_ids))
            for batch in batches
        ]

    def get_state(self, session_id: str) -> AutopilotState:
        """Load a session's current state.

        Raises:
            SessionNotFoundError: If session doesn't exist
        """
        return _load(self.state_store.get_autopilot_session(session_id))

    def get_status(self, session_id: str) -> AutopilotStatusInfo:
        """Consistent snapshot of a session's status.

        Raises:
            SessionNotFoundError: If session doesn't exist
        """
        with self._session_lock(session_id):
            return machine.get_status(self.get_state(session_id))

    # --- Transitions ---

    def start(self, session_id: str, mode: AutopilotMode | None = None) -> AutopilotStatusInfo:
        """Start or resume the autopilot.

        Safety checks run first; a failing check leaves the session untouched.

        Raises:
            SessionNotFoundError: If session doesn't exist
            SafetyCheckFailedError: If a safety check fails
        """
        with self._session_lock(session_id):
            record = self.state_store.get_autopilot_session(session_id)
            state = _load(record)
            if state.status in (AutopilotStatus.IDLE, AutopilotStatus.PAUSED):
                result = run_safety_checks(self.state_store, record.project_id, self.settings)
                if not result.ok:
                    raise SafetyCheckFailedError(result)
            state = self._save(record, state, machine.start(state, mode))
            return machine.get_status(state)

    def execute_next(self, session_id: str) -> ExecutionResult:
        """Start an attempt for the current task.

        If the current task already has an unfinished attempt, that attempt is
        returned and nothing new is enqueued.

        Raises:
            SessionNotFoundError: If session doesn't exist
            AutopilotNotRunningError: If the autopilot is not RUNNING
            SafetyCheckFailedError: If a safety check fails (the autopilot is paused)
            NoTaskToExecuteError: If the queue has no current task
        """
        with self._session_lock(session_id):
            record = self.state_store.get_autopilot_session(session_id)
            return self._execute_next(record, _load(record))

    def _execute_next(self, record: AutopilotSession, state: AutopilotState) -> ExecutionResult:
        if state.status != AutopilotStatus.RUNNING:
            raise AutopilotNotRunningError(state.status)

        task_id = state.current_task_id
        if task_id is None:
            raise NoTaskToExecuteError("No task to execute")

        if state.current_attempt_id is not None:
            attempt = self.state_store.get_attempt(state.current_attempt_id)
            if not attempt.is_terminal:
                return ExecutionResult(machine.get_status(state), task_id, attempt)
            # A stopped or unreported attempt never completes the task; run it again.
            logger.info(
                "Session %s replacing %s attempt %s for task %s",
                record.id,
                attempt.state,
                attempt.id,
                task_id,
            )

        result = run_safety_checks(self.state_store, record.project_id, self.settings)
        if not result.ok:
            self._save(record, state, machine.pause(state, result.reason or str(result.code)))
            raise SafetyCheckFailedError(result)

        try:
            attempt = self.scheduler.run_task(task_id)
        except (StateStoreError, SchedulerError) as e:
            logger.error("Failed to start task %s for session %s: %s", task_id, record.id, e)
            self._save(record, state, machine.fail(state, f"Failed to start task: {e}"))
            raise

        state = self._save(record, state, machine.start_task(state, attempt.id))
        logger.info("Session %s executing task %s as attempt %s", record.id, task_id, attempt.id)
        return ExecutionResult(machine.get_status(state), task_id, attempt)

    def task_completed(
        self,
        session_id: str,
        attempt_id: str,
        success: bool,
        error: str | None = None,
    ) -> CompletionResult:
        """Apply the outcome of the current task's attempt.

        Reports for any attempt other than the current one are ignored. A
        failure fails the run; a success advances it, and in AUTO mode the
        next task is started straight away. A success reported while the run
        is not RUNNING is not applied; the task runs again on resume. After a
        cancel every report is ignored.

        Raises:
            SessionNotFoundError: If session doesn't exist
        """
        with self._session_lock(session_id):
            record = self.state_store.get_autopilot_session(session_id)
            state = _load(record)

            if state.current_attempt_id != attempt_id:
                logger.info(
                    "Session %s ignoring completion of attempt %s (current: %s)",
                    session_id,
                    attempt_id,
                    state.current_attempt_id,
                )
                return CompletionResult(machine.get_status(state), ignored=True)

            if state.status == AutopilotStatus.IDLE:
                # Cancelled; the attempt was stopped and its outcome no longer counts.
                logger.info(
                    "Session %s is idle; ignoring completion of attempt %s", session_id, attempt_id
                )
                return CompletionResult(machine.get_status(state), ignored=True)

            if not success:
                state = self._save(record, state, machine.fail(state, error or DEFAULT_FAILURE))
                return CompletionResult(machine.get_status(state))

            task_id = state.current_task_id
            completed = machine.complete_task(state)
            if completed is state:
                logger.info(
                    "Session %s is %s; not applying completion of attempt %s",
                    session_id,
                    state.status,
                    attempt_id,
                )
                return CompletionResult(machine.get_status(state), ignored=True)

            state = self._save(record, state, completed)
            if task_id is not None:
                self.state_store.update_task_status(task_id, TaskStatus.DONE)

            next_attempt = None
            if state.status == AutopilotStatus.RUNNING and state.mode == AutopilotMode.AUTO:
                try:
                    execution = self._execute_next(record, state)
                    next_attempt = execution.attempt
                except SafetyCheckFailedError as e:
                    logger.info("Session %s paused before next task: %s", session_id, e.reason)
                except (StateStoreError, SchedulerError):
                    logger.exception("Session %s could not start its next task", session_id)
                state = _load(self.state_store.get_autopilot_session(session_id))

            return CompletionResult(machine.get_status(state), next_attempt=next_attempt)

    def complete_batch(self, session_id: str) -> AutopilotStatusInfo:
        """Hold the run for approval of the current batch."""
        return self._apply(session_id, machine.complete_batch)

    def approve_batch(self, session_id: str) -> AutopilotStatusInfo:
        """Approve the batch awaiting approval."""
        return self._apply(session_id, machine.approve_current_batch)

    def pause(self, session_id: str, reason: str) -> AutopilotStatusInfo:
        """Pause a running autopilot."""
        return self._apply(session_id, lambda state: machine.pause(state, reason))

    def set_mode(self, session_id: str, mode: AutopilotMode) -> AutopilotStatusInfo:
        """Change the mode of a session that is not running."""
        return self._apply(session_id, lambda state: machine.set_mode(state, mode))

    def cancel(self, session_id: str) -> AutopilotStatusInfo:
        """Cancel the run and stop the attempt executing the current task."""
        with self._session_lock(session_id):
            record = self.state_store.get_autopilot_session(session_id)
            state = _load(record)
            cancelled = machine.cancel(state)
            if cancelled is not state and state.current_attempt_id is not None:
                attempt = self.state_store.get_attempt(state.current_attempt_id)
                if not attempt.is_terminal:
                    self.scheduler.stop(attempt.id)
            state = self._save(record, state, cancelled)
            return machine.get_status(state)

    def _apply(
        self,
        session_id: str,
        transition: Callable[[AutopilotState], AutopilotState],
    ) -> AutopilotStatusInfo:
        with self._session_lock(session_id):
            record = self.state_store.get_autopilot_session(session_id)
            state = _load(record)
            state = self._save(record, state, transition(state))
            return machine.get_status(state)

    def _save(
        self,
        record: AutopilotSession,
        previous: AutopilotState,
        state: AutopilotState,
    ) -> AutopilotState:
        """Persist a transition result and emit an event. No-op transitions write nothing."""
        if state == previous:
            return previous

        self.state_store.save_autopilot_state(record.id, _dump(state))
        if state.status != previous.status:
            logger.info(
                "Autopilot session %s: %s -> %s", record.id, previous.status, state.status
            )
        if self.event_manager is not None:
            self.event_manager.emit_autopilot_updated(
                session_id=record.id,
                project_id=record.project_id,
                status=state.status.value,
                previous_status=previous.status.value,
                task_progress=machine.get_status(state).task_progress,
            )
        return state


def _dump(state: AutopilotState) -> str:
    return json.dumps(state.to_dict())


def _load(record: AutopilotSession) -> AutopilotState:
    return AutopilotState.from_dict(json.loads(record.state))
