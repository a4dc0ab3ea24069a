"""AttemptScheduler - Serializes attempt execution per scope."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol

from taskpilot.logging import sanitize_for_log, truncate_output
from taskpilot.runner import RunnerError
from taskpilot.scheduler.exceptions import InvalidAttemptStateError, SchedulerError
from taskpilot.state_store import Attempt, AttemptState, TaskStatus

if TYPE_CHECKING:
    from taskpilot.api.events import EventManager
    from taskpilot.state_store import StateStore

logger = logging.getLogger(__name__)

_FINISHED_STATES = (AttemptState.COMPLETED, AttemptState.FAILED)
STOPPED_EXIT_CODE = -1


class AttemptRunner(Protocol):
    """Executes running attempts. RunnerClient is the production implementation."""

    def start(self, attempt: Attempt) -> None: ...

    def stop(self, attempt_id: str) -> None: ...


class AttemptScheduler:
    """Keeps at most one running attempt per scope and queues the rest FIFO.

    A scope is the unit of serialization; the HTTP layer uses the project ID.
    Mutating operations on one scope run under that scope's lock, so the
    running-slot check and the write that fills it cannot interleave. Scopes
    never block each other. Attempts promoted to running are handed to the
    runner after the lock is released.
    """

    def __init__(
        self,
        state_store: StateStore,
        runner: AttemptRunner | None = None,
        event_manager: EventManager | None = None,
    ) -> None:
        """Initialize the AttemptScheduler.

        Args:
            state_store: StateStore holding the run queue.
            runner: Runner that executes attempts. None keeps bookkeeping only.
            event_manager: EventManager for attempt_updated events.
        """
        self.state_store = state_store
        self.runner = runner
        self.event_manager = event_manager
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _scope_lock(self, scope_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(scope_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[scope_id] = lock
            return lock

    def enqueue(self, scope_id: str, task_id: str) -> Attempt:
        """Add an attempt for a task to a scope.

        The attempt starts running immediately when the scope has no running
        attempt and nothing queued ahead of it; otherwise it joins the tail of
        the scope's FIFO.

        Returns:
            The new attempt, in state running or queued.
        """
        promoted: Attempt | None = None
        with self._scope_lock(scope_id):
            running = self.state_store.get_running_attempt(scope_id)
            head = self.state_store.next_queued_attempt(scope_id)
            if running is None and head is None:
                attempt = self.state_store.create_attempt(
                    task_id, scope_id, state=AttemptState.RUNNING
                )
                promoted = attempt
            else:
                attempt = self.state_store.create_attempt(task_id, scope_id)
                if running is None:
                    promoted = self._promote_locked(scope_id)
                    if promoted is not None and promoted.id == attempt.id:
                        attempt = promoted

        logger.info(
            "Enqueued attempt %s for task %s in scope %s as %s",
            attempt.id,
            task_id,
            scope_id,
            attempt.state,
        )
        self._emit(attempt, previous_state=None)
        if promoted is not None and promoted.id != attempt.id:
            self._emit(promoted, previous_state=AttemptState.QUEUED)
        self._hand_off(promoted)
        return attempt

    def promote_next(self, scope_id: str) -> Attempt | None:
        """Start the head of the scope's FIFO if the scope has no running attempt.

        Returns:
            The promoted attempt, or None when nothing was promoted.
        """
        with self._scope_lock(scope_id):
            promoted = self._promote_locked(scope_id)
        if promoted is not None:
            self._emit(promoted, previous_state=AttemptState.QUEUED)
            self._hand_off(promoted)
        return promoted

    def finish(
        self,
        attempt_id: str,
        state: AttemptState,
        exit_code: int | None = None,
    ) -> Attempt:
        """Record that a running attempt finished, then promote the next one.

        Finishing an attempt that already reached a terminal state (for
        example one stopped while the runner was wrapping up) returns it
        unchanged.

        Raises:
            ValueError: If state is not completed or failed
            AttemptNotFoundError: If attempt doesn't exist
            InvalidAttemptStateError: If the attempt is still queued
        """
        if state not in _FINISHED_STATES:
            raise ValueError(f"Attempts finish as completed or failed, not {state.value!r}")

        attempt = self.state_store.get_attempt(attempt_id)
        with self._scope_lock(attempt.scope_id):
            current = self.state_store.get_attempt(attempt_id)
            if current.is_terminal:
                logger.info(
                    "Attempt %s already %s, ignoring finish as %s",
                    attempt_id,
                    current.state,
                    state,
                )
                return current
            if current.attempt_state != AttemptState.RUNNING:
                raise InvalidAttemptStateError(
                    f"Attempt '{attempt_id}' is {current.state}, only running attempts can finish"
                )

            finished = self.state_store.transition_attempt(
                attempt_id,
                state,
                expected_state=AttemptState.RUNNING,
                exit_code=exit_code,
            )
            if finished is None:
                raise SchedulerError(f"Attempt '{attempt_id}' changed state concurrently")
            promoted = self._promote_locked(attempt.scope_id)

        logger.info("Attempt %s finished as %s (exit code %s)", attempt_id, state, exit_code)
        self._emit(finished, previous_state=AttemptState.RUNNING)
        if promoted is not None:
            self._emit(promoted, previous_state=AttemptState.QUEUED)
            self._hand_off(promoted)
        return finished

    def stop(self, attempt_id: str) -> Attempt:
        """Force an attempt to stopped and promote the next queued attempt.

        Applies to any state. A running attempt's runner is asked to stop;
        the runner stops cooperatively and the attempt is stopped here
        regardless of when it does.

        Raises:
            AttemptNotFoundError: If attempt doesn't exist
        """
        attempt = self.state_store.get_attempt(attempt_id)
        with self._scope_lock(attempt.scope_id):
            previous = self.state_store.get_attempt(attempt_id).attempt_state
            stopped = self.state_store.transition_attempt(
                attempt_id,
                AttemptState.STOPPED,
                expected_state=previous,
                exit_code=STOPPED_EXIT_CODE,
            )
            if stopped is None:
                raise SchedulerError(f"Attempt '{attempt_id}' changed state concurrently")
            promoted = self._promote_locked(attempt.scope_id)

        logger.info("Stopped attempt %s (was %s)", attempt_id, previous)
        if previous == AttemptState.RUNNING and self.runner is not None:
            try:
                self.runner.stop(attempt_id)
            except RunnerError as e:
                logger.warning(
                    "Runner did not acknowledge stop of attempt %s: %s",
                    attempt_id,
                    sanitize_for_log(truncate_output(str(e), max_length=500)),
                )

        self._emit(stopped, previous_state=previous)
        if promoted is not None:
            self._emit(promoted, previous_state=AttemptState.QUEUED)
            self._hand_off(promoted)
        return stopped

    def cancel_queued(self, attempt_id: str) -> Attempt:
        """Cancel an attempt that is still waiting in the queue.

        The running slot is unaffected, so nothing is promoted.

        Raises:
            AttemptNotFoundError: If attempt doesn't exist
            InvalidAttemptStateError: If the attempt is not queued
        """
        attempt = self.state_store.get_attempt(attempt_id)
        with self._scope_lock(attempt.scope_id):
            cancelled = self.state_store.transition_attempt(
                attempt_id,
                AttemptState.CANCELLED,
                expected_state=AttemptState.QUEUED,
            )
            if cancelled is None:
                current = self.state_store.get_attempt(attempt_id)
                raise InvalidAttemptStateError(
                    f"Attempt '{attempt_id}' is {current.state}, only queued attempts "
                    "can be cancelled"
                )

        logger.info("Cancelled queued attempt %s", attempt_id)
        self._emit(cancelled, previous_state=AttemptState.QUEUED)
        return cancelled

    def queue_position(self, attempt_id: str) -> int | None:
        """1-based position of a queued attempt in its scope's FIFO.

        Returns:
            The position, or None when the attempt is not queued.

        Raises:
            AttemptNotFoundError: If attempt doesn't exist
        """
        attempt = self.state_store.get_attempt(attempt_id)
        if attempt.attempt_state != AttemptState.QUEUED:
            return None
        queued = self.state_store.list_attempts(
            scope_id=attempt.scope_id, state=AttemptState.QUEUED
        )
        for position, entry in enumerate(queued, start=1):
            if entry.id == attempt_id:
                return position
        return None

    def run_task(self, task_id: str) -> Attempt:
        """Enqueue an attempt for a task, scoped to the task's project.

        Raises:
            TaskNotFoundError: If task doesn't exist
        """
        task = self.state_store.get_task(task_id)
        self.state_store.update_task_status(task_id, TaskStatus.IN_PROGRESS)
        return self.enqueue(task.project_id, task.id)

    def _promote_locked(self, scope_id: str) -> Attempt | None:
        """Promote the FIFO head. Caller holds the scope lock."""
        if self.state_store.get_running_attempt(scope_id) is not None:
            return None

        while True:
            head = self.state_store.next_queued_attempt(scope_id)
            if head is None:
                return None
            promoted = self.state_store.transition_attempt(
                head.id,
                AttemptState.RUNNING,
                expected_state=AttemptState.QUEUED,
            )
            if promoted is not None:
                logger.info("Promoted attempt %s in scope %s", promoted.id, scope_id)
                return promoted
            # Another process moved the head first; look at the new head
            logger.debug("Attempt %s left the queue before promotion", head.id)

    def _hand_off(self, attempt: Attempt | None) -> None:
        """Give running attempts to the runner.

        A rejected handoff fails the attempt so the scope is not held by work
        that will never run, and the next queued attempt is tried.
        """
        while attempt is not None and self.runner is not None:
            try:
                self.runner.start(attempt)
                return
            except RunnerError as e:
                logger.error(
                    "Runner rejected attempt %s: %s",
                    attempt.id,
                    sanitize_for_log(truncate_output(str(e), max_length=500)),
                )

            with self._scope_lock(attempt.scope_id):
                failed = self.state_store.transition_attempt(
                    attempt.id,
                    AttemptState.FAILED,
                    expected_state=AttemptState.RUNNING,
                )
                promoted = self._promote_locked(attempt.scope_id) if failed else None

            if failed is not None:
                self._emit(failed, previous_state=AttemptState.RUNNING)
            if promoted is not None:
                self._emit(promoted, previous_state=AttemptState.QUEUED)
            attempt = promoted

    def _emit(self, attempt: Attempt, previous_state: AttemptState | None) -> None:
        if self.event_manager is None:
            return
        self.event_manager.emit_attempt_updated(
            attempt_id=attempt.id,
            scope_id=attempt.scope_id,
            task_id=attempt.task_id,
            state=attempt.state,
            previous_state=previous_state.value if previous_state is not None else None,
        )
