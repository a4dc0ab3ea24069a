"""Unit tests for AttemptScheduler."""

import logging
from unittest.mock import MagicMock

import pytest

from taskpilot.runner import RunnerError
from taskpilot.scheduler import AttemptScheduler, InvalidAttemptStateError
from taskpilot.scheduler.scheduler import STOPPED_EXIT_CODE
from taskpilot.state_store import (
    AttemptNotFoundError,
    AttemptState,
    Project,
    StateStore,
    TaskNotFoundError,
    TaskStatus,
)


@pytest.fixture
def mock_runner() -> MagicMock:
    """Create a mock runner that accepts every attempt."""
    return MagicMock()


@pytest.fixture
def mock_event_manager() -> MagicMock:
    """Create a mock EventManager."""
    return MagicMock()


@pytest.fixture
def scheduler(
    store: StateStore, mock_runner: MagicMock, mock_event_manager: MagicMock
) -> AttemptScheduler:
    """Create an AttemptScheduler over the in-memory store."""
    return AttemptScheduler(
        state_store=store, runner=mock_runner, event_manager=mock_event_manager
    )


def _state(store: StateStore, attempt_id: str) -> AttemptState:
    return store.get_attempt(attempt_id).attempt_state


@pytest.mark.unit
class TestEnqueue:
    """Tests for enqueue."""

    def test_first_attempt_runs_immediately(
        self, scheduler: AttemptScheduler, mock_runner: MagicMock
    ) -> None:
        """An idle scope starts the new attempt."""
        attempt = scheduler.enqueue("scope-1", "task-1")

        assert attempt.attempt_state == AttemptState.RUNNING
        assert attempt.started_at is not None
        mock_runner.start.assert_called_once()
        assert mock_runner.start.call_args[0][0].id == attempt.id

    def test_busy_scope_queues(self, scheduler: AttemptScheduler, mock_runner: MagicMock) -> None:
        """A second attempt waits behind the running one."""
        scheduler.enqueue("scope-1", "task-1")
        second = scheduler.enqueue("scope-1", "task-2")

        assert second.attempt_state == AttemptState.QUEUED
        assert scheduler.queue_position(second.id) == 1
        assert mock_runner.start.call_count == 1

    def test_scopes_are_independent(self, scheduler: AttemptScheduler) -> None:
        """Each scope has its own running slot."""
        a = scheduler.enqueue("scope-1", "task-1")
        b = scheduler.enqueue("scope-2", "task-2")

        assert a.attempt_state == AttemptState.RUNNING
        assert b.attempt_state == AttemptState.RUNNING

    def test_queue_positions_are_fifo(self, scheduler: AttemptScheduler) -> None:
        """Queued attempts are numbered in arrival order."""
        scheduler.enqueue("scope-1", "task-1")
        queued = [scheduler.enqueue("scope-1", f"task-{i}") for i in range(2, 5)]

        assert [scheduler.queue_position(a.id) for a in queued] == [1, 2, 3]

    def test_emits_attempt_updated(
        self, scheduler: AttemptScheduler, mock_event_manager: MagicMock
    ) -> None:
        """Enqueueing emits an attempt_updated event."""
        attempt = scheduler.enqueue("scope-1", "task-1")

        mock_event_manager.emit_attempt_updated.assert_called_once_with(
            attempt_id=attempt.id,
            scope_id="scope-1",
            task_id="task-1",
            state="running",
            previous_state=None,
        )

    def test_without_runner_keeps_bookkeeping(self, store: StateStore) -> None:
        """A scheduler with no runner still tracks states."""
        scheduler = AttemptScheduler(state_store=store)
        attempt = scheduler.enqueue("scope-1", "task-1")
        assert attempt.attempt_state == AttemptState.RUNNING


@pytest.mark.unit
class TestFinish:
    """Tests for finish."""

    def test_finish_promotes_next(
        self, scheduler: AttemptScheduler, store: StateStore, mock_runner: MagicMock
    ) -> None:
        """Finishing the running attempt starts the FIFO head."""
        first = scheduler.enqueue("scope-1", "task-1")
        second = scheduler.enqueue("scope-1", "task-2")
        third = scheduler.enqueue("scope-1", "task-3")

        finished = scheduler.finish(first.id, AttemptState.COMPLETED, exit_code=0)

        assert finished.attempt_state == AttemptState.COMPLETED
        assert finished.exit_code == 0
        assert finished.finished_at is not None
        assert _state(store, second.id) == AttemptState.RUNNING
        assert _state(store, third.id) == AttemptState.QUEUED
        assert scheduler.queue_position(third.id) == 1
        assert mock_runner.start.call_args[0][0].id == second.id

    def test_finish_as_failed(self, scheduler: AttemptScheduler) -> None:
        """Attempts can finish as failed."""
        attempt = scheduler.enqueue("scope-1", "task-1")
        finished = scheduler.finish(attempt.id, AttemptState.FAILED, exit_code=2)
        assert finished.attempt_state == AttemptState.FAILED

    def test_finish_rejects_other_states(self, scheduler: AttemptScheduler) -> None:
        """Only completed and failed are valid outcomes."""
        attempt = scheduler.enqueue("scope-1", "task-1")
        with pytest.raises(ValueError, match="completed or failed"):
            scheduler.finish(attempt.id, AttemptState.STOPPED)

    def test_finish_queued_attempt_raises(self, scheduler: AttemptScheduler) -> None:
        """A queued attempt cannot finish."""
        scheduler.enqueue("scope-1", "task-1")
        queued = scheduler.enqueue("scope-1", "task-2")

        with pytest.raises(InvalidAttemptStateError, match="only running attempts"):
            scheduler.finish(queued.id, AttemptState.COMPLETED)

    def test_finish_terminal_attempt_is_idempotent(
        self, scheduler: AttemptScheduler, store: StateStore
    ) -> None:
        """Finishing a stopped attempt leaves it stopped."""
        attempt = scheduler.enqueue("scope-1", "task-1")
        scheduler.stop(attempt.id)

        result = scheduler.finish(attempt.id, AttemptState.COMPLETED)

        assert result.attempt_state == AttemptState.STOPPED
        assert _state(store, attempt.id) == AttemptState.STOPPED

    def test_finish_unknown_attempt(self, scheduler: AttemptScheduler) -> None:
        """Unknown attempts raise AttemptNotFoundError."""
        with pytest.raises(AttemptNotFoundError):
            scheduler.finish("missing", AttemptState.COMPLETED)


@pytest.mark.unit
class TestStop:
    """Tests for stop."""

    def test_stop_running_promotes_next(
        self, scheduler: AttemptScheduler, store: StateStore, mock_runner: MagicMock
    ) -> None:
        """Stopping the running attempt frees the slot for the next one."""
        first = scheduler.enqueue("scope-1", "task-1")
        second = scheduler.enqueue("scope-1", "task-2")

        stopped = scheduler.stop(first.id)

        assert stopped.attempt_state == AttemptState.STOPPED
        assert stopped.exit_code == STOPPED_EXIT_CODE
        assert _state(store, second.id) == AttemptState.RUNNING
        mock_runner.stop.assert_called_once_with(first.id)

    def test_stop_queued_does_not_call_runner(
        self, scheduler: AttemptScheduler, store: StateStore, mock_runner: MagicMock
    ) -> None:
        """A queued attempt is stopped without involving the runner."""
        first = scheduler.enqueue("scope-1", "task-1")
        second = scheduler.enqueue("scope-1", "task-2")

        scheduler.stop(second.id)

        assert _state(store, second.id) == AttemptState.STOPPED
        assert _state(store, first.id) == AttemptState.RUNNING
        mock_runner.stop.assert_not_called()

    def test_runner_stop_failure_is_tolerated(
        self, scheduler: AttemptScheduler, mock_runner: MagicMock
    ) -> None:
        """The attempt is stopped even if the runner does not acknowledge."""
        mock_runner.stop.side_effect = RunnerError("unreachable")
        attempt = scheduler.enqueue("scope-1", "task-1")

        stopped = scheduler.stop(attempt.id)

        assert stopped.attempt_state == AttemptState.STOPPED

    def test_stop_failure_log_redacts_bearer_token(
        self,
        scheduler: AttemptScheduler,
        mock_runner: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """The warning about an unacknowledged stop hides the runner token."""
        mock_runner.stop.side_effect = RunnerError("401 - Bearer runner.secret.value rejected")
        attempt = scheduler.enqueue("scope-1", "task-1")
        caplog.set_level(logging.WARNING, logger="taskpilot.scheduler")

        scheduler.stop(attempt.id)

        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert any("Bearer [REDACTED]" in m for m in warnings)
        assert all("runner.secret.value" not in m for m in warnings)


@pytest.mark.unit
class TestCancelQueued:
    """Tests for cancel_queued."""

    def test_cancel_removes_from_queue(
        self, scheduler: AttemptScheduler, store: StateStore
    ) -> None:
        """Cancelling shifts later positions forward and keeps the running slot."""
        first = scheduler.enqueue("scope-1", "task-1")
        second = scheduler.enqueue("scope-1", "task-2")
        third = scheduler.enqueue("scope-1", "task-3")

        cancelled = scheduler.cancel_queued(second.id)

        assert cancelled.attempt_state == AttemptState.CANCELLED
        assert scheduler.queue_position(second.id) is None
        assert scheduler.queue_position(third.id) == 1
        assert _state(store, first.id) == AttemptState.RUNNING

    def test_cancel_running_raises(self, scheduler: AttemptScheduler) -> None:
        """Running attempts must be stopped, not cancelled."""
        attempt = scheduler.enqueue("scope-1", "task-1")

        with pytest.raises(InvalidAttemptStateError, match="only queued attempts"):
            scheduler.cancel_queued(attempt.id)


@pytest.mark.unit
class TestHandOff:
    """Tests for runner handoff failures."""

    def test_rejected_attempt_fails_and_next_runs(
        self, store: StateStore, mock_event_manager: MagicMock
    ) -> None:
        """A rejected handoff fails the attempt and promotes the next one."""
        runner = MagicMock()
        scheduler = AttemptScheduler(
            state_store=store, runner=None, event_manager=mock_event_manager
        )
        first = scheduler.enqueue("scope-1", "task-1")
        second = scheduler.enqueue("scope-1", "task-2")
        scheduler.runner = runner
        runner.start.side_effect = [RunnerError("rejected"), None]
        third = scheduler.enqueue("scope-1", "task-3")

        scheduler.finish(first.id, AttemptState.COMPLETED)

        assert _state(store, second.id) == AttemptState.FAILED
        assert _state(store, third.id) == AttemptState.RUNNING
        assert runner.start.call_count == 2

    def test_rejected_first_attempt_frees_scope(
        self, scheduler: AttemptScheduler, store: StateStore, mock_runner: MagicMock
    ) -> None:
        """A rejected immediate start leaves the scope idle."""
        mock_runner.start.side_effect = RunnerError("rejected")

        attempt = scheduler.enqueue("scope-1", "task-1")

        assert _state(store, attempt.id) == AttemptState.FAILED
        assert store.get_running_attempt("scope-1") is None

    def test_rejection_log_redacts_runner_reply(
        self,
        scheduler: AttemptScheduler,
        mock_runner: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Credentials echoed in a runner error are not logged."""
        token = "ghp_" + "x" * 36
        mock_runner.start.side_effect = RunnerError(f"403 - bad credentials {token}")
        caplog.set_level(logging.ERROR, logger="taskpilot.scheduler")

        attempt = scheduler.enqueue("scope-1", "task-1")

        messages = [
            r.getMessage() for r in caplog.records if r.name.startswith("taskpilot.scheduler")
        ]
        assert any(attempt.id in m and "[GITHUB_TOKEN]" in m for m in messages)
        assert all(token not in m for m in messages)

    def test_rejection_log_truncates_long_reply(
        self,
        scheduler: AttemptScheduler,
        mock_runner: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A huge runner reply is cut before it is logged."""
        mock_runner.start.side_effect = RunnerError("e" * 5000)
        caplog.set_level(logging.ERROR, logger="taskpilot.scheduler")

        scheduler.enqueue("scope-1", "task-1")

        (message,) = [
            r.getMessage() for r in caplog.records if r.getMessage().startswith("Runner rejected")
        ]
        assert "truncated, 4500 more chars" in message
        assert len(message) < 1000


@pytest.mark.unit
class TestRunTask:
    """Tests for run_task."""

    def test_run_task_scopes_by_project(
        self, scheduler: AttemptScheduler, store: StateStore, project: Project
    ) -> None:
        """The task's project is the scope, and the task moves to in progress."""
        task = store.create_task(project.id, title="Add login")

        attempt = scheduler.run_task(task.id)

        assert attempt.scope_id == project.id
        assert attempt.task_id == task.id
        assert store.get_task(task.id).status == TaskStatus.IN_PROGRESS.value

    def test_run_unknown_task(self, scheduler: AttemptScheduler) -> None:
        """Unknown tasks raise TaskNotFoundError."""
        with pytest.raises(TaskNotFoundError):
            scheduler.run_task("missing")


@pytest.mark.unit
class TestPromoteNext:
    """Tests for promote_next."""

    def test_nothing_to_promote(self, scheduler: AttemptScheduler) -> None:
        """An empty scope promotes nothing."""
        assert scheduler.promote_next("scope-1") is None

    def test_running_scope_is_not_promoted(self, scheduler: AttemptScheduler) -> None:
        """A scope with a running attempt keeps its queue."""
        scheduler.enqueue("scope-1", "task-1")
        scheduler.enqueue("scope-1", "task-2")
        assert scheduler.promote_next("scope-1") is None

    def test_promotes_orphaned_head(self, scheduler: AttemptScheduler, store: StateStore) -> None:
        """A queue left without a running attempt is restarted."""
        queued = store.create_attempt("task-1", "scope-1")

        promoted = scheduler.promote_next("scope-1")

        assert promoted is not None
        assert promoted.id == queued.id
        assert promoted.attempt_state == AttemptState.RUNNING
