"""Unit tests for the autopilot state machine."""

import pytest

from taskpilot.autopilot import AutopilotMode, AutopilotState, AutopilotStatus, machine
from taskpilot.backlog import Batch


def _batches() -> list[Batch]:
    return [
        Batch(id="b1", title="First", task_ids=("t1", "t2")),
        Batch(id="b2", title="Second", task_ids=("t3",)),
        Batch(id="b3", title="Third", task_ids=("t4",)),
    ]


@pytest.fixture
def idle() -> AutopilotState:
    return machine.create_state(_batches())


@pytest.fixture
def running(idle: AutopilotState) -> AutopilotState:
    return machine.start(idle, AutopilotMode.AUTO)


@pytest.mark.unit
class TestCreateState:
    """Tests for create_state."""

    def test_initial_state(self, idle: AutopilotState) -> None:
        """New state is IDLE/OFF with a flattened task queue."""
        assert idle.status == AutopilotStatus.IDLE
        assert idle.mode == AutopilotMode.OFF
        assert idle.batch_index is None
        assert idle.task_queue == ("t1", "t2", "t3", "t4")
        assert idle.current_task_id == "t1"

    def test_explicit_task_queue(self) -> None:
        """An explicit queue overrides the batch tasks."""
        state = machine.create_state(_batches(), task_ids=["x", "y"])
        assert state.task_queue == ("x", "y")

    def test_idle_status_info(self, idle: AutopilotState) -> None:
        """IDLE progress is 0/N."""
        info = machine.get_status(idle)
        assert info.progress == "0/3"
        assert info.task_progress == "0/4"
        assert info.current_batch is None


@pytest.mark.unit
class TestStart:
    """Tests for start."""

    def test_start_runs_first_batch(self, idle: AutopilotState) -> None:
        """Starting enters RUNNING on batch 0."""
        state = machine.start(idle, AutopilotMode.STEP)

        assert state.status == AutopilotStatus.RUNNING
        assert state.mode == AutopilotMode.STEP
        assert state.batch_index == 0
        info = machine.get_status(state)
        assert info.progress == "1/3"
        assert info.current_batch is not None
        assert info.current_batch.id == "b1"

    def test_default_mode_is_auto(self, idle: AutopilotState) -> None:
        """Starting with no mode from OFF uses AUTO."""
        assert machine.start(idle).mode == AutopilotMode.AUTO

    def test_keeps_previous_mode(self, idle: AutopilotState) -> None:
        """Starting with no mode keeps a previously chosen mode."""
        state = machine.start(machine.set_mode(idle, AutopilotMode.STEP))
        assert state.mode == AutopilotMode.STEP

    def test_explicit_off_does_nothing(self, idle: AutopilotState) -> None:
        """OFF is not a runnable mode."""
        assert machine.start(idle, AutopilotMode.OFF) is idle

    def test_empty_backlog_finishes_immediately(self) -> None:
        """No tasks goes straight to DONE."""
        state = machine.start(machine.create_state([]))

        assert state.status == AutopilotStatus.DONE
        info = machine.get_status(state)
        assert info.progress == "0/0"
        assert info.task_progress == "0/0"

    def test_start_while_running_is_noop(self, running: AutopilotState) -> None:
        """A running autopilot is returned unchanged."""
        assert machine.start(running, AutopilotMode.STEP) is running

    def test_resume_clears_pause_reason(self, running: AutopilotState) -> None:
        """Resuming clears the pause reason and keeps progress."""
        state = machine.complete_task(machine.start_task(running, "a1"))
        paused = machine.pause(state, "manual")

        resumed = machine.start(paused)

        assert resumed.status == AutopilotStatus.RUNNING
        assert resumed.pause_reason is None
        assert resumed.current_task_id == "t2"
        assert resumed.completed_tasks == ("t1",)


@pytest.mark.unit
class TestCompleteTask:
    """Tests for start_task/complete_task."""

    def test_start_task_records_attempt(self, running: AutopilotState) -> None:
        """start_task stores the attempt ID."""
        assert machine.start_task(running, "a1").current_attempt_id == "a1"

    def test_start_task_ignored_when_not_running(self, idle: AutopilotState) -> None:
        """start_task does nothing outside RUNNING."""
        assert machine.start_task(idle, "a1") is idle

    def test_auto_mode_keeps_running(self, running: AutopilotState) -> None:
        """AUTO advances and stays RUNNING with no attempt."""
        state = machine.complete_task(machine.start_task(running, "a1"))

        assert state.status == AutopilotStatus.RUNNING
        assert state.current_task_index == 1
        assert state.completed_tasks == ("t1",)
        assert state.current_attempt_id is None

    def test_step_mode_pauses(self, idle: AutopilotState) -> None:
        """STEP pauses after each task."""
        state = machine.start(idle, AutopilotMode.STEP)
        state = machine.complete_task(machine.start_task(state, "a1"))

        assert state.status == AutopilotStatus.PAUSED
        assert state.pause_reason == machine.STEP_COMPLETED_REASON

    def test_last_task_finishes_run(self, running: AutopilotState) -> None:
        """Completing the final task enters DONE."""
        state = running
        for attempt in ("a1", "a2", "a3", "a4"):
            state = machine.complete_task(machine.start_task(state, attempt))

        assert state.status == AutopilotStatus.DONE
        assert state.completed_tasks == ("t1", "t2", "t3", "t4")
        info = machine.get_status(state)
        assert info.progress == "3/3"
        assert info.task_progress == "4/4"
        assert info.current_task_id is None

    def test_completed_count_tracks_index(self, running: AutopilotState) -> None:
        """Completed tasks always equal the current task index."""
        state = running
        for attempt in ("a1", "a2", "a3"):
            state = machine.complete_task(machine.start_task(state, attempt))
            assert len(state.completed_tasks) == state.current_task_index

    def test_ignored_when_not_running(self, idle: AutopilotState) -> None:
        """complete_task does nothing outside RUNNING."""
        assert machine.complete_task(idle) is idle


@pytest.mark.unit
class TestBatchApproval:
    """Tests for complete_batch/approve_current_batch."""

    def test_complete_batch_waits_for_approval(self, running: AutopilotState) -> None:
        """Completing a batch holds the run."""
        state = machine.complete_batch(running)
        assert state.status == AutopilotStatus.WAITING_APPROVAL

    def test_approve_moves_to_next_batch(self, running: AutopilotState) -> None:
        """Approval advances the batch index."""
        state = machine.approve_current_batch(machine.complete_batch(running))

        assert state.status == AutopilotStatus.RUNNING
        assert state.batch_index == 1
        assert machine.get_status(state).progress == "2/3"

    def test_approving_same_snapshot_twice_is_deterministic(
        self, running: AutopilotState
    ) -> None:
        """Approval depends only on its input."""
        waiting = machine.complete_batch(running)

        first = machine.approve_current_batch(waiting)
        second = machine.approve_current_batch(waiting)

        assert first == second
        assert first.batch_index == 1

    def test_approve_without_waiting_is_noop(self, running: AutopilotState) -> None:
        """Approving a batch that is not waiting changes nothing."""
        assert machine.approve_current_batch(running) is running

    def test_approving_last_batch_finishes(self, running: AutopilotState) -> None:
        """Approving the final batch enters DONE."""
        state = running
        for _ in range(3):
            state = machine.approve_current_batch(machine.complete_batch(state))

        assert state.status == AutopilotStatus.DONE
        assert state.batch_index is None
        assert machine.get_status(state).progress == "3/3"


@pytest.mark.unit
class TestPauseCancelFail:
    """Tests for pause, cancel and fail."""

    def test_pause_records_reason(self, running: AutopilotState) -> None:
        """Pausing stores the reason."""
        state = machine.pause(running, "Max open PRs reached")
        assert state.status == AutopilotStatus.PAUSED
        assert state.pause_reason == "Max open PRs reached"

    def test_pause_when_idle_is_noop(self, idle: AutopilotState) -> None:
        """Only a running autopilot can pause."""
        assert machine.pause(idle, "x") is idle

    def test_cancel_keeps_task_progress(self, running: AutopilotState) -> None:
        """Cancel returns to IDLE without losing completed tasks."""
        state = machine.complete_task(machine.start_task(running, "a1"))

        cancelled = machine.cancel(state)

        assert cancelled.status == AutopilotStatus.IDLE
        assert cancelled.batch_index is None
        assert cancelled.completed_tasks == ("t1",)
        assert machine.get_status(cancelled).task_progress == "1/4"

    def test_cancel_idle_is_noop(self, idle: AutopilotState) -> None:
        """Cancelling an idle autopilot changes nothing."""
        assert machine.cancel(idle) is idle

    def test_fail_records_error(self, running: AutopilotState) -> None:
        """fail enters FAILED with the error."""
        state = machine.fail(running, "boom")
        assert state.status == AutopilotStatus.FAILED
        assert state.error == "boom"

    def test_second_failure_keeps_first_error(self, running: AutopilotState) -> None:
        """A later failure report does not overwrite the recorded error."""
        failed = machine.fail(running, "tests failed")

        again = machine.fail(failed, "runner lost")

        assert again is failed
        assert again.error == "tests failed"

    def test_fail_after_done_keeps_done(self) -> None:
        """A finished run is not turned into a failure."""
        done = machine.start(machine.create_state([]))

        assert done.status == AutopilotStatus.DONE
        assert machine.fail(done, "late error") is done

    def test_terminal_states_are_sticky(self, running: AutopilotState) -> None:
        """DONE and FAILED ignore every transition."""
        failed = machine.fail(running, "boom")

        assert machine.fail(failed, "again") is failed
        assert machine.start(failed) is failed
        assert machine.cancel(failed) is failed
        assert machine.set_mode(failed, AutopilotMode.STEP) is failed


@pytest.mark.unit
class TestSetMode:
    """Tests for set_mode."""

    def test_set_mode_while_paused(self, running: AutopilotState) -> None:
        """Mode may change while paused."""
        paused = machine.pause(running, "x")
        assert machine.set_mode(paused, AutopilotMode.STEP).mode == AutopilotMode.STEP

    def test_set_mode_ignored_while_running(self, running: AutopilotState) -> None:
        """Mode cannot change mid-run."""
        assert machine.set_mode(running, AutopilotMode.STEP) is running


@pytest.mark.unit
class TestSerialization:
    """Tests for AutopilotState persistence."""

    def test_dict_round_trip(self, running: AutopilotState) -> None:
        """A state survives to_dict/from_dict unchanged."""
        state = machine.pause(machine.complete_task(machine.start_task(running, "a1")), "x")
        assert AutopilotState.from_dict(state.to_dict()) == state

    def test_from_empty_dict(self) -> None:
        """Missing keys fall back to defaults."""
        assert AutopilotState.from_dict({}) == AutopilotState()
