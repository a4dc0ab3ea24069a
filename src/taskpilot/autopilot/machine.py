"""Autopilot state machine.

Pure transition functions over AutopilotState: no I/O, no logging, no
mutation. A transition that does not apply to the given status returns the
input object unchanged, so callers detect "nothing happened" by identity or
by comparing statuses.

Status transitions:

    IDLE             --start-->                        RUNNING
    RUNNING          --complete_task (STEP)-->         PAUSED
    PAUSED           --start-->                        RUNNING
    RUNNING          --complete_task (last task)-->    DONE
    RUNNING          --complete_batch-->               WAITING_APPROVAL
    WAITING_APPROVAL --approve_current_batch-->        RUNNING | DONE
    RUNNING | PAUSED | WAITING_APPROVAL --cancel-->    IDLE
    any non-terminal --fail-->                         FAILED

DONE and FAILED are terminal.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from taskpilot.autopilot.models import (
    TERMINAL_STATUSES,
    AutopilotMode,
    AutopilotState,
    AutopilotStatus,
    AutopilotStatusInfo,
)
from taskpilot.backlog import Batch

STEP_COMPLETED_REASON = "step completed"


def create_state(
    batches: Sequence[Batch],
    task_ids: Sequence[str] | None = None,
) -> AutopilotState:
    """Build an IDLE/OFF state.

    The task queue defaults to every batch's tasks concatenated in batch order.
    """
    queue = (
        tuple(task_ids)
        if task_ids is not None
        else tuple(task_id for batch in batches for task_id in batch.task_ids)
    )
    return AutopilotState(
        status=AutopilotStatus.IDLE,
        mode=AutopilotMode.OFF,
        batches=tuple(batches),
        task_queue=queue,
    )


def set_mode(state: AutopilotState, mode: AutopilotMode) -> AutopilotState:
    """Change the mode; ignored while running or once terminal."""
    if state.status == AutopilotStatus.RUNNING or state.status in TERMINAL_STATUSES:
        return state
    return replace(state, mode=mode)


def start(state: AutopilotState, mode: AutopilotMode | None = None) -> AutopilotState:
    """Start or resume a run.

    The effective mode is the argument, else the current mode unless it is
    OFF, else AUTO. Progress is never reset: a paused run resumes at its
    current task.
    """
    if state.status == AutopilotStatus.RUNNING or state.status in TERMINAL_STATUSES:
        return state

    if mode is not None:
        effective = mode
    elif state.mode != AutopilotMode.OFF:
        effective = state.mode
    else:
        effective = AutopilotMode.AUTO
    if effective == AutopilotMode.OFF:
        return state

    if state.current_task_index >= len(state.task_queue):
        return replace(
            state,
            status=AutopilotStatus.DONE,
            mode=effective,
            batch_index=None,
            current_attempt_id=None,
            pause_reason=None,
            error=None,
        )

    return replace(
        state,
        status=AutopilotStatus.RUNNING,
        mode=effective,
        batch_index=0,
        pause_reason=None,
        error=None,
    )


def start_task(state: AutopilotState, attempt_id: str) -> AutopilotState:
    """Record the attempt executing the current task."""
    if state.status != AutopilotStatus.RUNNING:
        return state
    return replace(state, current_attempt_id=attempt_id)


def complete_task(state: AutopilotState) -> AutopilotState:
    """Mark the current task completed and advance.

    Reaching the end of the queue finishes the run. Otherwise STEP mode
    pauses and AUTO mode stays running with no current attempt, which tells
    the driver to start the next task.
    """
    if state.status != AutopilotStatus.RUNNING:
        return state

    task_id = state.current_task_id
    if task_id is None:
        return replace(
            state,
            status=AutopilotStatus.DONE,
            batch_index=None,
            current_attempt_id=None,
        )

    completed = (*state.completed_tasks, task_id)
    next_index = state.current_task_index + 1

    if next_index >= len(state.task_queue):
        return replace(
            state,
            status=AutopilotStatus.DONE,
            batch_index=None,
            current_task_index=next_index,
            completed_tasks=completed,
            current_attempt_id=None,
        )

    if state.mode == AutopilotMode.STEP:
        return replace(
            state,
            status=AutopilotStatus.PAUSED,
            current_task_index=next_index,
            completed_tasks=completed,
            current_attempt_id=None,
            pause_reason=STEP_COMPLETED_REASON,
        )

    return replace(
        state,
        current_task_index=next_index,
        completed_tasks=completed,
        current_attempt_id=None,
    )


def pause(state: AutopilotState, reason: str) -> AutopilotState:
    """Pause a running autopilot, recording why."""
    if state.status != AutopilotStatus.RUNNING:
        return state
    return replace(state, status=AutopilotStatus.PAUSED, pause_reason=reason)


def complete_batch(state: AutopilotState) -> AutopilotState:
    """Hold a running autopilot for approval of the current batch."""
    if state.status != AutopilotStatus.RUNNING:
        return state
    return replace(state, status=AutopilotStatus.WAITING_APPROVAL)


def approve_current_batch(state: AutopilotState) -> AutopilotState:
    """Approve the batch awaiting approval and move to the next one.

    Depends only on its input: approving the same snapshot twice yields equal
    results, and advancing twice requires applying it to its own output.
    """
    if state.status != AutopilotStatus.WAITING_APPROVAL:
        return state

    next_index = (state.batch_index if state.batch_index is not None else 0) + 1
    if next_index >= len(state.batches):
        return replace(state, status=AutopilotStatus.DONE, batch_index=None)
    return replace(state, status=AutopilotStatus.RUNNING, batch_index=next_index)


def cancel(state: AutopilotState) -> AutopilotState:
    """Return an active run to IDLE, keeping completed task progress."""
    if state.status in (AutopilotStatus.IDLE, *TERMINAL_STATUSES):
        return state
    return replace(state, status=AutopilotStatus.IDLE, batch_index=None)


def fail(state: AutopilotState, error: str) -> AutopilotState:
    """Mark the run FAILED with an error. Terminal states are left alone."""
    if state.status in TERMINAL_STATUSES:
        # The first failure's error is kept, and a finished run stays DONE.
        return state
    return replace(state, status=AutopilotStatus.FAILED, error=error)


def get_status(state: AutopilotState) -> AutopilotStatusInfo:
    """Project a state into the status info polled by clients."""
    total_batches = len(state.batches)
    current_batch = None

    if state.status == AutopilotStatus.IDLE:
        progress = f"0/{total_batches}"
    elif state.status == AutopilotStatus.DONE:
        progress = f"{total_batches}/{total_batches}"
    elif state.batch_index is not None:
        progress = f"{state.batch_index + 1}/{total_batches}"
        current_batch = state.current_batch
    else:
        progress = f"0/{total_batches}"

    total_tasks = len(state.task_queue)
    return AutopilotStatusInfo(
        status=state.status,
        mode=state.mode,
        current_batch=current_batch,
        batch_index=state.batch_index,
        total_batches=total_batches,
        progress=progress,
        current_task_id=state.current_task_id,
        current_task_index=state.current_task_index,
        total_tasks=total_tasks,
        task_progress=f"{len(state.completed_tasks)}/{total_tasks}",
        completed_tasks=len(state.completed_tasks),
        pause_reason=state.pause_reason,
        error=state.error,
    )
