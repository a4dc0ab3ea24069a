"""Attempt queue endpoints."""

from fastapi import APIRouter, Query, status

from taskpilot.api.dependencies import SchedulerDep, StateStoreDep
from taskpilot.api.models import (
    APIResponse,
    AttemptFinish,
    AttemptPullRequest,
    AttemptResponse,
    RunTaskResponse,
    StopResponse,
    attempt_to_response,
)
from taskpilot.state_store import AttemptState

router = APIRouter(tags=["attempts"])


@router.post(
    "/tasks/{task_id}/run",
    response_model=APIResponse[RunTaskResponse],
    status_code=status.HTTP_201_CREATED,
)
def run_task(task_id: str, scheduler: SchedulerDep) -> APIResponse[RunTaskResponse]:
    """Run a task now, or queue it behind the project's running attempt."""
    attempt = scheduler.run_task(task_id)
    return APIResponse(
        data=RunTaskResponse(
            attempt_id=attempt.id,
            state=attempt.state,
            queue_position=scheduler.queue_position(attempt.id),
        )
    )


@router.get("/attempts", response_model=APIResponse[list[AttemptResponse]])
def list_attempts(
    store: StateStoreDep,
    scope_id: str | None = Query(default=None, description="Filter by scope (project) ID"),
    state: AttemptState | None = Query(default=None, description="Filter by state"),
    task_id: str | None = Query(default=None, description="Filter by task ID"),
) -> APIResponse[list[AttemptResponse]]:
    """List attempts in FIFO order with optional filters."""
    attempts = store.list_attempts(scope_id=scope_id, state=state, task_id=task_id)
    return APIResponse(data=[attempt_to_response(a) for a in attempts])


@router.get("/attempts/{attempt_id}", response_model=APIResponse[AttemptResponse])
def get_attempt(
    attempt_id: str, store: StateStoreDep, scheduler: SchedulerDep
) -> APIResponse[AttemptResponse]:
    """Get an attempt, with its queue position while queued."""
    attempt = store.get_attempt(attempt_id)
    return APIResponse(data=attempt_to_response(attempt, scheduler.queue_position(attempt_id)))


@router.post("/attempts/{attempt_id}/stop", response_model=APIResponse[StopResponse])
def stop_attempt(attempt_id: str, scheduler: SchedulerDep) -> APIResponse[StopResponse]:
    """Stop an attempt and start the next queued one."""
    attempt = scheduler.stop(attempt_id)
    return APIResponse(data=StopResponse(ok=True, state=attempt.state))


@router.post("/attempts/{attempt_id}/cancel", response_model=APIResponse[AttemptResponse])
def cancel_attempt(attempt_id: str, scheduler: SchedulerDep) -> APIResponse[AttemptResponse]:
    """Cancel a queued attempt."""
    return APIResponse(data=attempt_to_response(scheduler.cancel_queued(attempt_id)))


@router.post("/attempts/{attempt_id}/finish", response_model=APIResponse[AttemptResponse])
def finish_attempt(
    attempt_id: str, body: AttemptFinish, scheduler: SchedulerDep
) -> APIResponse[AttemptResponse]:
    """Runner callback: the attempt finished."""
    state = AttemptState.COMPLETED if body.success else AttemptState.FAILED
    attempt = scheduler.finish(attempt_id, state, exit_code=body.exit_code)
    return APIResponse(data=attempt_to_response(attempt))


@router.post("/attempts/{attempt_id}/pr", response_model=APIResponse[AttemptResponse])
def record_pull_request(
    attempt_id: str, body: AttemptPullRequest, store: StateStoreDep
) -> APIResponse[AttemptResponse]:
    """Runner callback: the attempt opened a pull request."""
    attempt = store.set_attempt_pr(attempt_id, body.pr_number, pr_url=body.pr_url)
    return APIResponse(data=attempt_to_response(attempt))
