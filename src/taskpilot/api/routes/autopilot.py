"""Autopilot session endpoints."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from fastapi import APIRouter, status

from taskpilot.api.dependencies import AutopilotDep, SchedulerDep, StateStoreDep
from taskpilot.api.models import (
    APIResponse,
    AutopilotStatusResponse,
    ExecuteNextResponse,
    ModeRequest,
    PauseRequest,
    SessionCreate,
    SessionResponse,
    StartRequest,
    TaskCompletedRequest,
    TaskCompletedResponse,
    attempt_to_response,
    autopilot_status_to_response,
)
from taskpilot.autopilot import AutopilotState, machine

if TYPE_CHECKING:
    from taskpilot.state_store import AutopilotSession

router = APIRouter(tags=["autopilot"])


def _session_to_response(record: AutopilotSession) -> SessionResponse:
    state = AutopilotState.from_dict(json.loads(record.state))
    return SessionResponse(
        id=record.id,
        project_id=record.project_id,
        created_at=record.created_at,
        updated_at=record.updated_at,
        autopilot=autopilot_status_to_response(machine.get_status(state)),
    )


@router.post(
    "/projects/{project_id}/autopilot/sessions",
    response_model=APIResponse[SessionResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_session(
    project_id: str, body: SessionCreate, service: AutopilotDep
) -> APIResponse[SessionResponse]:
    """Create an autopilot session from plan steps, task IDs or the todo backlog."""
    record = service.create_session(project_id, steps=body.steps, task_ids=body.task_ids)
    return APIResponse(data=_session_to_response(record))


@router.get(
    "/projects/{project_id}/autopilot/sessions",
    response_model=APIResponse[list[SessionResponse]],
)
def list_sessions(project_id: str, store: StateStoreDep) -> APIResponse[list[SessionResponse]]:
    """List a project's autopilot sessions, newest first."""
    store.get_project(project_id)
    records = store.list_autopilot_sessions(project_id)
    return APIResponse(data=[_session_to_response(r) for r in records])


@router.get("/autopilot/{session_id}", response_model=APIResponse[AutopilotStatusResponse])
def get_status(session_id: str, service: AutopilotDep) -> APIResponse[AutopilotStatusResponse]:
    """Poll autopilot status."""
    return APIResponse(data=autopilot_status_to_response(service.get_status(session_id)))


@router.post(
    "/autopilot/{session_id}/start", response_model=APIResponse[AutopilotStatusResponse]
)
def start_autopilot(
    session_id: str, service: AutopilotDep, body: StartRequest | None = None
) -> APIResponse[AutopilotStatusResponse]:
    """Start or resume the autopilot."""
    mode = body.mode if body is not None else None
    return APIResponse(data=autopilot_status_to_response(service.start(session_id, mode)))


@router.post(
    "/autopilot/{session_id}/execute-next", response_model=APIResponse[ExecuteNextResponse]
)
def execute_next(
    session_id: str, service: AutopilotDep, scheduler: SchedulerDep
) -> APIResponse[ExecuteNextResponse]:
    """Start an attempt for the current task."""
    result = service.execute_next(session_id)
    return APIResponse(
        data=ExecuteNextResponse(
            task_id=result.task_id,
            attempt=attempt_to_response(
                result.attempt, scheduler.queue_position(result.attempt.id)
            ),
            autopilot=autopilot_status_to_response(result.status),
        )
    )


@router.post(
    "/autopilot/{session_id}/task-completed",
    response_model=APIResponse[TaskCompletedResponse],
)
def task_completed(
    session_id: str, body: TaskCompletedRequest, service: AutopilotDep
) -> APIResponse[TaskCompletedResponse]:
    """Report the outcome of the current task's attempt."""
    result = service.task_completed(session_id, body.attempt_id, body.success, body.error)
    return APIResponse(
        data=TaskCompletedResponse(
            ignored=result.ignored,
            autopilot=autopilot_status_to_response(result.status),
            next_attempt=(
                attempt_to_response(result.next_attempt)
                if result.next_attempt is not None
                else None
            ),
        )
    )


@router.post(
    "/autopilot/{session_id}/complete-batch",
    response_model=APIResponse[AutopilotStatusResponse],
)
def complete_batch(
    session_id: str, service: AutopilotDep
) -> APIResponse[AutopilotStatusResponse]:
    """Mark the current batch finished and wait for approval."""
    return APIResponse(data=autopilot_status_to_response(service.complete_batch(session_id)))


@router.post(
    "/autopilot/{session_id}/approve", response_model=APIResponse[AutopilotStatusResponse]
)
def approve_batch(session_id: str, service: AutopilotDep) -> APIResponse[AutopilotStatusResponse]:
    """Approve the batch awaiting approval."""
    return APIResponse(data=autopilot_status_to_response(service.approve_batch(session_id)))


@router.post(
    "/autopilot/{session_id}/pause", response_model=APIResponse[AutopilotStatusResponse]
)
def pause_autopilot(
    session_id: str, service: AutopilotDep, body: PauseRequest | None = None
) -> APIResponse[AutopilotStatusResponse]:
    """Pause a running autopilot."""
    reason = body.reason if body is not None else PauseRequest().reason
    return APIResponse(data=autopilot_status_to_response(service.pause(session_id, reason)))


@router.post(
    "/autopilot/{session_id}/cancel", response_model=APIResponse[AutopilotStatusResponse]
)
def cancel_autopilot(
    session_id: str, service: AutopilotDep
) -> APIResponse[AutopilotStatusResponse]:
    """Cancel the autopilot and stop the current attempt."""
    return APIResponse(data=autopilot_status_to_response(service.cancel(session_id)))


@router.post(
    "/autopilot/{session_id}/mode", response_model=APIResponse[AutopilotStatusResponse]
)
def set_mode(
    session_id: str, body: ModeRequest, service: AutopilotDep
) -> APIResponse[AutopilotStatusResponse]:
    """Change the autopilot mode (ignored while running)."""
    return APIResponse(data=autopilot_status_to_response(service.set_mode(session_id, body.mode)))
