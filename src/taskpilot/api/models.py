"""Pydantic models for REST API."""

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from taskpilot.autopilot import AutopilotMode, AutopilotStatus
from taskpilot.backlog import Risk

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Standard API response wrapper."""

    data: T | None = None
    error: str | None = None


# Project models


class ProjectCreate(BaseModel):
    """Request model for creating a project."""

    name: str = Field(..., min_length=1, max_length=255)
    repo: str = Field(..., min_length=3, max_length=255, pattern=r"^[\w\-\.]+/[\w\-\.]+$")
    base_branch: str = Field(default="main", max_length=255)
    repo_path: str | None = Field(default=None, max_length=1024)


class ProjectUpdate(BaseModel):
    """Request model for updating a project (partial update)."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    base_branch: str | None = Field(default=None, max_length=255)
    repo_path: str | None = Field(default=None, max_length=1024)


class ProjectResponse(BaseModel):
    """Response model for a project."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    repo: str
    base_branch: str
    repo_path: str | None
    created_at: datetime
    updated_at: datetime


def project_to_response(project: Any) -> ProjectResponse:
    """Convert a Project model to ProjectResponse."""
    return ProjectResponse.model_validate(project)


# Task models


class TaskCreate(BaseModel):
    """Request model for adding a task to a project's backlog."""

    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""


class TaskResponse(BaseModel):
    """Response model for a task."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    title: str
    description: str
    status: str
    position: int
    created_at: datetime
    updated_at: datetime


def task_to_response(task: Any) -> TaskResponse:
    """Convert a Task model to TaskResponse."""
    return TaskResponse.model_validate(task)


# Attempt models


class AttemptResponse(BaseModel):
    """Response model for an attempt (a run queue entry)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    task_id: str
    scope_id: str
    state: str
    seq: int
    enqueued_at: datetime
    started_at: datetime | None
    finished_at: datetime | None
    exit_code: int | None
    pr_number: int | None
    pr_url: str | None
    pr_status: str | None
    queue_position: int | None = None


def attempt_to_response(attempt: Any, queue_position: int | None = None) -> AttemptResponse:
    """Convert an Attempt model to AttemptResponse."""
    response = AttemptResponse.model_validate(attempt)
    response.queue_position = queue_position
    return response


class RunTaskResponse(BaseModel):
    """Response model for a run-task request."""

    attempt_id: str
    state: str
    queue_position: int | None = None


class AttemptFinish(BaseModel):
    """Request model for a runner reporting that an attempt finished."""

    success: bool
    exit_code: int | None = None


class AttemptPullRequest(BaseModel):
    """Request model for recording the pull request an attempt opened."""

    pr_number: int = Field(..., ge=1)
    pr_url: str | None = None


class StopResponse(BaseModel):
    """Response model for stopping an attempt."""

    ok: bool
    state: str


# Autopilot models


class BatchResponse(BaseModel):
    """Response model for a batch."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    task_ids: list[str]
    rationale: str
    risk: Risk


class AutopilotStatusResponse(BaseModel):
    """Response model for autopilot status."""

    model_config = ConfigDict(from_attributes=True)

    status: AutopilotStatus
    mode: AutopilotMode
    current_batch: BatchResponse | None
    batch_index: int | None
    total_batches: int
    progress: str
    current_task_id: str | None
    current_task_index: int
    total_tasks: int
    task_progress: str
    completed_tasks: int
    pause_reason: str | None
    error: str | None


def autopilot_status_to_response(status: Any) -> AutopilotStatusResponse:
    """Convert an AutopilotStatusInfo to AutopilotStatusResponse."""
    return AutopilotStatusResponse.model_validate(status)


class SessionCreate(BaseModel):
    """Request model for creating an autopilot session.

    Give plan steps to create one task per step, or task IDs to run existing
    tasks. With neither, the project's todo tasks are used.
    """

    steps: list[str] | None = None
    task_ids: list[str] | None = None


class SessionResponse(BaseModel):
    """Response model for an autopilot session."""

    id: str
    project_id: str
    created_at: datetime
    updated_at: datetime
    autopilot: AutopilotStatusResponse


class StartRequest(BaseModel):
    """Request model for starting the autopilot."""

    mode: AutopilotMode | None = None


class ModeRequest(BaseModel):
    """Request model for changing the autopilot mode."""

    mode: AutopilotMode


class PauseRequest(BaseModel):
    """Request model for pausing the autopilot."""

    reason: str = Field(default="paused by user", min_length=1, max_length=500)


class TaskCompletedRequest(BaseModel):
    """Request model for reporting the outcome of the current task's attempt."""

    attempt_id: str
    success: bool
    error: str | None = None


class ExecuteNextResponse(BaseModel):
    """Response model for executing the next task."""

    task_id: str
    attempt: AttemptResponse
    autopilot: AutopilotStatusResponse


class TaskCompletedResponse(BaseModel):
    """Response model for a task completion report."""

    ignored: bool
    autopilot: AutopilotStatusResponse
    next_attempt: AttemptResponse | None = None


# Webhook models


class WebhookResponse(BaseModel):
    """Response model for a webhook delivery."""

    success: bool
    duplicate: bool = False
    message: str | None = None
    attempt_id: str | None = None
    pr_status: str | None = None


class SafetyErrorData(BaseModel):
    """Error payload for a failed safety check."""

    code: str | None
