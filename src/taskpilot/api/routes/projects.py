"""Project and task backlog endpoints."""

from fastapi import APIRouter, Query, status

from taskpilot.api.dependencies import StateStoreDep
from taskpilot.api.models import (
    APIResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    TaskCreate,
    TaskResponse,
    project_to_response,
    task_to_response,
)
from taskpilot.state_store import TaskStatus

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("", response_model=APIResponse[list[ProjectResponse]])
def list_projects(store: StateStoreDep) -> APIResponse[list[ProjectResponse]]:
    """List all projects."""
    projects = store.list_projects()
    return APIResponse(data=[project_to_response(p) for p in projects])


@router.post(
    "",
    response_model=APIResponse[ProjectResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_project(project: ProjectCreate, store: StateStoreDep) -> APIResponse[ProjectResponse]:
    """Create a new project."""
    created = store.create_project(
        name=project.name,
        repo=project.repo,
        base_branch=project.base_branch,
        repo_path=project.repo_path,
    )
    return APIResponse(data=project_to_response(created))


@router.get("/{project_id}", response_model=APIResponse[ProjectResponse])
def get_project(project_id: str, store: StateStoreDep) -> APIResponse[ProjectResponse]:
    """Get a project by ID."""
    project = store.get_project(project_id)
    return APIResponse(data=project_to_response(project))


@router.patch("/{project_id}", response_model=APIResponse[ProjectResponse])
def update_project(
    project_id: str, project: ProjectUpdate, store: StateStoreDep
) -> APIResponse[ProjectResponse]:
    """Update a project (partial update)."""
    updated = store.update_project(
        project_id,
        name=project.name,
        base_branch=project.base_branch,
        repo_path=project.repo_path,
    )
    return APIResponse(data=project_to_response(updated))


@router.get("/{project_id}/tasks", response_model=APIResponse[list[TaskResponse]])
def list_tasks(
    project_id: str,
    store: StateStoreDep,
    task_status: TaskStatus | None = Query(default=None, alias="status"),
) -> APIResponse[list[TaskResponse]]:
    """List a project's tasks in backlog order."""
    store.get_project(project_id)
    tasks = store.list_tasks(project_id, status=task_status)
    return APIResponse(data=[task_to_response(t) for t in tasks])


@router.post(
    "/{project_id}/tasks",
    response_model=APIResponse[TaskResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_task(
    project_id: str, task: TaskCreate, store: StateStoreDep
) -> APIResponse[TaskResponse]:
    """Add a task to the end of a project's backlog."""
    created = store.create_task(project_id, title=task.title, description=task.description)
    return APIResponse(data=task_to_response(created))
