"""REST API for Taskpilot."""

from taskpilot.api.app import create_app, main
from taskpilot.api.models import (
    APIResponse,
    AutopilotStatusResponse,
    ProjectCreate,
    ProjectResponse,
)

__all__ = [
    "APIResponse",
    "AutopilotStatusResponse",
    "ProjectCreate",
    "ProjectResponse",
    "create_app",
    "main",
]
