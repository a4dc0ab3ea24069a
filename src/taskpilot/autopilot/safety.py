"""Safety checks run before the autopilot executes a task."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from taskpilot.state_store import ProjectNotFoundError

if TYPE_CHECKING:
    from taskpilot.config import Settings
    from taskpilot.state_store import StateStore

logger = logging.getLogger(__name__)


class SafetyCode(StrEnum):
    """Why a safety check failed."""

    REPO_NOT_READY = "REPO_NOT_READY"
    OPEN_PR_LIMIT = "OPEN_PR_LIMIT"


@dataclass(frozen=True)
class SafetyCheckResult:
    """Outcome of the safety checks.

    Attributes:
        ok: True when execution may proceed.
        reason: Human-readable failure reason.
        code: Machine-readable failure code.
    """

    ok: bool
    reason: str | None = None
    code: SafetyCode | None = None


PASSED = SafetyCheckResult(ok=True)


def check_repo_ready(store: StateStore, project_id: str) -> SafetyCheckResult:
    """The project must exist and have a local checkout."""
    try:
        project = store.get_project(project_id)
    except ProjectNotFoundError:
        return SafetyCheckResult(
            ok=False, reason="Project not found", code=SafetyCode.REPO_NOT_READY
        )

    if not project.repo_path:
        return SafetyCheckResult(
            ok=False,
            reason="Repository not cloned. Set the project's repo path to continue.",
            code=SafetyCode.REPO_NOT_READY,
        )
    return PASSED


def check_open_prs(store: StateStore, project_id: str, max_open_prs: int) -> SafetyCheckResult:
    """The project must have fewer than max_open_prs open pull requests."""
    open_prs = store.count_open_prs(project_id)
    if open_prs >= max_open_prs:
        return SafetyCheckResult(
            ok=False,
            reason=(
                f"Max open PRs reached ({open_prs}/{max_open_prs}). "
                "Merge or close existing PRs to continue."
            ),
            code=SafetyCode.OPEN_PR_LIMIT,
        )
    return PASSED


def run_safety_checks(store: StateStore, project_id: str, settings: Settings) -> SafetyCheckResult:
    """Run every check in order and return the first failure.

    All checks are skipped when settings.safety_checks_enabled is false.
    """
    if not settings.safety_checks_enabled:
        return PASSED

    result = check_repo_ready(store, project_id)
    if result.ok:
        result = check_open_prs(store, project_id, settings.max_open_prs)

    if not result.ok:
        logger.info("Safety check failed for project %s: %s", project_id, result.code)
    return result
