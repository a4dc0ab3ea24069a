"""Data models for webhook handling."""

from __future__ import annotations

from dataclasses import dataclass

from taskpilot.state_store import PRStatus


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying one delivery to its subject.

    Attributes:
        applied: The subject was updated and the delivery recorded.
        duplicate: The delivery ID was already processed; nothing changed.
        subject_found: The subject exists. Unknown subjects are not recorded.
    """

    applied: bool
    duplicate: bool
    subject_found: bool


@dataclass
class PullRequestResult:
    """Outcome of handling a pull_request delivery.

    Attributes:
        applied: The attempt's PR status was updated.
        duplicate: The delivery was already processed.
        message: Why nothing was applied, when nothing was.
        attempt_id: The attempt the PR belongs to, if found.
        pr_status: Status the action maps to, if any.
    """

    applied: bool = False
    duplicate: bool = False
    message: str | None = None
    attempt_id: str | None = None
    pr_status: PRStatus | None = None
