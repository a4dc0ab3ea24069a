"""WebhookGuard - Applies each webhook delivery at most once."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from taskpilot.state_store import DeliveryOutcome, PRStatus
from taskpilot.webhooks.exceptions import InvalidPayloadError
from taskpilot.webhooks.models import ApplyResult, PullRequestResult

if TYPE_CHECKING:
    from taskpilot.api.events import EventManager
    from taskpilot.state_store import StateStore

logger = logging.getLogger(__name__)

PULL_REQUEST_EVENT = "pull_request"
_GITHUB_URL_PREFIX = "https://github.com/"


def map_pr_action(action: str | None, merged: bool) -> PRStatus | None:
    """Map a pull_request action to a PR status.

    opened and reopened mean open; closed means merged or closed depending on
    the merged flag. Any other action (synchronize, edited, ...) maps to None.
    """
    if action in ("opened", "reopened"):
        return PRStatus.OPEN
    if action == "closed":
        return PRStatus.MERGED if merged else PRStatus.CLOSED
    return None


def _repo_name(repository: dict[str, Any]) -> str | None:
    full_name = repository.get("full_name")
    if full_name:
        return str(full_name)
    html_url = str(repository.get("html_url") or "")
    if html_url.startswith(_GITHUB_URL_PREFIX):
        return html_url[len(_GITHUB_URL_PREFIX) :].strip("/") or None
    return None


class WebhookGuard:
    """Deduplicates webhook deliveries by delivery ID.

    A delivery ID is recorded in the same transaction that updates its
    subject, so a redelivery (or a concurrent copy of the same delivery)
    never updates the subject a second time. Deliveries are not ordered:
    each distinct delivery is applied as it arrives.
    """

    def __init__(
        self,
        state_store: StateStore,
        event_manager: EventManager | None = None,
    ) -> None:
        """Initialize the WebhookGuard.

        Args:
            state_store: StateStore holding attempts and processed deliveries.
            event_manager: EventManager for pr_updated events.
        """
        self.state_store = state_store
        self.event_manager = event_manager

    def is_processed(self, delivery_id: str) -> bool:
        """Whether a delivery ID has already been applied."""
        return self.state_store.get_processed_webhook(delivery_id) is not None

    def apply(
        self,
        delivery_id: str,
        subject_id: str,
        new_status: PRStatus,
        event: str = PULL_REQUEST_EVENT,
    ) -> ApplyResult:
        """Apply new_status to an attempt unless delivery_id was seen before.

        Args:
            delivery_id: Provider-assigned unique delivery ID.
            subject_id: ID of the attempt whose PR the delivery concerns.
            new_status: PR status carried by the delivery.
            event: Provider event name, stored with the delivery record.

        Returns:
            ApplyResult describing what happened.
        """
        outcome = self.state_store.apply_delivery(delivery_id, subject_id, new_status, event)

        if outcome == DeliveryOutcome.DUPLICATE:
            logger.info("Duplicate webhook delivery: %s", delivery_id)
            return ApplyResult(applied=False, duplicate=True, subject_found=True)
        if outcome == DeliveryOutcome.UNKNOWN_SUBJECT:
            logger.info("Webhook delivery %s targets unknown attempt %s", delivery_id, subject_id)
            return ApplyResult(applied=False, duplicate=False, subject_found=False)

        logger.info(
            "Applied delivery %s: attempt %s PR status -> %s",
            delivery_id,
            subject_id,
            new_status,
        )
        return ApplyResult(applied=True, duplicate=False, subject_found=True)

    def handle_pull_request(self, delivery_id: str, payload: dict[str, Any]) -> PullRequestResult:
        """Handle a GitHub pull_request delivery.

        The attempt is located by repository name (case-insensitive) and PR
        number. Ignored actions and unknown projects or PRs are reported in
        the result message and leave no delivery record.

        Raises:
            InvalidPayloadError: If pull_request or repository is missing
        """
        if self.is_processed(delivery_id):
            logger.info("Duplicate webhook delivery: %s", delivery_id)
            return PullRequestResult(duplicate=True, message="Webhook already processed")

        pull_request = payload.get("pull_request")
        repository = payload.get("repository")
        if not isinstance(pull_request, dict) or not isinstance(repository, dict):
            raise InvalidPayloadError("Invalid payload: pull_request and repository are required")

        pr_number = pull_request.get("number")
        repo = _repo_name(repository)
        if not isinstance(pr_number, int) or repo is None:
            raise InvalidPayloadError("Invalid payload: PR number and repository name required")

        action = payload.get("action")
        pr_status = map_pr_action(action, bool(pull_request.get("merged", False)))
        if pr_status is None:
            logger.debug("Ignoring pull_request action %r", action)
            return PullRequestResult(message="Action ignored")

        project = self.state_store.find_project_by_repo(repo)
        if project is None:
            logger.info("No project found for repo: %s", repo)
            return PullRequestResult(message="Project not found", pr_status=pr_status)

        attempt = self.state_store.find_attempt_by_pr(project.id, pr_number)
        if attempt is None:
            logger.info("No attempt found for PR #%d in project %s", pr_number, project.id)
            return PullRequestResult(message="Attempt not found", pr_status=pr_status)

        result = self.apply(delivery_id, attempt.id, pr_status, PULL_REQUEST_EVENT)
        if result.duplicate:
            return PullRequestResult(
                duplicate=True,
                message="Webhook already processed",
                attempt_id=attempt.id,
                pr_status=pr_status,
            )
        if not result.subject_found:
            return PullRequestResult(message="Attempt not found", pr_status=pr_status)

        if self.event_manager is not None:
            self.event_manager.emit_pr_updated(
                attempt_id=attempt.id,
                project_id=project.id,
                pr_number=pr_number,
                pr_status=pr_status.value,
            )
        return PullRequestResult(applied=True, attempt_id=attempt.id, pr_status=pr_status)
