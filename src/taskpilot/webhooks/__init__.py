"""Webhooks - At-most-once application of GitHub pull request deliveries."""

from taskpilot.state_store import PRStatus
from taskpilot.webhooks.exceptions import (
    InvalidPayloadError,
    InvalidSignatureError,
    WebhookError,
    WebhookSecretMissingError,
)
from taskpilot.webhooks.guard import PULL_REQUEST_EVENT, WebhookGuard, map_pr_action
from taskpilot.webhooks.models import ApplyResult, PullRequestResult
from taskpilot.webhooks.signature import compute_signature, verify_signature

__all__ = [
    "PULL_REQUEST_EVENT",
    "ApplyResult",
    "InvalidPayloadError",
    "InvalidSignatureError",
    "PRStatus",
    "PullRequestResult",
    "WebhookError",
    "WebhookGuard",
    "WebhookSecretMissingError",
    "compute_signature",
    "map_pr_action",
    "verify_signature",
]
