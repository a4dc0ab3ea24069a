"""GitHub webhook endpoint."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from taskpilot.api.dependencies import SettingsDep, WebhookGuardDep
from taskpilot.api.models import APIResponse, WebhookResponse
from taskpilot.logging import sanitize_for_log
from taskpilot.webhooks import (
    PULL_REQUEST_EVENT,
    InvalidPayloadError,
    InvalidSignatureError,
    WebhookSecretMissingError,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/github", response_model=APIResponse[WebhookResponse])
async def github_webhook(
    request: Request,
    guard: WebhookGuardDep,
    settings: SettingsDep,
) -> APIResponse[WebhookResponse]:
    """Apply a GitHub pull_request delivery to the attempt that opened the PR.

    Signatures are checked unless test mode is on. Redelivered IDs are
    acknowledged with duplicate=true and change nothing.
    """
    raw_body = await request.body()
    delivery_id = request.headers.get("x-github-delivery")

    if not settings.test_mode:
        if not settings.webhook_secret:
            logger.error("Webhook secret not configured")
            raise WebhookSecretMissingError("GITHUB_WEBHOOK_SECRET is not set")
        signature = request.headers.get("x-hub-signature-256")
        if not verify_signature(settings.webhook_secret, raw_body, signature):
            logger.warning(
                "Invalid webhook signature for delivery %s: %s",
                delivery_id,
                sanitize_for_log(signature or "<missing>"),
            )
            raise InvalidSignatureError(delivery_id or "")

    event = request.headers.get("x-github-event")
    if event != PULL_REQUEST_EVENT:
        return APIResponse(data=WebhookResponse(success=True, message="Event type not supported"))

    if not delivery_id:
        raise InvalidPayloadError("Missing X-GitHub-Delivery header")

    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        raise InvalidPayloadError("Invalid payload: body is not JSON") from e
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Invalid payload: expected a JSON object")

    result = await run_in_threadpool(guard.handle_pull_request, delivery_id, payload)
    return APIResponse(
        data=WebhookResponse(
            success=True,
            duplicate=result.duplicate,
            message=result.message,
            attempt_id=result.attempt_id,
            pr_status=result.pr_status.value if result.pr_status is not None else None,
        )
    )
