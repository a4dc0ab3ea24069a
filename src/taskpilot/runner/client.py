"""RunnerClient - Hands attempts to the external runner service."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from taskpilot.logging import sanitize_for_log, truncate_output
from taskpilot.runner.exceptions import RunnerError, RunnerUnavailableError

if TYPE_CHECKING:
    from taskpilot.state_store import Attempt

logger = logging.getLogger(__name__)


class RunnerClient:
    """HTTP client for the runner that executes attempts.

    The runner accepts an attempt, executes it asynchronously, and reports the
    outcome back through the attempt finish endpoint.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the Runner client.

        Args:
            base_url: Runner service base URL, e.g. "http://localhost:9000"
            token: Optional bearer token sent with every request
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.Client(headers=headers, timeout=self.timeout)
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def _post(self, path: str, payload: dict[str, Any] | None = None) -> None:
        """POST to the runner. Any 2xx is accepted and the body is not read."""
        url = f"{self.base_url}{path}"
        try:
            response = self.client.post(url, json=payload or {})
        except httpx.HTTPError as e:
            raise RunnerUnavailableError(f"Runner request to {url} failed: {e}") from e

        if response.status_code >= 300:
            body = sanitize_for_log(truncate_output(response.text, max_length=500))
            raise RunnerError(f"Runner request failed: {response.status_code} - {body}")


    def start(self, attempt: Attempt) -> None:
        """Ask the runner to execute a running attempt.

        Raises:
            RunnerError: If the runner rejects the attempt or is unreachable
        """
        logger.info("Handing attempt %s to runner", attempt.id)
        self._post(
            "/attempts",
            {
                "attempt_id": attempt.id,
                "task_id": attempt.task_id,
                "scope_id": attempt.scope_id,
            },
        )

    def stop(self, attempt_id: str) -> None:
        """Ask the runner to stop an attempt. The runner stops cooperatively.

        Raises:
            RunnerError: If the runner rejects the request or is unreachable
        """
        logger.info("Asking runner to stop attempt %s", attempt_id)
        self._post(f"/attempts/{attempt_id}/stop")
