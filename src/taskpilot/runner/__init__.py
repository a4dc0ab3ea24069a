"""Runner - Client for the external service that executes attempts."""

from taskpilot.runner.client import RunnerClient
from taskpilot.runner.exceptions import RunnerError, RunnerUnavailableError

__all__ = [
    "RunnerClient",
    "RunnerError",
    "RunnerUnavailableError",
]
