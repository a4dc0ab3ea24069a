"""Custom exceptions for the Runner client."""


class RunnerError(Exception):
    """Base exception for runner communication errors."""


class RunnerUnavailableError(RunnerError):
    """The runner could not be reached."""
