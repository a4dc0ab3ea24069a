"""Exceptions for the Scheduler module."""


class SchedulerError(Exception):
    """Base exception for scheduler errors."""

    pass


class InvalidAttemptStateError(SchedulerError):
    """Operation is not valid for the attempt's current state."""

    pass
