"""Scheduler - At most one running attempt per scope, FIFO queue for the rest."""

from taskpilot.scheduler.exceptions import InvalidAttemptStateError, SchedulerError
from taskpilot.scheduler.scheduler import AttemptRunner, AttemptScheduler

__all__ = [
    "AttemptRunner",
    "AttemptScheduler",
    "InvalidAttemptStateError",
    "SchedulerError",
]
