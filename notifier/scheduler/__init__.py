"""Scheduling of the periodic notification delivery tick."""

from .service import SchedulerService

__all__ = [
    "SchedulerService",
]
