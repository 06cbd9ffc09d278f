"""Application submission, status transitions and their events."""

from .events import (
    ApplicationEvent,
    ApplicationSubmitted,
    EventPublisher,
    InterviewScheduled,
    StatusChanged,
)
from .exceptions import ApplicationError, ApplicationNotFoundError, InvalidTransition
from .service import ApplicationService

__all__ = [
    "ApplicationService",
    "ApplicationEvent",
    "ApplicationSubmitted",
    "StatusChanged",
    "InterviewScheduled",
    "EventPublisher",
    "ApplicationError",
    "ApplicationNotFoundError",
    "InvalidTransition",
]
