"""Events published by ApplicationService after its transaction commits."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from notifier.domain.status import ApplicationStatus


@dataclass(frozen=True)
class ApplicationSubmitted:
    application_id: int
    user_id: int
    job_id: int
    submitted_at: datetime


@dataclass(frozen=True)
class StatusChanged:
    application_id: int
    user_id: int
    job_id: int
    old_status: ApplicationStatus
    new_status: ApplicationStatus
    changed_at: datetime
    note: Optional[str] = None
    actor_id: Optional[int] = None


@dataclass(frozen=True)
class InterviewScheduled:
    application_id: int
    user_id: int
    job_id: int
    interview_date: datetime
    location: Optional[str] = None
    interview_type: Optional[str] = None
    actor_id: Optional[int] = None


ApplicationEvent = Union[ApplicationSubmitted, StatusChanged, InterviewScheduled]

# Receives each event once, after commit; may raise without affecting the caller
EventPublisher = Callable[[ApplicationEvent], object]
