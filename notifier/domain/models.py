"""Core domain models for applications, status history and notifications.

This module defines the data structures shared by the persistence layer and
the services:
- Application: one candidate-to-job submission and its current status
- StatusHistoryEntry: immutable record of one status transition
- NotificationRecord: durable audit row for one logical notification
- EmailPreferences: per-user opt-in/opt-out flags
- UserContact, JobSummary: read-only views of collaborator tables
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .status import ApplicationStatus


def _to_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class NotificationKind(str, Enum):
    """Kinds of notification the renderer knows how to build."""

    APPLICATION_RECEIVED = "application_received"
    STATUS_UPDATE = "status_update"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    JOB_ALERT_DIGEST = "job_alert_digest"


class NotificationStatus(str, Enum):
    """Lifecycle of a persisted NotificationRecord."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class PreferenceCategory(str, Enum):
    """User-facing notification categories stored in EmailPreferences."""

    APPLICATION_UPDATES = "application_updates"
    JOB_ALERTS = "job_alerts"
    INTERVIEW_REMINDERS = "interview_reminders"
    WEEKLY_DIGEST = "weekly_digest"
    MARKETING_EMAILS = "marketing_emails"


# Every listed category must be enabled for the kind to be sent
KIND_CATEGORIES: Dict[NotificationKind, Tuple[PreferenceCategory, ...]] = {
    NotificationKind.APPLICATION_RECEIVED: (PreferenceCategory.APPLICATION_UPDATES,),
    NotificationKind.STATUS_UPDATE: (PreferenceCategory.APPLICATION_UPDATES,),
    NotificationKind.INTERVIEW_SCHEDULED: (PreferenceCategory.INTERVIEW_REMINDERS,),
    NotificationKind.JOB_ALERT_DIGEST: (
        PreferenceCategory.JOB_ALERTS,
        PreferenceCategory.WEEKLY_DIGEST,
    ),
}


class Application(BaseModel):
    """A candidate's submission against a job posting."""

    id: int = Field(..., description="Application identifier")
    user_id: int = Field(..., description="Owning candidate")
    job_id: int = Field(..., description="Job applied to")
    status: ApplicationStatus = Field(ApplicationStatus.PENDING)
    notes: Optional[str] = Field(None, description="Candidate's notes")
    interview_date: Optional[datetime] = Field(None, description="Scheduled interview (UTC)")
    created_at: datetime = Field(..., description="Submission time (UTC)")
    updated_at: datetime = Field(..., description="Last status change (UTC)")

    @field_validator("interview_date", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetime is timezone-aware and in UTC."""
        return _to_utc(v)


class StatusHistoryEntry(BaseModel):
    """One immutable transition in an application's history."""

    id: int = Field(..., description="Surrogate key; breaks ties between equal timestamps")
    application_id: int
    status: ApplicationStatus
    note: Optional[str] = None
    actor_id: Optional[int] = Field(None, description="Who caused it; None for system actions")
    changed_at: datetime

    @field_validator("changed_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Ensure datetime is timezone-aware and in UTC."""
        return _to_utc(v)


class NotificationRecord(BaseModel):
    """Durable audit row for one logical notification (not one attempt)."""

    id: str = Field(..., description="Same id as the in-memory queue request")
    user_id: Optional[int] = None
    kind: NotificationKind
    recipient: str
    subject: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    attempts: int = Field(0, ge=0)
    last_error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("sent_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetime is timezone-aware and in UTC."""
        return _to_utc(v)


class EmailPreferences(BaseModel):
    """Per-user notification opt-ins.

    Defaults enable the transactional categories and disable the weekly
    digest and marketing mail.
    """

    user_id: int
    application_updates: bool = True
    job_alerts: bool = True
    interview_reminders: bool = True
    weekly_digest: bool = False
    marketing_emails: bool = False

    def allows(self, kind: NotificationKind) -> bool:
        """Check whether every category required by ``kind`` is enabled."""
        return all(getattr(self, category.value) for category in KIND_CATEGORIES[kind])


class UserContact(BaseModel):
    """Recipient details read from the users table."""

    id: int
    email: str
    full_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@", 1)[0]


class JobSummary(BaseModel):
    """Job fields used to fill notification templates."""

    id: int
    title: str
    organization: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
