"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the schema and conversion
methods between ORM models and domain models. ``users`` and ``jobs`` are
owned by collaborating services; only the columns the notification pipeline
reads are mapped here.
"""

import json
import logging

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from notifier.domain.models import (
    Application,
    EmailPreferences,
    JobSummary,
    NotificationKind,
    NotificationRecord,
    NotificationStatus,
    StatusHistoryEntry,
    UserContact,
)
from notifier.domain.status import ApplicationStatus, parse_legacy_status
from notifier.utils.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

Base = declarative_base()


class UserModel(Base):
    """ORM model for the users table (collaborator-owned)."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), nullable=False, unique=True)
    full_name = Column(String(255), nullable=True)

    def to_domain(self) -> UserContact:
        return UserContact(id=self.id, email=self.email, full_name=self.full_name)


class JobModel(Base):
    """ORM model for the jobs table (collaborator-owned)."""

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, nullable=False)
    organization = Column(String(255), nullable=True)
    location = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    def to_domain(self) -> JobSummary:
        return JobSummary(
            id=self.id,
            title=self.title,
            organization=self.organization,
            location=self.location,
            description=self.description,
        )


class ApplicationModel(Base):
    """ORM model for the applications table.

    ``status`` is free text because rows written by older versions of the
    tracker hold values like "Interview Scheduled"; ``to_domain`` normalizes.
    """

    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False)
    status = Column(String(50), nullable=False, default=ApplicationStatus.PENDING.value)
    notes = Column(Text, nullable=True)
    interview_date = Column(String(50), nullable=True)

    # Timestamps (stored as ISO 8601 strings)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "job_id", name="uq_applications_user_job"),
        Index("idx_applications_user", "user_id"),
    )

    def to_domain(self) -> Application:
        """Convert ORM model to domain model, normalizing legacy statuses."""
        return Application(
            id=self.id,
            user_id=self.user_id,
            job_id=self.job_id,
            status=parse_legacy_status(self.status),
            notes=self.notes,
            interview_date=parse_timestamp(self.interview_date),
            created_at=parse_timestamp(self.created_at),
            updated_at=parse_timestamp(self.updated_at),
        )


class StatusHistoryModel(Base):
    """ORM model for application_status_history.

    Append-only. Rows are ordered by (changed_at, id).
    """

    __tablename__ = "application_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(
        Integer, ForeignKey("applications.id"), nullable=False
    )
    status = Column(String(50), nullable=False)
    note = Column(Text, nullable=True)
    actor_id = Column(Integer, nullable=True)
    changed_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_status_history_application", "application_id", "changed_at", "id"),
    )

    def to_domain(self) -> StatusHistoryEntry:
        return StatusHistoryEntry(
            id=self.id,
            application_id=self.application_id,
            status=parse_legacy_status(self.status),
            note=self.note,
            actor_id=self.actor_id,
            changed_at=parse_timestamp(self.changed_at),
        )


class NotificationRecordModel(Base):
    """ORM model for the notifications table (one row per logical notification)."""

    __tablename__ = "notifications"

    id = Column(String(64), primary_key=True, nullable=False)
    user_id = Column(Integer, nullable=True)
    kind = Column(String(50), nullable=False)
    recipient = Column(String(320), nullable=False)
    subject = Column(Text, nullable=False)
    payload = Column(Text, nullable=False, default="{}")
    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    sent_at = Column(String(50), nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_notifications_user", "user_id", "created_at"),
        Index("idx_notifications_status", "status"),
    )

    def to_domain(self) -> NotificationRecord:
        return NotificationRecord(
            id=self.id,
            user_id=self.user_id,
            kind=NotificationKind(self.kind),
            recipient=self.recipient,
            subject=self.subject,
            payload=json.loads(self.payload or "{}"),
            status=NotificationStatus(self.status),
            attempts=self.attempts,
            last_error=self.last_error,
            sent_at=parse_timestamp(self.sent_at),
            created_at=parse_timestamp(self.created_at),
            updated_at=parse_timestamp(self.updated_at),
        )


class EmailPreferencesModel(Base):
    """ORM model for email_preferences. Missing rows mean defaults."""

    __tablename__ = "email_preferences"

    user_id = Column(Integer, primary_key=True, nullable=False)
    application_updates = Column(Boolean, nullable=False, default=True)
    job_alerts = Column(Boolean, nullable=False, default=True)
    interview_reminders = Column(Boolean, nullable=False, default=True)
    weekly_digest = Column(Boolean, nullable=False, default=False)
    marketing_emails = Column(Boolean, nullable=False, default=False)

    def to_domain(self) -> EmailPreferences:
        return EmailPreferences(
            user_id=self.user_id,
            application_updates=self.application_updates,
            job_alerts=self.job_alerts,
            interview_reminders=self.interview_reminders,
            weekly_digest=self.weekly_digest,
            marketing_emails=self.marketing_emails,
        )


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
