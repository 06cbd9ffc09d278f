"""Data access layer (repositories) for persistence operations.

Repositories wrap one SQLAlchemy session, translate SQLAlchemy failures into
PersistenceError subclasses and return domain models rather than ORM models.
They never commit; the caller's ``get_session()`` block owns the transaction.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

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
from notifier.domain.status import ApplicationStatus, transition_error
from notifier.utils.timestamps import format_timestamp, utc_now

from .exceptions import (
    DataIntegrityError,
    DuplicateApplicationError,
    HistoryOrderError,
    PersistenceError,
    RecordNotFoundError,
)
from .schema import (
    ApplicationModel,
    EmailPreferencesModel,
    JobModel,
    NotificationRecordModel,
    StatusHistoryModel,
    UserModel,
)

logger = logging.getLogger(__name__)


class ApplicationRepository:
    """Repository for the applications table."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        user_id: int,
        job_id: int,
        notes: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Application:
        """Insert a new application in the initial status.

        Raises:
            DuplicateApplicationError: If the user already applied to this job
            DataIntegrityError: If user or job does not exist
            PersistenceError: If database error occurs
        """
        timestamp = format_timestamp(created_at or utc_now())
        try:
            existing = self.session.execute(
                select(ApplicationModel.id).where(
                    ApplicationModel.user_id == user_id,
                    ApplicationModel.job_id == job_id,
                )
            ).scalar_one_or_none()
            if existing is not None:
                raise DuplicateApplicationError(user_id, job_id)

            model = ApplicationModel(
                user_id=user_id,
                job_id=job_id,
                status=ApplicationStatus.PENDING.value,
                notes=notes,
                created_at=timestamp,
                updated_at=timestamp,
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except DuplicateApplicationError:
            raise
        except IntegrityError as e:
            logger.error(
                f"Integrity error creating application user={user_id} job={job_id}: {e}",
                exc_info=True,
            )
            raise DataIntegrityError(f"Failed to create application: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating application: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create application: {e}") from e

    def get(self, application_id: int) -> Optional[Application]:
        """Retrieve an application by id, or None if it does not exist."""
        try:
            model = self.session.get(ApplicationModel, application_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving application {application_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve application: {e}") from e

    def get_for_update(self, application_id: int) -> Optional[Application]:
        """Retrieve an application and lock its row until the transaction ends.

        Concurrent transitions on the same application serialize on this lock.
        SQLite ignores FOR UPDATE, so there a no-op UPDATE of the row takes the
        database write lock before the read; a second writer waits for the first
        to commit and then reads the committed status.
        """
        try:
            if self.session.get_bind().dialect.name == "sqlite":
                table = ApplicationModel.__table__
                self.session.execute(
                    update(table)
                    .where(table.c.id == application_id)
                    .values(id=table.c.id)
                )
            stmt = (
                select(ApplicationModel)
                .where(ApplicationModel.id == application_id)
                .with_for_update()
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(
                f"Error locking application {application_id}: {e}", exc_info=True
            )
            raise PersistenceError(f"Failed to lock application: {e}") from e

    def list_for_user(self, user_id: int) -> List[Application]:
        """Return a user's applications, newest first."""
        try:
            stmt = (
                select(ApplicationModel)
                .where(ApplicationModel.user_id == user_id)
                .order_by(ApplicationModel.created_at.desc(), ApplicationModel.id.desc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing applications for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list applications: {e}") from e

    def update_status(
        self,
        application_id: int,
        status: ApplicationStatus,
        updated_at: Optional[datetime] = None,
    ) -> Application:
        """Set the status column.

        Raises:
            RecordNotFoundError: If the application doesn't exist
            PersistenceError: If database error occurs
        """
        try:
            model = self._require(application_id)
            model.status = status.value
            model.updated_at = format_timestamp(updated_at or utc_now())
            self.session.flush()
            return model.to_domain()
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                f"Error updating status for application {application_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to update application status: {e}") from e

    def set_interview_date(
        self,
        application_id: int,
        interview_date: datetime,
        updated_at: Optional[datetime] = None,
    ) -> Application:
        try:
            model = self._require(application_id)
            model.interview_date = format_timestamp(interview_date)
            model.updated_at = format_timestamp(updated_at or utc_now())
            self.session.flush()
            return model.to_domain()
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                f"Error setting interview date for application {application_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to set interview date: {e}") from e

    def _require(self, application_id: int) -> ApplicationModel:
        model = self.session.get(ApplicationModel, application_id)
        if model is None:
            raise RecordNotFoundError(f"Application {application_id} not found")
        return model


class StatusHistoryRepository:
    """Append-only ledger of status transitions.

    ``append`` refuses entries that would not be a valid step from the
    application's latest entry, so the stored sequence is always a walk of the
    state machine even if a caller skips validation.
    """

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        application_id: int,
        status: ApplicationStatus,
        note: Optional[str] = None,
        actor_id: Optional[int] = None,
        changed_at: Optional[datetime] = None,
    ) -> StatusHistoryEntry:
        """Append one transition to the ledger.

        ``changed_at`` is clamped to the latest existing entry so that reading
        back by (changed_at, id) preserves append order even if the wall clock
        steps backwards.

        Raises:
            HistoryOrderError: If the entry is not a valid step from the latest entry
            PersistenceError: If database error occurs
        """
        try:
            latest = self._latest_model(application_id)
            timestamp = format_timestamp(changed_at or utc_now())

            if latest is not None:
                previous = latest.to_domain().status
                problem = transition_error(previous, status)
                if problem is not None:
                    raise HistoryOrderError(
                        f"Refusing history entry {previous.value} -> {status.value} "
                        f"for application {application_id}: {problem}"
                    )
                if timestamp < latest.changed_at:
                    timestamp = latest.changed_at

            model = StatusHistoryModel(
                application_id=application_id,
                status=status.value,
                note=note,
                actor_id=actor_id,
                changed_at=timestamp,
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except DataIntegrityError:
            raise
        except IntegrityError as e:
            logger.error(
                f"Integrity error appending history for application {application_id}: {e}",
                exc_info=True,
            )
            raise DataIntegrityError(f"Failed to append status history: {e}") from e
        except SQLAlchemyError as e:
            logger.error(
                f"Error appending history for application {application_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to append status history: {e}") from e

    def list_for_application(self, application_id: int) -> List[StatusHistoryEntry]:
        """Return entries for an application in ledger order (changed_at, id)."""
        try:
            stmt = (
                select(StatusHistoryModel)
                .where(StatusHistoryModel.application_id == application_id)
                .order_by(StatusHistoryModel.changed_at, StatusHistoryModel.id)
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(
                f"Error listing history for application {application_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to list status history: {e}") from e

    def latest(self, application_id: int) -> Optional[StatusHistoryEntry]:
        try:
            model = self._latest_model(application_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(
                f"Error reading latest history for application {application_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to read status history: {e}") from e

    def _latest_model(self, application_id: int) -> Optional[StatusHistoryModel]:
        stmt = (
            select(StatusHistoryModel)
            .where(StatusHistoryModel.application_id == application_id)
            .order_by(StatusHistoryModel.changed_at.desc(), StatusHistoryModel.id.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()


class NotificationRepository:
    """Repository for the notification audit ledger.

    One row per logical notification, updated in place on every delivery
    attempt. Rows are never deleted.
    """

    def __init__(self, session: Session):
        self.session = session

    def create_pending(
        self,
        notification_id: str,
        kind: NotificationKind,
        recipient: str,
        subject: str,
        payload: Optional[Dict[str, Any]] = None,
        user_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> NotificationRecord:
        """Insert a new record in ``pending`` with zero attempts.

        Raises:
            DataIntegrityError: If a record with this id already exists
            PersistenceError: If database error occurs
        """
        timestamp = format_timestamp(created_at or utc_now())
        try:
            model = NotificationRecordModel(
                id=notification_id,
                user_id=user_id,
                kind=kind.value,
                recipient=recipient,
                subject=subject,
                payload=_serialize_payload(payload),
                status=NotificationStatus.PENDING.value,
                attempts=0,
                last_error=None,
                sent_at=None,
                created_at=timestamp,
                updated_at=timestamp,
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(
                f"Integrity error creating notification {notification_id}: {e}",
                exc_info=True,
            )
            raise DataIntegrityError(f"Failed to create notification record: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create notification record: {e}") from e

    def record_attempt_failure(
        self, notification_id: str, attempts: int, error: str
    ) -> NotificationRecord:
        """Record a retryable failure; the record stays ``pending``."""
        return self._update(
            notification_id,
            status=NotificationStatus.PENDING,
            attempts=attempts,
            last_error=error,
        )

    def mark_sent(
        self,
        notification_id: str,
        attempts: int,
        sent_at: Optional[datetime] = None,
    ) -> NotificationRecord:
        return self._update(
            notification_id,
            status=NotificationStatus.SENT,
            attempts=attempts,
            sent_at=sent_at or utc_now(),
        )

    def mark_failed(
        self, notification_id: str, attempts: int, error: str
    ) -> NotificationRecord:
        """Mark a record terminally failed with the last error."""
        return self._update(
            notification_id,
            status=NotificationStatus.FAILED,
            attempts=attempts,
            last_error=error,
        )

    def get(self, notification_id: str) -> Optional[NotificationRecord]:
        try:
            model = self.session.get(NotificationRecordModel, notification_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification record: {e}") from e

    def list_for_user(
        self,
        user_id: int,
        status: Optional[NotificationStatus] = None,
        limit: Optional[int] = None,
    ) -> List[NotificationRecord]:
        """Return a user's notifications, newest first.

        Args:
            user_id: Owning user
            status: Only return records in this status
            limit: Maximum number of records (all if None)
        """
        try:
            stmt = select(NotificationRecordModel).where(
                NotificationRecordModel.user_id == user_id
            )
            if status is not None:
                stmt = stmt.where(NotificationRecordModel.status == status.value)
            stmt = stmt.order_by(NotificationRecordModel.created_at.desc())
            if limit is not None:
                stmt = stmt.limit(limit)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing notifications for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list notification records: {e}") from e

    def _update(
        self,
        notification_id: str,
        status: NotificationStatus,
        attempts: int,
        last_error: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> NotificationRecord:
        try:
            model = self.session.get(NotificationRecordModel, notification_id)
            if model is None:
                raise RecordNotFoundError(f"Notification {notification_id} not found")

            model.status = status.value
            model.attempts = attempts
            if last_error is not None:
                model.last_error = last_error
            if sent_at is not None:
                model.sent_at = format_timestamp(sent_at)
            model.updated_at = format_timestamp(utc_now())

            self.session.flush()
            return model.to_domain()

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update notification record: {e}") from e


class PreferencesRepository:
    """Repository for per-user email preferences."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int) -> EmailPreferences:
        """Return stored preferences, or the defaults if the user has none."""
        try:
            model = self.session.get(EmailPreferencesModel, user_id)
            if model is None:
                return EmailPreferences(user_id=user_id)
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving preferences for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve email preferences: {e}") from e

    def upsert(self, preferences: EmailPreferences) -> EmailPreferences:
        try:
            model = self.session.get(EmailPreferencesModel, preferences.user_id)
            if model is None:
                model = EmailPreferencesModel(user_id=preferences.user_id)
                self.session.add(model)

            model.application_updates = preferences.application_updates
            model.job_alerts = preferences.job_alerts
            model.interview_reminders = preferences.interview_reminders
            model.weekly_digest = preferences.weekly_digest
            model.marketing_emails = preferences.marketing_emails

            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(
                f"Error saving preferences for user {preferences.user_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to save email preferences: {e}") from e


class UserRepository:
    """Read access to the collaborator-owned users table."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int) -> Optional[UserContact]:
        try:
            model = self.session.get(UserModel, user_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve user: {e}") from e

    def create(self, email: str, full_name: Optional[str] = None) -> UserContact:
        """Insert a user row (seed and test helper)."""
        try:
            model = UserModel(email=email, full_name=full_name)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            raise DataIntegrityError(f"Failed to create user {email}: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating user {email}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create user: {e}") from e


class JobRepository:
    """Read access to the collaborator-owned jobs table."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, job_id: int) -> Optional[JobSummary]:
        try:
            model = self.session.get(JobModel, job_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving job {job_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve job: {e}") from e

    def create(
        self,
        title: str,
        organization: Optional[str] = None,
        location: Optional[str] = None,
        description: Optional[str] = None,
    ) -> JobSummary:
        """Insert a job row (seed and test helper)."""
        try:
            model = JobModel(
                title=title,
                organization=organization,
                location=location,
                description=description,
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error creating job {title!r}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create job: {e}") from e


def _serialize_payload(payload: Optional[Dict[str, Any]]) -> str:
    # Datetimes and enums in template data are stored by their str() form
    return json.dumps(payload or {}, default=str, sort_keys=True)
