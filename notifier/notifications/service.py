"""Notification service: the entry point for inbound notification triggers.

For each trigger the service resolves the recipient, checks the user's email
preferences and, when allowed, enqueues the rendered notification. Delivery
happens later on the worker; callers never wait on the email provider.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from notifier.applications.events import (
    ApplicationEvent,
    ApplicationSubmitted,
    InterviewScheduled,
    StatusChanged,
)
from notifier.domain.models import (
    EmailPreferences,
    JobSummary,
    NotificationKind,
    NotificationRecord,
    NotificationStatus,
    PreferenceCategory,
    UserContact,
)
from notifier.domain.status import ApplicationStatus
from notifier.logging import get_logger
from notifier.persistence import (
    JobRepository,
    NotificationRepository,
    PreferencesRepository,
    RecordNotFoundError,
    SessionFactory,
    UserRepository,
    get_session,
)

from .models import QueueStatus
from .payloads import (
    build_digest_data,
    build_interview_data,
    build_received_data,
    build_status_data,
)
from .queue import NotificationQueue
from .worker import DeliveryWorker

logger = get_logger(__name__, component="notification")

_PREFERENCE_FIELDS = {category.value for category in PreferenceCategory}


class NotificationService:
    """Preference-aware front door to the notification queue.

    Args:
        queue: Shared notification queue
        worker: Delivery worker, needed only for ``send_now``
        session_factory: Context manager yielding a transactional session
    """

    def __init__(
        self,
        queue: NotificationQueue,
        worker: Optional[DeliveryWorker] = None,
        session_factory: SessionFactory = get_session,
    ):
        self.queue = queue
        self.worker = worker
        self._session_factory = session_factory

    @property
    def app_url(self) -> str:
        return self.queue.renderer.app_url

    def notify_application_received(
        self,
        user_id: int,
        job_id: int,
        application_id: Optional[int] = None,
        applied_at: Optional[datetime] = None,
    ) -> Optional[str]:
        """Enqueue the submission confirmation.

        Returns:
            Request id, or None if the user's preferences block it
        """
        kind = NotificationKind.APPLICATION_RECEIVED
        user, job, allowed = self._resolve(user_id, job_id, kind)
        if not allowed:
            return None

        data = build_received_data(user, job, self.app_url, application_id, applied_at)
        return self.queue.enqueue(user.email, kind, data, user_id=user_id)

    def notify_status_changed(
        self,
        user_id: int,
        job_id: int,
        new_status: ApplicationStatus,
        old_status: Optional[ApplicationStatus] = None,
        note: Optional[str] = None,
        application_id: Optional[int] = None,
    ) -> Optional[str]:
        """Enqueue a status-update notice carrying old/new status and the note."""
        kind = NotificationKind.STATUS_UPDATE
        user, job, allowed = self._resolve(user_id, job_id, kind)
        if not allowed:
            return None

        data = build_status_data(
            user, job, self.app_url, new_status, old_status, note, application_id
        )
        return self.queue.enqueue(user.email, kind, data, user_id=user_id)

    def notify_interview_scheduled(
        self,
        user_id: int,
        job_id: int,
        interview_date: datetime,
        location: Optional[str] = None,
        interview_type: Optional[str] = None,
        application_id: Optional[int] = None,
    ) -> Optional[str]:
        kind = NotificationKind.INTERVIEW_SCHEDULED
        user, job, allowed = self._resolve(user_id, job_id, kind)
        if not allowed:
            return None

        data = build_interview_data(
            user, job, self.app_url, interview_date, location, interview_type, application_id
        )
        return self.queue.enqueue(user.email, kind, data, user_id=user_id)

    def send_weekly_digest(
        self, entries: Mapping[int, Iterable[Mapping[str, Any]]]
    ) -> Dict[int, Optional[str]]:
        """Enqueue one digest per subscribed user.

        Args:
            entries: user id -> job dicts matched for that user this week

        Returns:
            user id -> request id, or None for users who are not subscribed
                or no longer exist
        """
        kind = NotificationKind.JOB_ALERT_DIGEST
        results: Dict[int, Optional[str]] = {}

        for user_id, jobs in entries.items():
            with self._session_factory() as session:
                user = UserRepository(session).get(user_id)
                preferences = PreferencesRepository(session).get(user_id)

            if user is None:
                logger.warning(
                    f"Skipping digest for unknown user {user_id}",
                    extra={"event": "notification.skip", "reason": "unknown_user", "user_id": user_id},
                )
                results[user_id] = None
                continue

            if not self._allowed(preferences, kind):
                results[user_id] = None
                continue

            data = build_digest_data(user, jobs, self.app_url)
            results[user_id] = self.queue.enqueue(user.email, kind, data, user_id=user_id)

        logger.info(
            f"Weekly digest queued for {sum(1 for v in results.values() if v)} of {len(results)} users",
            extra={"event": "notification.digest.queued"},
        )
        return results

    def handle_event(self, event: ApplicationEvent) -> Optional[str]:
        """Turn an application event into the matching notification."""
        if isinstance(event, ApplicationSubmitted):
            return self.notify_application_received(
                event.user_id,
                event.job_id,
                application_id=event.application_id,
                applied_at=event.submitted_at,
            )
        if isinstance(event, StatusChanged):
            return self.notify_status_changed(
                event.user_id,
                event.job_id,
                new_status=event.new_status,
                old_status=event.old_status,
                note=event.note,
                application_id=event.application_id,
            )
        if isinstance(event, InterviewScheduled):
            return self.notify_interview_scheduled(
                event.user_id,
                event.job_id,
                interview_date=event.interview_date,
                location=event.location,
                interview_type=event.interview_type,
                application_id=event.application_id,
            )
        raise TypeError(f"Unsupported application event: {type(event).__name__}")

    def send_now(
        self,
        recipient: str,
        kind: NotificationKind,
        data: Mapping[str, Any],
        user_id: Optional[int] = None,
    ) -> bool:
        """Deliver immediately with a single attempt, bypassing the queue.

        The outcome is recorded in the ledger like any queued notification.

        Returns:
            True if the provider accepted the message
        """
        if self.worker is None:
            raise RuntimeError("send_now requires a DeliveryWorker")

        request = self.queue.prepare(recipient, kind, data, user_id=user_id, max_attempts=1)
        return self.worker.deliver_once(request)

    def get_preferences(self, user_id: int) -> EmailPreferences:
        with self._session_factory() as session:
            return PreferencesRepository(session).get(user_id)

    def update_preferences(self, user_id: int, **changes: bool) -> EmailPreferences:
        """Change some preference flags, keeping the others.

        Raises:
            ValueError: If a flag name is unknown
        """
        unknown = set(changes) - _PREFERENCE_FIELDS
        if unknown:
            raise ValueError(
                f"Unknown preference(s): {', '.join(sorted(unknown))}. "
                f"Valid: {', '.join(sorted(_PREFERENCE_FIELDS))}"
            )

        with self._session_factory() as session:
            repo = PreferencesRepository(session)
            current = repo.get(user_id)
            updated = repo.upsert(current.model_copy(update={k: bool(v) for k, v in changes.items()}))

        logger.info(
            f"Updated email preferences for user {user_id}",
            extra={"event": "preferences.updated", "user_id": user_id, "changed": sorted(changes)},
        )
        return updated

    def list_notifications(
        self,
        user_id: int,
        status: Optional[NotificationStatus] = None,
        limit: Optional[int] = None,
    ) -> List[NotificationRecord]:
        """Audit view of a user's notifications, newest first."""
        with self._session_factory() as session:
            return NotificationRepository(session).list_for_user(user_id, status=status, limit=limit)

    def queue_status(self) -> QueueStatus:
        return self.queue.status()

    def _resolve(
        self, user_id: int, job_id: int, kind: NotificationKind
    ) -> Tuple[Optional[UserContact], Optional[JobSummary], bool]:
        with self._session_factory() as session:
            user = UserRepository(session).get(user_id)
            job = JobRepository(session).get(job_id)
            preferences = PreferencesRepository(session).get(user_id)

        if user is None:
            raise RecordNotFoundError(f"User {user_id} not found")
        if job is None:
            raise RecordNotFoundError(f"Job {job_id} not found")

        return user, job, self._allowed(preferences, kind)

    def _allowed(self, preferences: EmailPreferences, kind: NotificationKind) -> bool:
        if preferences.allows(kind):
            return True
        logger.info(
            f"Not sending {kind.value} to user {preferences.user_id}: disabled in preferences",
            extra={
                "event": "notification.skip",
                "reason": "preferences",
                "kind": kind.value,
                "user_id": preferences.user_id,
            },
        )
        return False
