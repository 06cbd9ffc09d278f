"""Application submission and status transitions.

Every state change happens in two phases:

1. One database transaction updates the application row and appends the
   history entry. Either both are written or neither is.
2. After commit, an event is handed to the publisher (normally
   ``NotificationService.handle_event``). Publisher failures are logged and
   never undo phase 1.
"""

from datetime import datetime
from typing import Callable, List, Optional, Union

from notifier.domain.models import Application, StatusHistoryEntry
from notifier.domain.status import (
    INITIAL_STATUS,
    ApplicationStatus,
    coerce_status,
    transition_error,
)
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.persistence import (
    ApplicationRepository,
    HistoryOrderError,
    SessionFactory,
    StatusHistoryRepository,
    get_session,
)
from notifier.utils.timestamps import ensure_utc, utc_now

from .events import (
    ApplicationEvent,
    ApplicationSubmitted,
    EventPublisher,
    InterviewScheduled,
    StatusChanged,
)
from .exceptions import ApplicationNotFoundError, InvalidTransition

logger = get_logger(__name__, component="applications")


class ApplicationService:
    """Owns the application status state machine and its history ledger.

    Args:
        publisher: Called with each event after its transaction commits
        session_factory: Context manager yielding a transactional session
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        publisher: Optional[EventPublisher] = None,
        session_factory: SessionFactory = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.publisher = publisher
        self._session_factory = session_factory
        self._clock = clock

    def submit_application(
        self, user_id: int, job_id: int, notes: Optional[str] = None
    ) -> Application:
        """Create an application in ``pending`` and seed its history.

        Raises:
            DuplicateApplicationError: If the user already applied to this job
            PersistenceError: If the writes fail (nothing is stored)
        """
        now = self._clock()
        with self._session_factory() as session:
            application = ApplicationRepository(session).create(
                user_id=user_id, job_id=job_id, notes=notes, created_at=now
            )
            StatusHistoryRepository(session).append(
                application.id,
                INITIAL_STATUS,
                note="Application submitted",
                actor_id=user_id,
                changed_at=now,
            )

        logger.info(
            f"Application {application.id} submitted by user {user_id} for job {job_id}",
            extra={
                "event": "application.submitted",
                "application_id": application.id,
                "user_id": user_id,
                "job_id": job_id,
            },
        )
        self._publish(
            ApplicationSubmitted(
                application_id=application.id,
                user_id=user_id,
                job_id=job_id,
                submitted_at=application.created_at,
            )
        )
        return application

    def transition(
        self,
        application_id: int,
        new_status: Union[ApplicationStatus, str],
        actor_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Application:
        """Move an application to ``new_status`` and record the change.

        Concurrent transitions on one application serialize on the row lock;
        each successful one leaves exactly one history entry.

        Returns:
            The updated application

        Raises:
            ApplicationNotFoundError: If the application doesn't exist
            InvalidTransition: If ``new_status`` is not a status, is ``pending``,
                or the application is in a terminal status
            PersistenceError: If storage fails (nothing is written)
        """
        try:
            target = coerce_status(new_status)
        except ValueError:
            raise InvalidTransition(
                f"Unknown status {new_status!r}; expected one of: "
                f"{', '.join(s.value for s in ApplicationStatus)}",
                application_id=application_id,
                requested=str(new_status),
            ) from None

        with log_context(application_id=application_id):
            now = self._clock()
            with self._session_factory() as session:
                applications = ApplicationRepository(session)
                current = applications.get_for_update(application_id)
                if current is None:
                    raise ApplicationNotFoundError(application_id)

                problem = transition_error(current.status, target)
                if problem is not None:
                    logger.info(
                        f"Rejected transition {current.status.value} -> {target.value}: {problem}",
                        extra={
                            "event": "application.transition.rejected",
                            "from_status": current.status.value,
                            "to_status": target.value,
                        },
                    )
                    raise InvalidTransition(
                        problem,
                        application_id=application_id,
                        current=current.status.value,
                        requested=target.value,
                    )

                updated = applications.update_status(application_id, target, updated_at=now)
                try:
                    StatusHistoryRepository(session).append(
                        application_id, target, note=note, actor_id=actor_id, changed_at=now
                    )
                except HistoryOrderError as e:
                    raise InvalidTransition(
                        str(e),
                        application_id=application_id,
                        current=current.status.value,
                        requested=target.value,
                    ) from e

            logger.info(
                f"Application {application_id} moved {current.status.value} -> {target.value}",
                extra={
                    "event": "application.transitioned",
                    "from_status": current.status.value,
                    "to_status": target.value,
                    "actor_id": actor_id,
                },
            )

            self._publish(
                StatusChanged(
                    application_id=application_id,
                    user_id=updated.user_id,
                    job_id=updated.job_id,
                    old_status=current.status,
                    new_status=target,
                    changed_at=updated.updated_at,
                    note=note,
                    actor_id=actor_id,
                )
            )
        return updated

    def schedule_interview(
        self,
        application_id: int,
        interview_date: datetime,
        actor_id: Optional[int] = None,
        location: Optional[str] = None,
        interview_type: Optional[str] = None,
    ) -> Application:
        """Store the interview date and announce it. The status is unchanged.

        Raises:
            ApplicationNotFoundError: If the application doesn't exist
            PersistenceError: If storage fails
        """
        interview_date = ensure_utc(interview_date)
        with log_context(application_id=application_id):
            with self._session_factory() as session:
                applications = ApplicationRepository(session)
                if applications.get_for_update(application_id) is None:
                    raise ApplicationNotFoundError(application_id)
                updated = applications.set_interview_date(
                    application_id, interview_date, updated_at=self._clock()
                )

            logger.info(
                f"Interview scheduled for application {application_id}",
                extra={"event": "application.interview_scheduled", "actor_id": actor_id},
            )
            self._publish(
                InterviewScheduled(
                    application_id=application_id,
                    user_id=updated.user_id,
                    job_id=updated.job_id,
                    interview_date=interview_date,
                    location=location,
                    interview_type=interview_type,
                    actor_id=actor_id,
                )
            )
        return updated

    def get_application(self, application_id: int) -> Application:
        """Raises ApplicationNotFoundError if the application doesn't exist."""
        with self._session_factory() as session:
            application = ApplicationRepository(session).get(application_id)
        if application is None:
            raise ApplicationNotFoundError(application_id)
        return application

    def get_history(self, application_id: int) -> List[StatusHistoryEntry]:
        """Return the application's transitions in the order they were applied."""
        with self._session_factory() as session:
            if ApplicationRepository(session).get(application_id) is None:
                raise ApplicationNotFoundError(application_id)
            return StatusHistoryRepository(session).list_for_application(application_id)

    def _publish(self, event: ApplicationEvent) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher(event)
        except Exception as e:
            logger.error(
                f"Failed to publish {type(event).__name__}: {e}",
                exc_info=True,
                extra={
                    "event": "application.notify.failed",
                    "event_type": type(event).__name__,
                    "application_id": event.application_id,
                },
            )
