"""Tests for NotificationService trigger handling and preferences."""

from datetime import datetime, timezone

import pytest

from notifier.applications.events import ApplicationSubmitted, InterviewScheduled, StatusChanged
from notifier.config import DeliveryConfig
from notifier.domain.models import NotificationKind, NotificationStatus
from notifier.domain.status import ApplicationStatus
from notifier.notifications import (
    ConsoleTransport,
    DeliveryWorker,
    NotificationQueue,
    NotificationService,
    TemplateRenderer,
    TransportError,
)
from notifier.persistence import RecordNotFoundError
from notifier.ratelimit import InMemoryCounterStore, RateLimiter, RateLimitWindow
from tests.helpers import FakeTransport, ManualClock

WHEN = datetime(2025, 11, 4, 9, 15, tzinfo=timezone.utc)
WINDOW = RateLimitWindow(name="outbound-email", limit=10, period_seconds=60)


@pytest.fixture
def queue(database):
    return NotificationQueue(TemplateRenderer(app_url="https://jobs.example.com"), clock=ManualClock())


@pytest.fixture
def service(queue):
    return NotificationService(queue)


def make_worker(queue, transport):
    limiter = RateLimiter(InMemoryCounterStore(), {WINDOW.name: WINDOW})
    return DeliveryWorker(queue, transport, limiter, WINDOW, delivery=DeliveryConfig())


class TestTriggers:
    """Tests for the notify_* entry points."""

    def test_status_change_is_queued_with_note(self, service, queue, candidate, job):
        notification_id = service.notify_status_changed(
            candidate.id,
            job.id,
            new_status=ApplicationStatus.SHORTLISTED,
            old_status=ApplicationStatus.UNDER_REVIEW,
            note="strong candidate",
            application_id=7,
        )

        item = queue.drain()[0]
        assert item.id == notification_id
        assert item.recipient == "ann@example.com"
        assert item.payload["note"] == "strong candidate"
        assert item.payload["old_status"] == "under_review"
        assert item.payload["application_url"] == "https://jobs.example.com/applications/7"
        assert "strong candidate" in item.email.text

    def test_disabled_preference_enqueues_nothing(self, service, queue, candidate, job):
        service.update_preferences(candidate.id, application_updates=False)

        result = service.notify_status_changed(candidate.id, job.id, ApplicationStatus.ACCEPTED)

        assert result is None
        assert len(queue) == 0
        assert service.list_notifications(candidate.id) == []

    def test_application_received(self, service, queue, candidate, job):
        service.notify_application_received(candidate.id, job.id, application_id=3, applied_at=WHEN)

        item = queue.drain()[0]
        assert item.kind == NotificationKind.APPLICATION_RECEIVED
        assert item.payload["applied_at"] == "2025-11-04T09:15:00+00:00"
        assert item.payload["location"] == "Leeds"

    def test_interview_respects_interview_reminders(self, service, queue, candidate, job):
        service.update_preferences(candidate.id, interview_reminders=False)
        assert service.notify_interview_scheduled(candidate.id, job.id, WHEN) is None

        service.update_preferences(candidate.id, interview_reminders=True)
        assert service.notify_interview_scheduled(candidate.id, job.id, WHEN, location="Room 12")
        assert len(queue) == 1

    def test_unknown_user_or_job_raises(self, service, candidate, job):
        with pytest.raises(RecordNotFoundError, match="User"):
            service.notify_status_changed(9999, job.id, ApplicationStatus.ACCEPTED)
        with pytest.raises(RecordNotFoundError, match="Job"):
            service.notify_status_changed(candidate.id, 9999, ApplicationStatus.ACCEPTED)


class TestDigest:
    """Tests for the weekly digest."""

    def test_requires_weekly_digest_opt_in(self, service, queue, candidate):
        jobs = [{"title": "Maths Teacher", "organization": "Central High School"}]

        assert service.send_weekly_digest({candidate.id: jobs}) == {candidate.id: None}

        service.update_preferences(candidate.id, weekly_digest=True)
        results = service.send_weekly_digest({candidate.id: jobs, 9999: jobs})

        assert results[candidate.id] is not None
        assert results[9999] is None
        item = queue.drain()[0]
        assert item.email.subject == "Weekly Job Alert - 1 New Opportunity"


class TestEvents:
    """Tests for handle_event dispatch."""

    def test_dispatches_each_event_type(self, service, queue, candidate, job):
        events = [
            ApplicationSubmitted(1, candidate.id, job.id, WHEN),
            StatusChanged(1, candidate.id, job.id, ApplicationStatus.PENDING, ApplicationStatus.UNDER_REVIEW, WHEN),
            InterviewScheduled(1, candidate.id, job.id, WHEN),
        ]
        for event in events:
            assert service.handle_event(event) is not None

        assert [item.kind for item in queue.drain()] == [
            NotificationKind.APPLICATION_RECEIVED,
            NotificationKind.STATUS_UPDATE,
            NotificationKind.INTERVIEW_SCHEDULED,
        ]

    def test_unsupported_event_raises(self, service):
        with pytest.raises(TypeError, match="Unsupported"):
            service.handle_event(object())


class TestPreferences:
    """Tests for preference reads and partial updates."""

    def test_update_keeps_other_flags(self, service, candidate):
        service.update_preferences(candidate.id, weekly_digest=True)
        prefs = service.update_preferences(candidate.id, job_alerts=False)

        assert prefs.weekly_digest is True
        assert prefs.job_alerts is False
        assert service.get_preferences(candidate.id) == prefs

    def test_unknown_flag_is_rejected(self, service, candidate):
        with pytest.raises(ValueError, match="Unknown preference"):
            service.update_preferences(candidate.id, sms_alerts=True)


class TestSendNow:
    """Tests for synchronous single-attempt delivery."""

    DATA = {"applicant_name": "Ann Smith", "job_title": "Maths Teacher", "new_status": "accepted"}

    def test_success_is_recorded(self, queue, candidate):
        worker = make_worker(queue, ConsoleTransport())
        service = NotificationService(queue, worker=worker)
        try:
            assert service.send_now("ann@example.com", NotificationKind.STATUS_UPDATE, self.DATA, user_id=candidate.id)
        finally:
            worker.shutdown()

        records = service.list_notifications(candidate.id)
        assert [r.status for r in records] == [NotificationStatus.SENT]
        assert len(queue) == 0

    def test_failure_is_not_retried(self, queue, candidate):
        transport = FakeTransport(always_fail=TransportError("HTTP 503"))
        worker = make_worker(queue, transport)
        service = NotificationService(queue, worker=worker)
        try:
            assert service.send_now("ann@example.com", "status_update", self.DATA, user_id=candidate.id) is False
        finally:
            worker.shutdown()

        record = service.list_notifications(candidate.id, status=NotificationStatus.FAILED)[0]
        assert record.attempts == 1
        assert len(transport.calls) == 1

    def test_requires_worker(self, service):
        with pytest.raises(RuntimeError):
            service.send_now("ann@example.com", "status_update", self.DATA)


def test_queue_status(service, candidate, job):
    service.notify_status_changed(candidate.id, job.id, ApplicationStatus.UNDER_REVIEW)
    assert service.queue_status().queued == 1
