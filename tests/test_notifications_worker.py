"""Tests for DeliveryWorker retry, rate limiting, timeout and shutdown behaviour."""

import logging
from contextlib import contextmanager

import pytest

from notifier.config import DeliveryConfig
from notifier.domain.models import NotificationKind, NotificationStatus
from notifier.notifications import (
    DeliveryWorker,
    NotificationQueue,
    PermanentDeliveryError,
    TemplateRenderer,
    TransportError,
)
from notifier.persistence import NotificationRepository, PersistenceError, get_session
from notifier.ratelimit import InMemoryCounterStore, RateLimiter, RateLimitWindow
from tests.helpers import BlockingTransport, FakeTransport, ManualClock

STATUS_DATA = {
    "applicant_name": "Ann Smith",
    "job_title": "Maths Teacher",
    "new_status": "shortlisted",
}
WINDOW = RateLimitWindow(name="outbound-email", limit=10, period_seconds=60)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def queue(database, clock):
    return NotificationQueue(TemplateRenderer(app_url="https://jobs.example.com"), clock=clock)


@pytest.fixture
def make_worker(queue, clock):
    workers = []

    def factory(transport, window=WINDOW, delivery=None, **kwargs):
        limiter = RateLimiter(InMemoryCounterStore(clock=clock), {window.name: window})
        worker = DeliveryWorker(
            queue=queue,
            transport=transport,
            limiter=limiter,
            window=window,
            delivery=delivery or DeliveryConfig(),
            rand=lambda: 0.0,
            **kwargs,
        )
        workers.append(worker)
        return worker

    yield factory
    for worker in workers:
        worker.shutdown()


def ledger(notification_id):
    with get_session() as session:
        return NotificationRepository(session).get(notification_id)


class TestRetries:
    """Transient failures are retried with exponential backoff."""

    def test_succeeds_after_transient_failures(self, queue, clock, make_worker):
        transport = FakeTransport(
            failures=[TransportError("HTTP 503"), TransportError("HTTP 503")], clock=clock
        )
        worker = make_worker(transport)
        notification_id = queue.enqueue("ann@example.com", NotificationKind.STATUS_UPDATE, STATUS_DATA)

        assert worker.tick().retried == 1
        assert worker.tick().deferred == 1  # still backing off
        clock.advance(2)
        assert worker.tick().retried == 1
        clock.advance(4)
        result = worker.tick()

        assert result.sent == 1
        assert len(transport.calls) == 3
        assert [b - a for a, b in zip(transport.call_times, transport.call_times[1:])] == [2, 4]

        record = ledger(notification_id)
        assert record.status == NotificationStatus.SENT
        assert record.attempts == 3
        assert record.last_error == "HTTP 503"
        assert record.sent_at is not None
        assert len(queue) == 0

    def test_gives_up_after_max_attempts(self, queue, clock, make_worker):
        transport = FakeTransport(always_fail=TransportError("HTTP 500"), clock=clock)
        worker = make_worker(transport)
        notification_id = queue.enqueue("ann@example.com", "status_update", STATUS_DATA)

        worker.tick()
        clock.advance(2)
        worker.tick()
        clock.advance(4)
        result = worker.tick()

        assert result.failed == 1
        record = ledger(notification_id)
        assert record.status == NotificationStatus.FAILED
        assert record.attempts == 3
        assert record.last_error == "HTTP 500"

        clock.advance(600)
        worker.tick()
        assert len(transport.calls) == 3
        assert len(queue) == 0

    def test_permanent_error_is_not_retried(self, queue, clock, make_worker):
        transport = FakeTransport(failures=[PermanentDeliveryError("HTTP 400: bad address")])
        worker = make_worker(transport)
        notification_id = queue.enqueue("ann@example.com", "status_update", STATUS_DATA)

        assert worker.tick().failed == 1
        clock.advance(60)
        worker.tick()

        assert len(transport.calls) == 1
        record = ledger(notification_id)
        assert record.status == NotificationStatus.FAILED
        assert record.attempts == 1

    def test_unexpected_exception_is_treated_as_retryable(self, queue, clock, make_worker):
        transport = FakeTransport(failures=[RuntimeError("socket closed")])
        worker = make_worker(transport)
        notification_id = queue.enqueue("ann@example.com", "status_update", STATUS_DATA)

        assert worker.tick().retried == 1
        clock.advance(2)
        assert worker.tick().sent == 1
        assert "RuntimeError" in ledger(notification_id).last_error

    def test_backoff_delay_is_capped_and_jittered(self, queue, make_worker):
        worker = make_worker(FakeTransport())
        worker._rand = lambda: 1.0

        assert worker.backoff_delay(1) == pytest.approx(2.2)
        assert worker.backoff_delay(10) == pytest.approx(33.0)


class TestRateLimiting:
    """The outbound window caps attempts per tick."""

    def test_excess_items_wait_for_the_window(self, queue, clock, make_worker):
        transport = FakeTransport()
        worker = make_worker(transport, window=RateLimitWindow("outbound-email", 3, 60))
        for n in range(5):
            queue.enqueue(f"user{n}@example.com", "status_update", STATUS_DATA)

        first = worker.tick()
        assert (first.attempted, first.rate_limited) == (3, 2)
        assert worker.tick().attempted == 0

        clock.advance(61)
        second = worker.tick()

        assert second.attempted == 2
        assert len(transport.sent) == 5
        # Enqueue order survives the carry-over
        assert transport.calls == [f"user{n}@example.com" for n in range(5)]


class TestTimeout:
    """A hung provider call is abandoned and retried."""

    def test_slow_transport_counts_as_retryable_failure(self, queue, make_worker):
        transport = BlockingTransport(max_wait=5)
        worker = make_worker(transport, delivery=DeliveryConfig(transport_timeout="1s"))
        notification_id = queue.enqueue("ann@example.com", "status_update", STATUS_DATA)

        try:
            result = worker.tick()
        finally:
            transport.release()

        assert result.retried == 1
        record = ledger(notification_id)
        assert record.status == NotificationStatus.PENDING
        assert record.attempts == 1
        assert "timeout" in record.last_error


class TestTickAndShutdown:
    """Tick exclusivity, shutdown and ledger failure handling."""

    def test_overlapping_tick_is_skipped(self, queue, make_worker):
        worker = make_worker(FakeTransport())
        queue.enqueue("ann@example.com", "status_update", STATUS_DATA)

        worker._tick_lock.acquire()
        try:
            result = worker.tick()
        finally:
            worker._tick_lock.release()

        assert result.skipped is True
        assert len(queue) == 1

    def test_items_enqueued_after_drain_wait_for_next_tick(self, queue, make_worker):
        worker = make_worker(FakeTransport())
        assert worker.tick().attempted == 0
        queue.enqueue("ann@example.com", "status_update", STATUS_DATA)
        assert worker.tick().sent == 1

    def test_exception_mid_tick_requeues_unfinished_items(self, queue, make_worker):
        transport = FakeTransport()
        worker = make_worker(transport)
        allow = worker.limiter.allow
        calls = []

        def failing_allow(identity, window):
            calls.append(identity)
            if len(calls) == 2:
                raise RuntimeError("limiter backend crashed")
            return allow(identity, window)

        worker.limiter.allow = failing_allow
        ids = [queue.enqueue("ann@example.com", "status_update", STATUS_DATA) for _ in range(4)]

        with pytest.raises(RuntimeError, match="limiter backend crashed"):
            worker.tick()

        assert len(transport.calls) == 1
        assert len(queue) == 3
        assert queue.status().processing is False

        result = worker.tick()
        assert result.sent == 3
        assert all(ledger(i).status == NotificationStatus.SENT for i in ids)

    def test_shutdown_drops_queued_items(self, queue, make_worker):
        transport = FakeTransport()
        worker = make_worker(transport)
        ids = [queue.enqueue("ann@example.com", "status_update", STATUS_DATA) for _ in range(2)]

        assert worker.shutdown() == 2
        assert len(queue) == 0
        assert transport.calls == []
        assert all(ledger(i).status == NotificationStatus.PENDING for i in ids)

    def test_ledger_failure_does_not_requeue_sent_item(self, queue, make_worker, caplog):
        @contextmanager
        def broken_session():
            raise PersistenceError("database is locked")
            yield

        transport = FakeTransport()
        worker = make_worker(transport, session_factory=broken_session)
        queue.enqueue("ann@example.com", "status_update", STATUS_DATA)

        with caplog.at_level(logging.ERROR):
            result = worker.tick()

        assert result.sent == 1
        assert len(queue) == 0
        assert any(getattr(r, "event", None) == "notification.ledger.update_failed" for r in caplog.records)

    def test_deliver_once_marks_failed_without_retry(self, queue, make_worker):
        transport = FakeTransport(always_fail=TransportError("HTTP 502"))
        worker = make_worker(transport)
        item = queue.prepare("ann@example.com", "status_update", STATUS_DATA)

        assert worker.deliver_once(item) is False
        record = ledger(item.id)
        assert record.status == NotificationStatus.FAILED
        assert record.attempts == 1
