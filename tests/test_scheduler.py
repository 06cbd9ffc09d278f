"""Unit tests for the scheduler service.

Tests the SchedulerService including:
- Job defaults (max_instances=1, coalescing)
- Immediate first tick
- Error isolation for failing ticks
- Start/shutdown lifecycle and queue drop on shutdown
"""

import threading
import time
from datetime import datetime, timezone
from unittest.mock import Mock

from notifier.notifications.models import TickResult
from notifier.scheduler import SchedulerService


def make_worker(**kwargs):
    worker = Mock()
    worker.tick.return_value = TickResult(sent=1)
    worker.shutdown.return_value = 0
    for name, value in kwargs.items():
        setattr(worker, name, value)
    return worker


class TestSchedulerService:
    """Test suite for SchedulerService."""

    def test_initialization(self):
        worker = make_worker()
        shutdown_event = threading.Event()

        scheduler = SchedulerService(worker, interval_seconds=5, shutdown_event=shutdown_event)

        assert scheduler.interval_seconds == 5
        assert scheduler.worker is worker
        assert not scheduler.is_running()

    def test_job_defaults_prevent_overlap(self):
        scheduler = SchedulerService(make_worker(), interval_seconds=5)

        assert scheduler.scheduler._job_defaults["max_instances"] == 1
        assert scheduler.scheduler._job_defaults["coalesce"] is True
        assert scheduler.scheduler._job_defaults["misfire_grace_time"] == 5

    def test_first_tick_runs_immediately(self):
        ticked = threading.Event()
        worker = make_worker()
        worker.tick.side_effect = lambda: ticked.set() or TickResult()
        scheduler = SchedulerService(worker, interval_seconds=300)

        before = datetime.now(timezone.utc)
        scheduler.start()
        try:
            assert ticked.wait(timeout=5)
            next_run = scheduler.get_next_run_time()
            assert next_run is not None
            assert next_run > before
        finally:
            scheduler.shutdown(wait=True)

    def test_start_and_shutdown(self):
        worker = make_worker()
        worker.shutdown.return_value = 3
        shutdown_event = threading.Event()
        scheduler = SchedulerService(worker, interval_seconds=300, shutdown_event=shutdown_event)

        scheduler.start()
        assert scheduler.is_running()
        time.sleep(0.1)

        dropped = scheduler.shutdown(wait=True)

        assert dropped == 3
        assert not scheduler.is_running()
        assert shutdown_event.is_set()
        worker.shutdown.assert_called_once()

    def test_shutdown_without_start_still_drops_queue(self):
        worker = make_worker()
        scheduler = SchedulerService(worker, interval_seconds=5)

        assert scheduler.shutdown() == 0
        worker.shutdown.assert_called_once()

    def test_failing_tick_is_logged_not_raised(self, caplog):
        worker = make_worker()
        worker.tick.side_effect = RuntimeError("database is locked")
        scheduler = SchedulerService(worker, interval_seconds=5)

        assert scheduler.run_tick() is None
        assert any(getattr(r, "event", None) == "worker.tick.failed" for r in caplog.records)

    def test_trigger_now_returns_tick_result(self):
        scheduler = SchedulerService(make_worker(), interval_seconds=5)
        assert scheduler.trigger_now() == TickResult(sent=1)
