"""Scheduler service driving the delivery worker's periodic tick."""

import threading
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from notifier.logging import get_logger
from notifier.notifications.models import TickResult
from notifier.notifications.worker import DeliveryWorker

logger = get_logger(__name__, component="scheduler")

JOB_ID = "delivery-tick"


class SchedulerService:
    """
    Wraps APScheduler to run ``DeliveryWorker.tick`` at a fixed interval.

    Uses BackgroundScheduler so the main thread stays free to handle signals
    and coordinate shutdown. ``max_instances=1`` keeps ticks from overlapping.
    """

    def __init__(
        self,
        worker: DeliveryWorker,
        interval_seconds: int,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            worker: Delivery worker whose tick is scheduled
            interval_seconds: Seconds between ticks
            shutdown_event: Optional event set once shutdown completes
        """
        self.worker = worker
        self.interval_seconds = interval_seconds
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """Register the tick job and start the scheduler; the first tick runs immediately."""
        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.run_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=JOB_ID,
            name="Notification delivery tick",
            replace_existing=True,
            next_run_time=next_run,
        )
        self.scheduler.start()

        logger.info(
            f"Scheduler started with interval: {self.interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "interval_seconds": self.interval_seconds,
                "next_run_time": next_run.isoformat(),
            },
        )

    def run_tick(self) -> Optional[TickResult]:
        """Run one worker tick, logging rather than raising unexpected errors.

        An exception escaping here would only be logged by APScheduler; logging
        it ourselves keeps the structured event and the next tick still runs.
        """
        try:
            return self.worker.tick()
        except Exception as e:
            logger.error(
                f"Delivery tick failed: {e}",
                exc_info=True,
                extra={"event": "worker.tick.failed", "error_type": type(e).__name__},
            )
            return None

    def shutdown(self, wait: bool = True) -> int:
        """
        Stop scheduling ticks, let the running tick finish, then drop the rest.

        Args:
            wait: If True, wait for a running tick to complete before returning

        Returns:
            Number of queued notifications dropped
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        dropped = self.worker.shutdown()

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info(
            "Scheduler shutdown complete",
            extra={"event": "scheduler.stopped", "dropped": dropped},
        )
        return dropped

    def trigger_now(self) -> Optional[TickResult]:
        """Run a tick synchronously in the current thread."""
        logger.info("Triggering immediate delivery tick", extra={"event": "scheduler.trigger_now"})
        return self.run_tick()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None
