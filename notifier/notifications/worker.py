"""Delivery worker: drains the queue on each tick and attempts delivery.

Per item the lifecycle is ``queued -> attempting -> sent | queued (retry) |
failed``. Every attempt updates the item's NotificationRecord in place.
Retries wait in the queue until their backoff elapses; no timers are used.
"""

import random
import threading
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from notifier.config.models import OUTBOUND_EMAIL_WINDOW, DeliveryConfig
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.persistence import (
    NotificationRepository,
    PersistenceError,
    SessionFactory,
    get_session,
)
from notifier.ratelimit import RateLimiter, RateLimitWindow

from .models import (
    NotificationRequest,
    PermanentDeliveryError,
    TickResult,
    TransportError,
)
from .queue import NotificationQueue
from .transport import EmailTransport

logger = get_logger(__name__, component="worker")

# Threads left behind by timed-out provider calls are bounded by this pool
MAX_TRANSPORT_THREADS = 4


class DeliveryWorker:
    """Processes one batch of the queue per ``tick()``.

    Args:
        queue: Shared notification queue
        transport: Outbound email transport
        limiter: Rate limiter consulted before each attempt
        window: Outbound email rate-limit window
        delivery: Backoff, timeout and identity settings
        session_factory: Context manager yielding a transactional session
        rand: Source of uniform [0, 1) numbers for jitter
    """

    def __init__(
        self,
        queue: NotificationQueue,
        transport: EmailTransport,
        limiter: RateLimiter,
        window: RateLimitWindow,
        delivery: Optional[DeliveryConfig] = None,
        session_factory: SessionFactory = get_session,
        rand: Callable[[], float] = random.random,
    ):
        delivery = delivery or DeliveryConfig()

        self.queue = queue
        self.transport = transport
        self.limiter = limiter
        self.window = window
        self.identity = delivery.rate_limit_identity
        self.backoff_base = delivery.backoff_base_seconds
        self.backoff_cap = delivery.backoff_cap_seconds
        self.jitter_ratio = delivery.jitter_ratio
        self.transport_timeout = delivery.transport_timeout_seconds

        self._session_factory = session_factory
        self._rand = rand
        self._tick_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=MAX_TRANSPORT_THREADS, thread_name_prefix="email-transport"
        )

    @classmethod
    def from_config(
        cls,
        queue: NotificationQueue,
        transport: EmailTransport,
        limiter: RateLimiter,
        delivery: DeliveryConfig,
        **kwargs,
    ) -> "DeliveryWorker":
        """Build a worker using the limiter's configured outbound-email window."""
        return cls(
            queue=queue,
            transport=transport,
            limiter=limiter,
            window=limiter.window(OUTBOUND_EMAIL_WINDOW),
            delivery=delivery,
            **kwargs,
        )

    def tick(self) -> TickResult:
        """Drain the queue once and attempt every eligible item.

        Items enqueued while the tick runs wait for the next tick. Returns a
        skipped result if another tick is already running. If the tick is cut
        short by an exception, every drained item it did not finish with goes
        back on the queue.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Tick already in progress; skipping", extra={"event": "worker.tick.skipped"})
            return TickResult(skipped=True)

        result = TickResult()
        tick_id = uuid.uuid4().hex[:12]
        self.queue.set_processing(True)
        carry_over = []
        pending = deque()

        try:
            with log_context(tick_id=tick_id):
                batch = self.queue.drain()
                pending.extend(batch)
                now = self.queue.clock()

                while pending:
                    item = pending[0]
                    if item.next_eligible_at > now:
                        result.deferred += 1
                        carry_over.append(pending.popleft())
                        continue

                    if not self.limiter.allow(self.identity, self.window):
                        result.rate_limited += 1
                        carry_over.append(pending.popleft())
                        continue

                    result.attempted += 1
                    outcome = self._process(item)
                    pending.popleft()
                    if outcome == "sent":
                        result.sent += 1
                    elif outcome == "failed":
                        result.failed += 1
                    else:
                        result.retried += 1
                        carry_over.append(item)

                if batch:
                    logger.info(
                        f"Tick processed {len(batch)} queued notifications",
                        extra={"event": "worker.tick.completed", "batch_size": len(batch), **result.as_log_fields()},
                    )
        finally:
            self.queue.requeue(carry_over + list(pending))
            self.queue.set_processing(False)
            self._tick_lock.release()

        return result

    def deliver_once(self, item: NotificationRequest) -> bool:
        """Single attempt outside the queue; the record ends ``sent`` or ``failed``."""
        item.max_attempts = 1
        return self._process(item) == "sent"

    def shutdown(self) -> int:
        """Drop whatever is still queued and release transport threads.

        Waits for a running tick first. Dropped items keep their ``pending``
        ledger rows.

        Returns:
            Number of dropped items
        """
        with self._tick_lock:
            dropped = self.queue.clear()

        if dropped:
            logger.warning(
                f"Shutting down with {len(dropped)} undelivered notifications; they will not be retried",
                extra={
                    "event": "worker.shutdown.dropped",
                    "count": len(dropped),
                    "notification_ids": [item.id for item in dropped],
                },
            )
        self._executor.shutdown(wait=False)
        return len(dropped)

    def _process(self, item: NotificationRequest) -> str:
        """Attempt one item; returns "sent", "retry" or "failed"."""
        item.attempts += 1
        item.last_attempt_at = self.queue.clock()

        with log_context(notification_id=item.id):
            try:
                self._send_with_timeout(item)
            except PermanentDeliveryError as e:
                return self._fail(item, str(e))
            except TransportError as e:
                return self._retry_or_fail(item, str(e))
            except Exception as e:
                logger.error(
                    f"Unexpected error delivering notification: {e}",
                    exc_info=True,
                    extra={"event": "notification.send.error", "error_type": type(e).__name__},
                )
                return self._retry_or_fail(item, f"{type(e).__name__}: {e}")

            logger.info(
                f"Delivered {item.kind.value} notification to {item.recipient}",
                extra={
                    "event": "notification.send.success",
                    "kind": item.kind.value,
                    "attempts": item.attempts,
                },
            )
            self._update_ledger(lambda repo: repo.mark_sent(item.id, attempts=item.attempts))
            return "sent"

    def _send_with_timeout(self, item: NotificationRequest) -> None:
        future = self._executor.submit(self.transport.send, item.recipient, item.email)
        try:
            future.result(timeout=self.transport_timeout)
        except FutureTimeoutError:
            future.cancel()
            raise TransportError(
                f"Transport call exceeded {self.transport_timeout:g}s timeout"
            ) from None

    def _retry_or_fail(self, item: NotificationRequest, error: str) -> str:
        item.last_error = error
        if item.exhausted:
            return self._fail(item, error)

        delay = self.backoff_delay(item.attempts)
        item.next_eligible_at = self.queue.clock() + delay

        logger.warning(
            f"Delivery attempt {item.attempts}/{item.max_attempts} failed; retrying in {delay:.1f}s: {error}",
            extra={
                "event": "notification.send.failure",
                "attempts": item.attempts,
                "max_attempts": item.max_attempts,
                "retry_in_seconds": round(delay, 3),
            },
        )
        self._update_ledger(
            lambda repo: repo.record_attempt_failure(item.id, attempts=item.attempts, error=error)
        )
        return "retry"

    def _fail(self, item: NotificationRequest, error: str) -> str:
        item.last_error = error
        logger.error(
            f"Notification failed after {item.attempts} attempt(s): {error}",
            extra={
                "event": "notification.failed",
                "attempts": item.attempts,
                "kind": item.kind.value,
            },
        )
        self._update_ledger(lambda repo: repo.mark_failed(item.id, attempts=item.attempts, error=error))
        return "failed"

    def backoff_delay(self, attempts: int) -> float:
        """``min(base * 2**attempts, cap)`` stretched by up to ``jitter_ratio``."""
        delay = min(self.backoff_base * (2 ** attempts), self.backoff_cap)
        return delay * (1 + self._rand() * self.jitter_ratio)

    def _update_ledger(self, operation) -> None:
        # Ledger failures must not put a delivered item back in the queue
        try:
            with self._session_factory() as session:
                operation(NotificationRepository(session))
        except PersistenceError as e:
            logger.error(
                f"Failed to update notification ledger: {e}",
                exc_info=True,
                extra={"event": "notification.ledger.update_failed"},
            )
