"""In-memory delayed queue of pending deliveries.

Items are kept in a heap keyed by (next_eligible_at, sequence). The sequence
number preserves enqueue order among items that become eligible at the same
time, so one recipient's notifications are attempted in the order they were
enqueued unless a retry is still backing off.

The queue is not persisted: items still queued when the process stops are
lost, while their ledger rows remain ``pending``.
"""

import heapq
import itertools
import threading
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from notifier.domain.models import NotificationKind
from notifier.logging import get_logger
from notifier.persistence import NotificationRepository, SessionFactory, get_session

from .models import NotificationRequest, QueueStatus
from .templates import TemplateRenderer

logger = get_logger(__name__, component="queue")


class NotificationQueue:
    """Thread-safe delayed queue shared by the enqueue path and the worker.

    Args:
        renderer: Renders (kind, data) at enqueue time
        max_attempts: Default attempt budget per item
        clock: Monotonic clock used for eligibility times
        session_factory: Context manager yielding a transactional session
    """

    def __init__(
        self,
        renderer: TemplateRenderer,
        max_attempts: int = 3,
        clock: Callable[[], float] = time.monotonic,
        session_factory: SessionFactory = get_session,
    ):
        self.renderer = renderer
        self.max_attempts = max_attempts
        self.clock = clock
        self._session_factory = session_factory

        self._lock = threading.Lock()
        self._heap: List[Tuple[float, int, NotificationRequest]] = []
        self._sequence = itertools.count()
        self._processing = False

    def prepare(
        self,
        recipient: str,
        kind: Union[NotificationKind, str],
        data: Mapping[str, Any],
        user_id: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ) -> NotificationRequest:
        """Render and persist a notification without queueing it.

        Raises:
            TemplateRenderError: If rendering fails (nothing is persisted)
            PersistenceError: If the ledger row cannot be written
        """
        template_data: Dict[str, Any] = dict(data)
        template_data.setdefault("recipient_email", recipient)
        rendered = self.renderer.render(kind, template_data)
        kind = NotificationKind(kind)

        request = NotificationRequest(
            id=uuid.uuid4().hex,
            recipient=recipient,
            kind=kind,
            email=rendered,
            payload=template_data,
            user_id=user_id,
            max_attempts=max_attempts or self.max_attempts,
            next_eligible_at=self.clock(),
        )

        with self._session_factory() as session:
            NotificationRepository(session).create_pending(
                notification_id=request.id,
                kind=kind,
                recipient=recipient,
                subject=rendered.subject,
                payload=template_data,
                user_id=user_id,
            )

        return request

    def enqueue(
        self,
        recipient: str,
        kind: Union[NotificationKind, str],
        data: Mapping[str, Any],
        user_id: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ) -> str:
        """Render, record as ``pending`` and queue a notification.

        Never touches the network; returns as soon as the item is queued.

        Returns:
            Request id (also the NotificationRecord id)

        Raises:
            TemplateRenderError: If rendering fails
            PersistenceError: If the ledger row cannot be written
        """
        request = self.prepare(recipient, kind, data, user_id=user_id, max_attempts=max_attempts)
        self._push(request)

        logger.info(
            f"Queued {request.kind.value} notification for {recipient}",
            extra={
                "event": "notification.enqueued",
                "notification_id": request.id,
                "kind": request.kind.value,
                "user_id": user_id,
            },
        )
        return request.id

    def drain(self) -> List[NotificationRequest]:
        """Remove and return every queued item in (eligibility, enqueue) order."""
        with self._lock:
            entries = sorted(self._heap)
            self._heap = []
        return [item for _, _, item in entries]

    def requeue(self, items: Iterable[NotificationRequest]) -> None:
        """Push items back, keeping their current ``next_eligible_at``."""
        with self._lock:
            for item in items:
                heapq.heappush(self._heap, (item.next_eligible_at, next(self._sequence), item))

    def clear(self) -> List[NotificationRequest]:
        """Drop every queued item and return what was dropped."""
        return self.drain()

    def set_processing(self, processing: bool) -> None:
        with self._lock:
            self._processing = processing

    def status(self) -> QueueStatus:
        with self._lock:
            return QueueStatus(queued=len(self._heap), processing=self._processing)

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def _push(self, item: NotificationRequest) -> None:
        with self._lock:
            heapq.heappush(self._heap, (item.next_eligible_at, next(self._sequence), item))
