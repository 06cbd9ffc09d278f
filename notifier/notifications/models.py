"""Data models and exceptions for the notification pipeline.

This module defines the queue item, rendering and tick result types, and the
exceptions raised between the renderer, the transports and the worker.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from notifier.domain.models import NotificationKind


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class TemplateRenderError(NotificationError):
    """Raised when a template is unknown or required data is missing.

    Surfaces synchronously from enqueue; it is a programming error and is
    never retried.
    """

    pass


class TransportError(NotificationError):
    """Retryable delivery failure (network error, timeout, 429 or 5xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentDeliveryError(NotificationError):
    """Delivery failure that retrying cannot fix (bad address, 4xx rejection)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class RenderedEmail:
    """Output of TemplateRenderer.render for one (kind, data) pair."""

    subject: str
    html: str
    text: str


@dataclass
class NotificationRequest:
    """One pending or in-flight delivery held by the in-memory queue.

    Attributes:
        id: Generated id, shared with the persisted NotificationRecord
        recipient: Destination address
        kind: Notification kind
        email: Rendered subject and bodies
        payload: Template data kept for audit
        user_id: Owning user, if known
        attempts: Delivery attempts made so far
        max_attempts: Attempts allowed before the item is marked failed
        next_eligible_at: Queue clock time before which the item is not attempted
        last_error: Error from the most recent failed attempt
    """

    id: str
    recipient: str
    kind: NotificationKind
    email: RenderedEmail
    payload: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[int] = None
    attempts: int = 0
    max_attempts: int = 3
    next_eligible_at: float = 0.0
    last_error: Optional[str] = None
    last_attempt_at: Optional[float] = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


@dataclass(frozen=True)
class QueueStatus:
    """Queue depth snapshot."""

    queued: int
    processing: bool


@dataclass
class TickResult:
    """Counts from one DeliveryWorker tick."""

    attempted: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    rate_limited: int = 0
    deferred: int = 0
    skipped: bool = False

    def as_log_fields(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "sent": self.sent,
            "retried": self.retried,
            "failed": self.failed,
            "rate_limited": self.rate_limited,
            "deferred": self.deferred,
        }
