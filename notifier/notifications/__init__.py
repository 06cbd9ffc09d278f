"""Asynchronous email notification pipeline.

- NotificationService: preference-aware entry point for triggers
- NotificationQueue: in-memory delayed queue (render + ledger row at enqueue)
- DeliveryWorker: periodic drain with rate limiting, timeout and backoff
- TemplateRenderer: Jinja2 rendering of subject, HTML and text bodies
- HTTPEmailTransport / ConsoleTransport: outbound providers
"""

from .models import (
    NotificationError,
    NotificationRequest,
    PermanentDeliveryError,
    QueueStatus,
    RenderedEmail,
    TemplateRenderError,
    TickResult,
    TransportError,
)
from .queue import NotificationQueue
from .service import NotificationService
from .templates import TemplateRenderer, html_to_text, insert_footer
from .transport import (
    ConsoleTransport,
    EmailTransport,
    HTTPEmailTransport,
    build_transport,
    validate_recipient,
)
from .worker import DeliveryWorker

__all__ = [
    # Services
    "NotificationService",
    "NotificationQueue",
    "DeliveryWorker",
    # Models and results
    "NotificationRequest",
    "RenderedEmail",
    "QueueStatus",
    "TickResult",
    # Exceptions
    "NotificationError",
    "TemplateRenderError",
    "TransportError",
    "PermanentDeliveryError",
    # Components
    "TemplateRenderer",
    "EmailTransport",
    "HTTPEmailTransport",
    "ConsoleTransport",
    # Utilities
    "build_transport",
    "validate_recipient",
    "html_to_text",
    "insert_footer",
]
