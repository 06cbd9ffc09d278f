"""Outbound email transports.

A transport delivers one rendered email to one recipient. It raises
TransportError for failures worth retrying and PermanentDeliveryError for
failures that retrying cannot fix; the worker decides what to do with each.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests
from email_validator import EmailNotValidError, validate_email

from notifier.logging import get_logger

from .models import PermanentDeliveryError, RenderedEmail, TransportError

logger = get_logger(__name__, component="transport")

USER_AGENT = "ApplicationNotifier/1.0"


def validate_recipient(recipient: str) -> str:
    """Return the normalized address.

    Raises:
        PermanentDeliveryError: If the address is malformed
    """
    try:
        return validate_email(recipient, check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise PermanentDeliveryError(f"Invalid recipient address {recipient!r}: {e}") from e


class EmailTransport(ABC):
    """Provider boundary: send one message or raise."""

    name = "abstract"

    @abstractmethod
    def send(self, recipient: str, email: RenderedEmail) -> None:
        """Deliver ``email`` to ``recipient``.

        Raises:
            TransportError: Retryable failure
            PermanentDeliveryError: Non-retryable failure
        """

    def close(self) -> None:
        pass


class HTTPEmailTransport(EmailTransport):
    """Transactional email provider reached over HTTP.

    Sends ``POST {api_url}`` with a JSON body
    ``{to, from: {email, name}, subject, html, text}`` and a bearer token.

    Attributes:
        timeout: HTTP timeout in seconds for one request
    """

    name = "http"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_address: str,
        from_name: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "User-Agent": USER_AGENT,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def send(self, recipient: str, email: RenderedEmail) -> None:
        to_address = validate_recipient(recipient)
        body = {
            "to": to_address,
            "from": {"email": self.from_address, "name": self.from_name},
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
        }

        try:
            response = self._session.post(self.api_url, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise TransportError(
                f"Email provider timed out after {self.timeout} seconds"
            ) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Email provider request failed: {e}") from e

        status = response.status_code
        if 200 <= status < 300:
            logger.debug(
                "Email provider accepted message",
                extra={"event": "transport.http.accepted", "status_code": status},
            )
            return

        detail = _error_detail(response)
        retryable = status == 429 or status >= 500
        logger.log(
            logging.WARNING if retryable else logging.ERROR,
            f"Email provider returned HTTP {status}: {detail}",
            extra={
                "event": "transport.http.retryable_error" if retryable else "transport.http.rejected",
                "status_code": status,
            },
        )

        message = f"HTTP {status} from email provider: {detail}"
        if retryable:
            raise TransportError(message, status_code=status)
        raise PermanentDeliveryError(message, status_code=status)

    def close(self) -> None:
        self._session.close()


class ConsoleTransport(EmailTransport):
    """Logs messages instead of sending them.

    Used when email is disabled or no provider key is configured; every
    delivery succeeds.
    """

    name = "console"

    def send(self, recipient: str, email: RenderedEmail) -> None:
        logger.info(
            f"Email delivery disabled; would send '{email.subject}' to {recipient}",
            extra={
                "event": "transport.console.sent",
                "recipient": recipient,
                "subject": email.subject,
                "text_length": len(email.text),
            },
        )


def build_transport(env_config, email_config, timeout: float = 10.0) -> EmailTransport:
    """Choose the transport from environment and email settings."""
    if env_config.uses_http_transport:
        return HTTPEmailTransport(
            api_url=env_config.email_api_url,
            api_key=env_config.email_api_key,
            from_address=email_config.from_address,
            from_name=email_config.from_name,
            timeout=timeout,
        )

    logger.warning(
        "Email provider not configured or disabled; using console transport",
        extra={"event": "transport.console.selected"},
    )
    return ConsoleTransport()


def _error_detail(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or response.reason or "").strip()[:200]
    if isinstance(payload, dict):
        for key in ("message", "error", "detail"):
            if payload.get(key):
                return str(payload[key])[:200]
    return str(payload)[:200]
