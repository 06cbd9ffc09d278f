"""Template rendering for email notifications using Jinja2.

Each notification kind has a subject template, an HTML body template and
optionally an explicit plain-text template under ``email_templates/``:

    <kind>_subject.j2
    <kind>.html.j2
    <kind>.txt.j2      (optional; otherwise derived from the HTML)

Rendering is a pure function of (kind, data, app_url): the same inputs always
produce byte-identical output.
"""

import html as html_lib
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from jinja2 import (
    Environment,
    PackageLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from notifier.domain.models import NotificationKind
from notifier.domain.status import parse_legacy_status
from notifier.utils.timestamps import parse_iso_datetime

from .models import RenderedEmail, TemplateRenderError

logger = logging.getLogger(__name__)

DESCRIPTION_PREVIEW_LENGTH = 150

# kind -> (required fields, optional fields)
KIND_FIELDS: Dict[NotificationKind, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    NotificationKind.APPLICATION_RECEIVED: (
        ("applicant_name", "job_title", "organization"),
        ("location", "applied_at", "application_id", "dashboard_url"),
    ),
    NotificationKind.STATUS_UPDATE: (
        ("applicant_name", "job_title", "new_status"),
        ("organization", "old_status", "note", "application_url"),
    ),
    NotificationKind.INTERVIEW_SCHEDULED: (
        ("applicant_name", "job_title", "interview_date"),
        ("organization", "location", "interview_type", "application_url"),
    ),
    NotificationKind.JOB_ALERT_DIGEST: (
        ("user_name", "jobs"),
        ("portal_url",),
    ),
}

_BLOCK_CLOSERS = re.compile(
    r"</(p|div|h[1-6]|tr|table|ul|ol|section|header|footer|blockquote)\s*>",
    re.IGNORECASE,
)
_LINK = re.compile(r"<a\s[^>]*?href\s*=\s*[\"']([^\"']*)[\"'][^>]*>(.*?)</a\s*>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")


class TemplateRenderer:
    """Renders (kind, data) into subject, HTML and plain-text bodies.

    Every HTML body gets the unsubscribe/preferences footer. The recipient
    used for the unsubscribe link is read from ``data["recipient_email"]``.

    Args:
        app_url: Base URL for preference and unsubscribe links
        template_dir: Directory name within the notifier.notifications package
    """

    def __init__(self, app_url: str = "http://localhost:5000", template_dir: str = "email_templates"):
        self.app_url = app_url.rstrip("/")
        self.env = Environment(
            loader=PackageLoader("notifier.notifications", template_dir),
            autoescape=select_autoescape(
                enabled_extensions=("html.j2",), default_for_string=False, default=False
            ),
            undefined=StrictUndefined,
            keep_trailing_newline=False,
        )
        self.env.filters["truncate_chars"] = _truncate

        logger.debug(f"Initialized TemplateRenderer with templates from {template_dir}")

    def render(self, kind: Union[NotificationKind, str], data: Mapping[str, Any]) -> RenderedEmail:
        """Render all variants of a notification.

        Args:
            kind: Notification kind (enum member or its value)
            data: Template data; required fields must be present and not None

        Returns:
            RenderedEmail with single-line subject, HTML (with footer) and text

        Raises:
            TemplateRenderError: If the kind is unknown, required data is
                missing or a template fails to render
        """
        kind = _coerce_kind(kind)
        context = self._build_context(kind, data)

        try:
            subject_template = self.env.get_template(f"{kind.value}_subject.j2")
            html_template = self.env.get_template(f"{kind.value}.html.j2")
            footer_template = self.env.get_template("footer.html.j2")

            subject = " ".join(subject_template.render(context).split())
            footer = footer_template.render(context)
            html_body = insert_footer(html_template.render(context), footer)

            text_template = self._optional_template(f"{kind.value}.txt.j2")
            if text_template is not None:
                text_body = _tidy_text(
                    text_template.render(context) + "\n\n" + html_to_text(footer)
                )
            else:
                text_body = html_to_text(html_body)

        except TemplateError as e:
            error_msg = f"Template rendering failed for {kind.value}: {e}"
            logger.error(error_msg, exc_info=True)
            raise TemplateRenderError(error_msg) from e

        logger.debug(f"Rendered {kind.value} email: {subject}")
        return RenderedEmail(subject=subject, html=html_body, text=text_body)

    def _optional_template(self, name: str):
        try:
            return self.env.get_template(name)
        except TemplateNotFound:
            return None

    def _build_context(self, kind: NotificationKind, data: Mapping[str, Any]) -> Dict[str, Any]:
        required, optional = KIND_FIELDS[kind]

        missing = [name for name in required if data.get(name) is None]
        if missing:
            raise TemplateRenderError(
                f"Missing required data for {kind.value}: {', '.join(missing)}"
            )

        context: Dict[str, Any] = {name: None for name in optional}
        context.update(data)
        context.setdefault("recipient_email", None)
        context["app_url"] = self.app_url
        context.update(self._footer_links(context["recipient_email"]))

        if kind == NotificationKind.STATUS_UPDATE:
            new_status = parse_legacy_status(str(context["new_status"]))
            context["new_status_key"] = new_status.value
            context["new_status_label"] = new_status.label
            old = context.get("old_status")
            context["old_status_label"] = parse_legacy_status(str(old)).label if old else None
        elif kind == NotificationKind.INTERVIEW_SCHEDULED:
            context["interview_day"], context["interview_time"] = _format_when(
                context["interview_date"]
            )
        elif kind == NotificationKind.APPLICATION_RECEIVED:
            context["applied_on"] = (
                _format_when(context["applied_at"])[0] if context["applied_at"] else None
            )
        elif kind == NotificationKind.JOB_ALERT_DIGEST:
            context["jobs"] = self._normalize_jobs(context["jobs"])

        return context

    def _footer_links(self, recipient: Optional[str]) -> Dict[str, str]:
        unsubscribe_url = f"{self.app_url}/unsubscribe"
        if recipient:
            unsubscribe_url += f"?email={quote(recipient, safe='@')}"
        return {
            "unsubscribe_url": unsubscribe_url,
            "preferences_url": f"{self.app_url}/profile/notifications",
        }

    def _normalize_jobs(self, jobs: Any) -> List[Dict[str, Any]]:
        if not isinstance(jobs, (list, tuple)):
            raise TemplateRenderError("job_alert_digest 'jobs' must be a list")

        normalized = []
        for index, job in enumerate(jobs):
            if not isinstance(job, Mapping) or not job.get("title"):
                raise TemplateRenderError(f"job_alert_digest job #{index} is missing a title")
            url = job.get("url")
            if not url and job.get("id") is not None:
                url = f"{self.app_url}/jobs/{job['id']}"
            normalized.append(
                {
                    "title": job["title"],
                    "organization": job.get("organization"),
                    "location": job.get("location"),
                    "description": _truncate(job.get("description")),
                    "url": url,
                }
            )
        return normalized


def insert_footer(html_body: str, footer: str) -> str:
    """Place the footer before ``</body>``, else before the last ``</div>``, else at the end."""
    lowered = html_body.lower()

    index = lowered.rfind("</body>")
    if index == -1:
        index = lowered.rfind("</div>")
    if index == -1:
        return html_body + footer

    return html_body[:index] + footer + html_body[index:]


def html_to_text(html_body: str) -> str:
    """Derive a plain-text body from HTML without changing its wording.

    Links keep their target as ``label (url)``. Output depends only on the input.
    """
    text = re.sub(r"<(style|script|head|title)\b.*?</\1\s*>", "", html_body, flags=re.IGNORECASE | re.DOTALL)
    text = _LINK.sub(_link_to_text, text)
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"\s*<li\b[^>]*>", "\n- ", text, flags=re.IGNORECASE)
    text = _BLOCK_CLOSERS.sub("\n", text)
    text = _TAG.sub("", text)
    text = html_lib.unescape(text)
    return _tidy_text(text)


def _link_to_text(match: "re.Match") -> str:
    url = match.group(1).strip()
    label = " ".join(_TAG.sub("", match.group(2)).split())
    if not label or label == url:
        return url
    return f"{label} ({url})"


def _tidy_text(text: str) -> str:
    lines = [" ".join(line.split()) for line in text.replace("\r", "").split("\n")]
    text = "\n".join(lines).strip()
    return re.sub(r"\n{3,}", "\n\n", text)


def _truncate(value: Optional[str], length: int = DESCRIPTION_PREVIEW_LENGTH) -> Optional[str]:
    if not value:
        return None
    value = " ".join(str(value).split())
    if len(value) <= length:
        return value
    return value[:length].rstrip() + "..."


def _format_when(value: Union[datetime, str]) -> Tuple[str, Optional[str]]:
    """Split a datetime into display date and time; unparseable strings pass through."""
    parsed = parse_iso_datetime(value)
    if parsed is None:
        return str(value), None
    return parsed.strftime("%A, %d %B %Y"), parsed.strftime("%H:%M UTC")


def _coerce_kind(kind: Union[NotificationKind, str]) -> NotificationKind:
    if isinstance(kind, NotificationKind):
        return kind
    try:
        return NotificationKind(kind)
    except ValueError:
        raise TemplateRenderError(f"Unknown notification kind: {kind!r}") from None
