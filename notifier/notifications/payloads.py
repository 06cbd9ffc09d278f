"""Template data builders.

These turn domain objects (recipient, job, status change) into the flat,
JSON-serializable dictionaries the templates render and the ledger stores.
Datetimes are passed as ISO 8601 strings.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional

from notifier.domain.models import JobSummary, UserContact
from notifier.domain.status import ApplicationStatus
from notifier.utils.timestamps import ensure_utc


def application_url(app_url: str, application_id: Optional[int]) -> Optional[str]:
    if application_id is None:
        return None
    return f"{app_url}/applications/{application_id}"


def build_received_data(
    user: UserContact,
    job: JobSummary,
    app_url: str,
    application_id: Optional[int] = None,
    applied_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Data for the application_received template."""
    return _compact(
        {
            "applicant_name": user.display_name,
            "job_title": job.title,
            "organization": job.organization or "the hiring organization",
            "location": job.location,
            "applied_at": _iso(applied_at),
            "application_id": application_id,
            "dashboard_url": f"{app_url}/dashboard",
        }
    )


def build_status_data(
    user: UserContact,
    job: JobSummary,
    app_url: str,
    new_status: ApplicationStatus,
    old_status: Optional[ApplicationStatus] = None,
    note: Optional[str] = None,
    application_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Data for the status_update template."""
    return _compact(
        {
            "applicant_name": user.display_name,
            "job_title": job.title,
            "organization": job.organization,
            "new_status": new_status.value,
            "old_status": old_status.value if old_status else None,
            "note": note,
            "application_id": application_id,
            "application_url": application_url(app_url, application_id),
        }
    )


def build_interview_data(
    user: UserContact,
    job: JobSummary,
    app_url: str,
    interview_date: datetime,
    location: Optional[str] = None,
    interview_type: Optional[str] = None,
    application_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Data for the interview_scheduled template."""
    return _compact(
        {
            "applicant_name": user.display_name,
            "job_title": job.title,
            "organization": job.organization,
            "interview_date": _iso(interview_date),
            "location": location,
            "interview_type": interview_type,
            "application_id": application_id,
            "application_url": application_url(app_url, application_id),
        }
    )


def build_digest_data(
    user: UserContact, jobs: Iterable[Mapping[str, Any]], app_url: str
) -> Dict[str, Any]:
    """Data for the job_alert_digest template.

    Each job mapping needs a ``title``; ``organization``, ``location``,
    ``description``, ``id`` and ``url`` are optional.
    """
    return {
        "user_name": user.display_name,
        "jobs": [dict(job) for job in jobs],
        "portal_url": f"{app_url}/jobs",
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value is not None else None


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    # Absent optional fields are left out; the renderer fills them with None
    return {key: value for key, value in data.items() if value is not None}
