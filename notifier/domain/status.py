"""Application status enumeration and transition rules.

The state machine is deliberately permissive: any non-terminal status may move
to any other non-initial status, so reviewers can move an application back from
``shortlisted`` to ``under_review``. Only ``accepted`` and ``rejected`` are
terminal, and ``pending`` is only ever the initial status.

Free-text values written by older versions of the tracker ("Applied",
"Interview Scheduled", ...) are mapped into the enumeration by
``parse_legacy_status`` at the storage boundary; nothing else in the service
handles raw strings.
"""

import re
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union


class ApplicationStatus(str, Enum):
    """Closed set of application statuses."""

    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    SHORTLISTED = "shortlisted"
    REJECTED = "rejected"
    ACCEPTED = "accepted"

    @property
    def label(self) -> str:
        """Human-readable label (e.g. "Under Review")."""
        return self.value.replace("_", " ").title()

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


INITIAL_STATUS = ApplicationStatus.PENDING

TERMINAL_STATUSES: FrozenSet[ApplicationStatus] = frozenset(
    {ApplicationStatus.ACCEPTED, ApplicationStatus.REJECTED}
)

# Normalized (lowercase, single-spaced) legacy text -> status
_LEGACY_STATUS_MAP: Dict[str, ApplicationStatus] = {
    "applied": ApplicationStatus.PENDING,
    "submitted": ApplicationStatus.PENDING,
    "new": ApplicationStatus.PENDING,
    "pending": ApplicationStatus.PENDING,
    "in review": ApplicationStatus.UNDER_REVIEW,
    "under review": ApplicationStatus.UNDER_REVIEW,
    "reviewing": ApplicationStatus.UNDER_REVIEW,
    "screening": ApplicationStatus.UNDER_REVIEW,
    "interview scheduled": ApplicationStatus.SHORTLISTED,
    "interviewing": ApplicationStatus.SHORTLISTED,
    "interview": ApplicationStatus.SHORTLISTED,
    "shortlisted": ApplicationStatus.SHORTLISTED,
    # An outstanding offer still awaits the candidate's answer
    "offer": ApplicationStatus.SHORTLISTED,
    "offered": ApplicationStatus.SHORTLISTED,
    "offer received": ApplicationStatus.SHORTLISTED,
    "offer extended": ApplicationStatus.SHORTLISTED,
    "offer accepted": ApplicationStatus.ACCEPTED,
    "hired": ApplicationStatus.ACCEPTED,
    "accepted": ApplicationStatus.ACCEPTED,
    "rejected": ApplicationStatus.REJECTED,
    "declined": ApplicationStatus.REJECTED,
    "offer declined": ApplicationStatus.REJECTED,
    "not selected": ApplicationStatus.REJECTED,
    "withdrawn": ApplicationStatus.REJECTED,
}


def parse_legacy_status(raw: Optional[str]) -> ApplicationStatus:
    """Normalize a stored status value into the closed enumeration.

    Accepts current enum values ("under_review") and legacy free-text values
    ("Interview Scheduled", " APPLIED "). Unrecognized or empty values map to
    ``pending``.

    Args:
        raw: Stored status string (may be None)

    Returns:
        ApplicationStatus member

    Example:
        >>> parse_legacy_status("Interview Scheduled")
        <ApplicationStatus.SHORTLISTED: 'shortlisted'>
        >>> parse_legacy_status("something odd")
        <ApplicationStatus.PENDING: 'pending'>
    """
    if raw is None:
        return INITIAL_STATUS

    cleaned = raw.strip().lower()
    try:
        return ApplicationStatus(cleaned)
    except ValueError:
        pass

    normalized = re.sub(r"[\s_\-]+", " ", cleaned)
    return _LEGACY_STATUS_MAP.get(normalized, INITIAL_STATUS)


def coerce_status(value: Union[ApplicationStatus, str]) -> ApplicationStatus:
    """Convert a caller-supplied status to the enum, strictly.

    Unlike ``parse_legacy_status`` this does not guess: anything that is not an
    enum member or an exact enum value raises ValueError.
    """
    if isinstance(value, ApplicationStatus):
        return value
    return ApplicationStatus(value)


def can_transition(current: ApplicationStatus, target: ApplicationStatus) -> bool:
    """Check whether ``current -> target`` is a valid step of the state machine."""
    if current in TERMINAL_STATUSES:
        return False
    return target != INITIAL_STATUS


def transition_error(current: ApplicationStatus, target: ApplicationStatus) -> Optional[str]:
    """Explain why ``current -> target`` is invalid, or return None if it is valid."""
    if current in TERMINAL_STATUSES:
        return f"Application is already {current.value}; {current.value} is a terminal status"
    if target == INITIAL_STATUS:
        return f"Cannot move an application back to {INITIAL_STATUS.value}"
    return None
