"""Domain models and the application status state machine."""

from .models import (
    KIND_CATEGORIES,
    Application,
    EmailPreferences,
    JobSummary,
    NotificationKind,
    NotificationRecord,
    NotificationStatus,
    PreferenceCategory,
    StatusHistoryEntry,
    UserContact,
)
from .status import (
    INITIAL_STATUS,
    TERMINAL_STATUSES,
    ApplicationStatus,
    can_transition,
    coerce_status,
    parse_legacy_status,
    transition_error,
)

__all__ = [
    "Application",
    "StatusHistoryEntry",
    "NotificationRecord",
    "NotificationKind",
    "NotificationStatus",
    "EmailPreferences",
    "PreferenceCategory",
    "KIND_CATEGORIES",
    "UserContact",
    "JobSummary",
    "ApplicationStatus",
    "INITIAL_STATUS",
    "TERMINAL_STATUSES",
    "can_transition",
    "coerce_status",
    "parse_legacy_status",
    "transition_error",
]
