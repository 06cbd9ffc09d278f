"""Exceptions raised by the application status service."""

from typing import Optional


class ApplicationError(Exception):
    """Base exception for application service errors."""

    pass


class ApplicationNotFoundError(ApplicationError):
    """Raised when an operation names an application that does not exist."""

    def __init__(self, application_id: int):
        self.application_id = application_id
        super().__init__(f"Application {application_id} not found")


class InvalidTransition(ApplicationError):
    """Raised when a status change is not allowed.

    Nothing is written when this is raised: neither the status column nor
    the history ledger.

    Attributes:
        application_id: Application the caller tried to change
        current: Status at the time of the attempt (None if unknown)
        requested: Raw status value the caller asked for
    """

    def __init__(self, message: str, application_id: int, current: Optional[str] = None, requested: Optional[str] = None):
        self.application_id = application_id
        self.current = current
        self.requested = requested
        super().__init__(message)
