"""Persistence layer for applications, status history and notification records.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - ApplicationRepository: applications and row locking for transitions
    - StatusHistoryRepository: append-only transition ledger
    - NotificationRepository: notification audit ledger
    - PreferencesRepository: per-user email preferences
    - UserRepository, JobRepository: collaborator tables

    # Exceptions
    - PersistenceError: Base exception for all persistence errors
    - DatabaseConnectionError: Database connection/initialization failures
    - RecordNotFoundError: Required record not found
    - DataIntegrityError: Constraint violations
    - DuplicateApplicationError: Second application for the same job
    - HistoryOrderError: History entry that does not follow the latest one

Example usage:
    >>> from notifier.persistence import init_database, get_session, ApplicationRepository
    >>> init_database("sqlite:///./data/notifier.db")
    >>> with get_session() as session:
    ...     application = ApplicationRepository(session).get(42)
"""

# Database initialization and session management
from .database import (
    DEFAULT_DATABASE_URL,
    SessionFactory,
    close_database,
    get_engine,
    get_session,
    init_database,
)

# Exceptions
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    DuplicateApplicationError,
    HistoryOrderError,
    PersistenceError,
    RecordNotFoundError,
)

# Repository classes
from .repositories import (
    ApplicationRepository,
    JobRepository,
    NotificationRepository,
    PreferencesRepository,
    StatusHistoryRepository,
    UserRepository,
)

__all__ = [
    # Database functions
    "DEFAULT_DATABASE_URL",
    "SessionFactory",
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "ApplicationRepository",
    "StatusHistoryRepository",
    "NotificationRepository",
    "PreferencesRepository",
    "UserRepository",
    "JobRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
    "DuplicateApplicationError",
    "HistoryOrderError",
]
