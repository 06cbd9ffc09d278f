"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError. A PersistenceError
raised inside ``get_session()`` rolls back the whole unit of work, which is
what keeps a status change and its history entry together.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when the database cannot be initialized or reached.

    Examples:
    - Invalid database URL
    - Database file not accessible
    - get_session() called before init_database()
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when an operation requires a record that does not exist.

    Lookups that may legitimately miss return None instead.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when a database constraint is violated.

    Examples:
    - A second application by the same user for the same job
    - Foreign key pointing at a missing application
    """

    pass


class DuplicateApplicationError(DataIntegrityError):
    """Raised when a user applies to the same job twice."""

    def __init__(self, user_id: int, job_id: int):
        self.user_id = user_id
        self.job_id = job_id
        super().__init__(f"User {user_id} has already applied to job {job_id}")


class HistoryOrderError(DataIntegrityError):
    """Raised when a history entry is not a valid step from the latest one.

    The ledger refuses entries after a terminal status, so a transition that
    lost a race with another writer fails here instead of being recorded.
    """

    pass
