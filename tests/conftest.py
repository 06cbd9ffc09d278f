"""Shared fixtures: a fresh SQLite database per test plus seeded users and jobs."""

import logging

import pytest

from notifier.logging.context import clear_log_context
from notifier.persistence import (
    JobRepository,
    UserRepository,
    close_database,
    get_session,
    init_database,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo configure_logging() calls so later tests see pytest's handlers."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    clear_log_context()
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    clear_log_context()


@pytest.fixture
def database(tmp_path):
    """Initialize a file-backed SQLite database for one test."""
    db_url = f"sqlite:///{tmp_path / 'notifier-test.db'}"
    init_database(db_url)
    yield db_url
    close_database()


@pytest.fixture
def candidate(database):
    with get_session() as session:
        return UserRepository(session).create("ann@example.com", full_name="Ann Smith")


@pytest.fixture
def reviewer(database):
    with get_session() as session:
        return UserRepository(session).create("hr@example.com", full_name="Hiring Team")


@pytest.fixture
def job(database):
    with get_session() as session:
        return JobRepository(session).create(
            title="Maths Teacher",
            organization="Central High School",
            location="Leeds",
            description="Teach GCSE and A-level mathematics.",
        )
