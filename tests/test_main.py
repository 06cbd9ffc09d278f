"""Unit tests for the main entry point.

Tests the CLI including:
- Log level priority (CLI > env > config)
- Digest file parsing
- Runtime wiring
- --drain-once with the console transport
- Exit codes for configuration errors
"""

from unittest.mock import patch

import pytest

from notifier.config import AppConfig
from notifier.config.environment import EnvironmentConfig
from notifier.config.exceptions import ConfigurationError
from notifier.domain.models import EmailPreferences, NotificationStatus
from notifier.main import build_runtime, load_digest_file, load_runtime_config, main
from notifier.notifications import ConsoleTransport
from notifier.persistence import NotificationRepository, PreferencesRepository, get_session, init_database
from notifier.ratelimit import InMemoryCounterStore

ENV_VARS = [
    "EMAIL_API_URL",
    "EMAIL_API_KEY",
    "EMAIL_ENABLED",
    "EMAIL_FROM_ADDRESS",
    "EMAIL_FROM_NAME",
    "APP_URL",
    "REDIS_URL",
    "DATABASE_URL",
    "LOG_LEVEL",
    "ENVIRONMENT",
]


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    """Run from an empty directory with a throwaway database and no provider."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'notifier-test.db'}")
    return tmp_path


class TestLoadRuntimeConfig:
    """Test suite for load_runtime_config helper."""

    def test_cli_level_wins(self, cli_env, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        _, env_config = load_runtime_config(None, "DEBUG")
        assert env_config.log_level == "DEBUG"

    def test_environment_level_beats_config(self, cli_env, monkeypatch):
        (cli_env / "config.yaml").write_text("logging:\n  level: ERROR\n")
        monkeypatch.setenv("LOG_LEVEL", "warning")
        _, env_config = load_runtime_config(None, None)
        assert env_config.log_level == "WARNING"

    def test_config_level_used_as_fallback(self, cli_env):
        (cli_env / "config.yaml").write_text("logging:\n  level: ERROR\n")
        _, env_config = load_runtime_config(None, None)
        assert env_config.log_level == "ERROR"


class TestLoadDigestFile:
    """Test suite for digest file parsing."""

    def test_valid_file(self, tmp_path):
        path = tmp_path / "digest.yaml"
        path.write_text(
            """
digests:
  - user_id: 1
    jobs:
      - {title: "Maths Teacher", organization: "Central High School", id: 7}
  - user_id: 2
"""
        )
        assert load_digest_file(path) == {
            1: [{"title": "Maths Teacher", "organization": "Central High School", "id": 7}],
            2: [],
        }

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_digest_file(tmp_path / "absent.yaml")

    def test_missing_digests_list(self, tmp_path):
        path = tmp_path / "digest.yaml"
        path.write_text("users: []\n")
        with pytest.raises(ConfigurationError, match="'digests' list"):
            load_digest_file(path)

    def test_entry_without_user_id(self, tmp_path):
        path = tmp_path / "digest.yaml"
        path.write_text("digests:\n  - jobs: []\n")
        with pytest.raises(ConfigurationError, match="missing user_id"):
            load_digest_file(path)


def test_build_runtime_uses_memory_store_and_console(database):
    runtime = build_runtime(AppConfig(), EnvironmentConfig())
    try:
        assert isinstance(runtime.transport, ConsoleTransport)
        assert isinstance(runtime.limiter.store, InMemoryCounterStore)
        assert runtime.worker.window.limit == 10
        assert runtime.notifications.worker is runtime.worker
    finally:
        runtime.close()


class TestMain:
    """Test suite for main()."""

    def test_drain_once_with_empty_queue(self, cli_env):
        assert main(["--drain-once"]) == 0

    def test_digest_is_queued_and_delivered(self, cli_env, candidate):
        with get_session() as session:
            PreferencesRepository(session).upsert(EmailPreferences(user_id=candidate.id, weekly_digest=True))

        digest = cli_env / "digest.yaml"
        digest.write_text(f"digests:\n  - user_id: {candidate.id}\n    jobs:\n      - title: Maths Teacher\n")

        assert main(["--digest", str(digest), "--drain-once"]) == 0

        init_database(f"sqlite:///{cli_env / 'notifier-test.db'}")
        with get_session() as session:
            records = NotificationRepository(session).list_for_user(candidate.id)
        assert [r.status for r in records] == [NotificationStatus.SENT]
        assert records[0].subject == "Weekly Job Alert - 1 New Opportunity"

    def test_configuration_error_exits_1(self, cli_env, capsys):
        assert main(["--config", "missing.yaml"]) == 1
        assert "Configuration Error" in capsys.readouterr().err

    def test_unexpected_error_exits_1(self, cli_env, capsys):
        with patch("notifier.main.init_database", side_effect=RuntimeError("disk full")):
            assert main(["--drain-once"]) == 1
        assert "Fatal error: disk full" in capsys.readouterr().err

    def test_help_explains_daemon_queue_is_in_process(self, cli_env, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--help"])

        assert exc_info.value.code == 0
        help_text = " ".join(capsys.readouterr().out.split())
        assert "daemon over an in-process queue" in help_text
        assert "embed build_runtime()" in help_text
