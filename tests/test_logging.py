"""Tests for logging configuration, formatters and context propagation."""

import io
import json
import logging
import threading

import pytest

from notifier.logging import ComponentLoggerAdapter, get_logger
from notifier.logging.config import (
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from notifier.logging.context import get_log_context, log_context, push_log_context, pop_log_context


@pytest.fixture
def logger():
    """Create a test logger with no handlers."""
    test_logger = logging.getLogger("notifier.tests")
    test_logger.setLevel(logging.DEBUG)
    test_logger.handlers.clear()
    yield test_logger
    test_logger.handlers.clear()


def _record(logger, **extra):
    return logger.makeRecord(
        "notifier.tests", logging.INFO, "test.py", 1, "Queued notification", (), None, extra=extra
    )


class TestFormatters:
    """Tests for JSON and key-value formatters."""

    def test_json_formatter_includes_extras(self, logger):
        record = _record(logger, event="notification.enqueued", attempts=2, processing=False)
        log_obj = json.loads(JSONFormatter().format(record))

        assert log_obj["level"] == "INFO"
        assert log_obj["message"] == "Queued notification"
        assert log_obj["event"] == "notification.enqueued"
        assert log_obj["attempts"] == 2
        assert log_obj["processing"] is False
        assert log_obj["timestamp"].endswith("Z")

    def test_json_formatter_redacts_secrets(self, logger):
        record = _record(logger, api_key="sk-live-123", event="transport.configured")
        log_obj = json.loads(JSONFormatter().format(record))
        assert log_obj["api_key"] == "***"

    def test_key_value_formatter_quotes_values_with_spaces(self, logger):
        formatter = KeyValueFormatter("%(levelname)s %(message)s")
        record = _record(logger, event="worker.tick.completed", error="HTTP 503 from provider")
        output = formatter.format(record)

        assert output.startswith("INFO Queued notification")
        assert "event=worker.tick.completed" in output
        assert 'error="HTTP 503 from provider"' in output


class TestContextualFilter:
    """Tests for static and scoped context fields."""

    def test_adds_service_and_environment(self, logger):
        record = _record(logger)
        ContextualFilter(environment="staging").filter(record)
        assert record.service == "application-notifier"
        assert record.environment == "staging"

    def test_merges_context_without_overriding_explicit_extra(self, logger):
        with log_context(tick_id="t-1", notification_id="from-context"):
            record = _record(logger, notification_id="explicit")
            ContextualFilter().filter(record)

        assert record.tick_id == "t-1"
        assert record.notification_id == "explicit"


class TestLogContext:
    """Tests for the contextvar-backed log context."""

    def test_nested_scopes_restore_previous_state(self):
        with log_context(application_id=7):
            with log_context(tick_id="abc"):
                assert get_log_context() == {"application_id": 7, "tick_id": "abc"}
            assert get_log_context() == {"application_id": 7}
        assert get_log_context() == {}

    def test_scope_is_restored_after_exception(self):
        with pytest.raises(RuntimeError):
            with log_context(application_id=7):
                raise RuntimeError("boom")
        assert get_log_context() == {}

    def test_push_and_pop(self):
        token = push_log_context(request_id="r-1")
        assert get_log_context()["request_id"] == "r-1"
        pop_log_context(token)
        assert "request_id" not in get_log_context()

    def test_threads_do_not_share_context(self):
        seen = {}

        def worker():
            seen["context"] = get_log_context()

        with log_context(application_id=7):
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join()

        assert seen["context"] == {}


class TestConfigureLogging:
    """Tests for configure_logging and get_logger."""

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            configure_logging(level="LOUD")

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid log format"):
            configure_logging(format_type="xml")

    def test_json_output_carries_component_and_event(self):
        stream = io.StringIO()
        configure_logging(level="INFO", format_type="json", environment="test", stream=stream)

        get_logger("notifier.tests.component", component="worker").info(
            "Tick done", extra={"event": "worker.tick.completed"}
        )

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        tick = next(line for line in lines if line.get("event") == "worker.tick.completed")
        assert tick["component"] == "worker"
        assert tick["service"] == "application-notifier"
        assert tick["environment"] == "test"

    def test_get_logger_without_component_returns_plain_logger(self):
        assert isinstance(get_logger("notifier.tests.plain"), logging.Logger)
        assert isinstance(get_logger("notifier.tests.adapted", component="queue"), ComponentLoggerAdapter)
