"""Test helper utilities for Application Notifier tests."""

from .fakes import BlockingTransport, FakeTransport, ManualClock

__all__ = ["BlockingTransport", "FakeTransport", "ManualClock"]
