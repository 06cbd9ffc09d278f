"""Per-identity, per-window rate limiting with in-memory and Redis backends."""

from typing import Mapping

from .identity import UNKNOWN_IDENTITY, build_identity, normalize_address
from .limiter import RateLimiter
from .models import RateLimitExceeded, RateLimitStatus, RateLimitWindow, StoreUnavailable
from .stores import (
    HIT_SCRIPT,
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    build_counter_store,
)


def windows_from_config(rules: Mapping) -> dict:
    """Build RateLimitWindow objects from ``AppConfig.rate_limits``."""
    return {
        name: RateLimitWindow(name=name, limit=rule.limit, period_seconds=rule.window_seconds)
        for name, rule in rules.items()
    }


__all__ = [
    "RateLimiter",
    "RateLimitWindow",
    "RateLimitStatus",
    "RateLimitExceeded",
    "StoreUnavailable",
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "HIT_SCRIPT",
    "build_counter_store",
    "build_identity",
    "normalize_address",
    "windows_from_config",
    "UNKNOWN_IDENTITY",
]
