"""Counter stores backing the rate limiter.

Two interchangeable backends implement CounterStore:

- InMemoryCounterStore: exact sliding-log window, one process only.
- RedisCounterStore: fixed window shared between processes. Bursts of up to
  2x the limit are possible when actions straddle a window boundary.
"""

import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

import redis

from notifier.logging import get_logger

from .models import RateLimitWindow, StoreUnavailable

logger = get_logger(__name__, component="ratelimit")

KEY_PREFIX = "rl"

# KEYS[1] counter key, ARGV[1] limit, ARGV[2] window seconds. Returns 1 when
# admitted. The TTL is set on the first hit and repaired if it went missing.
HIT_SCRIPT = """
local current = tonumber(redis.call("GET", KEYS[1]) or "0")
if current >= tonumber(ARGV[1]) then
    return 0
end
current = redis.call("INCR", KEYS[1])
if current == 1 or redis.call("PTTL", KEYS[1]) < 0 then
    redis.call("EXPIRE", KEYS[1], ARGV[2])
end
return 1
"""


class CounterStore(ABC):
    """Atomic check-and-count storage for one (window, identity) pair."""

    @abstractmethod
    def hit(self, identity: str, window: RateLimitWindow) -> bool:
        """Count one action if the window has room.

        Returns:
            True if the action was admitted and counted, False if denied

        Raises:
            StoreUnavailable: If the backend cannot be reached
        """

    @abstractmethod
    def usage(self, identity: str, window: RateLimitWindow) -> Tuple[int, float]:
        """Return (actions counted in the current window, seconds until one frees up).

        Raises:
            StoreUnavailable: If the backend cannot be reached
        """

    def close(self) -> None:
        pass


class InMemoryCounterStore(CounterStore):
    """Sliding-log store: remembers the timestamp of every admitted action.

    Identities whose log has emptied are forgotten. Every ``SWEEP_EVERY``
    hits, or on the first hit ``SWEEP_INTERVAL`` seconds after the last sweep,
    a sweep drops identities that have gone quiet, so memory follows the
    number of recently active identities.

    Safe for concurrent use from multiple threads.
    """

    SWEEP_EVERY = 1000
    SWEEP_INTERVAL = 60.0

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._logs: Dict[Tuple[str, str], Deque[float]] = {}
        self._periods: Dict[str, float] = {}
        self._hits_since_sweep = 0
        self._last_sweep = clock()

    def hit(self, identity: str, window: RateLimitWindow) -> bool:
        with self._lock:
            now = self._clock()
            self._hits_since_sweep += 1
            if self._hits_since_sweep >= self.SWEEP_EVERY or now - self._last_sweep >= self.SWEEP_INTERVAL:
                self._sweep(now)

            log = self._prune(identity, window, now)
            if log is not None and len(log) >= window.limit:
                return False
            if log is None:
                log = self._logs[(window.name, identity)] = deque()
                self._periods[window.name] = window.period_seconds
            log.append(now)
            return True

    def usage(self, identity: str, window: RateLimitWindow) -> Tuple[int, float]:
        with self._lock:
            now = self._clock()
            log = self._prune(identity, window, now)
            if not log:
                return 0, 0.0
            return len(log), max(0.0, log[0] + window.period_seconds - now)

    def reset(self) -> None:
        with self._lock:
            self._logs.clear()
            self._periods.clear()
            self._hits_since_sweep = 0

    def tracked_count(self) -> int:
        """Number of (window, identity) logs currently held."""
        with self._lock:
            return len(self._logs)

    def _prune(self, identity: str, window: RateLimitWindow, now: float) -> Optional[Deque[float]]:
        # Caller holds the lock
        key = (window.name, identity)
        log = self._logs.get(key)
        if log is None:
            return None
        cutoff = now - window.period_seconds
        while log and log[0] <= cutoff:
            log.popleft()
        if not log:
            del self._logs[key]
            return None
        return log

    def _sweep(self, now: float) -> None:
        # Caller holds the lock
        self._hits_since_sweep = 0
        self._last_sweep = now
        stale = [
            key
            for key, log in self._logs.items()
            if not log or log[-1] <= now - self._periods.get(key[0], 0.0)
        ]
        for key in stale:
            del self._logs[key]
        if stale:
            logger.debug(
                f"Dropped {len(stale)} idle rate limit logs",
                extra={"event": "ratelimit.store.swept", "dropped": len(stale), "tracked": len(self._logs)},
            )


class RedisCounterStore(CounterStore):
    """Fixed-window store on Redis.

    Keys look like ``rl:<window>:<identity>`` and expire with the window.
    Each hit runs HIT_SCRIPT, so the check and the count happen atomically
    on the server and denied hits are never counted.
    """

    def __init__(self, client: "redis.Redis"):
        self._client = client
        self._hit_script = client.register_script(HIT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, timeout: float = 2.0) -> "RedisCounterStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    @staticmethod
    def key_for(identity: str, window: RateLimitWindow) -> str:
        return f"{KEY_PREFIX}:{window.name}:{identity}"

    def ping(self) -> None:
        try:
            self._client.ping()
        except redis.RedisError as e:
            raise StoreUnavailable(f"Redis ping failed: {e}") from e

    def hit(self, identity: str, window: RateLimitWindow) -> bool:
        key = self.key_for(identity, window)
        try:
            admitted = self._hit_script(keys=[key], args=[window.limit, window.period_seconds])
        except redis.RedisError as e:
            raise StoreUnavailable(f"Redis counter update failed: {e}") from e
        return int(admitted) == 1

    def usage(self, identity: str, window: RateLimitWindow) -> Tuple[int, float]:
        key = self.key_for(identity, window)
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.get(key)
            pipe.pttl(key)
            raw_count, ttl_ms = pipe.execute()
        except redis.RedisError as e:
            raise StoreUnavailable(f"Redis counter read failed: {e}") from e

        count = min(int(raw_count or 0), window.limit)
        reset_in = ttl_ms / 1000.0 if ttl_ms and ttl_ms > 0 else 0.0
        return count, reset_in

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.warning(
                f"Error closing Redis client: {e}",
                extra={"event": "ratelimit.store.close_failed"},
            )


def build_counter_store(redis_url: Optional[str]) -> CounterStore:
    """Return a Redis store when configured and reachable, else an in-memory store."""
    if not redis_url:
        logger.info(
            "Using in-memory rate limit store",
            extra={"event": "ratelimit.store.selected", "backend": "memory"},
        )
        return InMemoryCounterStore()

    store = RedisCounterStore.from_url(redis_url)
    try:
        store.ping()
    except StoreUnavailable as e:
        logger.warning(
            f"Redis unavailable, falling back to in-memory rate limit store: {e}",
            extra={"event": "ratelimit.store.fallback", "backend": "memory"},
        )
        store.close()
        return InMemoryCounterStore()

    logger.info(
        "Using Redis rate limit store",
        extra={"event": "ratelimit.store.selected", "backend": "redis"},
    )
    return store


def seconds_until_free(reset_in: float) -> int:
    """Round a reset hint up to whole seconds for Retry-After style responses."""
    return max(1, math.ceil(reset_in))
