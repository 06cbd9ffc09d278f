"""Rate limiter facade over a counter store.

The limiter fails open: if the store raises StoreUnavailable the action is
allowed and the degradation is logged, so a Redis outage never blocks
delivery or request handling.
"""

from typing import Dict, Mapping, Optional, Union

from notifier.logging import get_logger

from .models import RateLimitExceeded, RateLimitStatus, RateLimitWindow, StoreUnavailable
from .stores import CounterStore, InMemoryCounterStore, seconds_until_free

logger = get_logger(__name__, component="ratelimit")

WindowRef = Union[RateLimitWindow, str]


class RateLimiter:
    """Bounds actions per identity per named window.

    Args:
        store: Counter backend (in-memory or Redis)
        windows: Named windows that may be referred to by name

    Example:
        >>> limiter = RateLimiter(InMemoryCounterStore(), {"api": RateLimitWindow("api", 100, 60)})
        >>> limiter.allow("user:42", "api")
        True
    """

    def __init__(
        self,
        store: Optional[CounterStore] = None,
        windows: Optional[Mapping[str, RateLimitWindow]] = None,
    ):
        self.store = store if store is not None else InMemoryCounterStore()
        self._windows: Dict[str, RateLimitWindow] = dict(windows or {})

    def window(self, name: str) -> RateLimitWindow:
        """Look up a configured window by name.

        Raises:
            KeyError: If no window with that name is configured
        """
        try:
            return self._windows[name]
        except KeyError:
            raise KeyError(
                f"Unknown rate limit window '{name}'. "
                f"Configured: {', '.join(sorted(self._windows)) or 'none'}"
            ) from None

    def allow(self, identity: str, window: WindowRef) -> bool:
        """Count one action for ``identity`` and report whether it is admitted."""
        resolved = self._resolve(window)
        try:
            admitted = self.store.hit(identity, resolved)
        except StoreUnavailable as e:
            self._log_degraded(identity, resolved, e)
            return True

        if not admitted:
            logger.debug(
                f"Rate limit '{resolved.name}' denied {identity}",
                extra={
                    "event": "ratelimit.denied",
                    "window": resolved.name,
                    "identity": identity,
                },
            )
        return admitted

    def remaining(self, identity: str, window: WindowRef) -> int:
        """Number of actions ``identity`` may still take in the current window."""
        resolved = self._resolve(window)
        try:
            used, _ = self.store.usage(identity, resolved)
        except StoreUnavailable as e:
            self._log_degraded(identity, resolved, e)
            return resolved.limit
        return max(0, resolved.limit - used)

    def check(self, identity: str, window: WindowRef) -> None:
        """Like ``allow`` but raises for caller-facing endpoints.

        Raises:
            RateLimitExceeded: With a ``retry_after`` hint in seconds
        """
        resolved = self._resolve(window)
        if self.allow(identity, resolved):
            return

        try:
            _, reset_in = self.store.usage(identity, resolved)
        except StoreUnavailable:
            reset_in = float(resolved.period_seconds)
        raise RateLimitExceeded(identity, resolved, retry_after=seconds_until_free(reset_in))

    def status(self, identity: str, window: WindowRef) -> RateLimitStatus:
        """Usage snapshot without counting an action."""
        resolved = self._resolve(window)
        try:
            used, reset_in = self.store.usage(identity, resolved)
        except StoreUnavailable as e:
            self._log_degraded(identity, resolved, e)
            used, reset_in = 0, 0.0

        used = min(used, resolved.limit)
        return RateLimitStatus(
            limit=resolved.limit,
            used=used,
            remaining=resolved.limit - used,
            reset_in=reset_in,
            percentage=round(used / resolved.limit * 100, 1),
        )

    def _resolve(self, window: WindowRef) -> RateLimitWindow:
        if isinstance(window, RateLimitWindow):
            return window
        return self.window(window)

    def _log_degraded(self, identity: str, window: RateLimitWindow, error: Exception) -> None:
        logger.warning(
            f"Rate limit store unavailable, allowing action: {error}",
            extra={
                "event": "ratelimit.store.unavailable",
                "window": window.name,
                "identity": identity,
                "error_type": type(error).__name__,
            },
        )
