"""Rate limit value types and exceptions."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitWindow:
    """A named rate-limit class: at most ``limit`` actions per ``period_seconds``."""

    name: str
    limit: int
    period_seconds: int

    def __post_init__(self):
        if self.limit < 1:
            raise ValueError(f"Rate limit '{self.name}' must allow at least 1 action")
        if self.period_seconds < 1:
            raise ValueError(f"Rate limit '{self.name}' period must be at least 1 second")


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of one identity's usage within a window."""

    limit: int
    used: int
    remaining: int
    reset_in: float
    percentage: float


class RateLimitExceeded(Exception):
    """Raised by caller-facing checks when the limiter denies an action.

    Attributes:
        identity: Normalized identity that was limited
        window: Window that denied the action
        retry_after: Seconds until the next action would be admitted
    """

    def __init__(self, identity: str, window: RateLimitWindow, retry_after: float):
        self.identity = identity
        self.window = window
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit '{window.name}' exceeded for {identity}; "
            f"retry after {retry_after:.0f}s"
        )


class StoreUnavailable(Exception):
    """Raised by a counter store when its backend cannot be reached."""

    pass
