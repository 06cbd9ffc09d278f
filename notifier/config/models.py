"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


# Named rate-limit classes (limit per window)
DEFAULT_RATE_LIMITS: Dict[str, Dict[str, object]] = {
    "outbound-email": {"limit": 10, "window": "1m"},
    "api": {"limit": 100, "window": "1m"},
    "auth": {"limit": 5, "window": "15m"},
    "search": {"limit": 30, "window": "1m"},
    "upload": {"limit": 10, "window": "10m"},
}

OUTBOUND_EMAIL_WINDOW = "outbound-email"


def _check_duration(value: str, label: str, min_seconds: int, max_seconds: int) -> str:
    """Parse and range-check a duration string, raising ValueError for pydantic."""
    try:
        seconds = parse_duration(value)
        validate_duration_range(
            seconds, min_seconds=min_seconds, max_seconds=max_seconds, label=label
        )
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return value


class DeliveryConfig(BaseModel):
    """Delivery worker tick, retry and timeout settings."""

    tick_interval: str = Field("5s", description="How often the delivery worker drains the queue")
    max_attempts: int = Field(3, ge=1, le=10, description="Delivery attempts before giving up")
    backoff_base: str = Field("1s", description="Base delay for exponential retry backoff")
    backoff_cap: str = Field("30s", description="Upper bound on a single retry delay")
    jitter_ratio: float = Field(
        0.1, ge=0.0, le=1.0, description="Random extra delay as a fraction of the backoff"
    )
    transport_timeout: str = Field(
        "10s", description="Upper bound on a single provider call"
    )
    rate_limit_identity: str = Field(
        "outbound:global",
        min_length=1,
        description="Identity the worker charges outbound-email rate limits against",
    )

    @field_validator("tick_interval", "backoff_base")
    @classmethod
    def validate_short_durations(cls, v: str, info) -> str:
        """Tick and base backoff must be between 1 second and 1 hour."""
        return _check_duration(v, info.field_name, 1, 3600)

    @field_validator("backoff_cap")
    @classmethod
    def validate_backoff_cap(cls, v: str) -> str:
        """Backoff cap may be up to a day."""
        return _check_duration(v, "backoff_cap", 1, 86400)

    @field_validator("transport_timeout")
    @classmethod
    def validate_transport_timeout(cls, v: str) -> str:
        """Provider calls are bounded between 1 second and 5 minutes."""
        return _check_duration(v, "transport_timeout", 1, 300)

    @model_validator(mode="after")
    def validate_backoff_bounds(self):
        """Backoff cap must not be smaller than the base delay."""
        if parse_duration(self.backoff_cap) < parse_duration(self.backoff_base):
            raise ValueError(
                f"backoff_cap ({self.backoff_cap}) must be >= backoff_base ({self.backoff_base})"
            )
        return self

    @property
    def tick_interval_seconds(self) -> int:
        return parse_duration(self.tick_interval)

    @property
    def backoff_base_seconds(self) -> int:
        return parse_duration(self.backoff_base)

    @property
    def backoff_cap_seconds(self) -> int:
        return parse_duration(self.backoff_cap)

    @property
    def transport_timeout_seconds(self) -> int:
        return parse_duration(self.transport_timeout)


class RateLimitRule(BaseModel):
    """A single named rate-limit class."""

    limit: int = Field(..., ge=1, description="Maximum actions admitted per window")
    window: str = Field(..., description="Window length as a duration string")

    @field_validator("window")
    @classmethod
    def validate_window(cls, v: str) -> str:
        """Window must parse and be at most a day."""
        return _check_duration(v, "window", 1, 86400)

    @property
    def window_seconds(self) -> int:
        return parse_duration(self.window)


class EmailConfig(BaseModel):
    """Sender identity and link settings for outbound email."""

    from_address: str = Field("noreply@example.com", min_length=3)
    from_name: str = Field("Application Notifier", min_length=1)
    app_url: str = Field(
        "http://localhost:5000",
        description="Base URL used for application, dashboard and preference links",
    )

    @field_validator("app_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize app_url so links can be joined with a leading slash."""
        stripped = v.strip().rstrip("/")
        if not stripped.startswith(("http://", "https://")):
            raise ValueError(f"app_url must start with http:// or https://, got: {v}")
        return stripped


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the notification service."""

    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    rate_limits: Dict[str, RateLimitRule] = Field(default_factory=dict)
    email: EmailConfig = Field(default_factory=EmailConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def merge_default_rate_limits(self):
        """Fill in any rate-limit class the config file does not override."""
        merged = {name: RateLimitRule(**rule) for name, rule in DEFAULT_RATE_LIMITS.items()}
        merged.update(self.rate_limits)
        self.rate_limits = merged
        return self

    def get_rate_limit(self, name: str) -> Optional[RateLimitRule]:
        """Get a rate-limit rule by class name."""
        return self.rate_limits.get(name)
