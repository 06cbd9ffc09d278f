"""Configuration management module for the notification service."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config
from .models import (
    OUTBOUND_EMAIL_WINDOW,
    AppConfig,
    DeliveryConfig,
    EmailConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    RateLimitRule,
)

__all__ = [
    # Loader functions
    "load_config",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "DeliveryConfig",
    "RateLimitRule",
    "EmailConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    "OUTBOUND_EMAIL_WINDOW",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
