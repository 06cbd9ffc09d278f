"""Environment variable loading and validation."""

import os
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
DEFAULT_DATABASE_URL = "sqlite:///./data/notifier.db"


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        email_api_url: Optional[str] = None,
        email_api_key: Optional[str] = None,
        email_enabled: bool = True,
        email_from_address: Optional[str] = None,
        email_from_name: Optional[str] = None,
        app_url: Optional[str] = None,
        redis_url: Optional[str] = None,
        database_url: Optional[str] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        """Initialize environment configuration."""
        self.email_api_url = email_api_url
        self.email_api_key = email_api_key
        self.email_enabled = email_enabled
        self.email_from_address = email_from_address
        self.email_from_name = email_from_name
        self.app_url = app_url
        self.redis_url = redis_url
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.log_level = log_level
        self.environment = environment or "local"

    @property
    def uses_http_transport(self) -> bool:
        """True when real delivery through the HTTP provider is configured."""
        return bool(self.email_enabled and self.email_api_key and self.email_api_url)


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    All variables are optional; without EMAIL_API_KEY/EMAIL_API_URL the
    service logs outbound messages to the console instead of sending them.

    - EMAIL_API_URL: Transactional email provider endpoint
    - EMAIL_API_KEY: Bearer token for the provider
    - EMAIL_ENABLED: "true"/"false" (default: true)
    - EMAIL_FROM_ADDRESS / EMAIL_FROM_NAME: Override config.yaml sender
    - APP_URL: Override config.yaml app_url
    - REDIS_URL: Shared rate-limit counter store
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/notifier.db)
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - ENVIRONMENT: Label added to every log record

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is invalid
    """
    errors = []

    email_api_url = os.getenv("EMAIL_API_URL")
    email_api_key = os.getenv("EMAIL_API_KEY")
    email_enabled_str = os.getenv("EMAIL_ENABLED", "true")
    email_from_address = os.getenv("EMAIL_FROM_ADDRESS")
    email_from_name = os.getenv("EMAIL_FROM_NAME")
    app_url = os.getenv("APP_URL")
    redis_url = os.getenv("REDIS_URL")
    database_url = os.getenv("DATABASE_URL")
    log_level = os.getenv("LOG_LEVEL")
    environment = os.getenv("ENVIRONMENT")

    email_enabled = email_enabled_str.strip().lower() in ("1", "true", "yes", "on")
    if email_enabled_str.strip().lower() not in ("1", "true", "yes", "on", "0", "false", "no", "off"):
        errors.append(
            f"Invalid EMAIL_ENABLED: '{email_enabled_str}'. Use true or false."
        )

    if email_api_url and not email_api_url.startswith(("http://", "https://")):
        errors.append(
            f"Invalid EMAIL_API_URL: '{email_api_url}'. Must start with http:// or https://"
        )

    if email_api_key and not email_api_url:
        errors.append("EMAIL_API_KEY is set but EMAIL_API_URL is not.")

    if email_from_address:
        try:
            validate_email(email_from_address, check_deliverability=False)
        except EmailNotValidError as e:
            errors.append(f"Invalid EMAIL_FROM_ADDRESS: '{email_from_address}' - {e}")

    if app_url and not app_url.startswith(("http://", "https://")):
        errors.append(f"Invalid APP_URL: '{app_url}'. Must start with http:// or https://")

    if redis_url and not redis_url.startswith(("redis://", "rediss://", "unix://")):
        errors.append(
            f"Invalid REDIS_URL: '{redis_url}'. Must start with redis://, rediss:// or unix://"
        )

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Leave EMAIL_API_KEY unset to log emails to the console instead",
                "Leave REDIS_URL unset to use in-process rate limiting",
            ],
            source="environment",
        )

    return EnvironmentConfig(
        email_api_url=email_api_url,
        email_api_key=email_api_key,
        email_enabled=email_enabled,
        email_from_address=email_from_address,
        email_from_name=email_from_name,
        app_url=app_url.rstrip("/") if app_url else None,
        redis_url=redis_url,
        database_url=database_url,
        log_level=log_level.upper() if log_level else None,
        environment=environment,
    )
