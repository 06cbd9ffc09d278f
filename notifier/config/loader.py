"""Configuration loader for the notification service."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig
from .validators import check_for_warnings, emit_warnings

DEFAULT_CONFIG_CANDIDATES = [
    Path("config.yaml"),
    Path("config") / "config.yaml",
]


def load_config(config_path: Optional[Path] = None) -> tuple[AppConfig, EnvironmentConfig]:
    """
    Load and validate configuration from YAML file and environment variables.

    Config file lookup:
    1. Use provided config_path if given (must exist)
    2. Try config.yaml in current directory
    3. Try ./config/config.yaml
    4. Fall back to built-in defaults

    Environment variables EMAIL_FROM_ADDRESS, EMAIL_FROM_NAME and APP_URL take
    precedence over the corresponding ``email`` settings in the file.

    Args:
        config_path: Optional path to configuration file

    Returns:
        Tuple of (AppConfig, EnvironmentConfig) with validated configuration

    Raises:
        ConfigurationError: If configuration is invalid or the given file is missing
    """
    config_file = _find_config_file(config_path)
    config_dict = _read_yaml(config_file) if config_file else {}

    warnings = check_for_warnings(config_dict)
    if warnings:
        emit_warnings(warnings)

    env_config = load_environment_config()
    _apply_environment_overrides(config_dict, env_config)

    try:
        app_config = AppConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            "Configuration validation failed",
            errors=_format_validation_errors(e),
            suggestions=[
                "Review config.example.yaml for correct format",
                "Durations look like '5s', '1m', '15m' or 'PT5S'",
                "Verify field types match the expected schema",
            ],
            source=str(config_file) if config_file else "defaults",
        ) from e

    return app_config, env_config


def _read_yaml(config_file: Path) -> Dict[str, Any]:
    try:
        with open(config_file, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {e}",
            suggestions=[
                "Check YAML syntax in your config file",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
            source=str(config_file),
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            suggestions=[f"Ensure {config_file} is readable"],
            source=str(config_file),
        ) from e

    if config_dict is None:
        return {}
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"Configuration file {config_file} must contain a mapping at the top level"
        )
    return config_dict


def _apply_environment_overrides(config_dict: Dict[str, Any], env_config: EnvironmentConfig) -> None:
    email = config_dict.get("email")
    if not isinstance(email, dict):
        email = {}
    if env_config.email_from_address:
        email["from_address"] = env_config.email_from_address
    if env_config.email_from_name:
        email["from_name"] = env_config.email_from_name
    if env_config.app_url:
        email["app_url"] = env_config.app_url
    if email:
        config_dict["email"] = email


def _format_validation_errors(error: ValidationError) -> list[str]:
    errors = []
    for item in error.errors():
        field_path = " -> ".join(str(loc) for loc in item["loc"])
        if item["type"] == "missing":
            errors.append(f"Missing required field: {field_path}")
        elif item["type"] in ("string_type", "int_type", "bool_type", "float_type"):
            expected_type = item["type"].replace("_type", "")
            errors.append(
                f"Invalid type for '{field_path}': expected {expected_type}, got {item.get('input')}"
            )
        elif field_path:
            errors.append(f"{field_path}: {item['msg']}")
        else:
            errors.append(item["msg"])
    return errors


def _find_config_file(config_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find configuration file using fallback logic.

    Returns:
        Path to configuration file, or None to use built-in defaults

    Raises:
        ConfigurationError: If an explicit config_path does not exist
    """
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=[
                    f"Ensure {config_path} exists",
                    "Omit --config to use config.yaml or built-in defaults",
                ],
                source=str(config_path),
            )
        return config_path

    for candidate in DEFAULT_CONFIG_CANDIDATES:
        if candidate.exists():
            return candidate

    return None
