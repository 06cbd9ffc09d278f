"""Additional validation utilities for configuration."""

import warnings
from typing import Any, Dict, List

from .duration import DurationParseError, parse_duration


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for settings that are valid but probably unintended.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    delivery = config_dict.get("delivery", {})
    if isinstance(delivery, dict):
        if delivery.get("max_attempts") == 1:
            warning_messages.append(
                "delivery.max_attempts is 1; transient provider errors will not be retried"
            )

        tick = delivery.get("tick_interval")
        if isinstance(tick, str):
            try:
                if parse_duration(tick) > 300:
                    warning_messages.append(
                        f"Long delivery.tick_interval ({tick}) delays every notification"
                    )
            except DurationParseError:
                pass  # reported by model validation

    rate_limits = config_dict.get("rate_limits", {})
    if isinstance(rate_limits, dict):
        outbound = rate_limits.get("outbound-email")
        if isinstance(outbound, dict) and isinstance(outbound.get("limit"), int):
            if outbound["limit"] > 1000:
                warning_messages.append(
                    f"Very high outbound-email limit ({outbound['limit']}) may exceed provider quotas"
                )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """
    Emit warning messages using Python's warnings module.

    Args:
        warning_messages: List of warning messages to emit
    """
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
