"""Configuration loader and validator."""

import copy
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "database_url": "sqlite:///.ftdraw/ftdraw.sqlite",
    "default_group_size": 4,
    "advancing_per_group": 2,
    "third_place_match": False,
    "league_legs": 2,
    "pot_draw": {"strict_pots": False},
    "log_level": "INFO",
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Configuration validation error."""

    pass


def load_config(path: str) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        Dictionary with configuration values

    Raises:
        ConfigError: If file not found or invalid YAML
    """
    config_file = Path(path)

    if not config_file.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if config is None:
        raise ConfigError("Config file is empty")
    if not isinstance(config, dict):
        raise ConfigError("Config file must contain a mapping")

    return config


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate configuration values.

    Missing keys take their value from DEFAULT_CONFIG.

    Args:
        config: Configuration dictionary

    Returns:
        Validated and normalized configuration

    Raises:
        ConfigError: If validation fails
    """
    validated = copy.deepcopy(DEFAULT_CONFIG)

    unknown = set(config) - set(DEFAULT_CONFIG)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))

    # Database URL (optional)
    database_url = config.get("database_url", validated["database_url"])
    if not isinstance(database_url, str) or not database_url:
        raise ConfigError("database_url must be a non-empty string")
    validated["database_url"] = database_url

    # Group size used when no group count is given (optional, default 4)
    group_size = config.get("default_group_size", validated["default_group_size"])
    if not _is_int(group_size) or group_size < 2:
        raise ConfigError(f"default_group_size must be an integer >= 2, got {group_size}")
    validated["default_group_size"] = group_size

    # Teams per group reaching the knockout stage (optional, default 2)
    advancing = config.get("advancing_per_group", validated["advancing_per_group"])
    if not _is_int(advancing) or advancing < 1:
        raise ConfigError("advancing_per_group must be a positive integer")
    validated["advancing_per_group"] = advancing

    third_place = config.get("third_place_match", validated["third_place_match"])
    if not isinstance(third_place, bool):
        raise ConfigError("third_place_match must be true or false")
    validated["third_place_match"] = third_place

    legs = config.get("league_legs", validated["league_legs"])
    if legs not in (1, 2) or isinstance(legs, bool):
        raise ConfigError(f"league_legs must be 1 or 2, got {legs}")
    validated["league_legs"] = legs

    # Pot draw options
    pot_draw = config.get("pot_draw", {})
    if not isinstance(pot_draw, dict):
        raise ConfigError("pot_draw must be a dictionary")
    strict = pot_draw.get("strict_pots", False)
    if not isinstance(strict, bool):
        raise ConfigError("pot_draw.strict_pots must be true or false")
    validated["pot_draw"] = {"strict_pots": strict}

    log_level = str(config.get("log_level", validated["log_level"])).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{log_level}'")
    validated["log_level"] = log_level

    return validated


def load_and_validate_config(path: Optional[str] = None) -> dict[str, Any]:
    """Load and validate configuration in one step.

    Args:
        path: Path to YAML config file, or None for the defaults

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigError: If loading or validation fails
    """
    if path is None:
        return validate_config({})
    config = load_config(path)
    return validate_config(config)
