"""Configuration loading.

Settings are layered, later layers winning:

1. Built-in defaults (``DEFAULT_CONFIG``)
2. JSON configuration file, merged section by section over the defaults
3. ``EPTS_PANEL_*`` environment variables (a ``.env`` file is read first)

CLI flags are applied on top by the caller. The merged dictionary is
validated by the pydantic models in :mod:`epts_panel.config.schema`.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from epts_panel.config.defaults import DEFAULT_CONFIG, DEFAULT_CONFIG_PATH
from epts_panel.config.schema import Config
from epts_panel.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "EPTS_PANEL_"


def _parse_bool(value: str) -> bool:
    """Parse boolean value from string (case-insensitive)."""
    return value.strip().lower() in ("true", "1", "yes", "on")


# Environment variable suffix -> (section, field, parser)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "TABLE_VERSION": ("scoring", "table_version", str),
    "TABLE_PATH": ("scoring", "table_path", str),
    "DIALYSIS_TOLERANCE_DAYS": ("expansion", "dialysis_start_tolerance_days", int),
    "WORKERS": ("pipeline", "workers", int),
    "OUTPUT_DIR": ("pipeline", "output_dir", str),
    "CALIPER": ("matching", "caliper", float),
    "RANDOM_STATE": ("matching", "random_state", int),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_FILE": ("logging", "log_file", str),
    "REDACT_IDS": ("logging", "redact_ids", _parse_bool),
}


def load_config(config_path: Optional[Path] = None) -> Config:
    """Build the effective configuration.

    Args:
        config_path: JSON configuration file. Defaults to
            ./config/config.json; a missing file means defaults only.

    Returns:
        Validated Config instance

    Raises:
        ConfigurationError: If the file is unreadable or not a JSON object,
            an environment override cannot be parsed, or the merged settings
            fail validation

    Example:
        >>> config = load_config(Path("config/site-a.json"))
        >>> config.pipeline.workers
        4
    """
    load_dotenv()
    path = Path(config_path) if config_path is not None else Path(DEFAULT_CONFIG_PATH)

    settings = copy.deepcopy(DEFAULT_CONFIG)
    file_settings = _read_config_file(path)
    if file_settings is not None:
        _merge_sections(settings, file_settings)
    _merge_sections(settings, _environment_settings())

    try:
        return Config(**settings)
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed:\n{e}\n\n"
            f"Fix: Check {path} and any {ENV_PREFIX}* environment variables."
        ) from e


def _read_config_file(path: Path) -> Optional[dict[str, Any]]:
    """Return the parsed file, or None when it does not exist.

    Raises:
        ConfigurationError: If the file is unreadable or malformed
    """
    if not path.exists():
        logger.info(f"Config file not found: {path}. Using default configuration.")
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Invalid JSON in config file: {path}\n"
            f"Error: {e.msg}\n"
            f"Fix: Check JSON syntax at line {e.lineno}, column {e.colno}"
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read config file: {path} ({e})\n"
            f"Fix: Check the path and file permissions"
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a JSON object at the top level, "
            f"got {type(data).__name__}"
        )
    logger.info(f"Loaded configuration from {path}")
    return data


def _merge_sections(base: dict[str, Any], overlay: dict[str, Any]) -> None:
    """Merge overlay into base in place; section dicts merge key by key."""
    for section, values in overlay.items():
        if isinstance(values, dict) and isinstance(base.get(section), dict):
            base[section].update(values)
        else:
            base[section] = values


def _environment_settings() -> dict[str, dict[str, Any]]:
    """Collect EPTS_PANEL_* overrides into a nested settings dict.

    Unset and empty variables are ignored.

    Raises:
        ConfigurationError: If a value cannot be parsed
    """
    overrides: dict[str, dict[str, Any]] = {}
    for suffix, (section, field, parse) in ENV_OVERRIDES.items():
        name = f"{ENV_PREFIX}{suffix}"
        raw = os.getenv(name)
        if not raw:
            continue
        try:
            value = parse(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {name}: {raw!r} ({e})") from e
        overrides.setdefault(section, {})[field] = value
        logger.debug(f"{section}.{field} set from {name}")
    return overrides
