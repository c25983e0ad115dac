"""Logging configuration and logger factory for the EPTS panel builder.

Console output goes to stderr at the requested level. A rotating log file
always records DEBUG, so a run can be reconstructed after the fact even when
the console was quiet. Each pipeline stage logs under its own package, which
lets one stage be made more verbose without flooding the rest.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional

from .formatters import IdRedactingFormatter

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LOG_FILE = Path("logs") / "epts-panel.log"
LOG_FILE_ENV_VAR = "EPTS_PANEL_LOG_FILE"
MAX_LOG_FILE_SIZE = 10 * 1024 * 1024  # 10MB
BACKUP_COUNT = 5

# Pipeline stage -> logger of the package implementing it
STAGE_LOGGERS = {
    "parse": "epts_panel.csv_parser",
    "expand": "epts_panel.panel",
    "score": "epts_panel.scoring",
    "match": "epts_panel.matching",
}

logger = logging.getLogger(__name__)

_installed_handlers: list[logging.Handler] = []


def _parse_level(level: str) -> int:
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(
            f"Invalid log level: {level}. "
            f"Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )
    return numeric_level


def _resolve_log_file(log_file: Optional[Path]) -> Path:
    if log_file is not None:
        return log_file
    env_log_file = os.environ.get(LOG_FILE_ENV_VAR)
    return Path(env_log_file) if env_log_file else DEFAULT_LOG_FILE


def _remove_installed_handlers(root_logger: logging.Logger) -> None:
    while _installed_handlers:
        handler = _installed_handlers.pop()
        handler.close()
        root_logger.removeHandler(handler)


def configure_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    redact_ids: bool = False,
) -> Path:
    """Install console and rotating-file handlers on the root logger.

    Calling it again replaces the handlers installed by the previous call;
    handlers added by anything else are left alone.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            The file handler always records DEBUG.
        log_file: Log file path. Defaults to $EPTS_PANEL_LOG_FILE, then
            logs/epts-panel.log.
        redact_ids: Redact patient identifiers from console and file output

    Returns:
        Path of the log file in use

    Raises:
        ValueError: If the level is not a logging level name
        RuntimeError: If the log directory cannot be created

    Example:
        >>> configure_logging(level="DEBUG", redact_ids=True)
        >>> configure_logging(level="INFO", log_file=Path("runs/2024-01.log"))
    """
    console_level = _parse_level(level)
    log_path = _resolve_log_file(log_file)

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RuntimeError(
            f"Failed to create log directory: {log_path.parent}. "
            f"Ensure write permissions are available. Error: {e}"
        ) from e

    root_logger = logging.getLogger()
    _remove_installed_handlers(root_logger)
    root_logger.setLevel(logging.DEBUG)

    formatter = IdRedactingFormatter(fmt=DEFAULT_LOG_FORMAT, redact_ids=redact_ids)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
    _installed_handlers.append(console_handler)

    try:
        file_handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=MAX_LOG_FILE_SIZE,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        root_logger.warning(
            "Failed to create file handler for %s: %s. Logging to console only.",
            log_path,
            e,
        )
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        _installed_handlers.append(file_handler)

    return log_path


def get_logger(module_name: str) -> logging.Logger:
    """Get a logger for the specified module.

    Args:
        module_name: Name of the module, typically __name__

    Returns:
        Logger instance for the module
    """
    return logging.getLogger(module_name)


def set_stage_log_level(stage: str, level: str) -> None:
    """Set the log level of one pipeline stage.

    Args:
        stage: One of parse, expand, score, match
        level: Log level name

    Raises:
        ValueError: If the stage or level is unknown

    Example:
        >>> set_stage_log_level("expand", "DEBUG")
    """
    if stage not in STAGE_LOGGERS:
        raise ValueError(
            f"Unknown pipeline stage: {stage}. "
            f"Must be one of: {', '.join(STAGE_LOGGERS)}"
        )
    logging.getLogger(STAGE_LOGGERS[stage]).setLevel(_parse_level(level))
    logger.debug("Set %s logger level to %s", STAGE_LOGGERS[stage], level.upper())


def configure_stage_logging(levels: Mapping[str, str]) -> None:
    """Apply per-stage log levels, e.g. ``{"match": "DEBUG"}``.

    Stages not named keep inheriting the root level.

    Raises:
        ValueError: If a stage or level is unknown
    """
    for stage, level in levels.items():
        set_stage_log_level(stage, level)
