"""Logging Audit module.

This module provides logging configuration, per-stage log levels and audit
trail functionality.
"""

from .audit import audit_operation, format_audit_message, log_audit_event
from .formatters import IdRedactingFormatter
from .logger import (
    STAGE_LOGGERS,
    configure_logging,
    configure_stage_logging,
    get_logger,
    set_stage_log_level,
)

__all__ = [
    "STAGE_LOGGERS",
    "audit_operation",
    "configure_logging",
    "configure_stage_logging",
    "format_audit_message",
    "get_logger",
    "log_audit_event",
    "set_stage_log_level",
    "IdRedactingFormatter",
]
