"""Audit trail for run-level events.

Audit lines are ordinary log records whose message starts with
``AUDIT [<EVENT>]`` followed by ``key=value`` pairs separated by `` | ``, so
they can be grepped out of the rotating log file. Events in use:
PANEL_EXPANDED, PATIENT_EXCLUDED and COHORT_MATCHED.
"""

import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping

from .logger import get_logger

logger = get_logger(__name__)

# Printed first, in this order; remaining keys follow in insertion order
FIELD_ORDER = [
    "status",
    "input_file",
    "score_version",
    "patient_count",
    "month_count",
    "excluded_count",
    "duration",
    "error_message",
    "correlation_id",
]


def _render(key: str, value: Any) -> str:
    if key == "duration" and isinstance(value, (int, float)):
        return f"duration={value:.2f}s"
    return f"{key}={value}"


def format_audit_message(event_type: str, details: Mapping[str, Any]) -> str:
    """Render an audit line without logging it.

    ``timestamp`` is never rendered; the log record carries its own time.
    """
    ordered = [k for k in FIELD_ORDER if k in details]
    extra = [k for k in details if k not in FIELD_ORDER and k != "timestamp"]
    parts = [f"AUDIT [{event_type}]"]
    parts.extend(_render(k, details[k]) for k in ordered + extra)
    return " | ".join(parts)


def log_audit_event(event_type: str, details: Dict[str, Any]) -> None:
    """Log an audit trail event.

    The event goes out at INFO, or at ERROR when ``status`` is ``"failure"``.
    A correlation id is generated when the caller does not supply one.

    Args:
        event_type: Event name, e.g. "PANEL_EXPANDED"
        details: Event fields. Well-known keys (status, input_file,
            patient_count, duration, ...) are printed first.

    Example:
        >>> log_audit_event("PANEL_EXPANDED", {
        ...     "status": "success",
        ...     "patient_count": 100,
        ...     "month_count": 2400,
        ... })
    """
    fields = {"correlation_id": str(uuid.uuid4()), **details}
    message = format_audit_message(event_type, fields)
    if fields.get("status") == "failure":
        logger.error(message)
    else:
        logger.info(message)


@contextmanager
def audit_operation(event_type: str, **details: Any) -> Iterator[Dict[str, Any]]:
    """Time a block and audit its outcome.

    The yielded dict may be filled with result fields inside the block. On
    normal exit a success event is logged; if the block raises, a failure
    event with the error message is logged and the exception propagates.

    Example:
        >>> with audit_operation("COHORT_MATCHED", input_file="listings.csv") as audit:
        ...     audit["matched_pairs"] = 42
    """
    fields: Dict[str, Any] = dict(details)
    started = time.monotonic()
    try:
        yield fields
    except Exception as e:
        fields.update(status="failure", error_message=str(e))
        fields["duration"] = time.monotonic() - started
        log_audit_event(event_type, fields)
        raise
    fields.setdefault("status", "success")
    fields["duration"] = time.monotonic() - started
    log_audit_event(event_type, fields)
