"""Custom log formatters for the EPTS panel builder.

This module provides specialized formatters for logging, including patient
identifier redaction.
"""

import logging
import re
from typing import List, Tuple


class IdRedactingFormatter(logging.Formatter):
    """Formatter that redacts patient identifiers from log messages.

    Waitlist identifiers are linkable to registry data, so they can be kept out
    of shared log files. Redaction covers the ``patient_id=<id>`` form used in
    log lines and the ``Patient <id>:`` prefix of per-patient errors.

    Attributes:
        redact_ids: Whether to enable redaction
        patterns: List of (regex_pattern, replacement_text) tuples for redaction

    Example:
        >>> formatter = IdRedactingFormatter(
        ...     fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        ...     redact_ids=True
        ... )
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(formatter)
    """

    def __init__(
        self,
        fmt: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt: str | None = None,
        redact_ids: bool = False,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.redact_ids = redact_ids

        self.patterns: List[Tuple[re.Pattern[str], str]] = [
            # patient_id=ABC123, patient_id='ABC123'
            (re.compile(r"patient_id=[\"']?[^\s,|\"']+[\"']?"), "patient_id=[ID-REDACTED]"),
            # Patient ABC123: message
            (re.compile(r"\bPatient [^\s:]+:"), "Patient [ID-REDACTED]:"),
        ]

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with optional identifier redaction.

        Args:
            record: Log record to format

        Returns:
            Formatted log message with identifiers redacted if enabled
        """
        original = super().format(record)

        if self.redact_ids:
            for pattern, replacement in self.patterns:
                original = pattern.sub(replacement, original)

        return original
