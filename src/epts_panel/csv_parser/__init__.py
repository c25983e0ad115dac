"""CSV parser module.

This module reads waitlist listing extracts and turns them into
StaticPatientRecords.
"""

from epts_panel.csv_parser.parser import (
    collapse_listings,
    normalise_listings,
    parse_csv,
    reject_invalid_rows,
    to_static_records,
)
from epts_panel.csv_parser.validator import (
    IssueSeverity,
    ValidationIssue,
    ValidationResult,
    export_invalid_rows,
    parse_bool_value,
    validate_listings,
)

__all__ = [
    "collapse_listings",
    "normalise_listings",
    "parse_csv",
    "reject_invalid_rows",
    "to_static_records",
    "IssueSeverity",
    "ValidationIssue",
    "ValidationResult",
    "export_invalid_rows",
    "parse_bool_value",
    "validate_listings",
]
