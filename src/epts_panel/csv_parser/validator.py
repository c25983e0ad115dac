"""Comprehensive validation for waitlist listing CSV data.

This module provides detailed validation with actionable error messages,
collecting all issues before reporting to help users fix multiple problems at once.
Validation runs on the renamed but not yet type-converted frame, so every
value is still the string that appeared in the file.
"""

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from epts_panel.logging_audit import get_logger


logger = get_logger(__name__)

DATE_FORMAT = "%Y-%m-%d"

DATE_COLUMNS = ["listing_date", "last_listing_date", "removal_date", "dialysis_start_date"]
BOOL_COLUMNS = [
    "on_dialysis_at_listing",
    "has_previous_transplant",
    "has_diabetes",
    "started_dialysis_on_waitlist",
]

TRUE_VALUES = {"Y", "YES", "T", "TRUE", "1", "1.0"}
FALSE_VALUES = {"N", "NO", "F", "FALSE", "0", "0.0"}
UNKNOWN_VALUES = {"U", "UNK", "UNKNOWN"}

# Ages above this many months are suspicious (100 years)
MAX_REASONABLE_AGE_MONTHS = 1200


class IssueSeverity(Enum):
    """Severity level for validation issues."""

    ERROR = "error"
    WARNING = "warning"


@dataclass
class ValidationIssue:
    """Individual validation issue with context and suggested fix.

    Attributes:
        row_number: 1-indexed row number (including header) for user readability
        column_name: Normalised name of the column with the issue
        severity: ERROR or WARNING level
        message: Description of what's wrong
        suggestion: Actionable guidance on how to fix the issue
        missing_value: True when the issue is a blank required value rather
            than a malformed one
    """

    row_number: int
    column_name: str
    severity: IssueSeverity
    message: str
    suggestion: str
    missing_value: bool = False


# Issues listed per section before the report truncates
REPORT_ISSUE_LIMIT = 20


@dataclass
class ValidationResult:
    """Outcome of validating a listing file.

    Row counts use the file's data rows; a row with both an error and a
    warning counts in both error_rows and warning_rows.

    Attributes:
        total_rows: Data rows checked
        valid_rows: Rows without errors (warnings allowed)
        error_rows: Rows with at least one error
        warning_rows: Rows with at least one warning
        duplicate_patient_ids: Patient IDs appearing on more than one row
        all_errors: Error-level issues
        all_warnings: Warning-level issues
    """

    total_rows: int
    valid_rows: int
    error_rows: int
    warning_rows: int
    duplicate_patient_ids: list[str] = field(default_factory=list)
    all_errors: list[ValidationIssue] = field(default_factory=list)
    all_warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.all_errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.all_warnings)

    def _verdict(self) -> str:
        if self.has_errors:
            return "RESULT: ✗ Validation failed - please fix errors above"
        if self.has_warnings:
            return "RESULT: ✓ Validation passed with warnings"
        return "RESULT: ✓ All validations passed"

    @staticmethod
    def _issue_section(title: str, issues: list[ValidationIssue]) -> list[str]:
        if not issues:
            return []
        section = [f"{title} ({len(issues)}):"]
        for issue in issues[:REPORT_ISSUE_LIMIT]:
            section.append(f"  Row {issue.row_number} [{issue.column_name}]: {issue.message}")
            section.append(f"    → {issue.suggestion}")
        hidden = len(issues) - REPORT_ISSUE_LIMIT
        if hidden > 0:
            section.append(f"  ... and {hidden} more {title.lower()}")
        return section + [""]

    def format_report(self) -> str:
        """Render the result for the terminal."""
        rule = "=" * 60
        lines = [
            rule,
            "LISTING VALIDATION REPORT",
            rule,
            "",
            "SUMMARY:",
            f"  Rows checked:       {self.total_rows}",
            f"  Rows without errors: {self.valid_rows}",
            f"  Rows with errors:   {self.error_rows}",
            f"  Rows with warnings: {self.warning_rows}",
        ]
        if self.duplicate_patient_ids:
            shown = ", ".join(self.duplicate_patient_ids[:5])
            more = ", ..." if len(self.duplicate_patient_ids) > 5 else ""
            lines.append(f"  Duplicated patient IDs: {shown}{more}")
        lines.append("")
        lines += self._issue_section("ERRORS", self.all_errors)
        lines += self._issue_section("WARNINGS", self.all_warnings)
        lines += [rule, self._verdict(), rule]
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form used by ``panel validate --json``."""
        summary = {
            name: getattr(self, name)
            for name in ("total_rows", "valid_rows", "error_rows", "warning_rows")
        }
        return {
            **summary,
            "duplicate_patient_ids": list(self.duplicate_patient_ids),
            "errors": [_issue_dict(e) for e in self.all_errors],
            "warnings": [_issue_dict(w) for w in self.all_warnings],
        }


def _issue_dict(issue: ValidationIssue) -> dict[str, Any]:
    data = asdict(issue)
    data["severity"] = issue.severity.value
    return data


def _is_blank(value: Any) -> bool:
    return pd.isna(value) or str(value).strip() == ""


def parse_bool_value(value: Any) -> Optional[bool]:
    """Parse a source flag (Y/N, 1/0, true/false); blank or U means unknown.

    Raises:
        ValueError: If the value is not a recognised flag
    """
    if _is_blank(value):
        return None
    token = str(value).strip().upper()
    if token in TRUE_VALUES:
        return True
    if token in FALSE_VALUES:
        return False
    if token in UNKNOWN_VALUES:
        return None
    raise ValueError(f"Unrecognised flag value: {value}")


def _parse_date(value: Any) -> Optional[pd.Timestamp]:
    if _is_blank(value):
        return None
    return pd.to_datetime(str(value).strip(), format=DATE_FORMAT)


def validate_listings(df: pd.DataFrame, allow_duplicate_ids: bool = False) -> ValidationResult:
    """Validate a renamed listing DataFrame.

    Collects all errors and warnings before returning (not fail-fast).

    Args:
        df: Listing rows with normalised column names, values as read from CSV
        allow_duplicate_ids: Skip the duplicate patient_id check (when
            concurrent listings will be collapsed afterwards)

    Returns:
        ValidationResult containing all errors, warnings, and statistics
    """
    logger.info("Validation started")
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    def error(
        row_num: int, column: str, message: str, suggestion: str, missing: bool = False
    ) -> None:
        errors.append(
            ValidationIssue(row_num, column, IssueSeverity.ERROR, message, suggestion, missing)
        )

    def warning(row_num: int, column: str, message: str, suggestion: str) -> None:
        warnings.append(
            ValidationIssue(row_num, column, IssueSeverity.WARNING, message, suggestion)
        )

    for idx, row in df.iterrows():
        row_num = idx + 2  # +2 for 1-indexed + header row

        if _is_blank(row.get("patient_id")):
            error(
                row_num,
                "patient_id",
                "Missing patient identifier",
                "Every row needs a patient_id",
                missing=True,
            )

        dates: dict[str, Optional[pd.Timestamp]] = {}
        for column in DATE_COLUMNS:
            if column not in df.columns:
                continue
            try:
                dates[column] = _parse_date(row[column])
            except (ValueError, TypeError):
                dates[column] = None
                error(
                    row_num,
                    column,
                    f"Invalid date format '{row[column]}'",
                    "Expected format: YYYY-MM-DD (e.g., 2020-01-15)",
                )

        if _is_blank(row.get("listing_date")):
            error(
                row_num, "listing_date", "Missing listing date", "Listing date is required", missing=True
            )

        if dates.get("removal_date") is None and "removal_date" not in _errored(errors, row_num):
            if dates.get("last_listing_date") is not None:
                warning(
                    row_num,
                    "removal_date",
                    "No removal date; last listing date will end the waitlist",
                    "Verify the patient is still waiting or add the removal date",
                )
            elif "last_listing_date" not in _errored(errors, row_num):
                warning(
                    row_num,
                    "removal_date",
                    "No removal date and no last listing date",
                    "The patient will be excluded from the panel",
                )

        listing = dates.get("listing_date")
        removal = dates.get("removal_date")
        if listing is not None and removal is not None and removal < listing:
            warning(
                row_num,
                "removal_date",
                f"Removal date {removal.date()} is before listing date {listing.date()}",
                "The patient will be excluded from the panel",
            )

        age = row.get("age_at_listing_months")
        if _is_blank(age):
            error(
                row_num,
                "age_at_listing_months",
                "Missing age at listing",
                "Age in months is required",
                missing=True,
            )
        else:
            age_value = pd.to_numeric(str(age).strip(), errors="coerce")
            if pd.isna(age_value) or not math.isfinite(age_value) or age_value < 0:
                error(
                    row_num,
                    "age_at_listing_months",
                    f"Invalid age '{age}'",
                    "Age must be a non-negative number of months",
                )
            elif not float(age_value).is_integer():
                error(
                    row_num,
                    "age_at_listing_months",
                    f"Age '{age}' is not a whole number of months",
                    "Give the age at listing in completed months (e.g., 600)",
                )
            elif age_value > MAX_REASONABLE_AGE_MONTHS:
                warning(
                    row_num,
                    "age_at_listing_months",
                    f"Age appears unreasonable ({age_value} months)",
                    "Verify the age is in months, not days",
                )

        duration = row.get("dialysis_duration_at_listing_years")
        if not _is_blank(duration):
            duration_value = pd.to_numeric(str(duration).strip(), errors="coerce")
            if (
                pd.isna(duration_value)
                or not math.isfinite(duration_value)
                or duration_value < 0
            ):
                error(
                    row_num,
                    "dialysis_duration_at_listing_years",
                    f"Invalid dialysis duration '{duration}'",
                    "Duration must be a non-negative number of years (0 if never dialyzed)",
                )

        for column in BOOL_COLUMNS:
            if column not in df.columns:
                continue
            try:
                parse_bool_value(row[column])
            except ValueError:
                error(
                    row_num,
                    column,
                    f"Unrecognised flag value '{row[column]}'",
                    "Use Y/N, 1/0 or true/false (blank or U for unknown)",
                )

    duplicate_ids: list[str] = []
    if not allow_duplicate_ids and "patient_id" in df.columns:
        non_null_ids = df["patient_id"].dropna()
        duplicate_ids = non_null_ids[non_null_ids.duplicated(keep=False)].unique().tolist()
        for dup_id in duplicate_ids:
            for row_idx in df[df["patient_id"] == dup_id].index:
                error(
                    row_idx + 2,
                    "patient_id",
                    f"Duplicate patient_id found: {dup_id}",
                    "Collapse concurrent listings (--collapse-listings) or remove duplicates",
                )

    error_rows = len({e.row_number for e in errors})
    result = ValidationResult(
        total_rows=len(df),
        valid_rows=len(df) - error_rows,
        error_rows=error_rows,
        warning_rows=len({w.row_number for w in warnings}),
        duplicate_patient_ids=[str(d) for d in duplicate_ids],
        all_errors=errors,
        all_warnings=warnings,
    )

    logger.info(f"Validation errors found: {len(errors)}")
    if warnings:
        logger.info(f"Validation warnings: {len(warnings)}")
    return result


def _errored(errors: list[ValidationIssue], row_num: int) -> set[str]:
    return {e.column_name for e in errors if e.row_number == row_num}


def export_invalid_rows(
    df: pd.DataFrame, result: ValidationResult, output_path: Path
) -> None:
    """Export rows with validation errors to separate CSV file.

    Args:
        df: DataFrame as returned by parse_csv
        result: ValidationResult containing error information
        output_path: Path where error CSV should be written

    Raises:
        ValueError: If no errors exist in ValidationResult
        FileNotFoundError: If output_path parent directory doesn't exist
    """
    logger.info(f"Exporting invalid rows to {output_path}")

    if not result.has_errors:
        raise ValueError("No validation errors to export")

    if not output_path.parent.exists():
        raise FileNotFoundError(f"Output directory does not exist: {output_path.parent}")

    error_row_numbers = sorted({e.row_number for e in result.all_errors})
    error_indices = [r - 2 for r in error_row_numbers]

    error_df = df.iloc[error_indices].copy()
    error_df["validation_errors"] = [
        "; ".join(
            f"{e.column_name}: {e.message}" for e in result.all_errors if e.row_number == r
        )
        for r in error_row_numbers
    ]

    error_df.to_csv(output_path, index=False, encoding="utf-8")
    logger.info(f"Exported {len(error_df)} invalid rows to {output_path}")
