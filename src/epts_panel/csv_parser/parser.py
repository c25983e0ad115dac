"""CSV parser for waitlist listing extracts.

This module reads listing extracts with legacy registry column names, maps
them onto StaticPatientRecord field names and converts the rows into
records ready for panel expansion.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from epts_panel.config.schema import ColumnsConfig
from epts_panel.csv_parser.validator import (
    BOOL_COLUMNS,
    DATE_COLUMNS,
    DATE_FORMAT,
    ValidationIssue,
    ValidationResult,
    parse_bool_value,
    validate_listings,
)
from epts_panel.models.panel import ExclusionReason, ExclusionRecord
from epts_panel.models.patient import StaticPatientRecord
from epts_panel.utils.exceptions import ValidationError


logger = logging.getLogger(__name__)

# Required columns (normalised names)
REQUIRED_COLUMNS = [
    "patient_id",
    "listing_date",
    "age_at_listing_months",
    "has_diabetes",
    "has_previous_transplant",
]

# Optional columns (normalised names)
OPTIONAL_COLUMNS = [
    "last_listing_date",
    "removal_date",
    "on_dialysis_at_listing",
    "dialysis_duration_at_listing_years",
    "dialysis_start_date",
    "race_category",
    "started_dialysis_on_waitlist",
]

NUMERIC_COLUMNS = ["age_at_listing_months", "dialysis_duration_at_listing_years"]


def parse_csv(
    file_path: Path,
    columns: Optional[ColumnsConfig] = None,
    validate: bool = True,
    allow_duplicate_ids: bool = False,
) -> tuple[pd.DataFrame, Optional[ValidationResult]]:
    """Parse a waitlist listing extract.

    Source columns are renamed through the column map; columns that already
    carry the normalised name are accepted as-is. Values are kept as the
    strings that appeared in the file so validation can report them
    verbatim. Type conversion happens in to_static_records and
    collapse_listings.

    Args:
        file_path: Path to CSV file containing one row per listing
        columns: Source column names, defaults to the registry names
        validate: If True, runs row-level validation and returns its result
        allow_duplicate_ids: Accept several rows per patient_id (concurrent
            listings that will be collapsed)

    Returns:
        Tuple of (DataFrame, ValidationResult):
        - DataFrame with normalised column names, string values
        - ValidationResult with row-level issues, or None if validate=False

    Raises:
        ValidationError: If the file is unreadable or required columns are missing
        FileNotFoundError: If CSV file does not exist

    Example:
        >>> df, result = parse_csv(Path("listings.csv"))
        >>> if not result.has_errors:
        ...     records = to_static_records(df)
    """
    logger.info(f"Loading CSV from {file_path}")

    if not file_path.exists():
        raise FileNotFoundError(f"CSV file not found: {file_path}")

    try:
        df = pd.read_csv(file_path, encoding="utf-8", dtype=str)
    except Exception as e:
        raise ValidationError(
            f"Failed to read CSV file {file_path}. Ensure file is valid CSV with UTF-8 encoding. Error: {e}"
        ) from e

    columns = columns or ColumnsConfig()
    rename_map = {src: dst for src, dst in columns.rename_map().items() if src in df.columns}
    df = df.rename(columns=rename_map)

    missing_columns = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing_columns:
        expected = [getattr(columns, col) for col in missing_columns]
        raise ValidationError(
            f"Missing required columns: {', '.join(missing_columns)} "
            f"(source names: {', '.join(expected)})"
        )

    # Unknown columns stay in the frame (e.g. a treatment indicator) but are
    # never read into a record
    known = set(REQUIRED_COLUMNS + OPTIONAL_COLUMNS)
    unknown_columns = [col for col in df.columns if col not in known]
    if unknown_columns:
        logger.warning(
            f"CSV contains unknown columns that will be ignored: {', '.join(unknown_columns)}"
        )

    df["patient_id"] = df["patient_id"].str.strip()
    logger.info(f"Successfully parsed {len(df)} listing row(s)")

    validation_result = None
    if validate:
        logger.info("Running comprehensive validation")
        validation_result = validate_listings(df, allow_duplicate_ids=allow_duplicate_ids)

        for warning in validation_result.all_warnings:
            logger.warning(
                f"Row {warning.row_number} [{warning.column_name}]: {warning.message}"
            )

        logger.info(
            f"Comprehensive validation complete: {len(validation_result.all_errors)} errors, "
            f"{len(validation_result.all_warnings)} warnings"
        )

    return df, validation_result


def reject_invalid_rows(
    df: pd.DataFrame, result: ValidationResult
) -> tuple[pd.DataFrame, list[ExclusionRecord]]:
    """Split off the patients whose rows failed validation.

    Every row of a patient with at least one row-level error is removed, so a
    patient is either expanded from clean rows or excluded as a whole. A row
    without a patient_id is excluded on its own. The exclusion reason is
    missing_required_field when a required value was blank, data_quality
    when a value was malformed.

    Args:
        df: Listing frame as returned by parse_csv
        result: ValidationResult for the same frame

    Returns:
        Tuple of (remaining rows, one ExclusionRecord per rejected patient)

    Raises:
        ValidationError: If the result reports duplicate patient IDs; these
            have to be collapsed or removed before expansion

    Example:
        >>> df, result = parse_csv(Path("listings.csv"))
        >>> clean, rejected = reject_invalid_rows(df, result)
        >>> panel = run_pipeline(to_static_records(clean), table, rejected=rejected)
    """
    if result.duplicate_patient_ids:
        shown = ", ".join(result.duplicate_patient_ids[:5])
        more = ", ..." if len(result.duplicate_patient_ids) > 5 else ""
        raise ValidationError(
            f"Duplicate patient IDs in input: {shown}{more}. "
            "Use --collapse-listings or remove the duplicate rows."
        )
    if not result.has_errors:
        return df, []

    ids = df["patient_id"]
    # (patient_id, 0) per patient; (None, row_number) for rows without an id
    issues_by_patient: dict[tuple[Optional[str], int], list[ValidationIssue]] = {}
    for issue in sorted(result.all_errors, key=lambda i: i.row_number):
        patient_id = ids.iloc[issue.row_number - 2]
        if pd.isna(patient_id) or patient_id == "":
            key = (None, issue.row_number)
        else:
            key = (str(patient_id), 0)
        issues_by_patient.setdefault(key, []).append(issue)

    rejected = []
    for (patient_id, _), issues in issues_by_patient.items():
        missing = any(i.missing_value for i in issues)
        rejected.append(
            ExclusionRecord(
                patient_id=patient_id,
                reason=(
                    ExclusionReason.MISSING_REQUIRED_FIELD
                    if missing
                    else ExclusionReason.DATA_QUALITY
                ),
                message="; ".join(
                    f"row {i.row_number} [{i.column_name}]: {i.message}" for i in issues
                ),
            )
        )

    bad_ids = [patient_id for patient_id, _ in issues_by_patient if patient_id is not None]
    drop = ids.isna() | (ids == "") | ids.isin(bad_ids)
    logger.warning(
        f"{len(rejected)} patient(s) excluded before expansion "
        f"({int(drop.sum())} row(s) with validation errors)"
    )
    return df[~drop].reset_index(drop=True), rejected


def _lenient_bool(value: Any) -> Optional[bool]:
    try:
        return parse_bool_value(value)
    except ValueError:
        return None


def normalise_listings(df: pd.DataFrame) -> pd.DataFrame:
    """Convert string columns to dates, numbers and flags.

    Unparseable values become missing; run validation first to report them.
    Safe to call on a frame that is already normalised.
    """
    out = df.copy()
    for column in DATE_COLUMNS:
        if column in out.columns:
            out[column] = pd.to_datetime(out[column], format=DATE_FORMAT, errors="coerce")
    for column in NUMERIC_COLUMNS:
        if column in out.columns:
            out[column] = pd.to_numeric(out[column], errors="coerce")
    for column in BOOL_COLUMNS:
        if column in out.columns:
            out[column] = out[column].map(_lenient_bool).astype(object)
    return out


def collapse_listings(df: pd.DataFrame) -> pd.DataFrame:
    """Collapse concurrent (multi-center) listings to one row per patient.

    The collapsed row keeps the earliest listing date, the latest listing
    date as last_listing_date, the latest removal date, and the first
    non-missing value of every other column.

    Args:
        df: Listing frame as returned by parse_csv (or already normalised)

    Returns:
        Normalised frame with one row per patient_id, sorted by patient_id
    """
    out = normalise_listings(df)
    if "last_listing_date" in out.columns:
        out["last_listing_date"] = out[["listing_date", "last_listing_date"]].max(axis=1)
    else:
        out["last_listing_date"] = out["listing_date"]

    aggregations = {col: "first" for col in out.columns if col != "patient_id"}
    aggregations["listing_date"] = "min"
    aggregations["last_listing_date"] = "max"
    if "removal_date" in out.columns:
        aggregations["removal_date"] = "max"

    collapsed = out.groupby("patient_id", sort=True).agg(aggregations).reset_index()
    dropped = len(out) - len(collapsed)
    if dropped:
        logger.info(f"Collapsed {dropped} concurrent listing row(s) into {len(collapsed)} patient(s)")
    return collapsed[list(out.columns)]


def _optional_date(value: Any) -> Optional[date]:
    if value is None or pd.isna(value):
        return None
    return pd.Timestamp(value).date()


def _optional_number(value: Any) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _optional_bool(value: Any) -> Optional[bool]:
    if value is None or pd.isna(value):
        return None
    return bool(value)


def _optional_months(value: Any, patient_id: Any) -> Optional[int]:
    months = _optional_number(value)
    if months is None:
        return None
    # Validation rejects fractional ages; unvalidated input is rounded
    if not months.is_integer():
        logger.warning(
            f"patient_id={patient_id}: age {months} is not a whole number of months, "
            f"rounded to {round(months)}"
        )
    return int(round(months))


def to_static_records(df: pd.DataFrame) -> list[StaticPatientRecord]:
    """Convert listing rows into StaticPatientRecords.

    Missing values become None; a missing on-dialysis-at-listing flag is
    read as False. A fractional age in months, which validation reports as an
    error, is rounded to the nearest month here.

    Args:
        df: Listing frame from parse_csv or collapse_listings

    Returns:
        One record per row, in frame order
    """
    frame = normalise_listings(df)
    records = []
    for row in frame.to_dict("records"):
        race = row.get("race_category")
        records.append(
            StaticPatientRecord(
                patient_id=str(row["patient_id"]),
                listing_date=_optional_date(row.get("listing_date")),
                last_listing_date=_optional_date(row.get("last_listing_date")),
                removal_date=_optional_date(row.get("removal_date")),
                age_at_listing_months=_optional_months(
                    row.get("age_at_listing_months"), row["patient_id"]
                ),
                on_dialysis_at_listing=bool(_optional_bool(row.get("on_dialysis_at_listing"))),
                dialysis_duration_at_listing_years=_optional_number(
                    row.get("dialysis_duration_at_listing_years")
                ),
                dialysis_start_date=_optional_date(row.get("dialysis_start_date")),
                has_previous_transplant=_optional_bool(row.get("has_previous_transplant")),
                has_diabetes=_optional_bool(row.get("has_diabetes")),
                race_category=None if race is None or pd.isna(race) else str(race),
                started_dialysis_on_waitlist=_optional_bool(
                    row.get("started_dialysis_on_waitlist")
                ),
            )
        )
    logger.debug(f"Converted {len(records)} listing row(s) to records")
    return records
