"""Pipeline driver: expand, score and collect a waitlist cohort.

Each patient is expanded and scored on its own. Per-patient errors exclude
only that patient; everything else (a broken score table, duplicate ids)
stops the run. The combined panel is ordered by patient_id then time_index
regardless of how many workers processed it.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Optional

from epts_panel.logging_audit import log_audit_event
from epts_panel.models.panel import (
    DataQualityIssue,
    ExclusionReason,
    ExclusionRecord,
    MonthlyRecord,
    PanelResult,
    records_to_frame,
)
from epts_panel.models.patient import StaticPatientRecord
from epts_panel.panel.expander import DAYS_PER_YEAR, expand_patient
from epts_panel.scoring.raw_score import compute_raw_score
from epts_panel.scoring.table import ScoreTable
from epts_panel.utils.exceptions import PatientExpansionError, ValidationError


logger = logging.getLogger(__name__)


@dataclass
class PatientOutcome:
    """Result of expanding and scoring one patient."""

    patient_id: str
    rows: list[MonthlyRecord] = field(default_factory=list)
    issues: list[DataQualityIssue] = field(default_factory=list)
    exclusion: Optional[ExclusionRecord] = None


def score_rows(rows: list[MonthlyRecord], table: ScoreTable) -> None:
    """Fill raw_score and percentile_score on freshly built rows.

    Raises:
        DataQualityError: If diabetes or previous transplant status is missing
    """
    for row in rows:
        row.raw_score = compute_raw_score(
            row.age_years,
            row.has_diabetes,
            row.has_previous_transplant,
            row.dialysis_time_years,
            patient_id=row.patient_id,
        )
        row.percentile_score = table.lookup(row.raw_score)


def process_patient(
    record: StaticPatientRecord,
    table: ScoreTable,
    tolerance_days: int = 0,
    days_per_year: int = DAYS_PER_YEAR,
) -> PatientOutcome:
    """Expand and score one patient, turning per-patient errors into an exclusion."""
    outcome = PatientOutcome(patient_id=record.patient_id)
    try:
        rows, issues = expand_patient(record, tolerance_days, days_per_year)
        score_rows(rows, table)
    except PatientExpansionError as e:
        logger.warning(f"Excluding patient_id={record.patient_id}: {e.message}")
        outcome.exclusion = ExclusionRecord(
            patient_id=record.patient_id,
            reason=ExclusionReason(e.reason),
            message=e.message,
        )
        return outcome

    outcome.rows = rows
    outcome.issues = issues
    return outcome


def _check_unique_ids(
    records: list[StaticPatientRecord], rejected: list[ExclusionRecord]
) -> None:
    seen: set[str] = set()
    duplicates: list[str] = []
    patient_ids = [r.patient_id for r in records]
    patient_ids += [e.patient_id for e in rejected if e.patient_id is not None]
    for patient_id in patient_ids:
        if patient_id in seen:
            duplicates.append(str(patient_id))
        seen.add(patient_id)
    if duplicates:
        raise ValidationError(
            f"Duplicate patient IDs in input: {', '.join(sorted(set(duplicates))[:5])}"
            f"{'...' if len(set(duplicates)) > 5 else ''}. "
            "Collapse concurrent listings to one record per patient first."
        )


def _patient_sort_key(patient_id: Optional[str]) -> str:
    return "" if patient_id is None else str(patient_id)


def run_pipeline(
    records: Iterable[StaticPatientRecord],
    table: ScoreTable,
    tolerance_days: int = 0,
    days_per_year: int = DAYS_PER_YEAR,
    workers: int = 1,
    rejected: Iterable[ExclusionRecord] = (),
) -> PanelResult:
    """Expand and score a cohort of static records.

    Patients are ordered by the string form of patient_id, so ids sort
    lexically: "P10" comes before "P9" and "10" before "9". Zero-pad numeric
    ids when numeric order matters downstream.

    Args:
        records: One static record per patient
        table: Percentile breakpoint table
        tolerance_days: Allowed lead of dialysis start before listing
        days_per_year: Day count used to convert days to months
        workers: Number of worker threads; 1 processes patients in a single pass
        rejected: Patients already excluded upstream (e.g. rows that failed
            input validation); reported and counted with the run's own exclusions

    Returns:
        PanelResult with the scored panel, exclusions and data-quality issues

    Raises:
        ValidationError: If patient IDs are not unique
        ValueError: If workers < 1
    """
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")

    records = list(records)
    rejected = list(rejected)
    _check_unique_ids(records, rejected)
    started = time.monotonic()
    logger.info(
        f"Expanding {len(records)} patient(s) with score table {table.version} "
        f"using {workers} worker(s)"
    )

    if workers == 1:
        outcomes = [
            process_patient(r, table, tolerance_days, days_per_year) for r in records
        ]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(
                executor.map(
                    lambda r: process_patient(r, table, tolerance_days, days_per_year),
                    records,
                )
            )

    outcomes.sort(key=lambda o: _patient_sort_key(o.patient_id))

    rows: list[MonthlyRecord] = []
    exclusions: list[ExclusionRecord] = list(rejected)
    issues: list[DataQualityIssue] = []
    for outcome in outcomes:
        if outcome.exclusion is not None:
            exclusions.append(outcome.exclusion)
            continue
        rows.extend(outcome.rows)
        issues.extend(outcome.issues)
    exclusions.sort(key=lambda e: _patient_sort_key(e.patient_id))

    for exclusion in exclusions:
        log_audit_event(
            "PATIENT_EXCLUDED",
            {
                "status": "excluded",
                "reason": exclusion.reason.value,
                "patient_id": exclusion.patient_id,
            },
        )

    result = PanelResult(
        panel=records_to_frame(rows),
        total_patients=len(records) + len(rejected),
        exclusions=exclusions,
        data_quality_issues=issues,
        score_version=table.version,
    )

    log_audit_event(
        "PANEL_EXPANDED",
        {
            "status": "success",
            "score_version": table.version,
            "patient_count": result.expanded_patients,
            "month_count": len(result.panel),
            "excluded_count": len(exclusions),
            "duration": time.monotonic() - started,
        },
    )
    return result
