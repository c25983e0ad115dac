"""Discrete-time panel expansion.

This module turns one static waitlist record into one record per month on the
waitlist. Every monthly field is computed directly from the static record and
the month index, so rows can be built in any order and patients are fully
independent of each other.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Optional

from epts_panel.models.panel import DataQualityIssue, MonthlyRecord
from epts_panel.models.patient import DialysisOnset, StaticPatientRecord
from epts_panel.utils.exceptions import (
    DataQualityError,
    InvalidTemporalOrderError,
    MissingRequiredFieldError,
)


logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365
MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class ExpansionPlan:
    """Per-patient quantities resolved once before rows are generated.

    Attributes:
        record: Source static record
        end_date: Resolved end of observation
        months_total: Whole months on the waitlist; the panel has months_total + 1 rows
        onset: Resolved dialysis onset tag
        months_until_dialysis: Month index of onset (0 unless onset is DURING_WAITLIST)
    """

    record: StaticPatientRecord
    end_date: date
    months_total: int
    onset: DialysisOnset
    months_until_dialysis: int

    @property
    def row_count(self) -> int:
        return self.months_total + 1


def resolve_end_date(record: StaticPatientRecord) -> date:
    """Resolve the waitlist end date.

    Uses removal_date when present, otherwise last_listing_date.

    Raises:
        MissingRequiredFieldError: If neither date is available
    """
    if record.removal_date is not None:
        return record.removal_date
    if record.last_listing_date is not None:
        logger.debug(
            f"patient_id={record.patient_id}: no removal date, "
            f"using last listing date {record.last_listing_date}"
        )
        return record.last_listing_date
    raise MissingRequiredFieldError(
        record.patient_id, "no removal date and no last listing date to fall back on"
    )


def whole_months(days: int, days_per_year: int = DAYS_PER_YEAR) -> int:
    """Convert a non-negative day count to floor(days * 12 / days_per_year)."""
    return (days * MONTHS_PER_YEAR) // days_per_year


def classify_dialysis_onset(
    record: StaticPatientRecord, tolerance_days: int = 0
) -> DialysisOnset:
    """Resolve how and when a patient started dialysis.

    A dialysis start strictly after listing is an onset during the waitlist.
    Without one, dialysis at listing wins; otherwise the source flag tells a
    confirmed "not started" apart from "unknown" and from a flagged onset with
    no usable date.

    Args:
        record: Static patient record
        tolerance_days: How far a dialysis start may precede listing before the
            record is rejected

    Returns:
        DialysisOnset tag

    Raises:
        InvalidTemporalOrderError: If dialysis start precedes listing by more
            than tolerance_days
    """
    start = record.dialysis_start_date
    if start is not None:
        lead_days = (record.listing_date - start).days
        if lead_days > tolerance_days:
            raise InvalidTemporalOrderError(
                record.patient_id,
                f"dialysis start {start} precedes listing {record.listing_date} "
                f"by {lead_days} days (tolerance {tolerance_days})",
            )
        if start > record.listing_date:
            return DialysisOnset.DURING_WAITLIST

    if record.on_dialysis_at_listing:
        return DialysisOnset.AT_LISTING
    if record.started_dialysis_on_waitlist is None:
        return DialysisOnset.UNKNOWN
    if record.started_dialysis_on_waitlist:
        return DialysisOnset.AMBIGUOUS
    return DialysisOnset.NOT_STARTED


def plan_expansion(
    record: StaticPatientRecord,
    tolerance_days: int = 0,
    days_per_year: int = DAYS_PER_YEAR,
) -> ExpansionPlan:
    """Validate a static record and resolve its per-patient quantities.

    Raises:
        MissingRequiredFieldError: If listing date, age or end date is missing
        InvalidTemporalOrderError: If wait time is negative or dialysis start
            is too early
        DataQualityError: If the dialysis duration at listing is negative or
            not finite
    """
    if record.listing_date is None:
        raise MissingRequiredFieldError(record.patient_id, "no listing date")
    if record.age_at_listing_months is None:
        raise MissingRequiredFieldError(record.patient_id, "no age at listing")

    duration = record.dialysis_duration_at_listing_years
    if duration is not None and not (math.isfinite(duration) and duration >= 0):
        raise DataQualityError(
            record.patient_id,
            f"dialysis duration at listing must be a non-negative number of years, got {duration}",
        )

    end_date = resolve_end_date(record)
    wait_time_days = (end_date - record.listing_date).days
    if wait_time_days < 0:
        raise InvalidTemporalOrderError(
            record.patient_id,
            f"end date {end_date} is {-wait_time_days} days before listing {record.listing_date}",
        )

    onset = classify_dialysis_onset(record, tolerance_days)
    months_until_dialysis = 0
    if onset is DialysisOnset.DURING_WAITLIST:
        onset_days = (record.dialysis_start_date - record.listing_date).days
        months_until_dialysis = whole_months(onset_days, days_per_year)

    return ExpansionPlan(
        record=record,
        end_date=end_date,
        months_total=whole_months(wait_time_days, days_per_year),
        onset=onset,
        months_until_dialysis=months_until_dialysis,
    )


def dialysis_months_accrued(plan: ExpansionPlan, time_index: int) -> int:
    """Months of dialysis accrued on the waitlist by a given month."""
    if plan.onset is DialysisOnset.DURING_WAITLIST:
        return max(time_index - plan.months_until_dialysis, 0)
    if plan.onset is DialysisOnset.AT_LISTING:
        return time_index - plan.months_until_dialysis
    return 0


def build_monthly_record(plan: ExpansionPlan, time_index: int) -> MonthlyRecord:
    """Build the row for one month, independent of every other month.

    Indexes past the end of the waitlist are clamped to months_total.

    Note:
        Age accrues (time_index + 1) / 12, so the listing month already
        carries one month of ageing. This matches the reference score
        derivation and is kept as is.
    """
    if time_index < 0:
        raise ValueError(f"time_index must be >= 0, got {time_index}")
    time_index = min(time_index, plan.months_total)
    record = plan.record

    age_years = (
        record.age_at_listing_months / MONTHS_PER_YEAR
        + (time_index + 1) / MONTHS_PER_YEAR
    )

    dialysis_time_years: Optional[float] = None
    if record.dialysis_duration_at_listing_years is not None:
        dialysis_time_years = (
            record.dialysis_duration_at_listing_years
            + dialysis_months_accrued(plan, time_index) / MONTHS_PER_YEAR
        )

    return MonthlyRecord(
        patient_id=record.patient_id,
        time_index=time_index,
        age_years=age_years,
        dialysis_time_years=dialysis_time_years,
        on_dialysis=dialysis_time_years is not None and dialysis_time_years > 0,
        has_diabetes=record.has_diabetes,
        has_previous_transplant=record.has_previous_transplant,
        race_category=record.race_category,
        dialysis_onset=plan.onset.value,
    )


def onset_issues(plan: ExpansionPlan) -> list[DataQualityIssue]:
    """Data-quality diagnostics for the resolved dialysis onset.

    Only contradictory onset evidence is reported. A record with no dialysis
    start and no waitlist flag is tagged UNKNOWN on its rows and counted in
    the run summary, but it is consistent with never dialyzing and gets no
    warning.
    """
    record = plan.record
    issues: list[DataQualityIssue] = []

    if plan.onset is DialysisOnset.AMBIGUOUS:
        issues.append(
            DataQualityIssue(
                patient_id=record.patient_id,
                kind="ambiguous_dialysis_onset",
                message="flagged as starting dialysis on the waitlist but no onset "
                "date after listing; treated as not started",
            )
        )
    elif (
        plan.onset is DialysisOnset.DURING_WAITLIST
        and record.started_dialysis_on_waitlist is False
    ):
        issues.append(
            DataQualityIssue(
                patient_id=record.patient_id,
                kind="conflicting_dialysis_onset",
                message=f"flagged as not starting dialysis on the waitlist but dialysis "
                f"started {record.dialysis_start_date}; the start date is used",
            )
        )

    if record.dialysis_duration_at_listing_years is None:
        issues.append(
            DataQualityIssue(
                patient_id=record.patient_id,
                kind="missing_dialysis_duration",
                message="dialysis duration at listing missing; scores left empty",
            )
        )
    return issues


def expand_patient(
    record: StaticPatientRecord,
    tolerance_days: int = 0,
    days_per_year: int = DAYS_PER_YEAR,
) -> tuple[list[MonthlyRecord], list[DataQualityIssue]]:
    """Expand one static record into its monthly panel.

    Args:
        record: Static patient record
        tolerance_days: Allowed lead of dialysis start before listing
        days_per_year: Day count used to convert days to months

    Returns:
        Tuple of (monthly records ordered by time_index, data-quality issues)

    Raises:
        MissingRequiredFieldError: If a field needed for expansion is missing
        InvalidTemporalOrderError: If record dates are out of order
    """
    plan = plan_expansion(record, tolerance_days, days_per_year)
    issues = onset_issues(plan)
    for issue in issues:
        if issue.kind in ("ambiguous_dialysis_onset", "conflicting_dialysis_onset"):
            logger.warning(f"patient_id={record.patient_id}: {issue.message}")

    rows = [build_monthly_record(plan, t) for t in range(plan.row_count)]
    logger.debug(
        f"patient_id={record.patient_id}: {len(rows)} month(s), onset={plan.onset.value}, "
        f"months_until_dialysis={plan.months_until_dialysis}"
    )
    return rows, issues
