"""Monthly panel data models.

This module defines the per-month record produced by panel expansion and the
run-level result that bundles the scored panel with exclusions and data-quality
diagnostics.
"""

from collections import Counter
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

import pandas as pd


# Output column order of the scored panel
PANEL_COLUMNS = [
    "patient_id",
    "time_index",
    "age_years",
    "dialysis_time_years",
    "on_dialysis",
    "has_diabetes",
    "has_previous_transplant",
    "race_category",
    "dialysis_onset",
    "raw_score",
    "percentile_score",
]


class ExclusionReason(Enum):
    """Why a patient was left out of the panel."""

    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_TEMPORAL_ORDER = "invalid_temporal_order"
    DATA_QUALITY = "data_quality"


@dataclass
class MonthlyRecord:
    """One patient-month on the waitlist.

    Score fields start empty and are filled once, right after the row is built.

    Attributes:
        patient_id: Patient identifier
        time_index: Months since listing (0 = listing month)
        age_years: Age in years, accruing 1/12 per month
        dialysis_time_years: Cumulative dialysis time in years
        on_dialysis: True iff dialysis_time_years > 0
        has_diabetes: Static diabetes flag
        has_previous_transplant: Static previous transplant flag
        race_category: Carried through, not used in scoring
        dialysis_onset: DialysisOnset value resolved for the patient
        raw_score: EPTS raw score, None when inputs are missing
        percentile_score: EPTS percentile 0-100, None when raw_score is None
    """

    patient_id: str
    time_index: int
    age_years: Optional[float]
    dialysis_time_years: Optional[float]
    on_dialysis: bool
    has_diabetes: Optional[bool]
    has_previous_transplant: Optional[bool]
    race_category: Optional[str]
    dialysis_onset: str
    raw_score: Optional[float] = None
    percentile_score: Optional[int] = None


@dataclass
class ExclusionRecord:
    """A patient dropped from the panel, with the reason."""

    patient_id: Optional[str]
    reason: ExclusionReason
    message: str


@dataclass
class DataQualityIssue:
    """A non-fatal problem noticed while expanding a patient."""

    patient_id: str
    kind: str
    message: str


def records_to_frame(records: list[MonthlyRecord]) -> pd.DataFrame:
    """Build the panel DataFrame from monthly records.

    Args:
        records: Monthly records, already in output order

    Returns:
        DataFrame with PANEL_COLUMNS; percentile_score uses nullable Int64
    """
    df = pd.DataFrame([asdict(r) for r in records], columns=PANEL_COLUMNS)
    df["time_index"] = df["time_index"].astype("int64")
    df["raw_score"] = pd.to_numeric(df["raw_score"], errors="coerce").astype("float64")
    df["percentile_score"] = df["percentile_score"].astype("Int64")
    return df


@dataclass
class PanelResult:
    """Outcome of one pipeline run.

    Attributes:
        panel: Scored panel ordered by patient_id then time_index
        total_patients: Number of static records received
        exclusions: Patients left out, with reasons
        data_quality_issues: Warnings that did not exclude the patient
        score_version: Version of the percentile table used
    """

    panel: pd.DataFrame
    total_patients: int
    exclusions: list[ExclusionRecord] = field(default_factory=list)
    data_quality_issues: list[DataQualityIssue] = field(default_factory=list)
    score_version: str = ""

    @property
    def expanded_patients(self) -> int:
        """Number of patients present in the panel."""
        return self.total_patients - len(self.exclusions)

    @property
    def has_exclusions(self) -> bool:
        """Check if any patient was excluded."""
        return len(self.exclusions) > 0

    def exclusion_summary(self) -> dict[str, int]:
        """Count excluded patients per reason.

        Returns:
            Mapping of reason value to patient count
        """
        counts = Counter(e.reason.value for e in self.exclusions)
        return dict(sorted(counts.items()))

    def onset_summary(self) -> dict[str, int]:
        """Count expanded patients per resolved dialysis onset.

        Patients tagged unknown are counted here rather than reported one by
        one as data-quality issues.

        Returns:
            Mapping of DialysisOnset value to patient count
        """
        if self.panel.empty:
            return {}
        per_patient = self.panel.drop_duplicates("patient_id")["dialysis_onset"]
        return dict(sorted(Counter(per_patient).items()))

    def exclusions_frame(self) -> pd.DataFrame:
        """Exclusions as a table (patient_id, reason, message)."""
        return pd.DataFrame(
            [
                {"patient_id": e.patient_id, "reason": e.reason.value, "message": e.message}
                for e in self.exclusions
            ],
            columns=["patient_id", "reason", "message"],
        )

    def data_quality_frame(self) -> pd.DataFrame:
        """Data-quality issues as a table (patient_id, kind, message)."""
        return pd.DataFrame(
            [asdict(i) for i in self.data_quality_issues],
            columns=["patient_id", "kind", "message"],
        )

    def format_report(self) -> str:
        """Format run results as human-readable report.

        Returns:
            Multi-line string with counts, exclusion reasons and warnings
        """
        lines = []
        lines.append("=" * 60)
        lines.append("EPTS PANEL REPORT")
        lines.append("=" * 60)
        lines.append("")

        lines.append("SUMMARY:")
        lines.append(f"  Score version: {self.score_version}")
        lines.append(f"  Patients received: {self.total_patients}")
        lines.append(f"  Patients expanded: {self.expanded_patients}")
        lines.append(f"  Patients excluded: {len(self.exclusions)}")
        lines.append(f"  Patient-months: {len(self.panel)}")
        lines.append("")

        onset_counts = self.onset_summary()
        if onset_counts:
            lines.append("DIALYSIS ONSET:")
            for onset, count in onset_counts.items():
                lines.append(f"  {onset}: {count}")
            lines.append("")

        if self.exclusions:
            lines.append("EXCLUSIONS BY REASON:")
            for reason, count in self.exclusion_summary().items():
                lines.append(f"  {reason}: {count}")
            lines.append("")
            lines.append(f"EXCLUDED PATIENTS ({len(self.exclusions)}):")
            for exclusion in self.exclusions[:20]:  # Limit display to first 20
                lines.append(f"  {exclusion.patient_id}: {exclusion.message}")
            if len(self.exclusions) > 20:
                lines.append(f"  ... and {len(self.exclusions) - 20} more")
            lines.append("")

        if self.data_quality_issues:
            lines.append(f"DATA QUALITY WARNINGS ({len(self.data_quality_issues)}):")
            for issue in self.data_quality_issues[:20]:
                lines.append(f"  {issue.patient_id} [{issue.kind}]: {issue.message}")
            if len(self.data_quality_issues) > 20:
                lines.append(f"  ... and {len(self.data_quality_issues) - 20} more")
            lines.append("")

        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Export run summary as structured dictionary for JSON serialization.

        The panel itself is not included; it is written as a table.
        """
        return {
            "score_version": self.score_version,
            "total_patients": self.total_patients,
            "expanded_patients": self.expanded_patients,
            "excluded_patients": len(self.exclusions),
            "patient_months": len(self.panel),
            "exclusions_by_reason": self.exclusion_summary(),
            "dialysis_onset_counts": self.onset_summary(),
            "exclusions": [
                {"patient_id": e.patient_id, "reason": e.reason.value, "message": e.message}
                for e in self.exclusions
            ],
            "data_quality_issues": [asdict(i) for i in self.data_quality_issues],
        }
