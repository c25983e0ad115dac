"""Panel module.

This module provides the monthly panel expansion and the pipeline driver that
expands and scores a whole cohort.
"""

from epts_panel.panel.expander import (
    build_monthly_record,
    classify_dialysis_onset,
    expand_patient,
    plan_expansion,
    resolve_end_date,
)
from epts_panel.panel.pipeline import process_patient, run_pipeline

__all__ = [
    "build_monthly_record",
    "classify_dialysis_onset",
    "expand_patient",
    "plan_expansion",
    "process_patient",
    "resolve_end_date",
    "run_pipeline",
]
