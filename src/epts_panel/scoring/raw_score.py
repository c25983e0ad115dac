"""EPTS raw score formula.

The raw score is a fixed linear model with diabetes interactions:

    raw = 0.047*max(age-25,0) - 0.015*diabetes*max(age-25,0)
        + 0.398*prevTx - 0.237*diabetes*prevTx
        + 0.315*ln(dialysis_time+1) - 0.099*diabetes*ln(dialysis_time+1)
        + 0.130*(dialysis_time==0) - 0.348*diabetes*(dialysis_time==0)
        + 1.262*diabetes
"""

import math
from typing import Optional

import pandas as pd

from epts_panel.utils.exceptions import DataQualityError


AGE_PIVOT_YEARS = 25.0

COEF_AGE = 0.047
COEF_AGE_DIABETES = -0.015
COEF_PREV_TX = 0.398
COEF_PREV_TX_DIABETES = -0.237
COEF_LOG_DIALYSIS = 0.315
COEF_LOG_DIALYSIS_DIABETES = -0.099
COEF_NO_DIALYSIS = 0.130
COEF_NO_DIALYSIS_DIABETES = -0.348
COEF_DIABETES = 1.262


def compute_raw_score(
    age_years: Optional[float],
    has_diabetes: Optional[bool],
    has_previous_transplant: Optional[bool],
    dialysis_time_years: Optional[float],
    patient_id: Optional[str] = None,
) -> Optional[float]:
    """Compute the EPTS raw score for one patient-month.

    Args:
        age_years: Candidate age in years
        has_diabetes: Diabetes flag
        has_previous_transplant: Prior transplant flag
        dialysis_time_years: Cumulative dialysis time in years
        patient_id: Used only in error messages

    Returns:
        Raw score, or None when age or dialysis time is missing

    Raises:
        DataQualityError: If diabetes or previous transplant status is missing
    """
    if has_diabetes is None or pd.isna(has_diabetes):
        raise DataQualityError(patient_id, "diabetes status is missing")
    if has_previous_transplant is None or pd.isna(has_previous_transplant):
        raise DataQualityError(patient_id, "previous transplant status is missing")

    if age_years is None or pd.isna(age_years):
        return None
    if dialysis_time_years is None or pd.isna(dialysis_time_years):
        return None

    diabetes = 1.0 if has_diabetes else 0.0
    prev_tx = 1.0 if has_previous_transplant else 0.0
    age_term = max(age_years - AGE_PIVOT_YEARS, 0.0)
    log_dialysis = math.log(dialysis_time_years + 1.0)
    no_dialysis = 1.0 if dialysis_time_years == 0 else 0.0

    return (
        COEF_AGE * age_term
        + COEF_AGE_DIABETES * diabetes * age_term
        + COEF_PREV_TX * prev_tx
        + COEF_PREV_TX_DIABETES * diabetes * prev_tx
        + COEF_LOG_DIALYSIS * log_dialysis
        + COEF_LOG_DIALYSIS_DIABETES * diabetes * log_dialysis
        + COEF_NO_DIALYSIS * no_dialysis
        + COEF_NO_DIALYSIS_DIABETES * diabetes * no_dialysis
        + COEF_DIABETES * diabetes
    )
