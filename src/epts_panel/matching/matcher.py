"""Propensity-score matching for comparable waitlist cohorts.

The matcher fits a logistic propensity model on candidate covariates (never
donor characteristics, which are exogenous to treatment assignment) and pairs
every treated patient with its nearest-propensity untreated patient, 1:1
without replacement. Unmatched patients are dropped.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

import numpy as np
import pandas as pd
from sklearn.impute import SimpleImputer
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from epts_panel.models.patient import StaticPatientRecord
from epts_panel.utils.exceptions import MatchingError


logger = logging.getLogger(__name__)

DEFAULT_COVARIATES = [
    "age_years",
    "dialysis_time_years",
    "never_dialyzed",
    "has_diabetes",
    "has_previous_transplant",
]


@dataclass
class MatchResult:
    """Outcome of 1:1 propensity-score matching.

    Attributes:
        propensity_scores: P(treated | covariates) per patient_id
        pairs: One row per matched pair (treated_id, control_id, distance)
        matched: Covariates and treatment of matched patients only
        balance: Standardized mean difference per covariate, pre and post
    """

    propensity_scores: pd.Series
    pairs: pd.DataFrame
    matched: pd.DataFrame
    balance: pd.DataFrame

    @property
    def matched_pair_count(self) -> int:
        return len(self.pairs)

    def format_report(self) -> str:
        lines = ["=" * 60, "PROPENSITY MATCHING REPORT", "=" * 60, ""]
        lines.append(f"  Matched pairs: {self.matched_pair_count}")
        lines.append("")
        lines.append("BALANCE (standardized mean difference):")
        lines.append(f"  {'covariate':<26}{'pre':>10}{'post':>10}")
        for row in self.balance.itertuples(index=False):
            lines.append(f"  {row.covariate:<26}{row.smd_pre:>10.3f}{row.smd_post:>10.3f}")
        lines.append("=" * 60)
        return "\n".join(lines)


class CohortMatcher(Protocol):
    """Anything that can build a matched cohort from covariates and treatment."""

    def match(self, covariates: pd.DataFrame, treatment: pd.Series) -> MatchResult:
        ...


def standardized_mean_difference(treated: pd.Series, control: pd.Series) -> float:
    """SMD = (mean_t - mean_c) / sqrt((var_t + var_c) / 2).

    Returns NaN when either group has fewer than two non-missing values or the
    pooled standard deviation is zero.
    """
    a = pd.to_numeric(treated, errors="coerce").dropna()
    b = pd.to_numeric(control, errors="coerce").dropna()
    if len(a) < 2 or len(b) < 2:
        return np.nan
    denom = np.sqrt((a.var(ddof=1) + b.var(ddof=1)) / 2.0)
    return float((a.mean() - b.mean()) / denom) if denom > 0 else np.nan


def balance_table(
    covariates: pd.DataFrame, treatment: pd.Series, matched_ids: Iterable[str]
) -> pd.DataFrame:
    """Per-covariate SMD before and after matching."""
    matched_ids = list(matched_ids)
    treated_mask = treatment.astype(bool)
    matched_cov = covariates.loc[matched_ids]
    matched_treated = treated_mask.loc[matched_ids]

    rows = []
    for col in covariates.columns:
        rows.append(
            {
                "covariate": col,
                "smd_pre": standardized_mean_difference(
                    covariates.loc[treated_mask, col], covariates.loc[~treated_mask, col]
                ),
                "smd_post": standardized_mean_difference(
                    matched_cov.loc[matched_treated, col], matched_cov.loc[~matched_treated, col]
                ),
            }
        )
    return pd.DataFrame(rows, columns=["covariate", "smd_pre", "smd_post"])


class PropensityScoreMatcher:
    """Greedy nearest-neighbour 1:1 matching on a logistic propensity score.

    Treated patients are matched in ascending patient_id order; ties in
    distance go to the lowest control patient_id, so results are
    deterministic for a given input.

    Attributes:
        covariates: Covariate columns used by the propensity model
        caliper: Maximum allowed propensity difference, None for no limit
        random_state: Seed passed to the logistic regression
    """

    def __init__(
        self,
        covariates: Optional[list[str]] = None,
        caliper: Optional[float] = None,
        random_state: int = 42,
    ) -> None:
        if caliper is not None and caliper <= 0:
            raise ValueError(f"caliper must be > 0, got {caliper}")
        self.covariates = list(covariates) if covariates else list(DEFAULT_COVARIATES)
        self.caliper = caliper
        self.random_state = random_state

    def _model(self) -> Pipeline:
        return Pipeline(
            [
                ("imp", SimpleImputer(strategy="median")),
                ("sc", StandardScaler()),
                ("logit", LogisticRegression(max_iter=2000, random_state=self.random_state)),
            ]
        )

    def propensity_scores(self, covariates: pd.DataFrame, treatment: pd.Series) -> pd.Series:
        """Fit the propensity model and return P(treated) per patient."""
        X = covariates[self.covariates].astype("float64")
        y = treatment.astype(int).to_numpy()
        model = self._model()
        model.fit(X, y)
        return pd.Series(model.predict_proba(X)[:, 1], index=covariates.index, name="propensity")

    def match(self, covariates: pd.DataFrame, treatment: pd.Series) -> MatchResult:
        """Build 1:1 matched pairs.

        Args:
            covariates: Covariate table indexed by patient_id
            treatment: Binary treatment indicator indexed by patient_id

        Returns:
            MatchResult with scores, pairs, matched subset and balance

        Raises:
            MatchingError: If covariates are missing, indexes disagree, or a
                group is empty
        """
        missing = [c for c in self.covariates if c not in covariates.columns]
        if missing:
            raise MatchingError(f"Covariate columns missing: {', '.join(missing)}")
        if not covariates.index.is_unique:
            raise MatchingError("Covariate table must have one row per patient_id")

        treatment = treatment.reindex(covariates.index)
        if treatment.isna().any():
            raise MatchingError(
                f"Treatment indicator missing for {int(treatment.isna().sum())} patient(s)"
            )
        treatment = treatment.astype(bool)
        n_treated = int(treatment.sum())
        n_control = int((~treatment).sum())
        if n_treated == 0 or n_control == 0:
            raise MatchingError(
                f"Matching needs treated and control patients "
                f"(treated={n_treated}, control={n_control})"
            )

        covariates = covariates[self.covariates]
        scores = self.propensity_scores(covariates, treatment)
        logger.info(
            f"Fitted propensity model on {len(covariates)} patient(s) "
            f"({n_treated} treated, {n_control} control)"
        )

        controls = scores[~treatment].sort_index()
        pair_rows = []
        for treated_id in sorted(scores[treatment].index):
            if controls.empty:
                break
            distance = (controls - scores[treated_id]).abs()
            best = distance.min()
            if self.caliper is not None and best > self.caliper:
                logger.debug(f"No control within caliper for patient_id={treated_id}")
                continue
            control_id = distance[distance == best].index[0]
            pair_rows.append(
                {"treated_id": treated_id, "control_id": control_id, "distance": float(best)}
            )
            controls = controls.drop(control_id)

        pairs = pd.DataFrame(pair_rows, columns=["treated_id", "control_id", "distance"])
        matched_ids = list(pairs["treated_id"]) + list(pairs["control_id"])
        matched = covariates.loc[matched_ids].copy()
        matched["treated"] = treatment.loc[matched_ids].astype(int)
        matched["propensity"] = scores.loc[matched_ids]

        logger.info(f"Matched {len(pairs)} of {n_treated} treated patient(s)")
        return MatchResult(
            propensity_scores=scores,
            pairs=pairs,
            matched=matched,
            balance=balance_table(covariates, treatment, matched_ids),
        )


def build_matching_covariates(records: Iterable[StaticPatientRecord]) -> pd.DataFrame:
    """Covariates at listing for each patient, indexed by patient_id.

    Columns: age_years, dialysis_time_years, never_dialyzed, has_diabetes,
    has_previous_transplant. Unknown values are NaN.
    """
    rows = []
    for r in records:
        duration = r.dialysis_duration_at_listing_years
        never = np.nan
        if duration is not None:
            never = float(duration == 0 and not r.on_dialysis_at_listing)
        rows.append(
            {
                "patient_id": r.patient_id,
                "age_years": (
                    r.age_at_listing_months / 12 if r.age_at_listing_months is not None else np.nan
                ),
                "dialysis_time_years": duration if duration is not None else np.nan,
                "never_dialyzed": never,
                "has_diabetes": float(r.has_diabetes) if r.has_diabetes is not None else np.nan,
                "has_previous_transplant": (
                    float(r.has_previous_transplant)
                    if r.has_previous_transplant is not None
                    else np.nan
                ),
            }
        )
    return pd.DataFrame(rows, columns=["patient_id"] + DEFAULT_COVARIATES).set_index("patient_id")
