"""Unit tests for propensity-score matching."""

import math
from datetime import date

import numpy as np
import pandas as pd
import pytest

from epts_panel.matching.matcher import (
    DEFAULT_COVARIATES,
    CohortMatcher,
    PropensityScoreMatcher,
    build_matching_covariates,
    standardized_mean_difference,
)
from epts_panel.utils.exceptions import MatchingError


@pytest.fixture
def cohort_covariates() -> tuple[pd.DataFrame, pd.Series]:
    """Synthetic cohort where older, longer-dialyzed patients are treated more often."""
    rng = np.random.default_rng(42)
    n = 80
    ids = [f"P{i:03d}" for i in range(n)]
    age = rng.uniform(20, 75, n)
    dialysis = rng.exponential(2.0, n)
    covariates = pd.DataFrame(
        {
            "age_years": age,
            "dialysis_time_years": dialysis,
            "never_dialyzed": (rng.uniform(size=n) < 0.2).astype(float),
            "has_diabetes": (rng.uniform(size=n) < 0.4).astype(float),
            "has_previous_transplant": (rng.uniform(size=n) < 0.1).astype(float),
        },
        index=pd.Index(ids, name="patient_id"),
    )
    logit = 0.05 * (age - 45) + 0.3 * (dialysis - 2)
    treatment = pd.Series(rng.uniform(size=n) < 1 / (1 + np.exp(-logit)), index=covariates.index)
    return covariates, treatment


class TestStandardizedMeanDifference:
    """Test the balance statistic."""

    def test_known_value(self):
        """Test (mean_t - mean_c) / sqrt((var_t + var_c) / 2)."""
        smd = standardized_mean_difference(pd.Series([1, 2, 3]), pd.Series([2, 3, 4]))

        assert smd == pytest.approx(-1.0)

    def test_unequal_variances(self):
        """Test the pooled denominator uses sample variances."""
        treated = pd.Series([0.0, 2.0, 4.0])  # var 4
        control = pd.Series([0.0, 0.0, 3.0])  # var 3

        smd = standardized_mean_difference(treated, control)

        assert smd == pytest.approx((2.0 - 1.0) / math.sqrt(3.5))

    def test_too_few_values(self):
        """Test fewer than two values per group gives NaN."""
        assert math.isnan(standardized_mean_difference(pd.Series([1.0]), pd.Series([1.0, 2.0])))

    def test_zero_variance(self):
        """Test constant groups give NaN instead of dividing by zero."""
        assert math.isnan(standardized_mean_difference(pd.Series([1.0, 1.0]), pd.Series([1.0, 1.0])))

    def test_missing_values_ignored(self):
        """Test NaN values are dropped before computing."""
        smd = standardized_mean_difference(
            pd.Series([1.0, 2.0, 3.0, np.nan]), pd.Series([2.0, 3.0, 4.0])
        )

        assert smd == pytest.approx(-1.0)


class TestPropensityScoreMatcher:
    """Test greedy 1:1 nearest-neighbour matching."""

    def test_satisfies_matcher_contract(self):
        """Test the matcher can stand in for any CohortMatcher."""
        matcher: CohortMatcher = PropensityScoreMatcher()

        assert callable(matcher.match)

    def test_pairs_are_one_to_one(self, cohort_covariates):
        """Test every patient appears in at most one pair."""
        # Arrange
        covariates, treatment = cohort_covariates

        # Act
        result = PropensityScoreMatcher().match(covariates, treatment)

        # Assert
        assert result.matched_pair_count == min(int(treatment.sum()), int((~treatment).sum()))
        assert result.pairs["treated_id"].is_unique
        assert result.pairs["control_id"].is_unique
        assert treatment[result.pairs["treated_id"]].all()
        assert not treatment[result.pairs["control_id"]].any()

    def test_matched_subset(self, cohort_covariates):
        """Test the matched table holds exactly the paired patients."""
        covariates, treatment = cohort_covariates

        result = PropensityScoreMatcher().match(covariates, treatment)

        assert len(result.matched) == 2 * result.matched_pair_count
        assert result.matched["treated"].sum() == result.matched_pair_count
        assert set(result.matched.columns) >= {"treated", "propensity"}

    def test_propensity_scores_are_probabilities(self, cohort_covariates):
        """Test a score in [0, 1] is returned for every patient."""
        covariates, treatment = cohort_covariates

        result = PropensityScoreMatcher().match(covariates, treatment)

        assert list(result.propensity_scores.index) == list(covariates.index)
        assert result.propensity_scores.between(0, 1).all()

    def test_deterministic(self, cohort_covariates):
        """Test repeated runs give identical pairs."""
        covariates, treatment = cohort_covariates

        first = PropensityScoreMatcher().match(covariates, treatment)
        second = PropensityScoreMatcher().match(covariates, treatment)

        pd.testing.assert_frame_equal(first.pairs, second.pairs)

    def test_treated_processed_in_id_order(self, cohort_covariates):
        """Test pairs are listed in ascending treated patient_id order."""
        covariates, treatment = cohort_covariates

        result = PropensityScoreMatcher().match(covariates, treatment)

        assert list(result.pairs["treated_id"]) == sorted(result.pairs["treated_id"])

    def test_caliper_limits_distance(self, cohort_covariates):
        """Test no pair exceeds the caliper."""
        covariates, treatment = cohort_covariates

        result = PropensityScoreMatcher(caliper=0.01).match(covariates, treatment)

        assert (result.pairs["distance"] <= 0.01).all()

    def test_balance_table(self, cohort_covariates):
        """Test SMD is reported for every covariate before and after matching."""
        covariates, treatment = cohort_covariates

        result = PropensityScoreMatcher().match(covariates, treatment)

        assert list(result.balance["covariate"]) == DEFAULT_COVARIATES
        assert list(result.balance.columns) == ["covariate", "smd_pre", "smd_post"]
        assert result.balance[["smd_pre", "smd_post"]].notna().all().all()

    def test_format_report(self, cohort_covariates):
        covariates, treatment = cohort_covariates

        report = PropensityScoreMatcher().match(covariates, treatment).format_report()

        assert "PROPENSITY MATCHING REPORT" in report
        assert "age_years" in report

    def test_invalid_caliper(self):
        """Test a non-positive caliper is rejected."""
        with pytest.raises(ValueError, match="caliper"):
            PropensityScoreMatcher(caliper=0.0)

    def test_no_controls(self, cohort_covariates):
        """Test matching without control patients fails."""
        covariates, _ = cohort_covariates
        treatment = pd.Series(True, index=covariates.index)

        with pytest.raises(MatchingError, match="control=0"):
            PropensityScoreMatcher().match(covariates, treatment)

    def test_no_treated(self, cohort_covariates):
        """Test matching without treated patients fails."""
        covariates, _ = cohort_covariates
        treatment = pd.Series(False, index=covariates.index)

        with pytest.raises(MatchingError, match="treated=0"):
            PropensityScoreMatcher().match(covariates, treatment)

    def test_missing_covariate_column(self, cohort_covariates):
        """Test a covariate absent from the table fails."""
        covariates, treatment = cohort_covariates

        with pytest.raises(MatchingError, match="never_dialyzed"):
            PropensityScoreMatcher().match(covariates.drop(columns="never_dialyzed"), treatment)

    def test_missing_treatment(self, cohort_covariates):
        """Test patients without a treatment value fail the match."""
        covariates, treatment = cohort_covariates

        with pytest.raises(MatchingError, match="Treatment indicator missing for 1"):
            PropensityScoreMatcher().match(covariates, treatment.iloc[1:])

    def test_duplicate_index(self, cohort_covariates):
        """Test one row per patient is required."""
        covariates, treatment = cohort_covariates
        doubled = pd.concat([covariates, covariates.iloc[:1]])

        with pytest.raises(MatchingError, match="one row per patient_id"):
            PropensityScoreMatcher().match(doubled, treatment)

    def test_missing_covariate_values_imputed(self, cohort_covariates):
        """Test NaN covariates are imputed rather than failing the fit."""
        covariates, treatment = cohort_covariates
        covariates = covariates.copy()
        covariates.iloc[0, 0] = np.nan

        result = PropensityScoreMatcher().match(covariates, treatment)

        assert not result.propensity_scores.isna().any()


class TestBuildMatchingCovariates:
    """Test covariates at listing."""

    def test_covariates_from_records(self, make_record):
        """Test derived covariates for never-dialyzed and dialyzed patients."""
        # Arrange
        records = [
            make_record(patient_id="A", age_at_listing_months=600),
            make_record(
                patient_id="B",
                on_dialysis_at_listing=True,
                dialysis_duration_at_listing_years=2.0,
                has_diabetes=True,
            ),
            make_record(patient_id="C", has_diabetes=None, dialysis_duration_at_listing_years=None),
        ]

        # Act
        covariates = build_matching_covariates(records)

        # Assert
        assert list(covariates.columns) == DEFAULT_COVARIATES
        assert covariates.loc["A", "age_years"] == pytest.approx(50.0)
        assert covariates.loc["A", "never_dialyzed"] == 1.0
        assert covariates.loc["B", "never_dialyzed"] == 0.0
        assert covariates.loc["B", "dialysis_time_years"] == 2.0
        assert covariates.loc["B", "has_diabetes"] == 1.0
        assert math.isnan(covariates.loc["C", "has_diabetes"])
        assert math.isnan(covariates.loc["C", "never_dialyzed"])
