"""Matching module.

This module provides propensity-score matching and covariate balance
diagnostics.
"""

from epts_panel.matching.matcher import (
    DEFAULT_COVARIATES,
    CohortMatcher,
    MatchResult,
    PropensityScoreMatcher,
    balance_table,
    build_matching_covariates,
    standardized_mean_difference,
)

__all__ = [
    "DEFAULT_COVARIATES",
    "CohortMatcher",
    "MatchResult",
    "PropensityScoreMatcher",
    "balance_table",
    "build_matching_covariates",
    "standardized_mean_difference",
]
