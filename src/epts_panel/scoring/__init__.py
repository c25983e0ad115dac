"""Scoring module.

This module provides the EPTS raw score formula and the versioned percentile
breakpoint table.
"""

from epts_panel.scoring.raw_score import compute_raw_score
from epts_panel.scoring.table import (
    DEFAULT_SCORE_VERSION,
    ScoreTable,
    available_versions,
    load_score_table,
    read_score_table,
)

__all__ = [
    "DEFAULT_SCORE_VERSION",
    "ScoreTable",
    "available_versions",
    "compute_raw_score",
    "load_score_table",
    "read_score_table",
]
