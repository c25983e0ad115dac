"""Models module.

This module provides data models and dataclasses for the application.
"""

from epts_panel.models.panel import (
    DataQualityIssue,
    ExclusionReason,
    ExclusionRecord,
    MonthlyRecord,
    PanelResult,
)
from epts_panel.models.patient import DialysisOnset, StaticPatientRecord

__all__ = [
    "DataQualityIssue",
    "DialysisOnset",
    "ExclusionReason",
    "ExclusionRecord",
    "MonthlyRecord",
    "PanelResult",
    "StaticPatientRecord",
]
