"""Config module.

This module provides configuration management functionality.
"""

from epts_panel.config.manager import load_config
from epts_panel.config.schema import (
    ColumnsConfig,
    Config,
    ExpansionConfig,
    LoggingConfig,
    MatchingConfig,
    PipelineConfig,
    ScoringConfig,
)

__all__ = [
    "load_config",
    "ColumnsConfig",
    "Config",
    "ExpansionConfig",
    "LoggingConfig",
    "MatchingConfig",
    "PipelineConfig",
    "ScoringConfig",
]
