"""Default configuration values.

This module defines the default configuration values used when no configuration
file is provided or when configuration values are not specified.
"""

from typing import Any

# Default configuration dictionary
# This is used as a fallback when no configuration file is present
DEFAULT_CONFIG: dict[str, Any] = {
    "scoring": {
        "table_version": "v1",
        "table_path": None,
    },
    "expansion": {
        # Dialysis may not start before listing
        "dialysis_start_tolerance_days": 0,
        "days_per_year": 365,
    },
    "pipeline": {
        "workers": 1,
        "output_dir": "output",
    },
    "matching": {
        "caliper": None,
        "random_state": 42,
        "treatment_column": "treatment",
    },
    "logging": {
        "level": "INFO",
        "log_file": "logs/epts-panel.log",
        "redact_ids": False,
        "stage_levels": {},
    },
}

# Default configuration file path
DEFAULT_CONFIG_PATH = "config/config.json"
