"""EPTS waitlist panel builder.

Expands one-row-per-patient waitlist listings into a monthly panel with
time-varying age and dialysis duration, scores every month with the EPTS
raw score and percentile, and builds propensity-matched comparison cohorts.
"""

__version__ = "0.1.0"
