"""Custom exception classes for the EPTS panel builder.

All exceptions inherit from EPTSPanelError to allow catching all custom exceptions.

Per-patient problems derive from PatientExpansionError. The pipeline catches
those, records the patient as excluded, and continues with the rest of the
cohort. Every other error is structural and stops the run.
"""

from typing import Optional


class EPTSPanelError(Exception):
    """Base exception for all EPTS panel custom exceptions."""

    pass


class ValidationError(EPTSPanelError):
    """Raised when input data validation fails.

    Examples:
        - Missing required columns in the listing CSV
        - Unparseable CSV file
    """

    pass


class ConfigurationError(EPTSPanelError):
    """Raised when configuration loading or validation fails.

    Examples:
        - Missing required configuration
        - Invalid configuration file format
        - Configuration value out of range
    """

    pass


class ScoreTableError(EPTSPanelError):
    """Raised when the percentile breakpoint table cannot be loaded.

    Examples:
        - No table supplied or packaged for the score version
        - Wrong number of breakpoints
        - Thresholds not strictly ascending
    """

    pass


class MatchingError(EPTSPanelError):
    """Raised when propensity-score matching cannot run.

    Examples:
        - No treated or no control patients
        - Covariate column missing from the cohort table
    """

    pass


class PatientExpansionError(EPTSPanelError):
    """Base exception for problems confined to a single patient.

    Attributes:
        patient_id: Identifier of the offending patient
        reason: Machine-readable exclusion reason
    """

    reason = "expansion_error"

    def __init__(self, patient_id: Optional[str], message: str) -> None:
        self.patient_id = patient_id
        self.message = message
        super().__init__(f"Patient {patient_id}: {message}")


class MissingRequiredFieldError(PatientExpansionError):
    """Raised when a static record lacks a field needed for expansion.

    Examples:
        - Neither removal date nor last listing date
        - No age at listing
    """

    reason = "missing_required_field"


class InvalidTemporalOrderError(PatientExpansionError):
    """Raised when record dates are out of order.

    Examples:
        - End date before listing date (negative wait time)
        - Dialysis start before listing beyond the allowed tolerance
    """

    reason = "invalid_temporal_order"


class DataQualityError(PatientExpansionError):
    """Raised when a scoring input is missing or out of range.

    Examples:
        - Diabetes status unknown
        - Previous transplant status unknown
        - Negative or non-finite dialysis duration at listing
    """

    reason = "data_quality"
