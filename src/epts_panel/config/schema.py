"""Configuration schema models using pydantic.

This module defines the configuration structure and validation rules using pydantic.
All configuration values are validated according to the schema defined here.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_STAGES = ["parse", "expand", "score", "match"]


class ScoringConfig(BaseModel):
    """Configuration for the EPTS percentile table.

    Attributes:
        table_version: Version label of the breakpoint table
        table_path: CSV file holding the published breakpoint table
    """

    table_version: str = Field(
        default="v1",
        min_length=1,
        description="Score table version"
    )
    table_path: Optional[Path] = Field(
        default=None,
        description="Breakpoint table CSV (required unless the version is packaged)"
    )


class ExpansionConfig(BaseModel):
    """Configuration for monthly panel expansion.

    Attributes:
        dialysis_start_tolerance_days: How many days a dialysis start may
            precede listing before the record is rejected
        days_per_year: Day count used to convert days to months
    """

    dialysis_start_tolerance_days: int = Field(
        default=0,
        ge=0,
        description="Allowed lead of dialysis start before listing (days)"
    )
    days_per_year: int = Field(
        default=365,
        ge=360,
        le=366,
        description="Days per year for month conversion"
    )


class PipelineConfig(BaseModel):
    """Configuration for the pipeline driver.

    Attributes:
        workers: Worker threads for per-patient expansion
        output_dir: Base output directory
    """

    workers: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Worker threads"
    )
    output_dir: Path = Field(
        default=Path("output"),
        description="Base output directory"
    )


class ColumnsConfig(BaseModel):
    """Mapping from source (legacy) column names to normalised field names.

    Each attribute holds the source column name for the field of the same
    name on StaticPatientRecord.
    """

    patient_id: str = "PERS_ID"
    listing_date: str = "CAN_LISTING_DT"
    last_listing_date: str = "CAN_LAST_LISTING_DT"
    removal_date: str = "CAN_REM_DT"
    age_at_listing_months: str = "CAN_AGE_IN_MONTHS_AT_LISTING"
    on_dialysis_at_listing: str = "CAN_DIAL_AT_LISTING"
    dialysis_duration_at_listing_years: str = "CAN_DIAL_DURATION_YEARS"
    dialysis_start_date: str = "CAN_DIAL_DT"
    has_previous_transplant: str = "CAN_PREV_TX"
    has_diabetes: str = "CAN_DIAB"
    race_category: str = "CAN_RACE"
    started_dialysis_on_waitlist: str = "CAN_DIAL_ON_WAITLIST"

    @model_validator(mode="after")
    def validate_unique_sources(self) -> "ColumnsConfig":
        """Reject two fields mapped from the same source column."""
        sources = list(self.model_dump().values())
        duplicates = sorted({s for s in sources if sources.count(s) > 1})
        if duplicates:
            raise ValueError(
                f"Source columns mapped more than once: {', '.join(duplicates)}. "
                f"Fix: Give every field its own source column."
            )
        return self

    def rename_map(self) -> dict[str, str]:
        """Source column name -> normalised field name."""
        return {source: target for target, source in self.model_dump().items()}


class MatchingConfig(BaseModel):
    """Configuration for propensity-score matching.

    Attributes:
        covariates: Covariate columns for the propensity model
        caliper: Maximum propensity difference for a pair, None for no limit
        random_state: Seed for the propensity model
        treatment_column: Source column holding the binary treatment indicator
    """

    covariates: list[str] = Field(
        default_factory=lambda: [
            "age_years",
            "dialysis_time_years",
            "never_dialyzed",
            "has_diabetes",
            "has_previous_transplant",
        ],
        min_length=1,
    )
    caliper: Optional[float] = Field(default=None, gt=0.0)
    random_state: int = 42
    treatment_column: str = "treatment"


class LoggingConfig(BaseModel):
    """Configuration for logging.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file
        redact_ids: Whether to redact patient identifiers from logs
        stage_levels: Log level overrides per pipeline stage
    """

    level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )
    log_file: Path = Field(
        default=Path("logs/epts-panel.log"),
        description="Log file path"
    )
    redact_ids: bool = Field(
        default=False,
        description="Redact patient identifiers from logs"
    )
    stage_levels: dict[str, str] = Field(
        default_factory=dict,
        description="Per-stage log levels (parse, expand, score, match)"
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level.

        Raises:
            ValueError: If log level is not valid
        """
        v_upper = v.upper()
        if v_upper not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
            )
        return v_upper

    @field_validator("stage_levels")
    @classmethod
    def validate_stage_levels(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate stage names and levels.

        Raises:
            ValueError: If a stage or level is unknown
        """
        normalised = {}
        for stage, level in v.items():
            if stage not in VALID_STAGES:
                raise ValueError(
                    f"Invalid logging stage: {stage}. Must be one of: {', '.join(VALID_STAGES)}"
                )
            if level.upper() not in VALID_LOG_LEVELS:
                raise ValueError(
                    f"Invalid log level for {stage}: {level}. "
                    f"Must be one of: {', '.join(VALID_LOG_LEVELS)}"
                )
            normalised[stage] = level.upper()
        return normalised


class Config(BaseModel):
    """Root configuration model.

    Example:
        >>> config = Config(pipeline=PipelineConfig(workers=4))
        >>> config.scoring.table_version
        'v1'
    """

    scoring: ScoringConfig = ScoringConfig()
    expansion: ExpansionConfig = ExpansionConfig()
    pipeline: PipelineConfig = PipelineConfig()
    columns: ColumnsConfig = ColumnsConfig()
    matching: MatchingConfig = MatchingConfig()
    logging: LoggingConfig = LoggingConfig()
