"""
Shared pytest configuration and fixtures.

This module provides fixtures and configuration used across all test suites
(unit and integration tests).
"""

import logging
from datetime import date
from pathlib import Path
from typing import Callable

import pytest

import epts_panel.logging_audit.logger as logger_module
from epts_panel.models.patient import StaticPatientRecord
from epts_panel.scoring.table import ScoreTable, clear_cache, load_score_table


FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Registry-style header used by listing CSV fixtures
LISTING_HEADER = (
    "PERS_ID,CAN_LISTING_DT,CAN_LAST_LISTING_DT,CAN_REM_DT,CAN_AGE_IN_MONTHS_AT_LISTING,"
    "CAN_DIAL_AT_LISTING,CAN_DIAL_DURATION_YEARS,CAN_DIAL_DT,CAN_PREV_TX,CAN_DIAB,"
    "CAN_RACE,CAN_DIAL_ON_WAITLIST"
)


@pytest.fixture
def project_root() -> Path:
    """
    Return the project root directory.

    Returns:
        Path: Absolute path to the project root directory.
    """
    return Path(__file__).parent.parent


@pytest.fixture
def make_record() -> Callable[..., StaticPatientRecord]:
    """
    Return a factory for StaticPatientRecord with sensible defaults.

    The default patient is a 50-year-old non-diabetic, listed pre-emptively
    on 2020-01-01 and removed on 2021-01-01, confirmed never dialyzed.

    Returns:
        Callable accepting field overrides as keyword arguments.
    """

    def _make(**overrides) -> StaticPatientRecord:
        fields = {
            "patient_id": "P001",
            "listing_date": date(2020, 1, 1),
            "removal_date": date(2021, 1, 1),
            "age_at_listing_months": 600,
            "on_dialysis_at_listing": False,
            "dialysis_duration_at_listing_years": 0.0,
            "has_previous_transplant": False,
            "has_diabetes": False,
            "race_category": "White",
            "started_dialysis_on_waitlist": False,
        }
        fields.update(overrides)
        return StaticPatientRecord(**fields)

    return _make


@pytest.fixture
def score_table_path() -> Path:
    """
    Return the path of the synthetic breakpoint table used by the tests.

    Returns:
        Path: CSV file with 100 ascending thresholds (not the published mapping).
    """
    return FIXTURES_DIR / "synthetic_score_table.csv"


@pytest.fixture
def score_table(score_table_path: Path) -> ScoreTable:
    """
    Return the synthetic table loaded as version v1.

    Returns:
        ScoreTable: Breakpoint table read from the test fixtures.
    """
    return load_score_table("v1", file_path=score_table_path)


@pytest.fixture
def linear_table() -> ScoreTable:
    """
    Return a synthetic table with thresholds 0.0, 0.1, ..., 9.9.

    Returns:
        ScoreTable: Table whose percentile for a raw score is easy to predict.
    """
    return ScoreTable(version="test", thresholds=tuple(i / 10 for i in range(100)))


@pytest.fixture(autouse=True)
def reset_score_table_cache():
    """Start every test with an empty score table cache."""
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def listing_header() -> str:
    """
    Return the registry-style listing CSV header.

    Returns:
        str: Comma-separated source column names.
    """
    return LISTING_HEADER


@pytest.fixture
def listings_csv(tmp_path: Path) -> Callable[[list[str]], Path]:
    """
    Return a writer for listing CSV files with the registry header.

    Returns:
        Callable taking data lines and returning the written file path.
    """

    def _write(lines: list[str], name: str = "listings.csv", header: str = LISTING_HEADER) -> Path:
        path = tmp_path / name
        path.write_text("\n".join([header] + lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sample_listing_lines() -> list[str]:
    """
    Return listing rows covering the main dialysis histories.

    Returns:
        list[str]: CSV data lines (no header).
    """
    return [
        # Pre-emptive listing, dialysis starts during the waitlist
        "P001,2019-01-01,,2020-01-01,600,N,0,2019-07-01,N,N,White,Y",
        # On dialysis at listing
        "P002,2020-01-01,,2020-07-01,480,Y,2.5,,N,Y,Black,N",
        # Never dialyzed, removal date missing, last listing date used
        "P003,2020-01-01,2020-04-01,,300,N,0,,Y,N,Asian,N",
    ]


@pytest.fixture
def reset_logging():
    """Remove handlers installed by configure_logging and stage levels after a test."""
    yield
    logger_module._remove_installed_handlers(logging.getLogger())
    for name in logger_module.STAGE_LOGGERS.values():
        logging.getLogger(name).setLevel(logging.NOTSET)
