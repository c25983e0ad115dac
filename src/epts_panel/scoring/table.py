"""EPTS percentile breakpoint table.

This module provides the ScoreTable class, an immutable versioned sequence of
100 ascending raw-score thresholds, and the loader that reads a table from its
CSV artifact. A new score version is a new file, not new code.

No table is bundled: the published OPTN EPTS-to-percentile mapping must be
supplied as a CSV file (``scoring.table_path``, ``EPTS_PANEL_TABLE_PATH`` or
``--table-path``). Files placed under ``scoring/data`` as
``epts_<version>.csv`` are picked up as packaged versions.
"""

import bisect
import logging
import math
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from epts_panel.utils.exceptions import ScoreTableError


logger = logging.getLogger(__name__)

# Number of breakpoints in every table (percentiles 0..99)
BREAKPOINT_COUNT = 100

# Percentile for raw scores above the last threshold
TOP_PERCENTILE = 100

DEFAULT_SCORE_VERSION = "v1"

_TABLE_FILE_TEMPLATE = "epts_{version}.csv"

_cache: dict[str, "ScoreTable"] = {}


@dataclass(frozen=True)
class ScoreTable:
    """Raw score to percentile mapping for one score version.

    Threshold ``i`` is the inclusive upper bound of percentile ``i``.

    Attributes:
        version: Score version the table belongs to
        thresholds: 100 strictly ascending raw-score thresholds
    """

    version: str
    thresholds: tuple[float, ...]

    def __post_init__(self) -> None:
        _validate_thresholds(self.thresholds, self.version)

    def lookup(self, raw_score: Optional[float]) -> Optional[int]:
        """Map a raw score to its percentile.

        Args:
            raw_score: EPTS raw score, or None/NaN when unknown

        Returns:
            Percentile of the first threshold >= raw_score, 100 when the score
            exceeds every threshold, None when raw_score is missing
        """
        if raw_score is None or pd.isna(raw_score):
            return None
        return bisect.bisect_left(self.thresholds, raw_score)

    def lookup_series(self, raw_scores: pd.Series) -> pd.Series:
        """Vectorised lookup over a Series of raw scores.

        Args:
            raw_scores: Raw scores, NaN where unknown

        Returns:
            Series of nullable Int64 percentiles aligned with the input index
        """
        values = pd.to_numeric(raw_scores, errors="coerce").to_numpy(dtype="float64")
        positions = np.searchsorted(np.asarray(self.thresholds), values, side="left")
        result = pd.Series(positions, index=raw_scores.index, dtype="Int64")
        result[np.isnan(values)] = pd.NA
        return result

    def to_frame(self) -> pd.DataFrame:
        """Table as (percentile, threshold) rows."""
        return pd.DataFrame(
            {"percentile": range(BREAKPOINT_COUNT), "threshold": list(self.thresholds)}
        )


def _validate_thresholds(thresholds: tuple[float, ...], version: str) -> None:
    if len(thresholds) != BREAKPOINT_COUNT:
        raise ScoreTableError(
            f"Score table {version} has {len(thresholds)} breakpoints; "
            f"expected {BREAKPOINT_COUNT}"
        )
    for i, value in enumerate(thresholds):
        if not math.isfinite(value):
            raise ScoreTableError(
                f"Score table {version}: threshold for percentile {i} is not finite ({value})"
            )
        if i > 0 and value <= thresholds[i - 1]:
            raise ScoreTableError(
                f"Score table {version}: thresholds must be strictly ascending "
                f"(percentile {i - 1}={thresholds[i - 1]}, percentile {i}={value})"
            )


def read_score_table(file_path: Path, version: str) -> ScoreTable:
    """Read a breakpoint table from a CSV file.

    The file has ``percentile,threshold`` columns with percentiles 0..99 in
    order; lines starting with ``#`` are comments.

    Args:
        file_path: Path to the CSV artifact
        version: Version label for the table

    Returns:
        Validated ScoreTable

    Raises:
        ScoreTableError: If the file is missing, unreadable or malformed
    """
    if not file_path.exists():
        raise ScoreTableError(f"Score table file not found: {file_path}")

    try:
        df = pd.read_csv(file_path, comment="#", encoding="utf-8")
    except (OSError, ValueError) as e:
        raise ScoreTableError(f"Failed to read score table {file_path}: {e}") from e

    missing = [c for c in ("percentile", "threshold") if c not in df.columns]
    if missing:
        raise ScoreTableError(
            f"Score table {file_path} is missing columns: {', '.join(missing)}"
        )

    percentiles = pd.to_numeric(df["percentile"], errors="coerce")
    if percentiles.isna().any() or list(percentiles.astype(int)) != list(range(len(df))):
        raise ScoreTableError(
            f"Score table {file_path}: percentiles must be 0..{len(df) - 1} in order"
        )

    thresholds = pd.to_numeric(df["threshold"], errors="coerce")
    if thresholds.isna().any():
        raise ScoreTableError(f"Score table {file_path}: non-numeric threshold value")

    table = ScoreTable(version=version, thresholds=tuple(float(t) for t in thresholds))
    logger.info(f"Loaded score table {version} from {file_path}")
    return table


def load_score_table(
    version: str = DEFAULT_SCORE_VERSION, file_path: Optional[Path] = None
) -> ScoreTable:
    """Load a score table, once per version/path.

    Args:
        version: Score version label (and packaged table name when no path is given)
        file_path: Explicit CSV path; overrides the packaged table lookup

    Returns:
        Cached ScoreTable

    Raises:
        ScoreTableError: If no path is given and no table is packaged for the
            version, or the table is malformed

    Example:
        >>> table = load_score_table("v1", Path("tables/optn_epts_mapping.csv"))
        >>> table.lookup(1.25)
    """
    cache_key = str(file_path.resolve()) if file_path is not None else version
    if cache_key in _cache:
        logger.debug(f"Cache hit for score table: {cache_key}")
        return _cache[cache_key]

    if file_path is None:
        resource = resources.files("epts_panel.scoring").joinpath("data").joinpath(
            _TABLE_FILE_TEMPLATE.format(version=version)
        )
        if not resource.is_file():
            raise ScoreTableError(
                f"No score table is packaged for version {version} "
                f"(packaged versions: {', '.join(available_versions()) or 'none'}).\n"
                f"Fix: Supply the published EPTS-to-percentile mapping table with "
                f"--table-path, scoring.table_path or EPTS_PANEL_TABLE_PATH"
            )
        with resources.as_file(resource) as path:
            table = read_score_table(path, version)
    else:
        table = read_score_table(file_path, version)

    _cache[cache_key] = table
    return table


def available_versions() -> list[str]:
    """List the score versions shipped with the package."""
    data_dir = resources.files("epts_panel.scoring").joinpath("data")
    if not data_dir.is_dir():
        return []
    versions = []
    for entry in data_dir.iterdir():
        name = entry.name
        if name.startswith("epts_") and name.endswith(".csv"):
            versions.append(name[len("epts_"):-len(".csv")])
    return sorted(versions)


def clear_cache() -> None:
    """Forget every loaded table."""
    _cache.clear()
