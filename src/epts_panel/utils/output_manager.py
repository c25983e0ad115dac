"""Output layout for panel and matching runs.

    <base>/
    ├── panel/
    │   └── scored_panel.csv
    └── results/
        ├── exclusions.csv
        ├── data_quality.csv
        ├── summary.json
        ├── matched_pairs.csv    (match run only)
        └── balance.csv          (match run only)

Tables are written without the index, UTF-8, so that the same run always
produces the same bytes.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import pandas as pd

from epts_panel.matching.matcher import MatchResult
from epts_panel.models.panel import PanelResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputPaths:
    """File locations under one run directory.

    Example:
        >>> OutputPaths(Path("output/run-001")).panel_file
        PosixPath('output/run-001/panel/scored_panel.csv')
    """

    base_dir: Path

    @classmethod
    def from_base(cls, base_dir: Path) -> "OutputPaths":
        return cls(base_dir=Path(base_dir))

    @property
    def panel_dir(self) -> Path:
        return self.base_dir / "panel"

    @property
    def results_dir(self) -> Path:
        return self.base_dir / "results"

    @property
    def panel_file(self) -> Path:
        return self.panel_dir / "scored_panel.csv"

    @property
    def exclusions_file(self) -> Path:
        return self.results_dir / "exclusions.csv"

    @property
    def data_quality_file(self) -> Path:
        return self.results_dir / "data_quality.csv"

    @property
    def summary_file(self) -> Path:
        return self.results_dir / "summary.json"

    @property
    def matched_pairs_file(self) -> Path:
        return self.results_dir / "matched_pairs.csv"

    @property
    def balance_file(self) -> Path:
        return self.results_dir / "balance.csv"

    def all_dirs(self) -> list[Path]:
        return [self.panel_dir, self.results_dir]


class OutputManager:
    """Writes run artifacts into an OutputPaths layout.

    Directories are created on first write, so callers normally only use
    write_panel_result and write_match_result.

    Example:
        >>> manager = OutputManager(Path("output/run-001"))
        >>> manager.write_panel_result(result)
    """

    def __init__(self, base_dir: Path) -> None:
        self.paths = OutputPaths.from_base(base_dir)

    def setup_directories(self) -> OutputPaths:
        """Create the run directories (idempotent).

        Raises:
            OSError: If a directory cannot be created
        """
        for directory in self.paths.all_dirs():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error("Cannot create %s: %s", directory, e)
                raise OSError(
                    f"Failed to create output directory: {directory}. "
                    f"Check that the location is writable. Error: {e}"
                ) from e
        logger.debug("Output directories ready under %s", self.paths.base_dir)
        return self.paths

    def write_table(self, df: pd.DataFrame, file_path: Path) -> Path:
        """Write one table as CSV.

        Raises:
            OSError: If the file cannot be written
        """
        try:
            df.to_csv(file_path, index=False, encoding="utf-8")
        except OSError as e:
            logger.error("Cannot write %s: %s", file_path, e)
            raise OSError(f"Failed to write table: {file_path}. Error: {e}") from e
        logger.debug("Wrote %s (%d rows)", file_path, len(df))
        return file_path

    def write_json(self, data: Mapping[str, Any], filename: str, pretty: bool = True) -> Path:
        """Write a JSON document into results/.

        Dates and paths are serialised with str().

        Raises:
            OSError: If the file cannot be written
        """
        file_path = self.paths.results_dir / filename
        text = json.dumps(data, indent=2 if pretty else None, default=str)
        try:
            file_path.write_text(text + "\n", encoding="utf-8")
        except OSError as e:
            logger.error("Cannot write %s: %s", file_path, e)
            raise OSError(f"Failed to write result file: {file_path}. Error: {e}") from e
        logger.debug("Wrote %s", file_path)
        return file_path

    def write_panel_result(self, result: PanelResult) -> list[Path]:
        """Write the scored panel, exclusions, data-quality issues and summary.

        Returns:
            Paths of the written files, panel first
        """
        self.setup_directories()
        written = [
            self.write_table(result.panel, self.paths.panel_file),
            self.write_table(result.exclusions_frame(), self.paths.exclusions_file),
            self.write_table(result.data_quality_frame(), self.paths.data_quality_file),
            self.write_json(result.to_dict(), self.paths.summary_file.name),
        ]
        logger.info(
            "Panel written to %s (%d rows, %d exclusions)",
            self.paths.panel_file,
            len(result.panel),
            len(result.exclusions),
        )
        return written

    def write_match_result(self, match: MatchResult) -> list[Path]:
        """Write matched pairs and the covariate balance table."""
        self.setup_directories()
        written = [
            self.write_table(match.pairs, self.paths.matched_pairs_file),
            self.write_table(match.balance, self.paths.balance_file),
        ]
        logger.info(
            "%d matched pair(s) written to %s",
            match.matched_pair_count,
            self.paths.matched_pairs_file,
        )
        return written
