"""Cohort matching CLI commands for the EPTS panel builder."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import pandas as pd

from epts_panel.csv_parser import (
    collapse_listings,
    parse_bool_value,
    parse_csv,
    reject_invalid_rows,
    to_static_records,
)
from epts_panel.logging_audit import audit_operation
from epts_panel.matching import PropensityScoreMatcher, build_matching_covariates
from epts_panel.utils.exceptions import EPTSPanelError
from epts_panel.utils.output_manager import OutputManager

logger = logging.getLogger(__name__)


@click.group()
def match() -> None:
    """Propensity-score cohort matching commands."""
    pass


def _treatment_indicator(df: pd.DataFrame, column: str) -> pd.Series:
    """Read the treatment flag column, indexed by patient_id.

    Raises:
        click.UsageError: If the column is missing or holds unrecognised values
    """
    if column not in df.columns:
        raise click.UsageError(f"Treatment column '{column}' not found in input")
    try:
        flags = df[column].map(parse_bool_value)
    except ValueError as e:
        raise click.UsageError(f"Treatment column '{column}': {e}") from e
    return pd.Series(flags.to_numpy(), index=df["patient_id"].astype(str), name="treated")


@match.command("run")
@click.argument("file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--treatment-column",
    help="Column holding the treatment flag (default: matching.treatment_column)",
)
@click.option(
    "--caliper",
    type=click.FloatRange(min=0.0, min_open=True),
    help="Maximum propensity difference within a pair",
)
@click.option(
    "--output",
    type=click.Path(path_type=Path),
    help="Output directory (default: pipeline.output_dir from config)",
)
@click.option(
    "--collapse-listings",
    "collapse",
    is_flag=True,
    help="Collapse concurrent listings to one record per patient",
)
@click.pass_context
def run_command(
    ctx: click.Context,
    file: Path,
    treatment_column: Optional[str],
    caliper: Optional[float],
    output: Optional[Path],
    collapse: bool,
) -> None:
    """Build a 1:1 propensity-matched cohort from a listing CSV file.

    Covariates are taken at listing. Writes results/matched_pairs.csv and
    results/balance.csv under the output directory and prints the
    standardized mean differences before and after matching. Patients whose
    rows fail validation are left out of matching; duplicate patient IDs
    without --collapse-listings exit with code 1.

    Examples:

        # Match on the TREATED column
        epts-panel match run listings.csv --treatment-column TREATED

        # Restrict pairs to a propensity difference of 0.05
        epts-panel match run listings.csv --treatment-column TREATED --caliper 0.05
    """
    config = ctx.obj["config"]
    column = treatment_column or config.matching.treatment_column
    output_dir = output or config.pipeline.output_dir

    try:
        df, result = parse_csv(file, config.columns, validate=True, allow_duplicate_ids=collapse)
        if result.has_errors:
            click.secho(result.format_report(), fg="yellow", err=True)
        df, rejected = reject_invalid_rows(df, result)
        if rejected:
            click.secho(
                f"{len(rejected)} patient(s) with invalid rows left out of matching",
                fg="yellow",
                err=True,
            )

        if collapse:
            df = collapse_listings(df)

        treatment = _treatment_indicator(df, column)
        covariates = build_matching_covariates(to_static_records(df))

        matcher = PropensityScoreMatcher(
            covariates=config.matching.covariates,
            caliper=caliper if caliper is not None else config.matching.caliper,
            random_state=config.matching.random_state,
        )
        with audit_operation(
            "COHORT_MATCHED",
            input_file=str(file),
            patient_count=len(covariates),
            rejected_count=len(rejected),
            caliper=matcher.caliper,
        ) as audit:
            match_result = matcher.match(covariates, treatment)
            OutputManager(output_dir).write_match_result(match_result)
            audit["matched_pairs"] = match_result.matched_pair_count

        click.secho(match_result.format_report(), fg="green")
        sys.exit(0)

    except click.UsageError:
        raise
    except EPTSPanelError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        logger.error(f"Matching failed: {e}")
        sys.exit(1)
    except FileNotFoundError as e:
        click.secho(f"File not found: {e}", fg="red", err=True)
        logger.error(f"File not found: {e}")
        sys.exit(1)
    except Exception as e:
        click.secho(f"Unexpected error: {e}", fg="red", err=True)
        logger.exception("Unexpected error during cohort matching")
        sys.exit(1)
