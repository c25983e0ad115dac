"""Panel CLI commands for the EPTS panel builder.

This module provides CLI commands to validate listing extracts and to build
the scored patient-month panel.
"""

import json as json_lib
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from epts_panel.csv_parser import (
    collapse_listings,
    export_invalid_rows,
    parse_csv,
    reject_invalid_rows,
    to_static_records,
)
from epts_panel.panel import run_pipeline
from epts_panel.scoring import load_score_table
from epts_panel.utils.exceptions import EPTSPanelError, ValidationError
from epts_panel.utils.output_manager import OutputManager

logger = logging.getLogger(__name__)


@click.group()
def panel() -> None:
    """Listing validation and panel expansion commands."""
    pass


@panel.command("validate")
@click.argument("file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--export-errors",
    type=click.Path(path_type=Path),
    help="Export invalid rows to CSV file",
)
@click.option("--json", "json_output", is_flag=True, help="Output results as JSON")
@click.option(
    "--collapse-listings",
    "collapse",
    is_flag=True,
    help="Allow several listings per patient (they will be collapsed)",
)
@click.pass_context
def validate_command(
    ctx: click.Context,
    file: Path,
    export_errors: Optional[Path],
    json_output: bool,
    collapse: bool,
) -> None:
    """Validate a waitlist listing CSV file.

    Checks required columns, date formats (YYYY-MM-DD), ages, dialysis
    durations, flag values and duplicate patient IDs.

    Exits with code 0 for success (warnings are OK), code 1 for validation errors.

    Examples:

        # Basic validation with color-coded output
        epts-panel panel validate listings.csv

        # Validate and export invalid rows to a separate file
        epts-panel panel validate listings.csv --export-errors invalid_rows.csv

        # Output validation results in JSON format for automation
        epts-panel panel validate listings.csv --json
    """
    config = ctx.obj["config"]

    # Suppress console logging when JSON output is requested
    silenced: list[tuple[logging.Handler, int]] = []
    if json_output:
        for handler in logging.getLogger().handlers:
            if type(handler) is logging.StreamHandler:
                silenced.append((handler, handler.level))
                handler.setLevel(logging.CRITICAL + 1)

    try:
        logger.info(f"Validating CSV file: {file}")
        df, result = parse_csv(
            file, config.columns, validate=True, allow_duplicate_ids=collapse
        )

        if json_output:
            click.echo(json_lib.dumps(result.to_dict(), indent=2))
        elif result.has_errors:
            click.secho(result.format_report(), fg="red", err=True)
        else:
            click.secho(result.format_report(), fg="yellow" if result.has_warnings else "green")

        if result.has_errors:
            if export_errors:
                export_invalid_rows(df, result, export_errors)
                if not json_output:
                    click.echo(f"\nInvalid rows exported to: {export_errors}")
            logger.error("Validation failed with errors")
            sys.exit(1)

        logger.info("Validation complete. Exit code: 0")
        sys.exit(0)

    except ValidationError as e:
        click.secho(f"Validation Error: {e}", fg="red", err=True)
        logger.error(f"Validation error: {e}")
        sys.exit(1)
    except FileNotFoundError as e:
        click.secho(f"File not found: {e}", fg="red", err=True)
        logger.error(f"File not found: {e}")
        sys.exit(1)
    except Exception as e:
        click.secho(f"Unexpected error: {e}", fg="red", err=True)
        logger.exception("Unexpected error during CSV validation")
        sys.exit(1)
    finally:
        for handler, level in silenced:
            handler.setLevel(level)


@panel.command("expand")
@click.argument("file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--output",
    type=click.Path(path_type=Path),
    help="Output directory (default: pipeline.output_dir from config)",
)
@click.option("--workers", type=click.IntRange(min=1), help="Worker threads")
@click.option("--table-version", help="Score table version (default: from config)")
@click.option(
    "--table-path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Breakpoint table CSV (default: scoring.table_path from config)",
)
@click.option(
    "--collapse-listings",
    "collapse",
    is_flag=True,
    help="Collapse concurrent listings to one record per patient",
)
@click.pass_context
def expand_command(
    ctx: click.Context,
    file: Path,
    output: Optional[Path],
    workers: Optional[int],
    table_version: Optional[str],
    table_path: Optional[Path],
    collapse: bool,
) -> None:
    """Build the scored patient-month panel from a listing CSV file.

    Writes panel/scored_panel.csv and results/{exclusions.csv,
    data_quality.csv, summary.json} under the output directory, then prints
    the run report. Patients with incomplete or inconsistent data, including
    rows that fail validation, are excluded and listed in the report; the run
    still exits with code 0. Only structural problems (unreadable file,
    missing columns, duplicate patient IDs, no usable score table) exit with
    code 1.

    Examples:

        # Expand with settings from config/config.json
        epts-panel panel expand listings.csv

        # Explicit breakpoint table
        epts-panel panel expand listings.csv --table-path optn_epts_mapping.csv

        # Four worker threads and an explicit output directory
        epts-panel panel expand listings.csv --workers 4 --output ./run-01

        # Multi-center extract with several rows per patient
        epts-panel panel expand listings.csv --collapse-listings
    """
    config = ctx.obj["config"]
    output_dir = output or config.pipeline.output_dir
    worker_count = workers or config.pipeline.workers
    version = table_version or config.scoring.table_version
    score_table_path = table_path or config.scoring.table_path

    try:
        table = load_score_table(version, file_path=score_table_path)

        click.echo(f"Processing CSV file: {file}")
        df, result = parse_csv(
            file, config.columns, validate=True, allow_duplicate_ids=collapse
        )

        if result.has_errors:
            click.secho(result.format_report(), fg="yellow", err=True)
        df, rejected = reject_invalid_rows(df, result)

        if collapse:
            df = collapse_listings(df)

        records = to_static_records(df)
        panel_result = run_pipeline(
            records,
            table,
            tolerance_days=config.expansion.dialysis_start_tolerance_days,
            days_per_year=config.expansion.days_per_year,
            workers=worker_count,
            rejected=rejected,
        )

        manager = OutputManager(output_dir)
        manager.write_panel_result(panel_result)

        click.secho(
            panel_result.format_report(),
            fg="yellow" if panel_result.has_exclusions else "green",
        )
        click.echo(f"\nPanel written to: {manager.paths.panel_file}")
        logger.info("Panel expansion complete. Exit code: 0")
        sys.exit(0)

    except EPTSPanelError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        logger.error(f"Panel expansion failed: {e}")
        sys.exit(1)
    except FileNotFoundError as e:
        click.secho(
            f"Error: File not found: {e}. Ensure file path is correct.",
            fg="red",
            err=True,
        )
        logger.error(f"File not found: {e}")
        sys.exit(1)
    except Exception as e:
        click.secho(f"Unexpected error: {e}", fg="red", err=True)
        logger.exception("Unexpected error during panel expansion")
        sys.exit(1)
