"""Main CLI entry point for the EPTS panel builder.

This module provides the main Click command group for the epts-panel CLI.
"""

from pathlib import Path
from typing import Optional

import click

from epts_panel import __version__
from epts_panel.cli.match_commands import match
from epts_panel.cli.panel_commands import panel
from epts_panel.config import load_config
from epts_panel.logging_audit import configure_logging, configure_stage_logging
from epts_panel.scoring import available_versions
from epts_panel.utils.exceptions import ConfigurationError


@click.group()
@click.version_option(version=__version__, prog_name="epts-panel")
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file (default: ./config/config.json)",
)
@click.option("--verbose", is_flag=True, help="Enable verbose logging (DEBUG level)")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to log file (overrides config file)",
)
@click.option(
    "--redact-ids",
    is_flag=True,
    help="Redact patient identifiers from logs",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: bool,
    log_file: Optional[Path],
    redact_ids: bool,
) -> None:
    """EPTS panel builder - monthly EPTS scores for kidney waitlist cohorts.

    Expands one record per waitlisted candidate into a patient-month panel,
    scores every month with the EPTS formula and percentile table, and
    builds propensity-matched cohorts.

    Common usage:

        # Validate a listing extract
        epts-panel panel validate listings.csv

        # Build the scored panel
        epts-panel panel expand listings.csv --output ./output

        # Match treated and untreated candidates
        epts-panel match run listings.csv --treatment-column TREATED

        # Enable verbose logging for debugging
        epts-panel --verbose panel expand listings.csv

    Use --help with any command for more information.
    """
    ctx.ensure_object(dict)

    try:
        config_obj = load_config(config)
        ctx.obj["config"] = config_obj
    except ConfigurationError as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        ctx.exit(1)

    ctx.obj["verbose"] = verbose
    ctx.obj["redact_ids"] = redact_ids
    ctx.obj["log_file"] = log_file

    # Precedence: CLI flags > config file > defaults
    log_level = "DEBUG" if verbose else config_obj.logging.level
    log_file_path = log_file if log_file else config_obj.logging.log_file
    redact_setting = redact_ids if redact_ids else config_obj.logging.redact_ids

    configure_logging(level=log_level, log_file=log_file_path, redact_ids=redact_setting)
    configure_stage_logging(config_obj.logging.stage_levels)


cli.add_command(panel)
cli.add_command(match)


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command()
@click.argument("config_file", type=click.Path(exists=True, path_type=Path))
def validate(config_file: Path) -> None:
    """Validate a configuration file.

    Example:
        epts-panel config validate config/config.json
    """
    try:
        config_obj = load_config(config_file)

        click.echo(click.style("✓", fg="green", bold=True) + " Configuration is valid")
        click.echo(f"\nConfiguration file: {config_file}")

        click.echo("\nScoring:")
        click.echo(f"  Table version: {config_obj.scoring.table_version}")
        click.echo(f"  Table path:    {config_obj.scoring.table_path or 'Not set'}")
        click.echo(f"  Packaged:      {', '.join(available_versions()) or 'None'}")

        click.echo("\nExpansion:")
        click.echo(f"  Dialysis tolerance: {config_obj.expansion.dialysis_start_tolerance_days} day(s)")
        click.echo(f"  Days per year:      {config_obj.expansion.days_per_year}")

        click.echo("\nPipeline:")
        click.echo(f"  Workers:    {config_obj.pipeline.workers}")
        click.echo(f"  Output dir: {config_obj.pipeline.output_dir}")

        click.echo("\nMatching:")
        click.echo(f"  Covariates: {', '.join(config_obj.matching.covariates)}")
        click.echo(f"  Caliper:    {config_obj.matching.caliper or 'None'}")
        click.echo(f"  Treatment:  {config_obj.matching.treatment_column}")

        click.echo("\nLogging:")
        click.echo(f"  Level:      {config_obj.logging.level}")
        click.echo(f"  Log file:   {config_obj.logging.log_file}")
        click.echo(f"  Redact IDs: {config_obj.logging.redact_ids}")

    except ConfigurationError as e:
        click.echo(click.style("✗", fg="red", bold=True) + " Configuration validation failed")
        click.echo(f"\n{e}", err=True)
        raise click.exceptions.Exit(1)


cli.add_command(config)


@cli.command()
def version() -> None:
    """Display version information."""
    click.echo(f"epts-panel version {__version__}")


if __name__ == "__main__":
    cli()
