"""Entry point for running epts_panel as a module.

This allows the package to be executed as:
    python -m epts_panel
"""

from epts_panel.cli.main import cli

if __name__ == "__main__":
    cli()
