"""CLI command handler for writing a defaults template."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from site_relocator.cli.common import cli, config_path_option
from site_relocator.core.config import create_default_config
from site_relocator.utils.logging import setup_logger

# ---------------------------------------------------------------------------
# init-config subcommand
# ---------------------------------------------------------------------------


@cli.command("init-config")
@config_path_option
def init_config(config_path: Path) -> None:
    """Write a defaults file listing every supported setting.

    Args:
        config_path: Where to write the template.
    """
    setup_logger()
    if not create_default_config(config_path):
        sys.exit(1)
    click.echo(f"Edit {config_path} and run 'site-relocator migrate'.")
