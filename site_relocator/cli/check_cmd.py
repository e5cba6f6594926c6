"""CLI command handler for preflight checks."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from site_relocator.cli.common import cli, endpoint_options, handle_exception
from site_relocator.cli.migrate_cmd import RelocationRunner, build_config, log_startup_info
from site_relocator.exceptions import RelocatorError
from site_relocator.utils.logging import setup_logger

# ---------------------------------------------------------------------------
# check subcommand
# ---------------------------------------------------------------------------


@cli.command()
@endpoint_options
@click.pass_context
def check(ctx: click.Context, config_path: str, verbose: bool, **_settings: object) -> None:
    """Open channels and verify tools and database access without changing anything.

    Runs only the preflight steps of ``migrate``. No checkpoint is written.

    Args:
        ctx: The Click context.
        config_path: Defaults file loaded before flags.
        verbose: Enable verbose console logging.
    """
    setup_logger(verbose)
    try:
        config, _ = build_config(ctx, Path(config_path))
    except RelocatorError as e:
        handle_exception(e)
        sys.exit(1)

    setup_logger(verbose, None, config.secrets)
    log_startup_info(config)
    sys.exit(RelocationRunner(config).run(preflight_only=True))
