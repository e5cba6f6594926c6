"""CLI command handler for the migrate workflow."""

from __future__ import annotations

import dataclasses
import logging
import sys
import time
from pathlib import Path
from typing import Any

import click

from site_relocator.cli.common import (
    cli,
    collect_overrides,
    endpoint_options,
    environment_keys,
    handle_exception,
    run_options,
)
from site_relocator.cli.report import print_summary
from site_relocator.constants import CHECKPOINT_FILENAME
from site_relocator.core.checkpoint import clear_checkpoint, resume_step
from site_relocator.core.cleanup import guaranteed_cleanup
from site_relocator.core.config import (
    RelocationConfig,
    config_dir,
    load_defaults,
    save_defaults as write_defaults,
)
from site_relocator.core.context import RelocationContext
from site_relocator.core.migration_logging import log_run_failure, log_run_success
from site_relocator.core.orchestrator import StepOrchestrator
from site_relocator.core.plan import MigrationPlan
from site_relocator.core.run_context import resolve_run_context
from site_relocator.core.steps import build_plan
from site_relocator.exceptions import ConfigError, StepAbortedError
from site_relocator.services.channel import ControlChannelManager
from site_relocator.services.transfer import StagingArea
from site_relocator.utils.logging import log_with_context, setup_logger

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# migrate subcommand
# ---------------------------------------------------------------------------


@cli.command()
@endpoint_options
@run_options
@click.pass_context
def migrate(
    ctx: click.Context,
    config_path: str,
    verbose: bool,
    save_defaults: bool,
    **_settings: Any,
) -> None:
    """Relocate code, assets and databases from the old host to the new one.

    Args:
        ctx: The Click context.
        config_path: Defaults file loaded before flags.
        verbose: Enable verbose console logging.
        save_defaults: Persist the effective settings to the defaults file.
        **_settings: Every other option; read through ``ctx`` so that only
            explicitly given values override the defaults file.
    """
    setup_logger(verbose)
    try:
        config, merged = build_config(ctx, Path(config_path))
    except ConfigError as e:
        handle_exception(e)
        sys.exit(EXIT_FAILED)

    if save_defaults:
        persisted = {
            k: v for k, v in merged.items() if k not in environment_keys(ctx)
        }
        save_defaults_file(Path(config_path), persisted)

    setup_logger(verbose, config.log_file, config.secrets)
    log_startup_info(config)
    sys.exit(RelocationRunner(config).run())


def build_config(
    ctx: click.Context, config_path: Path
) -> tuple[RelocationConfig, dict[str, Any]]:
    """Overlay explicit flags on the defaults file and validate the result.

    Returns:
        The frozen configuration and the merged flat mapping it came from.
    """
    merged = {**load_defaults(config_path), **collect_overrides(ctx)}
    config = RelocationConfig.from_dict(merged)
    config.validate()
    return config, merged


def save_defaults_file(config_path: Path, values: dict[str, Any]) -> None:
    # Run-specific switches are not defaults
    transient = {"dry_run", "resume", "start_step"}
    write_defaults(config_path, {k: v for k, v in values.items() if k not in transient})


def log_startup_info(config: RelocationConfig) -> None:
    """Log the shape of the run; never any credential."""
    log_with_context(
        logging.INFO,
        f"Relocating {config.source.identity}:{config.source.web_root or '-'} -> "
        f"{config.destination.identity}:{config.destination.web_root or '-'}",
    )
    log_with_context(
        logging.INFO,
        f"transfer={config.transfer_mode.value} db_mode={config.db_mode.value} "
        f"db_compress={config.db_compress} databases="
        f"{','.join(f'{d.source}:{d.destination}' for d in config.databases) or '-'}",
    )
    if config.dry_run:
        log_with_context(logging.INFO, "DRY RUN: no changes will be made")
    if config.log_file:
        log_with_context(logging.INFO, f"Structured log: {config.log_file}")
    if config.secrets:
        log_with_context(logging.DEBUG, f"{len(config.secrets)} credential(s) supplied")


# ---------------------------------------------------------------------------
# RelocationRunner
# ---------------------------------------------------------------------------


class RelocationRunner:
    """Resolves the run context, builds the plan and runs it with cleanup."""

    def __init__(
        self,
        config: RelocationConfig,
        checkpoint_path: Path | None = None,
        interactive: bool | None = None,
    ) -> None:
        self.config = config
        self.checkpoint_path = checkpoint_path or config_dir() / CHECKPOINT_FILENAME
        self.interactive = interactive
        self.plan: MigrationPlan | None = None

    def resolve_context(self) -> RelocationContext:
        config = self.config
        run_context = resolve_run_context(
            config.source.host,
            config.destination.host,
            config.origin,
            interactive=self.interactive,
        )
        context = RelocationContext(config, run_context)
        if config.resume:
            start = resume_step(self.checkpoint_path, context.plan_key)
            context = RelocationContext(
                dataclasses.replace(config, start_step=start), run_context
            )
        return context

    def run(self, preflight_only: bool = False) -> int:
        """Run the plan and return the process exit code.

        Args:
            preflight_only: Only open channels and run the checks.
        """
        started = time.monotonic()
        context = self.resolve_context()
        channels = ControlChannelManager(context.config, context.run_context, self.interactive)
        staging = StagingArea(context.config.staging_root)

        with guaranteed_cleanup(channels, staging):
            self.plan = plan = build_plan(context, channels, staging, self.interactive)
            orchestrator = StepOrchestrator(
                plan, None if preflight_only else self.checkpoint_path
            )
            try:
                ok = orchestrator.run(preflight_only=preflight_only)
            except StepAbortedError as e:
                log_run_failure(plan, e, time.monotonic() - started)
                print_summary(plan)
                handle_exception(e)
                return EXIT_FAILED
            except KeyboardInterrupt as e:
                log_run_failure(plan, e, time.monotonic() - started)
                print_summary(plan)
                handle_exception(e)
                return EXIT_INTERRUPTED

            log_run_success(plan, time.monotonic() - started)
            print_summary(plan)
            if ok and not preflight_only and not plan.dry_run:
                clear_checkpoint(self.checkpoint_path)
            return EXIT_OK if ok else EXIT_FAILED
