"""Shared CLI infrastructure: option decorators, error handlers, and the CLI group."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, ClassVar

import click
from click.core import ParameterSource

import site_relocator
from site_relocator.constants import ENV_PREFIX, TOOL_NAME
from site_relocator.core.config import KNOWN_KEYS, default_config_path
from site_relocator.exceptions import (
    ChannelError,
    ConfigError,
    DependencyError,
    RelocatorError,
    StepAbortedError,
)
from site_relocator.types import DbMode, SiteMode, TransferStrategy
from site_relocator.utils.logging import log_with_context

# ---------------------------------------------------------------------------
# Custom click.Group that defaults to ``migrate``.
# When the first CLI token is a flag rather than a subcommand the group
# prepends ``migrate``, so ``site-relocator --old-host a --new-host b``
# starts a relocation.
# ---------------------------------------------------------------------------


class DefaultGroup(click.Group):
    """Click group that defaults to the ``migrate`` subcommand."""

    # Flags that belong to the group itself and should NOT trigger the
    # ``migrate`` default.
    _GROUP_FLAGS: ClassVar[set[str]] = {"--help", "--version", "-h"}

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        """Prepend ``migrate`` when the first token is a flag.

        Args:
            ctx: The current Click context.
            args: Raw CLI argument list.

        Returns:
            The (possibly modified) argument list for further parsing.
        """
        if args and args[0].startswith("-") and args[0] not in self._GROUP_FLAGS:
            args = ["migrate", *args]
        return super().parse_args(ctx, args)


# ---------------------------------------------------------------------------
# Shared option decorators
# ---------------------------------------------------------------------------


def _secret(flag: str, key: str, help: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    return click.option(
        flag, key, envvar=f"{ENV_PREFIX}{key.upper()}", show_envvar=True, help=help
    )


def endpoint_options(f: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator adding the defaults file, endpoint and credential options.

    Args:
        f: The Click command function to decorate.

    Returns:
        The decorated function.
    """
    options = [
        click.option(
            "--config",
            "config_path",
            default=lambda: str(default_config_path()),
            show_default="~/.config/site-relocator/defaults.yaml",
            help="Defaults file (YAML) loaded before flags",
        ),
        click.option("--verbose", "-v", is_flag=True, default=False, help="Show DEBUG messages"),
        click.option("--old-host", "source_host", help="Source host"),
        click.option("--old-port", "source_port", type=int, help="Source SSH port"),
        click.option("--old-user", "source_user", help="Source SSH user"),
        click.option("--old-key", "source_key_path", help="Source SSH private key"),
        _secret("--old-pass", "source_password", "Source SSH password (uses sshpass)"),
        click.option("--old-root", "source_web_root", help="Source web root"),
        click.option("--old-db-host", "source_db_host", help="Source database host"),
        click.option("--old-db-user", "source_db_user", help="Source database user"),
        _secret("--old-db-pass", "source_db_password", "Source database password"),
        click.option("--new-host", "destination_host", help="Destination host"),
        click.option("--new-port", "destination_port", type=int, help="Destination SSH port"),
        click.option("--new-user", "destination_user", help="Destination SSH user"),
        click.option("--new-key", "destination_key_path", help="Destination SSH private key"),
        _secret("--new-pass", "destination_password", "Destination SSH password (uses sshpass)"),
        click.option("--new-root", "destination_web_root", help="Destination web root"),
        click.option("--new-db-host", "destination_db_host", help="Destination database host"),
        click.option("--new-db-user", "destination_db_user", help="Destination database user"),
        _secret("--new-db-pass", "destination_db_password", "Destination database password"),
        click.option(
            "--db",
            "databases",
            multiple=True,
            help="Database to copy, NAME or OLD:NEW (repeatable)",
        ),
        click.option(
            "--transfer-mode",
            type=click.Choice([m.value for m in TransferStrategy]),
            help="How code and assets travel (default: direct)",
        ),
        click.option("--skip-code", is_flag=True, help="Do not transfer the code tree"),
        click.option("--skip-assets", is_flag=True, help="Do not transfer the assets tree"),
        click.option("--skip-db", is_flag=True, help="Do not migrate databases"),
        click.option("--only-db", is_flag=True, help="Only migrate databases"),
        click.option("--from-old", "origin", flag_value="source", help="This machine is the source"),
        click.option("--from-new", "origin", flag_value="destination", help="This machine is the destination"),
        click.option("--from-neither", "origin", flag_value="neither", help="This machine is neither endpoint"),
        click.option("--allow-legacy-ssh", is_flag=True, help="Retry SSH with legacy algorithms"),
        click.option(
            "--legacy-hostkeys",
            "legacy_algorithms",
            help="Algorithms added on legacy retry (default: +ssh-rsa)",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def run_options(f: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator adding the options that only matter when changing things."""
    options = [
        click.option(
            "--mode",
            "site_mode",
            type=click.Choice([m.value for m in SiteMode]),
            help="Site type; auto detects WordPress via wp-config.php",
        ),
        click.option(
            "--db-mode",
            type=click.Choice([m.value for m in DbMode]),
            help="buffer: via temp file, stream: piped, auto: stream then buffer",
        ),
        click.option(
            "--db-compress",
            type=click.Choice(["auto", "lz4", "gzip", "none"]),
            help="Dump compression (auto negotiates with both endpoints)",
        ),
        click.option(
            "--exclude-table",
            "exclude_tables",
            multiple=True,
            help="Table to skip, TABLE or DB.TABLE (repeatable)",
        ),
        click.option(
            "--exclude",
            "rsync_excludes",
            multiple=True,
            help="Pattern excluded from the code tree (repeatable, default: logs tmp)",
        ),
        click.option("--assets-dir", help="Assets directory relative to the web root"),
        click.option("--start-step", type=click.IntRange(min=1), help="First step to run"),
        click.option("--resume", is_flag=True, help="Start at the step that failed last time"),
        click.option("--dry-run", is_flag=True, help="Report what would change without changing it"),
        click.option(
            "--maintenance/--no-maintenance",
            default=None,
            help="WordPress maintenance mode while copying databases",
        ),
        click.option("--rsync-new-user", "rsync_destination_user", help="User for rsync pushes to the destination"),
        click.option("--stage-dir", "staging_root", help="Parent of the local staging directory"),
        click.option("--log-file", help="Structured JSON-lines log path"),
        click.option("--no-log-file", is_flag=True, help="Disable the structured log"),
        click.option("--old-url", help="Site URL on the source"),
        click.option("--new-url", help="Site URL on the destination"),
        click.option(
            "--search-replace/--no-search-replace",
            default=None,
            help="Rewrite URLs with wp-cli after migrating",
        ),
        click.option("--plesk-setup", "provision", is_flag=True, help="Create Plesk subscription and database records"),
        click.option("--plesk-domain", help="Plesk subscription domain"),
        click.option("--plesk-system-user", help="System user of the Plesk subscription"),
        _secret("--plesk-system-pass", "plesk_system_password", "Password of the Plesk system user"),
        click.option("--save-defaults", is_flag=True, help="Write the effective settings to the defaults file"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


_EXPLICIT_SOURCES = (ParameterSource.COMMANDLINE, ParameterSource.ENVIRONMENT)


def collect_overrides(ctx: click.Context) -> dict[str, Any]:
    """Settings given explicitly on the command line or through the environment.

    Click defaults are left out so that the defaults file still applies.

    Args:
        ctx: Context of the running command.

    Returns:
        Flat mapping of configuration keys to values.
    """
    overrides: dict[str, Any] = {}
    for name, value in ctx.params.items():
        if name not in KNOWN_KEYS:
            continue
        if ctx.get_parameter_source(name) not in _EXPLICIT_SOURCES:
            continue
        overrides[name] = list(value) if isinstance(value, tuple) else value
    if ctx.params.get("no_log_file"):
        overrides["log_file"] = ""
    return overrides


def environment_keys(ctx: click.Context) -> set[str]:
    """Parameter names whose value came from the environment."""
    return {
        name
        for name in ctx.params
        if ctx.get_parameter_source(name) is ParameterSource.ENVIRONMENT
    }


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(
    cls=DefaultGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=site_relocator.__version__, prog_name=TOOL_NAME)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Move a website's code, assets and databases between two hosts.

    Args:
        ctx: The Click context (injected by ``@click.pass_context``).
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def handle_exception(e: BaseException) -> None:
    """Handle different types of exceptions.

    Args:
        e: The exception to handle.
    """
    if isinstance(e, ConfigError):
        log_with_context(logging.ERROR, f"Configuration error: {e}")
        log_with_context(
            logging.INFO,
            "Check the defaults file and flags; run 'site-relocator init-config' "
            "for a template.",
        )
    elif isinstance(e, StepAbortedError):
        log_with_context(logging.ERROR, str(e), step=e.number)
        log_with_context(
            logging.INFO, f"Fix the problem and rerun with --start-step {e.number}."
        )
    elif isinstance(e, (ChannelError, DependencyError)):
        log_with_context(logging.ERROR, str(e))
    elif isinstance(e, RelocatorError):
        log_with_context(logging.ERROR, f"Relocation failed: {e}")
    elif isinstance(e, KeyboardInterrupt):
        log_with_context(logging.WARNING, "Relocation interrupted by user.")
        log_with_context(
            logging.INFO, "Channels were closed; resume with --resume."
        )
    else:
        log_with_context(logging.ERROR, f"Relocation failed: {e}", exc_info=True)


def config_path_option(f: Callable[..., Any]) -> Callable[..., Any]:
    """``--config`` alone, for commands that only touch the defaults file."""
    return click.option(
        "--config",
        "config_path",
        type=click.Path(dir_okay=False, path_type=Path),
        default=lambda: str(default_config_path()),
        show_default="~/.config/site-relocator/defaults.yaml",
        help="Defaults file (YAML)",
    )(f)
