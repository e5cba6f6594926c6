"""
Command-line entry point for site-relocator.

Importing the command modules registers their subcommands on the shared
``cli`` group.
"""

from __future__ import annotations

from site_relocator.cli import check_cmd, config_cmd, migrate_cmd  # noqa: F401
from site_relocator.cli.common import cli


def main() -> None:
    """Run the ``site-relocator`` command group."""
    cli()


if __name__ == "__main__":
    main()
