"""Dependency validation and destination preparation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from site_relocator.exceptions import CommandError, DependencyError
from site_relocator.services import commands as c
from site_relocator.types import Role, RunContext, TransferStrategy
from site_relocator.utils.logging import log_with_context

if TYPE_CHECKING:
    from site_relocator.core.config import RelocationConfig
    from site_relocator.services.capabilities import CapabilitySet
    from site_relocator.services.channel import ControlChannelManager

OPTIONAL_TOOLS = {Role.SOURCE: ("ionice",), Role.DESTINATION: ()}


def required_tools(config: RelocationConfig, role: Role, run_context: RunContext) -> list[str]:
    """Executables ``role`` must provide for the enabled steps."""
    tools: list[str] = []
    if config.moves_files:
        if config.transfer_mode is not TransferStrategy.STREAM:
            tools.append("rsync")
        if config.transfer_mode is not TransferStrategy.STAGE:
            # stream and the direct fallback both use tar
            tools.append("tar")
    if not config.skip_db:
        tools.append("dump" if role is Role.SOURCE else "mysql")
    if (
        role is Role.DESTINATION
        and config.moves_files
        and config.source.password
        and config.transfer_mode is TransferStrategy.DIRECT
        and run_context is RunContext.NEITHER
    ):
        # The destination logs in to the source itself
        tools.append("sshpass")
    return tools


class Preflight:
    """Checks run before anything is changed."""

    def __init__(
        self,
        config: RelocationConfig,
        channels: ControlChannelManager,
        capabilities: dict[Role, CapabilitySet],
    ) -> None:
        self.config = config
        self.channels = channels
        self.capabilities = capabilities

    def validate_tools(self, role: Role) -> None:
        """
        Verify the tools ``role`` needs.

        Raises:
            DependencyError: If a required tool is missing
        """
        caps = self.capabilities[role]
        required = required_tools(self.config, role, self.channels.run_context)
        missing = caps.missing(*required)
        for tool in caps.missing(*OPTIONAL_TOOLS[role]):
            log_with_context(
                logging.WARNING, f"Optional tool {tool} not found on {role.value}"
            )
        if missing:
            raise DependencyError(
                f"Missing on {role.value}: {', '.join(missing)}. "
                "Install them and run again."
            )
        log_with_context(
            logging.INFO,
            f"{role.value} has {', '.join(required) or 'nothing to check'}",
            endpoint=role.value,
        )

    def check_databases(self) -> None:
        """Connect to both database servers with ``SELECT VERSION()``."""
        for role in Role:
            creds = self.config.endpoint(role).db
            try:
                result = self.channels.run(role, c.server_version(creds), check=True)
            except CommandError as e:
                raise DependencyError(
                    f"Cannot connect to the {role.value} database server as "
                    f"{creds.user}@{creds.host}: {e.stderr.strip()}"
                ) from e
            log_with_context(
                logging.INFO,
                f"{role.value} database server version {result.stdout.strip()}",
                endpoint=role.value,
            )

    def prepare_destination(self, root: str, assets_dir: str) -> None:
        """Create the destination directories and report free space."""
        self.channels.run(
            Role.DESTINATION, c.make_dirs(root, f"{root}/{assets_dir}"), check=True
        )
        usage = self.channels.run(Role.DESTINATION, c.disk_usage(root))
        if usage.ok and usage.stdout:
            log_with_context(logging.INFO, f"Destination disk usage:\n{usage.stdout.rstrip()}")
