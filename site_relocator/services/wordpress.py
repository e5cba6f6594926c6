"""WordPress awareness: site mode detection, maintenance window, URL rewrite."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

import click

from site_relocator.constants import (
    WORDPRESS_MAINTENANCE_BODY,
    WORDPRESS_MAINTENANCE_FILE,
    WORDPRESS_MARKER_FILE,
)
from site_relocator.services import commands as c
from site_relocator.types import Role, SiteMode
from site_relocator.utils.logging import log_with_context

if TYPE_CHECKING:
    from site_relocator.core.config import RelocationConfig
    from site_relocator.services.capabilities import CapabilitySet
    from site_relocator.services.channel import ControlChannelManager


class WordPressSite:
    """Answers WordPress questions about the source site, once per run."""

    def __init__(
        self,
        config: RelocationConfig,
        channels: ControlChannelManager,
        interactive: bool | None = None,
    ) -> None:
        self.config = config
        self.channels = channels
        self.interactive = sys.stdin.isatty() if interactive is None else interactive
        self._mode: SiteMode | None = None
        self._maintenance: bool | None = None

    @property
    def source_root(self) -> str:
        return self.config.source.web_root

    def has_marker(self) -> bool:
        if not self.source_root:
            return False
        marker = os.path.join(self.source_root, WORDPRESS_MARKER_FILE)
        return self.channels.run(Role.SOURCE, c.file_exists(marker)).ok

    @property
    def mode(self) -> SiteMode:
        """Configured mode, or the detected one when set to ``auto``."""
        if self._mode is None:
            if self.config.site_mode is not SiteMode.AUTO:
                self._mode = self.config.site_mode
            else:
                self._mode = (
                    SiteMode.WORDPRESS if self.has_marker() else SiteMode.GENERIC
                )
                log_with_context(logging.INFO, f"Detected site mode: {self._mode.value}")
        return self._mode

    @property
    def is_wordpress(self) -> bool:
        return self.mode is SiteMode.WORDPRESS

    def maintenance_enabled(self) -> bool:
        """Resolve ``maintenance`` (on/off/prompt) once per run."""
        if self._maintenance is None:
            setting = self.config.maintenance
            if setting == "prompt":
                self._maintenance = self.interactive and click.confirm(
                    "Put the source site in maintenance mode while databases are copied?",
                    default=True,
                )
            else:
                self._maintenance = setting == "on"
        return self._maintenance

    @contextmanager
    def maintenance_window(self) -> Iterator[None]:
        """Hold the source site in maintenance mode; always removes the flag."""
        if not (self.is_wordpress and self.maintenance_enabled() and self.has_marker()):
            yield
            return

        flag = os.path.join(self.source_root, WORDPRESS_MAINTENANCE_FILE)
        log_with_context(logging.INFO, f"Enabling maintenance mode ({flag})")
        self.channels.run(
            Role.SOURCE, c.write_file(flag, WORDPRESS_MAINTENANCE_BODY), check=True
        )
        try:
            yield
        finally:
            self.channels.run(Role.SOURCE, c.remove_file(flag))
            log_with_context(logging.INFO, "Maintenance mode disabled")

    def search_replace(self, destination_caps: CapabilitySet, destination_root: str) -> None:
        """Rewrite the old site URL to the new one with wp-cli on the destination."""
        old, new = self.config.old_url, self.config.new_url
        if not self.is_wordpress:
            log_with_context(logging.INFO, "Not a WordPress site, nothing to rewrite")
            return
        if not (self.config.search_replace and old and new) or old == new:
            log_with_context(logging.INFO, "No URL change configured, skipping rewrite")
            return
        if not destination_caps.has("wp"):
            log_with_context(
                logging.WARNING, "wp-cli not found on destination, skipping URL rewrite"
            )
            return
        command = c.cmd(
            "wp",
            f"--path={destination_root}",
            "search-replace",
            old,
            new,
            "--all-tables-with-prefix",
            "--precise",
            "--recurse-objects",
            "--skip-columns=guid",
        )
        result = self.channels.run(Role.DESTINATION, command, check=True)
        log_with_context(logging.INFO, f"Rewrote {old} -> {new}: {result.stdout.strip()}")
