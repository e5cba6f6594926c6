"""Memoized capability probing per endpoint.

A capability is a named yes/no question about an endpoint, usually whether an
executable is on its PATH. Answers are cached for the whole run.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from site_relocator.services.commands import cmd, command_exists
from site_relocator.types import Role
from site_relocator.utils.logging import log_with_context

if TYPE_CHECKING:
    from site_relocator.services.channel import ControlChannelManager

Probe = Callable[["CapabilitySet"], bool]


def executable(*names: str) -> Probe:
    """Probe that succeeds when any of ``names`` is installed."""

    def probe(caps: CapabilitySet) -> bool:
        return any(caps.runner.run(caps.role, command_exists(n)).ok for n in names)

    return probe


def _dump_column_statistics(caps: CapabilitySet) -> bool:
    if not caps.has("dump"):
        return False
    result = caps.runner.run(caps.role, cmd(caps.dump_tool(), "--help", mutating=False))
    return "column-statistics" in result.stdout


DEFAULT_PROBES: dict[str, Probe] = {
    "dump": executable("mariadb-dump", "mysqldump"),
    "dump-column-statistics": _dump_column_statistics,
}


class CapabilitySet:
    """Lazily populated ``capability -> bool`` map for one endpoint."""

    def __init__(
        self,
        role: Role,
        runner: ControlChannelManager,
        probes: dict[str, Probe] | None = None,
    ) -> None:
        self.role = role
        self.runner = runner
        self._probes = {**DEFAULT_PROBES, **(probes or {})}
        self._known: dict[str, bool] = {}

    def has(self, capability: str) -> bool:
        """Return whether the endpoint has ``capability``, probing once."""
        if capability not in self._known:
            probe = self._probes.get(capability, executable(capability))
            self._known[capability] = probe(self)
            log_with_context(
                logging.DEBUG,
                f"{self.role.value} capability {capability}: {self._known[capability]}",
            )
        return self._known[capability]

    def missing(self, *capabilities: str) -> list[str]:
        return [c for c in capabilities if not self.has(c)]

    @property
    def known(self) -> dict[str, bool]:
        return dict(self._known)

    def dump_tool(self) -> str:
        """``mariadb-dump`` when installed, else ``mysqldump``."""
        return "mariadb-dump" if self.has("mariadb-dump") else "mysqldump"
