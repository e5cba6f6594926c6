"""Immutable relocation context.

RelocationContext is a frozen dataclass holding the configuration and the
resolved run context. It is created once at startup and shared read-only
with every step.
"""

from __future__ import annotations

from dataclasses import dataclass

from site_relocator.core.config import RelocationConfig
from site_relocator.types import Role, RunContext


@dataclass(frozen=True)
class Endpoint:
    """One side of the relocation as seen from this process."""

    role: Role
    host: str
    port: int
    user: str
    local: bool

    @property
    def identity(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    @property
    def locality(self) -> str:
        return "local" if self.local else "remote"


@dataclass(frozen=True)
class RelocationContext:
    """Immutable context for a relocation run. Created once, shared everywhere."""

    config: RelocationConfig
    run_context: RunContext

    def endpoint(self, role: Role) -> Endpoint:
        cfg = self.config.endpoint(role)
        return Endpoint(
            role=role,
            host=cfg.host,
            port=cfg.port,
            user=cfg.user,
            local=self.run_context.is_local(role),
        )

    @property
    def source(self) -> Endpoint:
        return self.endpoint(Role.SOURCE)

    @property
    def destination(self) -> Endpoint:
        return self.endpoint(Role.DESTINATION)

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    @property
    def plan_key(self) -> str:
        """Identity of the source/destination pair, used to match checkpoints."""
        return f"{self.source.identity}->{self.destination.identity}"

    @property
    def log_prefix(self) -> str:
        """``"[DRY RUN] "`` when nothing is being changed, else empty."""
        return "[DRY RUN] " if self.dry_run else ""
