"""The migration plan: ordered step records plus the data they act on."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from site_relocator.types import Role, StepStatus

if TYPE_CHECKING:
    from site_relocator.core.context import Endpoint, RelocationContext
    from site_relocator.services.capabilities import CapabilitySet
    from site_relocator.services.database import DatabaseMigrationTask
    from site_relocator.services.transfer import TransferJob


@dataclass
class StepRecord:
    """A declared step. ``number`` is fixed at declaration and is the resume key."""

    number: int
    label: str
    action: Callable[[], None] = field(repr=False)
    mandatory: bool = False
    enabled: bool = True
    preflight: bool = False
    status: StepStatus = StepStatus.PENDING
    error: str | None = None
    log_ref: str | None = None
    duration: float = 0.0


@dataclass
class MigrationPlan:
    """Everything one invocation will do, in order.

    Created once per run and mutated only by the orchestrator.
    """

    context: RelocationContext
    capabilities: dict[Role, CapabilitySet]
    resume_threshold: int = 1
    steps: list[StepRecord] = field(default_factory=list)
    transfers: list[TransferJob] = field(default_factory=list)
    databases: list[DatabaseMigrationTask] = field(default_factory=list)

    def add_step(
        self,
        label: str,
        action: Callable[[], None],
        mandatory: bool = False,
        enabled: bool = True,
        preflight: bool = False,
    ) -> StepRecord:
        """Declare the next step; numbers are assigned 1, 2, 3... in call order."""
        step = StepRecord(
            number=len(self.steps) + 1,
            label=label,
            action=action,
            mandatory=mandatory,
            enabled=enabled,
            preflight=preflight,
        )
        self.steps.append(step)
        return step

    @property
    def source(self) -> Endpoint:
        return self.context.source

    @property
    def destination(self) -> Endpoint:
        return self.context.destination

    @property
    def dry_run(self) -> bool:
        return self.context.dry_run

    @property
    def failed_steps(self) -> list[StepRecord]:
        return [s for s in self.steps if s.status is StepStatus.FAILED]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_steps)

    @property
    def resume_point(self) -> int | None:
        """First step that failed or never finished, if any."""
        for step in self.steps:
            if step.status in (StepStatus.FAILED, StepStatus.RUNNING):
                return step.number
        return None

    def statuses(self) -> dict[int, str]:
        return {step.number: step.status.value for step in self.steps}
