"""
Step orchestration.

Steps run strictly in declaration order. Each one is skipped (below the
resume threshold, or disabled) or executed; failures of mandatory steps
abort the run, failures of optional steps are recorded and the run goes on.
An unreachable endpoint or a missing tool aborts the run from any step.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from site_relocator.core.checkpoint import CheckpointData, save_checkpoint
from site_relocator.core.plan import MigrationPlan, StepRecord
from site_relocator.exceptions import (
    ChannelError,
    DependencyError,
    RelocatorError,
    StepAbortedError,
)
from site_relocator.types import StepStatus
from site_relocator.utils.logging import log_step, log_with_context

# Errors that end the run whichever step raises them
FATAL_ERRORS = (ChannelError, DependencyError)


def is_fatal(error: BaseException) -> bool:
    """Whether ``error``, or any error it was raised from, must abort the run."""
    current: BaseException | None = error
    while current is not None:
        if isinstance(current, FATAL_ERRORS):
            return True
        current = current.__cause__
    return False


class StepOrchestrator:
    """Drives a :class:`MigrationPlan` from its first step to its last."""

    def __init__(self, plan: MigrationPlan, checkpoint_path: Path | None = None) -> None:
        self.plan = plan
        self.checkpoint_path = checkpoint_path
        self._checkpoint = CheckpointData(plan_key=plan.context.plan_key)

    def run(self, preflight_only: bool = False) -> bool:
        """Execute every step, or only the preflight checks.

        Returns:
            True when no step failed.

        Raises:
            StepAbortedError: When a mandatory step fails.
        """
        for step in self.plan.steps:
            if preflight_only and not step.preflight:
                continue
            self.run_step(step)
        return not self.plan.has_failures

    def run_step(self, step: StepRecord) -> None:
        plan = self.plan
        if step.number < plan.resume_threshold:
            step.status = StepStatus.SKIPPED_BY_RESUME
            log_with_context(
                logging.INFO,
                f"Skipping step {step.number} ({step.label}): "
                f"starting at step {plan.resume_threshold}",
                step=step.number,
            )
            self._save_progress()
            return
        if not step.enabled:
            step.status = StepStatus.SKIPPED_DISABLED
            log_with_context(
                logging.INFO,
                f"Skipping step {step.number} ({step.label}): disabled",
                step=step.number,
            )
            self._save_progress()
            return

        log_step(step.number, step.label)
        log_file = plan.context.config.log_file
        step.log_ref = f"{log_file}#step={step.number}" if log_file else None
        step.status = StepStatus.RUNNING
        self._save_progress()
        started = time.monotonic()
        try:
            step.action()
        except Exception as e:
            step.status = StepStatus.FAILED
            step.error = str(e)
            log_with_context(
                logging.ERROR,
                f"Step {step.number} ({step.label}) failed: {e}",
                exc_info=not isinstance(e, RelocatorError),
                step=step.number,
            )
            if step.mandatory or is_fatal(e):
                raise StepAbortedError(step.number, step.label, str(e)) from e
        else:
            step.status = StepStatus.OK
            log_with_context(
                logging.INFO, f"Step {step.number} ({step.label}) ok", step=step.number
            )
        finally:
            step.duration = time.monotonic() - started
            self._save_progress()

    def _save_progress(self) -> None:
        if self.checkpoint_path is None or self.plan.dry_run:
            return
        self._checkpoint.steps = {str(k): v for k, v in self.plan.statuses().items()}
        self._checkpoint.resume_from = self.plan.resume_point
        save_checkpoint(self.checkpoint_path, self._checkpoint)
