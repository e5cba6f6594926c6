"""
Run outcome logging for the site relocation tool.

Each function takes the plan as its first argument and emits structured
records: key figures are passed as kwargs so they land in the ``meta`` of the
JSON log while staying readable on the console.
"""

from __future__ import annotations

import logging
from typing import Any

from site_relocator.core.plan import MigrationPlan
from site_relocator.types import StepStatus
from site_relocator.utils.logging import log_with_context


def _collect_statistics(plan: MigrationPlan) -> dict[str, Any]:
    """Count steps per terminal status."""
    counts = {status.value: 0 for status in StepStatus}
    for step in plan.steps:
        counts[step.status.value] += 1
    return counts


def log_step_summary(plan: MigrationPlan) -> None:
    """One record per declared step with its terminal status."""
    for step in plan.steps:
        level = logging.ERROR if step.status is StepStatus.FAILED else logging.INFO
        message = f"Step {step.number} {step.label}: {step.status.value}"
        if step.error:
            message += f" ({step.error})"
        log_with_context(level, message, step=step.number, status=step.status.value)

    for job in plan.transfers:
        outcome = job.outcome.value if job.outcome else "not run"
        log_with_context(
            logging.INFO,
            f"Transfer {job.resource.value}: {outcome} via {job.recorded_strategy or '-'}",
            resource=job.resource.value,
            outcome=outcome,
        )
    for task in plan.databases:
        outcome = task.outcome.value if task.outcome else "not run"
        log_with_context(
            logging.INFO,
            f"Database {task.label}: {outcome}"
            + (f" via {task.recorded_mode}" if task.recorded_mode else ""),
            database=task.source_name,
            outcome=outcome,
        )


def log_run_success(plan: MigrationPlan, duration: float) -> None:
    """Log the final status of a run that reached its last step."""
    stats = _collect_statistics(plan)
    log_step_summary(plan)
    prefix = plan.context.log_prefix
    if plan.has_failures:
        failed = ", ".join(str(s.number) for s in plan.failed_steps)
        log_with_context(
            logging.ERROR,
            f"{prefix}Relocation finished with failures in step(s) {failed} "
            f"after {duration:.1f}s; rerun with --start-step {plan.resume_point} "
            "or --resume",
            outcome="failed",
            duration=round(duration, 1),
            **stats,
        )
    else:
        log_with_context(
            logging.INFO,
            f"{prefix}Relocation completed successfully in {duration:.1f}s",
            outcome="ok",
            duration=round(duration, 1),
            **stats,
        )


def log_run_failure(plan: MigrationPlan, error: BaseException, duration: float) -> None:
    """Log the final status of a run that was aborted."""
    stats = _collect_statistics(plan)
    log_step_summary(plan)
    resume = plan.resume_point
    log_with_context(
        logging.ERROR,
        f"{plan.context.log_prefix}Relocation aborted after {duration:.1f}s: {error}"
        + (f"; resume with --start-step {resume}" if resume else ""),
        outcome="aborted",
        duration=round(duration, 1),
        **stats,
    )
