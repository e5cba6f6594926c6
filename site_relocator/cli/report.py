"""Console summary printed at the end of a run."""

from __future__ import annotations

import click

from site_relocator.core.plan import MigrationPlan
from site_relocator.types import StepStatus

_MARKS = {
    StepStatus.OK: "ok",
    StepStatus.FAILED: "FAILED",
    StepStatus.RUNNING: "interrupted",
    StepStatus.PENDING: "not run",
    StepStatus.SKIPPED_BY_RESUME: "skipped (resume)",
    StepStatus.SKIPPED_DISABLED: "skipped (disabled)",
}


def print_summary(plan: MigrationPlan) -> None:
    """Print one line per step, then transfer and database outcomes."""
    width = 80
    title = "DRY RUN SUMMARY" if plan.dry_run else "RELOCATION SUMMARY"
    click.echo("\n" + "=" * width)
    click.echo(title)
    click.echo(f"{plan.source.identity} -> {plan.destination.identity} "
               f"({plan.context.run_context.value})")
    click.echo("=" * width)

    for step in plan.steps:
        line = f"{step.number:>3}. {step.label:<45} {_MARKS[step.status]}"
        if step.duration:
            line += f" ({step.duration:.1f}s)"
        click.echo(line)
        if step.error:
            click.echo(f"       {step.error}")

    for job in plan.transfers:
        if job.outcome is None:
            continue
        click.echo(
            f"Transfer {job.resource.value}: {job.outcome.value} "
            f"via {job.recorded_strategy or job.strategy.value}"
        )
    for task in plan.databases:
        if task.outcome is None:
            continue
        codec = task.codec.value if task.codec else "-"
        click.echo(
            f"Database {task.label}: {task.outcome.value} "
            f"via {task.recorded_mode or '-'} (compression: {codec})"
        )

    click.echo("=" * width)
    if plan.has_failures:
        first = plan.failed_steps[0].number
        click.echo(f"Finished with failures. Rerun with --start-step {first} or --resume.")
    elif plan.dry_run:
        click.echo("To perform the relocation, run again without --dry-run")
    click.echo("=" * width)
