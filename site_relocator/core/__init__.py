"""Core relocation logic: configuration, run context, plan and orchestration."""

__all__ = [
    "checkpoint",
    "cleanup",
    "config",
    "context",
    "migration_logging",
    "orchestrator",
    "plan",
    "run_context",
    "steps",
]
