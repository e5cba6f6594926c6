"""Checkpoint persistence for resumable relocations."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from site_relocator.utils.logging import log_with_context

CHECKPOINT_SCHEMA_VERSION = 1


@dataclass
class CheckpointData:
    """Serializable snapshot of step progress."""

    schema_version: int = CHECKPOINT_SCHEMA_VERSION
    plan_key: str = ""
    steps: dict[str, str] = field(default_factory=dict)  # step number -> status
    resume_from: int | None = None
    started_at: str | None = None
    last_updated: str | None = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_checkpoint(path: Path) -> CheckpointData | None:
    """Load a checkpoint from disk, returning None if absent or corrupt."""
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text())
        if not isinstance(raw, dict):
            log_with_context(
                logging.WARNING,
                f"Checkpoint file {path} has invalid format, ignoring",
            )
            return None
        version = raw.get("schema_version", 0)
        if version != CHECKPOINT_SCHEMA_VERSION:
            log_with_context(
                logging.WARNING,
                f"Checkpoint schema version {version} != {CHECKPOINT_SCHEMA_VERSION}, ignoring",
            )
            return None
        return CheckpointData(
            schema_version=version,
            plan_key=raw.get("plan_key", ""),
            steps={str(k): str(v) for k, v in raw.get("steps", {}).items()},
            resume_from=raw.get("resume_from"),
            started_at=raw.get("started_at"),
            last_updated=raw.get("last_updated"),
        )
    except (json.JSONDecodeError, OSError) as e:
        log_with_context(logging.WARNING, f"Failed to read checkpoint {path}: {e}")
        return None


def save_checkpoint(path: Path, data: CheckpointData) -> None:
    """Atomically save checkpoint to disk (write .tmp + rename)."""
    data.last_updated = _now_iso()
    if data.started_at is None:
        data.started_at = data.last_updated
    tmp = path.with_suffix(".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(asdict(data), indent=2) + "\n")
        tmp.replace(path)
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to write checkpoint {path}: {e}")


def clear_checkpoint(path: Path) -> None:
    """Remove the checkpoint file after a fully successful run."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log_with_context(logging.WARNING, f"Failed to remove checkpoint {path}: {e}")


def resume_step(path: Path, plan_key: str) -> int:
    """Step number to resume from, or 1 when there is nothing usable to resume."""
    data = load_checkpoint(path)
    if data is None:
        log_with_context(logging.INFO, "No checkpoint found, starting from step 1")
        return 1
    if data.plan_key != plan_key:
        log_with_context(
            logging.WARNING,
            f"Checkpoint belongs to {data.plan_key}, not {plan_key}; ignoring",
        )
        return 1
    step = data.resume_from or 1
    log_with_context(logging.INFO, f"Resuming from step {step}")
    return step
