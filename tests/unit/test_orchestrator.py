"""Unit tests for step orchestration and the plan."""

from __future__ import annotations

from pathlib import Path

import pytest

from site_relocator.core.checkpoint import load_checkpoint
from site_relocator.core.context import RelocationContext
from site_relocator.core.orchestrator import StepOrchestrator
from site_relocator.core.plan import MigrationPlan
from site_relocator.exceptions import (
    ChannelError,
    ConfigError,
    DependencyError,
    StepAbortedError,
    TransferError,
)
from site_relocator.types import RunContext, StepStatus


def _plan(config, calls: list[int], count: int = 7, threshold: int = 1) -> MigrationPlan:
    plan = MigrationPlan(
        context=RelocationContext(config, RunContext.NEITHER),
        capabilities={},
        resume_threshold=threshold,
    )
    for number in range(1, count + 1):
        plan.add_step(f"step {number}", lambda n=number: calls.append(n))
    return plan


class TestMigrationPlan:
    """Tests for MigrationPlan bookkeeping."""

    def test_steps_are_numbered_in_declaration_order(self, make_config) -> None:
        plan = _plan(make_config(), [], count=3)
        assert [s.number for s in plan.steps] == [1, 2, 3]
        assert all(s.status is StepStatus.PENDING for s in plan.steps)

    def test_resume_point_is_first_failed_or_running(self, make_config) -> None:
        plan = _plan(make_config(), [], count=4)
        plan.steps[0].status = StepStatus.OK
        plan.steps[2].status = StepStatus.FAILED
        assert plan.resume_point == 3
        plan.steps[1].status = StepStatus.RUNNING
        assert plan.resume_point == 2


class TestStepOrchestrator:
    """Tests for StepOrchestrator.run()."""

    def test_runs_every_step_in_order(self, make_config) -> None:
        calls: list[int] = []
        plan = _plan(make_config(), calls)
        assert StepOrchestrator(plan).run() is True
        assert calls == [1, 2, 3, 4, 5, 6, 7]
        assert all(s.status is StepStatus.OK for s in plan.steps)

    def test_start_step_skips_earlier_steps(self, make_config) -> None:
        calls: list[int] = []
        plan = _plan(make_config(), calls, threshold=5)
        StepOrchestrator(plan).run()

        assert calls == [5, 6, 7]
        assert [s.status for s in plan.steps[:4]] == [StepStatus.SKIPPED_BY_RESUME] * 4
        assert [s.status for s in plan.steps[4:]] == [StepStatus.OK] * 3

    def test_disabled_steps_are_skipped(self, make_config) -> None:
        calls: list[int] = []
        plan = _plan(make_config(), calls, count=3)
        plan.steps[1].enabled = False
        StepOrchestrator(plan).run()
        assert calls == [1, 3]
        assert plan.steps[1].status is StepStatus.SKIPPED_DISABLED

    def test_optional_failure_is_recorded_and_run_continues(self, make_config) -> None:
        calls: list[int] = []
        plan = _plan(make_config(), calls, count=3)

        def fail() -> None:
            raise TransferError("rsync exited with 23")

        plan.steps[1].action = fail
        assert StepOrchestrator(plan).run() is False
        assert calls == [1, 3]
        assert plan.steps[1].status is StepStatus.FAILED
        assert plan.steps[1].error == "rsync exited with 23"

    def test_mandatory_failure_aborts(self, make_config) -> None:
        calls: list[int] = []
        plan = _plan(make_config(), calls, count=3)

        def fail() -> None:
            raise ConfigError("bad")

        plan.steps[0].action = fail
        plan.steps[0].mandatory = True
        with pytest.raises(StepAbortedError) as exc_info:
            StepOrchestrator(plan).run()

        assert exc_info.value.number == 1
        assert calls == []
        assert plan.steps[1].status is StepStatus.PENDING

    def test_unreachable_endpoint_aborts_resumed_run(self, make_config) -> None:
        calls: list[int] = []
        plan = _plan(make_config(), calls, count=7, threshold=5)

        def unreachable() -> None:
            raise ChannelError("Cannot open SSH channel to destination")

        plan.steps[4].action = unreachable
        with pytest.raises(StepAbortedError) as exc_info:
            StepOrchestrator(plan).run()

        assert exc_info.value.number == 5
        assert calls == []
        assert plan.steps[4].status is StepStatus.FAILED
        assert [s.status for s in plan.steps[5:]] == [StepStatus.PENDING] * 2

    def test_wrapped_channel_error_aborts(self, make_config) -> None:
        calls: list[int] = []
        plan = _plan(make_config(), calls, count=3)

        def wrapped() -> None:
            try:
                raise ChannelError("source unreachable")
            except ChannelError as e:
                raise TransferError("code transfer failed") from e

        plan.steps[1].action = wrapped
        with pytest.raises(StepAbortedError):
            StepOrchestrator(plan).run()
        assert calls == [1]

    def test_missing_tool_aborts_optional_step(self, make_config) -> None:
        plan = _plan(make_config(), [], count=2)

        def missing() -> None:
            raise DependencyError("Missing on destination: tar")

        plan.steps[0].action = missing
        with pytest.raises(StepAbortedError):
            StepOrchestrator(plan).run()
        assert plan.steps[1].status is StepStatus.PENDING

    def test_unexpected_exceptions_are_step_failures(self, make_config) -> None:
        plan = _plan(make_config(), [], count=2)
        plan.steps[0].action = lambda: {}["missing"]
        assert StepOrchestrator(plan).run() is False
        assert plan.steps[0].status is StepStatus.FAILED

    def test_preflight_only_runs_flagged_steps(self, make_config) -> None:
        calls: list[int] = []
        plan = _plan(make_config(), calls, count=3)
        plan.steps[0].preflight = True
        StepOrchestrator(plan).run(preflight_only=True)
        assert calls == [1]
        assert plan.steps[2].status is StepStatus.PENDING


class TestCheckpointing:
    """Tests for progress persistence during a run."""

    def test_checkpoint_records_statuses_and_resume_point(
        self, make_config, tmp_path: Path
    ) -> None:
        path = tmp_path / "checkpoint.json"
        plan = _plan(make_config(), [], count=3)

        def fail() -> None:
            raise TransferError("boom")

        plan.steps[1].action = fail
        StepOrchestrator(plan, path).run()

        data = load_checkpoint(path)
        assert data is not None
        assert data.plan_key == plan.context.plan_key
        assert data.steps == {"1": "ok", "2": "failed", "3": "ok"}
        assert data.resume_from == 2

    def test_no_checkpoint_in_dry_run(self, make_config, tmp_path: Path) -> None:
        path = tmp_path / "checkpoint.json"
        StepOrchestrator(_plan(make_config(dry_run=True), []), path).run()
        assert not path.exists()

    def test_no_checkpoint_without_path(self, make_config, tmp_path: Path) -> None:
        StepOrchestrator(_plan(make_config(), [])).run()
        assert list(tmp_path.iterdir()) == []
