"""Unit tests for byte pipelines, using real local processes."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import IO

import pytest

from site_relocator.exceptions import PipelineError
from site_relocator.services.channel import local_argv
from site_relocator.services.commands import cmd
from site_relocator.services.pipeline import (
    CommandStage,
    FileSinkStage,
    FunctionStage,
    RelayStage,
    run_pipeline,
)
from site_relocator.types import Role


class LocalRunner:
    """Spawns every command on this machine, whatever the role."""

    def spawn(self, role, commands, stdin=None, stdout=None, stderr=None):
        argv, env = local_argv(commands)
        return subprocess.Popen(argv, stdin=stdin, stdout=stdout, stderr=stderr, env=env)


def _shell(script: str) -> list:
    return [cmd("sh", "-c", script, mutating=False)]


class TestRunPipeline:
    """Tests for run_pipeline()."""

    def test_bytes_flow_through_relay_into_file(self, tmp_path: Path) -> None:
        target = tmp_path / "out.txt"
        relay = RelayStage("test")
        run_pipeline(
            [
                CommandStage(LocalRunner(), Role.SOURCE, _shell("printf 'hello world'")),
                relay,
                FileSinkStage(str(target)),
            ],
            "copy",
        )
        assert target.read_bytes() == b"hello world"
        assert relay.bytes_relayed == len(b"hello world")

    def test_multi_command_stage_runs_under_pipefail(self, tmp_path: Path) -> None:
        target = tmp_path / "out.txt"
        stages = [
            CommandStage(
                LocalRunner(),
                Role.SOURCE,
                [cmd("printf", "abc", mutating=False), cmd("tr", "a-z", "A-Z", mutating=False)],
            ),
            FileSinkStage(str(target)),
        ]
        run_pipeline(stages, "upper")
        assert target.read_bytes() == b"ABC"

    def test_failing_producer_is_reported(self, tmp_path: Path) -> None:
        stages = [
            CommandStage(
                LocalRunner(), Role.SOURCE, _shell("echo boom >&2; exit 3"), name="producer"
            ),
            RelayStage(),
            FileSinkStage(str(tmp_path / "out")),
        ]
        with pytest.raises(PipelineError) as exc_info:
            run_pipeline(stages, "dump")
        assert exc_info.value.failures == ["producer exited with 3: boom"]

    def test_failing_middle_stage_does_not_hang(self, tmp_path: Path) -> None:
        """A consumer that dies early must not leave the producer blocked on write."""

        def explode(reader: IO[bytes] | None, writer: IO[bytes] | None) -> None:
            assert reader is not None
            reader.read(10)
            raise RuntimeError("transport lost")

        stages = [
            CommandStage(
                LocalRunner(),
                Role.SOURCE,
                _shell("yes relocate | head -c 50000000"),
                name="producer",
            ),
            FunctionStage("transport", explode),
            CommandStage(LocalRunner(), Role.DESTINATION, [cmd("cat", mutating=False)]),
        ]
        with pytest.raises(PipelineError) as exc_info:
            run_pipeline(stages, "stream")
        failures = exc_info.value.failures
        assert "transport: transport lost" in failures
        assert any(f.startswith("producer exited") for f in failures)

    def test_consumer_failure_is_reported(self) -> None:
        stages = [
            CommandStage(LocalRunner(), Role.SOURCE, _shell("printf data")),
            RelayStage(),
            CommandStage(
                LocalRunner(), Role.DESTINATION, _shell("cat >/dev/null; exit 1"), name="import"
            ),
        ]
        with pytest.raises(PipelineError, match="import exited with 1"):
            run_pipeline(stages, "import")

    def test_empty_pipeline_rejected(self) -> None:
        with pytest.raises(ValueError):
            run_pipeline([], "nothing")
