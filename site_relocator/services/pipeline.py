"""
Concurrent byte pipelines spanning endpoints.

A pipeline is an ordered list of stages joined by OS pipes. Process stages
run a command on an endpoint; thread stages (relay, file sink, callables)
run inside this process. Every stage owns the pipe ends it is given and
closes them when it finishes, so a failure anywhere shows up as EOF
downstream and a broken pipe upstream instead of a hang. All stages are
always awaited and their failures reported together.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
from typing import IO, TYPE_CHECKING, Callable, Sequence

from tqdm import tqdm

from site_relocator.constants import RELAY_CHUNK_SIZE
from site_relocator.exceptions import PipelineError
from site_relocator.services.commands import Command
from site_relocator.types import Role
from site_relocator.utils.logging import log_with_context

if TYPE_CHECKING:
    from site_relocator.services.channel import ControlChannelManager


class Stage:
    """One concurrently running part of a pipeline."""

    name = "stage"

    def start(self, stdin: int | None, stdout: int | None) -> None:
        """Begin work. Takes ownership of both file descriptors."""
        raise NotImplementedError

    def wait(self) -> str | None:
        """Block until finished; return a failure description or None."""
        raise NotImplementedError

    def terminate(self) -> None:
        """Stop early if possible."""


class CommandStage(Stage):
    """Run commands (piped together) on an endpoint as one process."""

    def __init__(
        self,
        runner: ControlChannelManager,
        role: Role,
        commands: Sequence[Command],
        name: str | None = None,
    ) -> None:
        self.runner = runner
        self.role = role
        self.commands = list(commands)
        self.name = name or f"{role.value}: {self.commands[0].argv[0]}"
        self.process: subprocess.Popen[bytes] | None = None
        self._stderr: IO[bytes] | None = None

    def start(self, stdin: int | None, stdout: int | None) -> None:
        self._stderr = tempfile.TemporaryFile()
        try:
            self.process = self.runner.spawn(
                self.role,
                self.commands,
                stdin=subprocess.DEVNULL if stdin is None else stdin,
                stdout=subprocess.DEVNULL if stdout is None else stdout,
                stderr=self._stderr,
            )
        finally:
            # The child holds its own copies now
            for fd in (stdin, stdout):
                if fd is not None:
                    os.close(fd)

    def wait(self) -> str | None:
        if self.process is None:
            return f"{self.name}: not started"
        returncode = self.process.wait()
        error = None
        if returncode != 0:
            error = f"{self.name} exited with {returncode}"
            detail = self._stderr_tail()
            if detail:
                error += f": {detail}"
        if self._stderr is not None:
            self._stderr.close()
            self._stderr = None
        return error

    def _stderr_tail(self, limit: int = 500) -> str:
        if self._stderr is None:
            return ""
        self._stderr.seek(0)
        return self._stderr.read().decode(errors="replace").strip()[-limit:]

    def terminate(self) -> None:
        if self.process is not None and self.process.poll() is None:
            self.process.terminate()


class ThreadStage(Stage):
    """A stage executed on a worker thread of this process."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.error: str | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def start(self, stdin: int | None, stdout: int | None) -> None:
        self._thread = threading.Thread(
            target=self._guarded, args=(stdin, stdout), name=self.name, daemon=True
        )
        self._thread.start()

    def _guarded(self, stdin: int | None, stdout: int | None) -> None:
        reader = os.fdopen(stdin, "rb") if stdin is not None else None
        writer = os.fdopen(stdout, "wb") if stdout is not None else None
        try:
            self.run(reader, writer)
            if writer is not None:
                writer.flush()
        except Exception as e:
            self.error = f"{self.name}: {e}"
        finally:
            for stream in (writer, reader):
                if stream is not None:
                    try:
                        stream.close()
                    except OSError as e:
                        self.error = self.error or f"{self.name}: {e}"

    def run(self, reader: IO[bytes] | None, writer: IO[bytes] | None) -> None:
        raise NotImplementedError

    def wait(self) -> str | None:
        if self._thread is not None:
            self._thread.join()
        return self.error

    def terminate(self) -> None:
        self._stop.set()


class RelayStage(ThreadStage):
    """Copy bytes from the previous stage to the next, showing progress."""

    def __init__(self, name: str = "transport", chunk_size: int = RELAY_CHUNK_SIZE) -> None:
        super().__init__(name)
        self.chunk_size = chunk_size
        self.bytes_relayed = 0

    def run(self, reader: IO[bytes] | None, writer: IO[bytes] | None) -> None:
        if reader is None or writer is None:
            raise ValueError("relay needs both an input and an output")
        with tqdm(
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            desc=self.name,
            leave=False,
            disable=None,
        ) as progress:
            while not self._stop.is_set():
                chunk = reader.read(self.chunk_size)
                if not chunk:
                    break
                writer.write(chunk)
                self.bytes_relayed += len(chunk)
                progress.update(len(chunk))


class FileSinkStage(ThreadStage):
    """Write everything received into a local file."""

    def __init__(self, path: str) -> None:
        super().__init__(f"write {path}")
        self.path = path

    def run(self, reader: IO[bytes] | None, writer: IO[bytes] | None) -> None:
        if reader is None:
            raise ValueError("file sink needs an input")
        with open(self.path, "wb") as f:
            while not self._stop.is_set():
                chunk = reader.read(RELAY_CHUNK_SIZE)
                if not chunk:
                    break
                f.write(chunk)


class FunctionStage(ThreadStage):
    """Run ``func(reader, writer)`` as a stage."""

    def __init__(
        self,
        name: str,
        func: Callable[[IO[bytes] | None, IO[bytes] | None], None],
    ) -> None:
        super().__init__(name)
        self.func = func

    def run(self, reader: IO[bytes] | None, writer: IO[bytes] | None) -> None:
        self.func(reader, writer)


def run_pipeline(stages: Sequence[Stage], label: str) -> None:
    """
    Run ``stages`` concurrently, each feeding the next, and wait for all.

    Args:
        stages: Stages in data-flow order; the first reads nothing and the
            last writes nowhere
        label: Human description used in logs and errors

    Raises:
        PipelineError: If any stage failed, listing every failure
    """
    if not stages:
        raise ValueError("pipeline needs at least one stage")

    log_with_context(
        logging.DEBUG, f"Pipeline {label}: " + " -> ".join(s.name for s in stages)
    )
    started: list[Stage] = []
    upstream: int | None = None
    try:
        for index, stage in enumerate(stages):
            read_end: int | None = None
            write_end: int | None = None
            if index < len(stages) - 1:
                read_end, write_end = os.pipe()
            try:
                stage.start(upstream, write_end)
            except BaseException:
                if read_end is not None:
                    os.close(read_end)
                raise
            started.append(stage)
            upstream = read_end
    except BaseException:
        _abort(started)
        raise

    failures = []
    try:
        for stage in started:
            error = stage.wait()
            if error:
                failures.append(error)
    except KeyboardInterrupt:
        _abort(started)
        raise

    if failures:
        raise PipelineError(label, failures)


def _abort(stages: Sequence[Stage]) -> None:
    for stage in stages:
        stage.terminate()
    for stage in stages:
        stage.wait()
