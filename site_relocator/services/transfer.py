"""
Code and asset tree transfers between endpoints.

Three strategies move a tree from source to destination:

* ``direct``: the destination pulls straight from the source with rsync
  (or the source pushes when this process runs on it), mirroring deletions.
* ``stage``: rsync into a private local staging directory, then out again.
* ``stream``: tar on the source, relayed through this process, untarred on
  the destination. Never deletes anything on the destination.

A failed ``direct`` transfer is retried once as ``stream``.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import TYPE_CHECKING

from site_relocator.constants import RSYNC_PARTIAL_VANISHED
from site_relocator.exceptions import ChannelError, RelocatorError, TransferError
from site_relocator.services import commands as c
from site_relocator.services.pipeline import CommandStage, RelayStage, run_pipeline
from site_relocator.types import (
    ResourceClass,
    Role,
    RunContext,
    TransferOutcome,
    TransferStrategy,
)
from site_relocator.utils.logging import log_with_context

if TYPE_CHECKING:
    from site_relocator.core.config import RelocationConfig
    from site_relocator.services.channel import CommandResult, ControlChannelManager

FALLBACK_STRATEGY = "direct→stream-fallback"


@dataclass
class TransferJob:
    """One resource tree to move and what happened to it."""

    resource: ResourceClass
    source_path: str
    destination_path: str
    excludes: tuple[str, ...] = ()
    strategy: TransferStrategy = TransferStrategy.DIRECT
    outcome: TransferOutcome | None = None
    recorded_strategy: str = ""


class StagingArea:
    """A uniquely named local directory private to one run."""

    def __init__(self, root: str = "") -> None:
        self.root = root
        self.path: str | None = None

    def directory(self, name: str) -> str:
        if self.path is None:
            if self.root:
                os.makedirs(self.root, exist_ok=True)
            self.path = tempfile.mkdtemp(
                prefix="site-relocator-stage-", dir=self.root or None
            )
        target = os.path.join(self.path, name)
        os.makedirs(target, exist_ok=True)
        return target

    def remove(self) -> None:
        if self.path is not None:
            shutil.rmtree(self.path, ignore_errors=True)
            log_with_context(logging.DEBUG, f"Removed staging directory {self.path}")
            self.path = None


def check_rsync(result: CommandResult, what: str) -> None:
    """Raise on rsync failure; exit code 24 only warns."""
    if result.returncode == 0:
        return
    if result.returncode == RSYNC_PARTIAL_VANISHED:
        log_with_context(
            logging.WARNING,
            f"{what}: some source files vanished during transfer (rsync exit 24)",
        )
        return
    raise TransferError(
        f"{what}: rsync exited with {result.returncode}: {result.stderr.strip()[-500:]}"
    )


class TransferExecutor:
    """Runs :class:`TransferJob` objects with the configured strategy."""

    def __init__(
        self,
        config: RelocationConfig,
        channels: ControlChannelManager,
        staging: StagingArea,
    ) -> None:
        self.config = config
        self.channels = channels
        self.staging = staging

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    def execute(self, job: TransferJob) -> TransferJob:
        """Move ``job``'s tree and record its outcome.

        Raises:
            TransferError: If the transfer (and any fallback) failed.
        """
        what = f"{job.resource.value} transfer"
        log_with_context(
            logging.INFO,
            f"{what}: {job.source_path} -> {job.destination_path} "
            f"({job.strategy.value})",
            resource=job.resource.value,
            strategy=job.strategy.value,
        )
        try:
            self.channels.run(Role.DESTINATION, c.make_dirs(job.destination_path), check=True)
            if job.strategy is TransferStrategy.DIRECT:
                self._direct_with_fallback(job)
            elif job.strategy is TransferStrategy.STAGE:
                self._stage(job)
                job.recorded_strategy = TransferStrategy.STAGE.value
                job.outcome = TransferOutcome.SUCCESS
            else:
                self._stream(job)
                job.recorded_strategy = TransferStrategy.STREAM.value
                job.outcome = TransferOutcome.SUCCESS
        except RelocatorError as e:
            job.outcome = TransferOutcome.FAILED
            job.recorded_strategy = job.recorded_strategy or job.strategy.value
            if isinstance(e, (ChannelError, TransferError)):
                raise
            raise TransferError(f"{what} failed: {e}") from e

        log_with_context(
            logging.INFO,
            f"{what} finished: {job.outcome.value} via {job.recorded_strategy}",
            resource=job.resource.value,
            outcome=job.outcome.value,
        )
        return job

    def _direct_with_fallback(self, job: TransferJob) -> None:
        try:
            self._direct(job)
        except ChannelError:
            raise
        except RelocatorError as e:
            if self.dry_run:
                # Nothing was created on the destination, so rsync may not find it
                log_with_context(
                    logging.WARNING,
                    f"Direct {job.resource.value} transfer rehearsal failed ({e}); "
                    "no fallback during a dry run",
                )
                job.recorded_strategy = TransferStrategy.DIRECT.value
                job.outcome = TransferOutcome.SUCCESS
                return
            log_with_context(
                logging.WARNING,
                f"Direct {job.resource.value} transfer failed ({e}); "
                "falling back to stream",
            )
            job.recorded_strategy = FALLBACK_STRATEGY
            self._stream(job)
            job.outcome = TransferOutcome.SUCCESS_WITH_FALLBACK
            return
        job.recorded_strategy = TransferStrategy.DIRECT.value
        job.outcome = TransferOutcome.SUCCESS

    # -----------------------------------------------------------------------
    # Strategies
    # -----------------------------------------------------------------------

    def _direct(self, job: TransferJob) -> None:
        what = f"direct {job.resource.value} transfer"
        context = self.channels.run_context
        if context is RunContext.AT_SOURCE:
            command = c.rsync(
                job.source_path,
                self._push_target(job.destination_path),
                excludes=job.excludes,
                rsh=self.channels.rsh(Role.DESTINATION),
                dry_run=self.dry_run,
            )
            check_rsync(self.channels.run(Role.SOURCE, command), what)
            return

        if context is RunContext.AT_DESTINATION:
            command = c.rsync(
                self.channels.location(Role.SOURCE, job.source_path),
                job.destination_path,
                excludes=job.excludes,
                rsh=self.channels.rsh(Role.SOURCE),
                dry_run=self.dry_run,
            )
            check_rsync(self.channels.run(Role.DESTINATION, command), what)
            return

        # Neither: the destination pulls over its own ssh, using our forwarded agent
        source = self.config.source
        prefix: list[str] = []
        env: dict[str, str] = {}
        if source.password:
            prefix = ["sshpass", "-e"]
            env = {"SSHPASS": source.password}
        command = c.rsync(
            f"{source.user}@{source.host}:{job.source_path}",
            job.destination_path,
            excludes=job.excludes,
            rsh=["ssh", *c.ssh_options(source.port)],
            dry_run=self.dry_run,
            env=env,
            prefix=prefix,
        )
        check_rsync(self.channels.run(Role.DESTINATION, command), what)

    def _push_target(self, path: str) -> str:
        destination = self.config.destination
        user = self.config.rsync_destination_user or destination.user
        return f"{user}@{destination.host}:{path}"

    def _stage(self, job: TransferJob) -> None:
        staging = self.staging.directory(job.resource.value)
        source_remote = not self.channels.is_local(Role.SOURCE)
        pull = c.rsync(
            self.channels.location(Role.SOURCE, job.source_path),
            staging,
            excludes=job.excludes,
            rsh=self.channels.rsh(Role.SOURCE) if source_remote else None,
            dry_run=self.dry_run,
        )
        check_rsync(self.channels.run_local(pull), f"{job.resource.value} pull to staging")

        destination_remote = not self.channels.is_local(Role.DESTINATION)
        push = c.rsync(
            staging,
            self.channels.location(Role.DESTINATION, job.destination_path),
            excludes=job.excludes,
            rsh=self.channels.rsh(Role.DESTINATION) if destination_remote else None,
            dry_run=self.dry_run,
        )
        check_rsync(
            self.channels.run_local(push), f"{job.resource.value} push from staging"
        )

    def _stream(self, job: TransferJob) -> None:
        if self.dry_run:
            log_with_context(
                logging.INFO,
                f"DRY-RUN: would stream {job.source_path} -> {job.destination_path}",
            )
            return
        self.channels.run(Role.DESTINATION, c.make_dirs(job.destination_path), check=True)
        stages = [
            CommandStage(
                self.channels,
                Role.SOURCE,
                [c.tar_create(job.source_path, job.excludes)],
                name="source: tar create",
            ),
            RelayStage(f"{job.resource.value} stream"),
            CommandStage(
                self.channels,
                Role.DESTINATION,
                [c.tar_extract(job.destination_path)],
                name="destination: tar extract",
            ),
        ]
        try:
            run_pipeline(stages, f"{job.resource.value} stream")
        except RelocatorError as e:
            raise TransferError(str(e)) from e
