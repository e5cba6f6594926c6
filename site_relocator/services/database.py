"""
Database migration: dump on the source, import on the destination.

Each task ensures the destination database exists, negotiates a compression
codec both endpoints support, then moves the dump either through a
temporary file on the destination (buffer) or as one continuous stream
(stream). ``auto`` tries streaming and falls back to buffering once.

A failed stream may leave the destination partly imported. Dumps carry
``DROP TABLE IF EXISTS`` before every table, so the buffered retry (or a
rerun of the step) replaces whatever was partly applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from site_relocator.exceptions import ChannelError, DatabaseError, RelocatorError
from site_relocator.services import commands as c
from site_relocator.services.pipeline import (
    CommandStage,
    FileSinkStage,
    RelayStage,
    Stage,
    run_pipeline,
)
from site_relocator.types import Codec, DbMode, Role, TaskOutcome
from site_relocator.utils.logging import log_with_context

if TYPE_CHECKING:
    from site_relocator.core.config import DatabaseSpec, RelocationConfig
    from site_relocator.services.capabilities import CapabilitySet
    from site_relocator.services.channel import ControlChannelManager
    from site_relocator.services.wordpress import WordPressSite

FALLBACK_MODE = "stream→buffer-fallback"

# Preference order for auto negotiation
_CODEC_PREFERENCE = (Codec.LZ4, Codec.GZIP)


def build_ignore_list(source_db: str, excludes: Iterable[str]) -> list[str]:
    """Fully qualified ``--ignore-table`` entries for ``source_db``.

    Bare names are qualified with the source database; qualified names are
    kept only when they belong to it.
    """
    ignore: list[str] = []
    for entry in excludes:
        entry = entry.strip()
        if not entry:
            continue
        if "." in entry:
            database, _, table = entry.partition(".")
            if database != source_db or not table:
                continue
            qualified = entry
        else:
            qualified = f"{source_db}.{entry}"
        if qualified not in ignore:
            ignore.append(qualified)
    return ignore


def negotiate_codec(
    policy: str, source: CapabilitySet, destination: CapabilitySet
) -> Codec:
    """Pick the codec for a dump.

    An explicit policy is used as is. ``auto`` picks the first codec that
    both endpoints have, or ``none``.
    """
    if policy != "auto":
        return Codec(policy)
    for codec in _CODEC_PREFERENCE:
        if source.has(codec.value) and destination.has(codec.value):
            return codec
    return Codec.NONE


@dataclass
class DatabaseMigrationTask:
    """One database to copy and how it went."""

    source_name: str
    destination_name: str
    excluded_tables: tuple[str, ...] = ()
    codec: Codec | None = None
    mode: DbMode | None = None
    recorded_mode: str = ""
    outcome: TaskOutcome | None = None

    @classmethod
    def from_spec(cls, spec: DatabaseSpec, excludes: Iterable[str]) -> DatabaseMigrationTask:
        return cls(spec.source, spec.destination, tuple(excludes))

    @property
    def label(self) -> str:
        if self.source_name == self.destination_name:
            return self.source_name
        return f"{self.source_name} -> {self.destination_name}"

    @property
    def ignore_tables(self) -> list[str]:
        return build_ignore_list(self.source_name, self.excluded_tables)


class DatabaseMigrator:
    """Executes :class:`DatabaseMigrationTask` objects."""

    def __init__(
        self,
        config: RelocationConfig,
        channels: ControlChannelManager,
        capabilities: dict[Role, CapabilitySet],
        site: WordPressSite,
    ) -> None:
        self.config = config
        self.channels = channels
        self.capabilities = capabilities
        self.site = site

    def ensure_database(self, name: str) -> None:
        """Create ``name`` on the destination unless it already exists."""
        creds = self.config.destination.db
        if self.channels.run(Role.DESTINATION, c.database_exists(creds, name)).ok:
            log_with_context(logging.INFO, f"Database {name} exists on destination")
            return
        log_with_context(logging.INFO, f"Creating database {name} on destination")
        self.channels.run(Role.DESTINATION, c.create_database(creds, name), check=True)

    def migrate(self, task: DatabaseMigrationTask) -> DatabaseMigrationTask:
        """Copy one database and record the outcome.

        Raises:
            DatabaseError: If any part of the task failed.
        """
        task.mode = self.config.db_mode
        try:
            self.ensure_database(task.destination_name)
            if self.config.dry_run:
                log_with_context(
                    logging.INFO,
                    f"DRY-RUN: would copy database {task.label} "
                    f"ignoring {task.ignore_tables or 'no tables'}",
                )
                task.outcome = TaskOutcome.OK
                return task

            task.codec = negotiate_codec(
                self.config.db_compress,
                self.capabilities[Role.SOURCE],
                self.capabilities[Role.DESTINATION],
            )
            log_with_context(
                logging.INFO,
                f"Copying database {task.label} ({task.mode.value}, codec {task.codec.value})",
                database=task.source_name,
                codec=task.codec.value,
            )
            with self.site.maintenance_window():
                self._run_mode(task)
        except ChannelError:
            task.outcome = TaskOutcome.FAILED
            raise
        except RelocatorError as e:
            task.outcome = TaskOutcome.FAILED
            raise DatabaseError(f"Database {task.label} failed: {e}") from e

        task.outcome = TaskOutcome.OK
        log_with_context(
            logging.INFO,
            f"Database {task.label} copied via {task.recorded_mode}",
            database=task.source_name,
            outcome=task.outcome.value,
        )
        return task

    def _run_mode(self, task: DatabaseMigrationTask) -> None:
        if task.mode is DbMode.BUFFER:
            self._buffered(task)
            task.recorded_mode = DbMode.BUFFER.value
        elif task.mode is DbMode.STREAM:
            self._streaming(task)
            task.recorded_mode = DbMode.STREAM.value
        else:
            try:
                self._streaming(task)
                task.recorded_mode = DbMode.STREAM.value
            except ChannelError:
                raise
            except RelocatorError as e:
                log_with_context(
                    logging.WARNING,
                    f"Streaming {task.label} failed ({e}); retrying buffered",
                )
                task.recorded_mode = FALLBACK_MODE
                self._buffered(task)

    # -----------------------------------------------------------------------
    # Command assembly
    # -----------------------------------------------------------------------

    def dump_commands(self, task: DatabaseMigrationTask, codec: Codec) -> list[c.Command]:
        source = self.capabilities[Role.SOURCE]
        dump = c.dump(
            source.dump_tool(),
            self.config.source.db,
            task.source_name,
            task.ignore_tables,
            column_statistics=source.has("dump-column-statistics"),
        )
        commands = [c.low_priority(dump, source.has("ionice"))]
        if codec is not Codec.NONE:
            commands.append(c.compress(codec, parallel=source.has("pigz")))
        return commands

    def import_commands(self, task: DatabaseMigrationTask, codec: Codec) -> list[c.Command]:
        importer = c.import_sql(self.config.destination.db, task.destination_name)
        if codec is Codec.NONE:
            return [importer]
        return [c.decompress(codec), importer]

    # -----------------------------------------------------------------------
    # Execution modes
    # -----------------------------------------------------------------------

    def _source_stage(self, task: DatabaseMigrationTask, codec: Codec) -> CommandStage:
        return CommandStage(
            self.channels,
            Role.SOURCE,
            self.dump_commands(task, codec),
            name=f"source: dump {task.source_name}",
        )

    def _streaming(self, task: DatabaseMigrationTask) -> None:
        codec = task.codec or Codec.NONE
        stages: list[Stage] = [
            self._source_stage(task, codec),
            RelayStage(f"{task.source_name} stream"),
            CommandStage(
                self.channels,
                Role.DESTINATION,
                self.import_commands(task, codec),
                name=f"destination: import {task.destination_name}",
            ),
        ]
        run_pipeline(stages, f"stream {task.label}")

    def _buffered(self, task: DatabaseMigrationTask) -> None:
        codec = task.codec or Codec.NONE
        temp = self.channels.run(
            Role.DESTINATION, c.make_temp_file(task.destination_name, codec), check=True
        ).stdout.strip()
        if not temp:
            raise DatabaseError("mktemp returned no path on destination")

        try:
            sink: Stage
            if self.channels.is_local(Role.DESTINATION):
                sink = FileSinkStage(temp)
            else:
                sink = CommandStage(
                    self.channels,
                    Role.DESTINATION,
                    [c.write_stdin_to(temp)],
                    name=f"destination: write {temp}",
                )
            run_pipeline(
                [self._source_stage(task, codec), RelayStage(f"{task.source_name} dump"), sink],
                f"dump {task.label}",
            )
            log_with_context(logging.INFO, f"Dump landed at {temp}, importing")
            self.channels.run(
                Role.DESTINATION,
                c.decompress(codec, temp),
                c.import_sql(self.config.destination.db, task.destination_name),
                check=True,
            )
        finally:
            self.channels.run(Role.DESTINATION, c.remove_file(temp))
