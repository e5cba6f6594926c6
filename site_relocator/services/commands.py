"""Typed command builders.

Every external program is described as an argument vector. A string is only
produced at the ssh seam, where :meth:`Command.render` quotes each argument
with :func:`shlex.join`.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Sequence

from site_relocator.constants import (
    CONTROL_PERSIST_SECONDS,
    DATABASE_CHARSET,
    DATABASE_COLLATION,
    DUMP_OPTIONS,
    IMPORT_MAX_ALLOWED_PACKET,
    IMPORT_SESSION_TIMEOUT,
)
from site_relocator.core.config import DatabaseCredentials
from site_relocator.types import Codec

REDACTED = "***"


@dataclass(frozen=True)
class Command:
    """One program invocation: argv plus environment it needs.

    ``env`` holds values (usually secrets) that are passed through the
    environment rather than argv. ``mutating`` marks commands skipped under
    dry-run.
    """

    argv: tuple[str, ...]
    env: tuple[tuple[str, str], ...] = field(default=(), repr=False)
    mutating: bool = True

    def render(self) -> str:
        """Shell-quoted form for execution through a remote shell."""
        prefix = ["env", *(f"{k}={v}" for k, v in self.env)] if self.env else []
        return shlex.join([*prefix, *self.argv])

    def describe(self) -> str:
        """Loggable form with environment values masked."""
        prefix = [f"{k}={REDACTED}" for k, _ in self.env]
        return shlex.join([*prefix, *self.argv])

    @property
    def env_dict(self) -> dict[str, str]:
        return dict(self.env)


def cmd(*argv: str, env: dict[str, str] | None = None, mutating: bool = True) -> Command:
    """Shorthand constructor: ``cmd("rm", "-f", path)``."""
    return Command(
        argv=tuple(str(a) for a in argv),
        env=tuple(sorted((env or {}).items())),
        mutating=mutating,
    )


def chain_script(commands: Sequence[Command]) -> str:
    """Join commands into a single ``a | b`` shell pipeline string."""
    return " | ".join(c.render() for c in commands)


def pipefail_shell(commands: Sequence[Command]) -> Command:
    """Wrap several commands into one ``bash -o pipefail -c`` invocation."""
    return Command(
        argv=("bash", "-o", "pipefail", "-c", chain_script(commands)),
        mutating=any(c.mutating for c in commands),
    )


# ---------------------------------------------------------------------------
# Probes and small filesystem helpers
# ---------------------------------------------------------------------------


def command_exists(name: str) -> Command:
    return cmd("sh", "-c", 'command -v "$1" >/dev/null 2>&1', "sh", name, mutating=False)


def file_exists(path: str) -> Command:
    return cmd("test", "-f", path, mutating=False)


def make_dirs(*paths: str) -> Command:
    return cmd("mkdir", "-p", *paths)


def remove_file(path: str) -> Command:
    return cmd("rm", "-f", path)


def write_file(path: str, content: str) -> Command:
    """Write ``content`` plus a newline to ``path`` on the target endpoint."""
    return cmd("sh", "-c", 'printf "%s\\n" "$1" > "$2"', "sh", content, path)


def write_stdin_to(path: str) -> Command:
    return cmd("sh", "-c", 'cat > "$1"', "sh", path)


def disk_usage(path: str) -> Command:
    return cmd("df", "-h", path, mutating=False)


def low_priority(command: Command, has_ionice: bool) -> Command:
    """Run ``command`` at idle IO priority and lowest CPU priority."""
    wrapper = ("ionice", "-c2", "-n7", "nice", "-n", "19") if has_ionice else ("nice", "-n", "19")
    return Command(argv=(*wrapper, *command.argv), env=command.env, mutating=command.mutating)


# ---------------------------------------------------------------------------
# ssh
# ---------------------------------------------------------------------------


def ssh_options(
    port: int,
    control_path: str | None = None,
    key_path: str = "",
    legacy_algorithms: str | None = None,
    forward_agent: bool = False,
) -> list[str]:
    """Options shared by every ssh, scp and rsync transport invocation."""
    options = ["-o", "StrictHostKeyChecking=accept-new", "-p", str(port)]
    if control_path:
        options += ["-S", control_path]
    if key_path:
        options += ["-i", key_path]
    if legacy_algorithms:
        options += [
            "-o",
            f"HostKeyAlgorithms={legacy_algorithms}",
            "-o",
            f"PubkeyAcceptedAlgorithms={legacy_algorithms}",
        ]
    if forward_agent:
        options.append("-A")
    return options


def ssh_master(target: str, options: Sequence[str]) -> list[str]:
    """Start a backgrounded ControlMaster for ``target``."""
    return [
        "ssh",
        "-fN",
        "-o",
        "ControlMaster=auto",
        "-o",
        f"ControlPersist={CONTROL_PERSIST_SECONDS}",
        *options,
        target,
    ]


def ssh_control(operation: str, target: str, control_path: str) -> list[str]:
    """``ssh -O <operation>`` against an existing master."""
    return ["ssh", "-S", control_path, "-O", operation, target]


def ssh_exec(target: str, options: Sequence[str], commands: Sequence[Command]) -> list[str]:
    """argv that runs ``commands`` (piped together) on ``target``."""
    if len(commands) == 1:
        remote = commands[0].render()
    else:
        remote = pipefail_shell(commands).render()
    return ["ssh", *options, target, remote]


def with_sshpass(argv: Sequence[str]) -> list[str]:
    """Prefix argv so the password is read from ``$SSHPASS``."""
    return ["sshpass", "-e", *argv]


# ---------------------------------------------------------------------------
# File trees
# ---------------------------------------------------------------------------


def rsync(
    source: str,
    destination: str,
    excludes: Sequence[str] = (),
    rsh: Sequence[str] | None = None,
    dry_run: bool = False,
    delete: bool = True,
    env: dict[str, str] | None = None,
    prefix: Sequence[str] = (),
) -> Command:
    """Mirror ``source/`` into ``destination/``.

    Args:
        source: Local path or ``user@host:path``.
        destination: Local path or ``user@host:path``.
        excludes: Patterns passed as ``--exclude``.
        rsh: Remote shell argv for ``-e``.
        dry_run: Add ``--dry-run``.
        delete: Mirror deletions.
        env: Extra environment (e.g. ``SSHPASS``).
        prefix: Program prefix such as ``sshpass -e``.
    """
    argv = [*prefix, "rsync", "-azh", "--stats"]
    if delete:
        argv.append("--delete")
    if dry_run:
        argv.append("--dry-run")
    if rsh:
        argv += ["-e", shlex.join(rsh)]
    argv += [f"--exclude={pattern}" for pattern in excludes]
    argv += [source.rstrip("/") + "/", destination.rstrip("/") + "/"]
    # Dry runs only report, so the command is safe to execute for real
    return cmd(*argv, env=env, mutating=not dry_run)


def tar_create(path: str, excludes: Sequence[str] = ()) -> Command:
    return cmd(
        "tar",
        "-C",
        path,
        *(f"--exclude={pattern}" for pattern in excludes),
        "-cpf",
        "-",
        ".",
        mutating=False,
    )


def tar_extract(path: str) -> Command:
    return cmd("tar", "-C", path, "-xpf", "-")


# ---------------------------------------------------------------------------
# Databases
# ---------------------------------------------------------------------------


def quote_identifier(name: str) -> str:
    """Backtick-quote a MySQL identifier."""
    return "`" + name.replace("`", "``") + "`"


def _login(creds: DatabaseCredentials) -> tuple[list[str], dict[str, str]]:
    argv = ["-h", creds.host, "-u", creds.user]
    env = {"MYSQL_PWD": creds.password} if creds.password else {}
    return argv, env


def mysql_query(
    creds: DatabaseCredentials, sql: str, database: str | None = None, mutating: bool = True
) -> Command:
    login, env = _login(creds)
    argv = ["mysql", *login, "-N", "-B", "-e", sql]
    if database:
        argv.append(database)
    return cmd(*argv, env=env, mutating=mutating)


def database_exists(creds: DatabaseCredentials, name: str) -> Command:
    return mysql_query(creds, f"USE {quote_identifier(name)}", mutating=False)


def create_database(creds: DatabaseCredentials, name: str) -> Command:
    sql = (
        f"CREATE DATABASE IF NOT EXISTS {quote_identifier(name)} "
        f"CHARACTER SET {DATABASE_CHARSET} COLLATE {DATABASE_COLLATION}"
    )
    return mysql_query(creds, sql)


def server_version(creds: DatabaseCredentials) -> Command:
    return mysql_query(creds, "SELECT VERSION()", mutating=False)


def dump(
    tool: str,
    creds: DatabaseCredentials,
    database: str,
    ignore_tables: Sequence[str] = (),
    column_statistics: bool = False,
) -> Command:
    """Schema+data dump of one database."""
    login, env = _login(creds)
    argv = [tool, *login, *DUMP_OPTIONS]
    if column_statistics:
        argv.append("--column-statistics=0")
    argv += [f"--ignore-table={table}" for table in ignore_tables]
    argv.append(database)
    return cmd(*argv, env=env, mutating=False)


def import_sql(creds: DatabaseCredentials, database: str) -> Command:
    """Read SQL from stdin into ``database`` with raised session limits."""
    login, env = _login(creds)
    init = (
        f"SET SESSION net_read_timeout={IMPORT_SESSION_TIMEOUT}, "
        f"net_write_timeout={IMPORT_SESSION_TIMEOUT}"
    )
    return cmd(
        "mysql",
        *login,
        f"--max_allowed_packet={IMPORT_MAX_ALLOWED_PACKET}",
        f"--init-command={init}",
        database,
        env=env,
    )


_COMPRESS = {
    Codec.LZ4: ("lz4", "-1", "-c"),
    Codec.GZIP: ("gzip", "-1", "-c"),
    Codec.NONE: ("cat",),
}
_DECOMPRESS = {
    Codec.LZ4: ("lz4", "-dc"),
    Codec.GZIP: ("gzip", "-dc"),
    Codec.NONE: ("cat",),
}
_EXTENSIONS = {Codec.LZ4: "sql.lz4", Codec.GZIP: "sql.gz", Codec.NONE: "sql"}


def compress(codec: Codec, parallel: bool = False) -> Command:
    """Compress stdin to stdout. ``parallel`` swaps gzip for pigz."""
    if parallel and codec is Codec.GZIP:
        return cmd("pigz", "-1", "-c", mutating=False)
    return cmd(*_COMPRESS[codec], mutating=False)


def decompress(codec: Codec, path: str | None = None) -> Command:
    """Decompress stdin, or ``path`` when given, to stdout."""
    argv = _DECOMPRESS[codec] + ((path,) if path else ())
    return cmd(*argv, mutating=False)


def dump_extension(codec: Codec) -> str:
    return _EXTENSIONS[codec]


def make_temp_file(database: str, codec: Codec) -> Command:
    return cmd("mktemp", f"/tmp/{database}.XXXXXXXX.{dump_extension(codec)}")
