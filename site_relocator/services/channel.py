"""
Control channels to the source and destination endpoints.

Remote endpoints are reached through OpenSSH ControlMaster sockets kept in a
private per-run directory, so every command, copy and rsync transport reuses
one authenticated connection per endpoint. Endpoints that the run context
marks local are driven with plain subprocess calls instead.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from typing import IO, Any, Sequence

import click

from site_relocator.core.config import EndpointConfig, RelocationConfig
from site_relocator.exceptions import ChannelError, CommandError
from site_relocator.services.commands import (
    Command,
    pipefail_shell,
    ssh_control,
    ssh_exec,
    ssh_master,
    ssh_options,
    with_sshpass,
)
from site_relocator.types import Role, RunContext, TransferStrategy
from site_relocator.utils.logging import log_with_context


@dataclass
class CommandResult:
    """Outcome of a finished command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class ControlChannel:
    """A multiplexed ssh connection owned by exactly one endpoint."""

    role: Role
    endpoint: EndpointConfig
    control_path: str
    legacy_algorithms: str | None = None
    forward_agent: bool = False
    is_open: bool = False

    @property
    def target(self) -> str:
        return f"{self.endpoint.user}@{self.endpoint.host}"

    def options(self) -> list[str]:
        return ssh_options(
            self.endpoint.port,
            control_path=self.control_path,
            key_path=self.endpoint.key_path,
            legacy_algorithms=self.legacy_algorithms,
            forward_agent=self.forward_agent,
        )


def describe(commands: Sequence[Command]) -> str:
    return " | ".join(c.describe() for c in commands)


def local_argv(commands: Sequence[Command]) -> tuple[list[str], dict[str, str]]:
    """argv and environment that run ``commands`` on this machine."""
    env = dict(os.environ)
    for command in commands:
        env.update(command.env_dict)
    if len(commands) == 1:
        return list(commands[0].argv), env
    return list(pipefail_shell(commands).argv), env


class ControlChannelManager:
    """Opens, uses and tears down the control channel of each endpoint.

    Channels open lazily on first use, so a resumed run that skips the
    explicit open step still gets a healthy channel before its first command.
    """

    def __init__(
        self,
        config: RelocationConfig,
        run_context: RunContext,
        interactive: bool | None = None,
    ) -> None:
        self.config = config
        self.run_context = run_context
        self.dry_run = config.dry_run
        self.interactive = sys.stdin.isatty() if interactive is None else interactive
        self._channels: dict[Role, ControlChannel] = {}
        self._control_dir: str | None = None

    # -----------------------------------------------------------------------
    # Channel lifecycle
    # -----------------------------------------------------------------------

    def is_local(self, role: Role) -> bool:
        return self.run_context.is_local(role)

    @property
    def open_roles(self) -> list[Role]:
        return [role for role, ch in self._channels.items() if ch.is_open]

    def _control_path(self, role: Role) -> str:
        if self._control_dir is None:
            # Short prefix in /tmp keeps socket paths under the unix limit
            self._control_dir = tempfile.mkdtemp(prefix="sr-ctl-", dir="/tmp")
            os.chmod(self._control_dir, 0o700)
        return os.path.join(self._control_dir, role.value)

    def _wants_agent_forwarding(self, role: Role) -> bool:
        # The destination pulls from the source in direct mode and needs our agent
        return (
            role is Role.DESTINATION
            and self.run_context is RunContext.NEITHER
            and self.config.transfer_mode is TransferStrategy.DIRECT
        )

    def open(self, role: Role) -> ControlChannel | None:
        """Establish the channel for ``role``; no-op for a local endpoint.

        Args:
            role: Endpoint to connect to.

        Returns:
            The open channel, or None when the endpoint is local.

        Raises:
            ChannelError: If both the normal and the legacy attempt fail.
        """
        if self.is_local(role):
            log_with_context(
                logging.DEBUG, f"{role.value} endpoint is local, no channel needed"
            )
            return None

        existing = self._channels.get(role)
        if existing and existing.is_open and self.check(role):
            return existing

        endpoint = self.config.endpoint(role)
        channel = ControlChannel(
            role=role,
            endpoint=endpoint,
            control_path=self._control_path(role),
            forward_agent=self._wants_agent_forwarding(role),
        )
        self._channels[role] = channel
        log_with_context(
            logging.INFO,
            f"Opening control channel to {role.value} {endpoint.identity}",
            endpoint=role.value,
        )

        if not self._start_master(channel):
            if self._legacy_allowed(channel):
                channel.legacy_algorithms = self.config.legacy_algorithms
                log_with_context(
                    logging.WARNING,
                    f"Retrying {role.value} with legacy algorithms "
                    f"{self.config.legacy_algorithms}",
                )
                if not self._start_master(channel):
                    raise ChannelError(
                        f"Cannot connect to {role.value} {endpoint.identity}, "
                        "even with legacy algorithms"
                    )
            else:
                raise ChannelError(
                    f"Cannot connect to {role.value} {endpoint.identity}"
                )

        channel.is_open = True
        if not self.check(role):
            raise ChannelError(
                f"Control channel to {role.value} {endpoint.identity} is not healthy"
            )
        return channel

    def _legacy_allowed(self, channel: ControlChannel) -> bool:
        if self.config.allow_legacy_ssh:
            return True
        if not self.interactive:
            return False
        return click.confirm(
            f"SSH to {channel.target} failed. Retry allowing legacy "
            f"algorithms ({self.config.legacy_algorithms})?",
            default=False,
        )

    def _start_master(self, channel: ControlChannel) -> bool:
        argv = ssh_master(channel.target, channel.options())
        env = dict(os.environ)
        password = channel.endpoint.password
        if password:
            if shutil.which("sshpass"):
                argv = with_sshpass(argv)
                env["SSHPASS"] = password
            else:
                log_with_context(
                    logging.WARNING,
                    "sshpass not found locally, ssh will prompt for the password",
                )
        result = subprocess.run(
            argv, env=env, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True
        )
        if result.returncode != 0:
            log_with_context(
                logging.WARNING,
                f"ssh to {channel.target} failed: {result.stderr.strip()}",
                endpoint=channel.role.value,
            )
            return False
        return True

    def check(self, role: Role) -> bool:
        """Health-check the channel of ``role`` (always True for local)."""
        if self.is_local(role):
            return True
        channel = self._channels.get(role)
        if channel is None or not channel.is_open:
            return False
        result = subprocess.run(
            ssh_control("check", channel.target, channel.control_path),
            capture_output=True,
            text=True,
        )
        return result.returncode == 0

    def channel(self, role: Role) -> ControlChannel:
        """Return the open channel for a remote endpoint, opening it if needed."""
        channel = self._channels.get(role)
        if channel is not None and channel.is_open:
            return channel
        opened = self.open(role)
        if opened is None:
            raise ChannelError(f"{role.value} endpoint is local and has no channel")
        return opened

    def close(self, role: Role) -> None:
        """Close the channel of ``role``. Safe to call repeatedly."""
        channel = self._channels.pop(role, None)
        if channel is None or not channel.is_open:
            return
        subprocess.run(
            ssh_control("exit", channel.target, channel.control_path),
            capture_output=True,
            text=True,
        )
        channel.is_open = False
        log_with_context(logging.DEBUG, f"Closed control channel to {role.value}")

    def close_all(self) -> None:
        """Close every channel and remove the socket directory."""
        for role in list(self._channels):
            self.close(role)
        if self._control_dir is not None:
            shutil.rmtree(self._control_dir, ignore_errors=True)
            self._control_dir = None

    # -----------------------------------------------------------------------
    # Command execution
    # -----------------------------------------------------------------------

    def argv_for(
        self, role: Role, commands: Sequence[Command]
    ) -> tuple[list[str], dict[str, str]]:
        """Resolve commands for ``role`` into a local argv and environment."""
        if self.is_local(role):
            return local_argv(commands)
        channel = self.channel(role)
        return ssh_exec(channel.target, channel.options(), commands), dict(os.environ)

    def run(
        self,
        role: Role,
        *commands: Command,
        check: bool = False,
        input: str | None = None,
    ) -> CommandResult:
        """Run ``commands`` (piped together) on the endpoint of ``role``.

        Args:
            role: Endpoint to run on.
            *commands: One command, or several forming a pipeline.
            check: Raise instead of returning a failed result.
            input: Text fed to the first command's stdin.

        Returns:
            The finished command's exit code and captured output.

        Raises:
            CommandError: If ``check`` is set and the command fails.
        """
        if self._skipped(role.value, commands):
            return CommandResult(0)
        argv, env = self.argv_for(role, commands)
        return self._execute(role.value, commands, argv, env, check, input)

    def run_local(self, *commands: Command, check: bool = False) -> CommandResult:
        """Run ``commands`` on the machine executing this process."""
        if self._skipped("local", commands):
            return CommandResult(0)
        argv, env = local_argv(commands)
        return self._execute("local", commands, argv, env, check, None)

    def _skipped(self, where: str, commands: Sequence[Command]) -> bool:
        if self.dry_run and any(c.mutating for c in commands):
            log_with_context(logging.INFO, f"DRY-RUN [{where}]: {describe(commands)}")
            return True
        return False

    def _execute(
        self,
        where: str,
        commands: Sequence[Command],
        argv: list[str],
        env: dict[str, str],
        check: bool,
        input: str | None,
    ) -> CommandResult:
        text = describe(commands)
        log_with_context(logging.DEBUG, f"[{where}] {text}")
        completed = subprocess.run(
            argv, input=input, capture_output=True, text=True, env=env
        )
        result = CommandResult(completed.returncode, completed.stdout, completed.stderr)
        if check and not result.ok:
            raise CommandError(
                f"Command failed on {where} (exit {result.returncode}): {text}: "
                f"{result.stderr.strip()}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    def spawn(
        self,
        role: Role,
        commands: Sequence[Command],
        stdin: Any = None,
        stdout: Any = None,
        stderr: IO[bytes] | int | None = None,
    ) -> subprocess.Popen[bytes]:
        """Start ``commands`` on ``role`` without waiting; used by pipelines."""
        log_with_context(logging.DEBUG, f"[{role.value}] spawn {describe(commands)}")
        argv, env = self.argv_for(role, commands)
        return subprocess.Popen(argv, stdin=stdin, stdout=stdout, stderr=stderr, env=env)

    # -----------------------------------------------------------------------
    # Paths and copies
    # -----------------------------------------------------------------------

    def location(self, role: Role, path: str) -> str:
        """``path`` as seen from this process: local path or ``user@host:path``."""
        if self.is_local(role):
            return path
        endpoint = self.config.endpoint(role)
        return f"{endpoint.user}@{endpoint.host}:{path}"

    def rsh(self, role: Role) -> list[str]:
        """Remote shell argv for rsync, riding the endpoint's channel."""
        return ["ssh", *self.channel(role).options()]

    def _scp(self, role: Role, source: str, destination: str) -> None:
        channel = self.channel(role)
        argv = [
            "scp",
            "-q",
            "-o",
            f"ControlPath={channel.control_path}",
            "-P",
            str(channel.endpoint.port),
            source,
            destination,
        ]
        completed = subprocess.run(argv, capture_output=True, text=True)
        if completed.returncode != 0:
            raise CommandError(
                f"Copy {source} -> {destination} failed: {completed.stderr.strip()}",
                returncode=completed.returncode,
                stderr=completed.stderr,
            )

    def copy_to(self, role: Role, local_path: str, remote_path: str) -> None:
        """Copy a local file onto the endpoint of ``role``."""
        if self.dry_run:
            log_with_context(
                logging.INFO, f"DRY-RUN: copy {local_path} -> {role.value}:{remote_path}"
            )
            return
        if self.is_local(role):
            shutil.copyfile(local_path, remote_path)
            return
        self._scp(role, local_path, self.location(role, remote_path))

    def copy_from(self, role: Role, remote_path: str, local_path: str) -> None:
        """Copy a file from the endpoint of ``role`` to this machine."""
        if self.is_local(role):
            shutil.copyfile(remote_path, local_path)
            return
        self._scp(role, self.location(role, remote_path), local_path)
