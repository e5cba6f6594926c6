"""Unit test configuration and shared fixtures."""

from __future__ import annotations

from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from site_relocator.core.config import RelocationConfig
from site_relocator.services.channel import CommandResult
from site_relocator.types import Role, RunContext

# ---------------------------------------------------------------------------
# Shared factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_config(base_settings: dict[str, Any]) -> Callable[..., RelocationConfig]:
    """Build a RelocationConfig from the base settings plus overrides."""

    def _make(**overrides: Any) -> RelocationConfig:
        return RelocationConfig.from_dict({**base_settings, **overrides})

    return _make


def _build_mock_channels(
    run_context: RunContext = RunContext.NEITHER, dry_run: bool = False
) -> MagicMock:
    """Build a MagicMock that behaves like ControlChannelManager.

    Every command succeeds with empty output unless ``run.side_effect`` or
    ``run.return_value`` is replaced by the test.
    """
    m = MagicMock()
    m.run_context = run_context
    m.dry_run = dry_run
    m.is_local.side_effect = run_context.is_local
    m.run.return_value = CommandResult(0)
    m.run_local.return_value = CommandResult(0)
    m.rsh.side_effect = lambda role: ["ssh", "-S", f"/tmp/ctl/{role.value}"]
    m.location.side_effect = lambda role, path: (
        path if run_context.is_local(role) else f"deploy@{role.value}.example.com:{path}"
    )
    return m


@pytest.fixture()
def mock_channels() -> MagicMock:
    return _build_mock_channels()


@pytest.fixture()
def make_channels() -> Callable[..., MagicMock]:
    return _build_mock_channels


class FakeCapabilities:
    """CapabilitySet stand-in answering from a fixed set of names."""

    def __init__(self, role: Role, present: set[str] | None = None) -> None:
        self.role = role
        self.present = set(present or ())
        self.asked: list[str] = []

    def has(self, capability: str) -> bool:
        self.asked.append(capability)
        return capability in self.present

    def missing(self, *capabilities: str) -> list[str]:
        return [c for c in capabilities if not self.has(c)]

    def dump_tool(self) -> str:
        return "mariadb-dump" if "mariadb-dump" in self.present else "mysqldump"


@pytest.fixture()
def make_capabilities() -> Callable[..., FakeCapabilities]:
    return FakeCapabilities
