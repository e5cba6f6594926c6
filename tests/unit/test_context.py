"""Unit tests for the immutable relocation context."""

from __future__ import annotations

import dataclasses

import pytest

from site_relocator.core.context import RelocationContext
from site_relocator.types import Role, RunContext


class TestRelocationContext:
    """Tests for RelocationContext."""

    def test_endpoints_reflect_run_context(self, make_config) -> None:
        context = RelocationContext(make_config(), RunContext.AT_DESTINATION)
        assert context.source.locality == "remote"
        assert context.destination.locality == "local"
        assert context.endpoint(Role.SOURCE).host == "old.example.com"

    def test_plan_key_identifies_the_pair(self, make_config) -> None:
        context = RelocationContext(make_config(source_port=2222), RunContext.NEITHER)
        assert context.plan_key == "deploy@old.example.com:2222->deploy@new.example.com:22"

    def test_log_prefix(self, make_config) -> None:
        assert RelocationContext(make_config(), RunContext.NEITHER).log_prefix == ""
        dry = RelocationContext(make_config(dry_run=True), RunContext.NEITHER)
        assert dry.dry_run is True
        assert dry.log_prefix == "[DRY RUN] "

    def test_is_frozen(self, make_config) -> None:
        context = RelocationContext(make_config(), RunContext.NEITHER)
        with pytest.raises(dataclasses.FrozenInstanceError):
            context.run_context = RunContext.AT_SOURCE  # type: ignore[misc]
