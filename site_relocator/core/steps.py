"""Declaration of the relocation step list.

:func:`build_plan` wires the services together and declares every step in
its fixed order, so step numbers are known before anything runs.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import partial

from site_relocator.core.config import RelocationConfig
from site_relocator.core.context import RelocationContext
from site_relocator.core.plan import MigrationPlan
from site_relocator.services.capabilities import CapabilitySet
from site_relocator.services.channel import ControlChannelManager
from site_relocator.services.database import DatabaseMigrationTask, DatabaseMigrator
from site_relocator.services.preflight import Preflight
from site_relocator.services.provisioning import HostingProvisioner
from site_relocator.services.transfer import StagingArea, TransferExecutor, TransferJob
from site_relocator.services.wordpress import WordPressSite
from site_relocator.types import ResourceClass, Role
from site_relocator.utils.logging import log_with_context


@dataclass
class RelocationSteps:
    """The services behind the step actions."""

    plan: MigrationPlan
    channels: ControlChannelManager
    site: WordPressSite
    provisioner: HostingProvisioner
    preflight: Preflight
    transfers: TransferExecutor
    databases: DatabaseMigrator

    @property
    def config(self) -> RelocationConfig:
        return self.plan.context.config

    def open_channels(self) -> None:
        for role in Role:
            self.channels.open(role)

    def detect_site_mode(self) -> None:
        mode = self.site.mode
        log_with_context(
            logging.INFO,
            f"Site mode: {mode.value}, assets in {self.config.assets_dir_for(mode)}",
        )

    def prepare_destination(self) -> None:
        self.preflight.prepare_destination(
            self.provisioner.destination_root(),
            self.config.assets_dir_for(self.site.mode),
        )

    def transfer(self, resource: ResourceClass) -> None:
        source_root = self.config.source.web_root
        destination_root = self.provisioner.destination_root()
        assets_dir = self.config.assets_dir_for(self.site.mode)
        if resource is ResourceClass.CODE:
            job = TransferJob(
                resource,
                source_root,
                destination_root,
                excludes=(*self.config.rsync_excludes, assets_dir),
                strategy=self.config.transfer_mode,
            )
        else:
            job = TransferJob(
                resource,
                os.path.join(source_root, assets_dir),
                os.path.join(destination_root, assets_dir),
                strategy=self.config.transfer_mode,
            )
        self.plan.transfers.append(job)
        self.transfers.execute(job)

    def rewrite_urls(self) -> None:
        self.site.search_replace(
            self.plan.capabilities[Role.DESTINATION], self.provisioner.destination_root()
        )


def build_plan(
    context: RelocationContext,
    channels: ControlChannelManager,
    staging: StagingArea,
    interactive: bool | None = None,
) -> MigrationPlan:
    """
    Wire the services and declare the steps in order.

    Args:
        context: Immutable run context
        channels: Channel manager for both endpoints
        staging: Local staging area removed by the finalizer
        interactive: Whether prompts may be shown (defaults to stdin being a tty)

    Returns:
        The plan with every step declared and numbered
    """
    config = context.config
    capabilities = {role: CapabilitySet(role, channels) for role in Role}
    plan = MigrationPlan(
        context=context,
        capabilities=capabilities,
        resume_threshold=config.start_step,
    )
    site = WordPressSite(config, channels, interactive)
    steps = RelocationSteps(
        plan=plan,
        channels=channels,
        site=site,
        provisioner=HostingProvisioner(config, channels, capabilities[Role.DESTINATION]),
        preflight=Preflight(config, channels, capabilities),
        transfers=TransferExecutor(config, channels, staging),
        databases=DatabaseMigrator(config, channels, capabilities, site),
    )
    moves_db = not config.skip_db

    plan.add_step(
        "Open control channels",
        steps.open_channels,
        mandatory=True,
        preflight=True,
    )
    plan.add_step(
        "Validate tools on source",
        partial(steps.preflight.validate_tools, Role.SOURCE),
        mandatory=True,
        preflight=True,
    )
    plan.add_step(
        "Validate tools on destination",
        partial(steps.preflight.validate_tools, Role.DESTINATION),
        mandatory=True,
        preflight=True,
    )
    plan.add_step(
        "Check database connectivity",
        steps.preflight.check_databases,
        mandatory=True,
        enabled=moves_db,
        preflight=True,
    )
    plan.add_step(
        "Provision hosting records",
        steps.provisioner.provision,
        mandatory=True,
        enabled=config.provision,
    )
    plan.add_step("Detect site mode", steps.detect_site_mode)
    plan.add_step(
        "Prepare destination", steps.prepare_destination, enabled=config.moves_files
    )
    plan.add_step(
        "Transfer code",
        partial(steps.transfer, ResourceClass.CODE),
        enabled=not config.skip_code,
    )
    plan.add_step(
        "Transfer assets",
        partial(steps.transfer, ResourceClass.ASSETS),
        enabled=not config.skip_assets,
    )
    plan.add_step(
        "Fix ownership",
        steps.provisioner.fix_ownership,
        enabled=config.provision and config.fix_ownership and config.moves_files,
    )
    for spec in config.databases:
        task = DatabaseMigrationTask.from_spec(spec, config.exclude_tables)
        plan.databases.append(task)
        plan.add_step(
            f"Migrate database {task.label}",
            partial(steps.databases.migrate, task),
            enabled=moves_db,
        )
    plan.add_step(
        "Rewrite site URLs",
        steps.rewrite_urls,
        enabled=config.search_replace and bool(config.old_url and config.new_url),
    )
    return plan
