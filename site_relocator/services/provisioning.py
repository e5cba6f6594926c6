"""Plesk hosting records on the destination (only with ``--plesk-setup``).

Every operation follows a create-if-absent contract: ``--info`` first,
``--create`` only when the record is missing.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from site_relocator.exceptions import ProvisioningError
from site_relocator.services import commands as c
from site_relocator.types import Role
from site_relocator.utils.logging import log_with_context

if TYPE_CHECKING:
    from site_relocator.core.config import RelocationConfig
    from site_relocator.services.capabilities import CapabilitySet
    from site_relocator.services.channel import ControlChannelManager

PLESK_GROUP = "psacln"


def _field(info: str, label: str) -> str:
    """Value of a ``Label: value`` line in ``plesk bin ... --info`` output."""
    for line in info.splitlines():
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == label.lower():
            return value.strip()
    return ""


class HostingProvisioner:
    """Creates the subscription and database records a site needs."""

    def __init__(
        self,
        config: RelocationConfig,
        channels: ControlChannelManager,
        capabilities: CapabilitySet,
    ) -> None:
        self.config = config
        self.plesk = config.plesk
        self.channels = channels
        self.capabilities = capabilities
        self._root: str | None = None

    def _require_plesk(self) -> None:
        if not self.capabilities.has("plesk"):
            raise ProvisioningError("Plesk CLI is not available on the destination")

    def ensure_subscription(self) -> None:
        self._require_plesk()
        domain = self.plesk.domain
        info = c.cmd("plesk", "bin", "subscription", "--info", domain, mutating=False)
        if self.channels.run(Role.DESTINATION, info).ok:
            log_with_context(logging.INFO, f"Subscription {domain} already exists")
            return
        log_with_context(
            logging.INFO,
            f"Creating subscription {domain} (owner: {self.plesk.owner}, "
            f"plan: {self.plesk.service_plan})",
        )
        options = ["-owner", self.plesk.owner, "-service-plan", self.plesk.service_plan]
        if self.plesk.ip_address:
            options += ["-ip", self.plesk.ip_address]
        create = c.cmd(
            "plesk",
            "bin",
            "subscription",
            "--create",
            domain,
            *options,
            "-login",
            self.plesk.system_user,
            "-passwd",
            "",
            "-www-root",
            self.plesk.docroot_rel,
            env={"PSA_PASSWORD": self.plesk.system_password},
        )
        self.channels.run(Role.DESTINATION, create, check=True)

    def ensure_database_record(self, name: str) -> None:
        self._require_plesk()
        info = c.cmd("plesk", "bin", "database", "--info", name, mutating=False)
        if self.channels.run(Role.DESTINATION, info).ok:
            log_with_context(logging.INFO, f"Database record {name} already exists")
            return
        log_with_context(logging.INFO, f"Creating database record {name}")
        create = c.cmd(
            "plesk",
            "bin",
            "database",
            "--create",
            name,
            "-domain",
            self.plesk.domain,
            "-type",
            "mysql",
            "-server",
            self.plesk.db_server,
            "-db-user",
            self.config.destination.db.user,
            "-passwd",
            "",
            env={"PSA_PASSWORD": self.config.destination.db.password},
        )
        self.channels.run(Role.DESTINATION, create, check=True)

    def provision(self) -> None:
        """Subscription first, then one database record per destination database."""
        self.ensure_subscription()
        for spec in self.config.databases:
            self.ensure_database_record(spec.destination)

    def destination_root(self) -> str:
        """Configured destination web root, else the subscription's docroot."""
        if self._root is None:
            root = self.config.destination.web_root
            if not root:
                root = self.detect_docroot()
                log_with_context(logging.INFO, f"Detected destination web root: {root}")
            self._root = root.rstrip("/")
        return self._root

    def detect_docroot(self) -> str:
        if not self.config.provision:
            raise ProvisioningError(
                "destination_web_root is not set and --plesk-setup is off"
            )
        self._require_plesk()
        domain = self.plesk.domain
        info = self.channels.run(
            Role.DESTINATION,
            c.cmd("plesk", "bin", "subscription", "--info", domain, mutating=False),
            check=True,
        ).stdout
        docroot = _field(info, "Document root")
        if docroot:
            return docroot
        www_root = _field(info, "WWW root")
        if www_root:
            return os.path.join(self.plesk.vhosts_root, domain, www_root)
        if self.config.dry_run:
            # Subscription creation was skipped, fall back to the layout it would get
            return os.path.join(self.plesk.vhosts_root, domain, self.plesk.docroot_rel)
        raise ProvisioningError(f"Cannot detect the docroot of {domain}")

    def fix_ownership(self) -> None:
        """Hand the destination tree to the subscription's system user."""
        whoami = self.channels.run(Role.DESTINATION, c.cmd("id", "-u", mutating=False))
        if whoami.stdout.strip() != "0":
            log_with_context(logging.INFO, "Not root on destination, skipping ownership fix")
            return
        if not self.capabilities.has("plesk"):
            log_with_context(logging.INFO, "Plesk not detected, skipping ownership fix")
            return

        root = self.destination_root()
        user = self.plesk.system_user
        known = bool(user) and self.channels.run(
            Role.DESTINATION, c.cmd("id", "-u", user, mutating=False)
        ).ok
        if not known:
            user = self.channels.run(
                Role.DESTINATION, c.cmd("stat", "-c", "%U", root, mutating=False)
            ).stdout.strip()
        if not user:
            log_with_context(logging.WARNING, "No system user found, skipping ownership fix")
            return

        self.channels.run(
            Role.DESTINATION, c.cmd("chown", "-R", f"{user}:{PLESK_GROUP}", root), check=True
        )
        self.channels.run(
            Role.DESTINATION,
            c.cmd("find", root, "-type", "d", "-exec", "chmod", "755", "{}", "+"),
        )
        self.channels.run(
            Role.DESTINATION,
            c.cmd("find", root, "-type", "f", "-exec", "chmod", "644", "{}", "+"),
        )
        log_with_context(logging.INFO, f"Ownership of {root} set to {user}:{PLESK_GROUP}")
