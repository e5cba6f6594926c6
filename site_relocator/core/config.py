"""
Configuration handling for the site relocation tool.

The defaults file is a flat YAML mapping with one key per configuration
variable. It is read before command-line flags are applied; flags override
file values, and secrets may come from the environment instead of the file.
The merged mapping is turned into an immutable :class:`RelocationConfig`
once at startup.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import yaml

from site_relocator.constants import (
    DEFAULT_ASSETS_DIR,
    DEFAULT_RSYNC_EXCLUDES,
    DEFAULTS_FILENAME,
    LEGACY_SSH_ALGORITHMS,
    TOOL_NAME,
    WORDPRESS_ASSETS_DIR,
)
from site_relocator.exceptions import ConfigError
from site_relocator.types import DbMode, Origin, Role, SiteMode, TransferStrategy
from site_relocator.utils.logging import log_with_context

E = TypeVar("E")

SECRET_KEYS = (
    "source_password",
    "source_db_password",
    "destination_password",
    "destination_db_password",
    "plesk_system_password",
)

MAINTENANCE_CHOICES = ("prompt", "on", "off")
COMPRESS_CHOICES = ("auto", "lz4", "gzip", "none")

_TRUE = {"1", "true", "yes", "on", "y"}
_FALSE = {"0", "false", "no", "off", "n", ""}


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"Invalid boolean for {key}: {value!r}")


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid integer for {key}: {value!r}") from e


def _as_list(value: Any) -> tuple[str, ...]:
    """Accept a YAML list or a whitespace/comma separated string."""
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value]
    else:
        items = str(value).replace(",", " ").split()
    return tuple(item for item in items if item)


def _as_enum(enum_cls: type[E], value: Any, key: str) -> E:
    try:
        return enum_cls(str(value).strip().lower())  # type: ignore[call-arg]
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)  # type: ignore[attr-defined]
        raise ConfigError(
            f"Invalid {key}: {value!r}. Must be one of: {allowed}"
        ) from e


def _as_choice(value: Any, key: str, choices: tuple[str, ...]) -> str:
    text = str(value).strip().lower()
    if text not in choices:
        raise ConfigError(
            f"Invalid {key}: {value!r}. Must be one of: {', '.join(choices)}"
        )
    return text


def _maintenance(value: Any) -> str:
    # YAML reads bare on/off as booleans
    if isinstance(value, bool):
        return "on" if value else "off"
    return _as_choice(value, "maintenance", MAINTENANCE_CHOICES)


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseCredentials:
    """Login used by the dump and import clients on one endpoint."""

    host: str = "localhost"
    user: str = ""
    password: str = field(default="", repr=False)


@dataclass(frozen=True)
class EndpointConfig:
    """Identity and filesystem layout of one endpoint."""

    host: str = ""
    port: int = 22
    user: str = ""
    key_path: str = ""
    password: str = field(default="", repr=False)
    web_root: str = ""
    db: DatabaseCredentials = field(default_factory=DatabaseCredentials)

    @property
    def identity(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    @classmethod
    def from_dict(cls, data: dict[str, Any], prefix: str) -> EndpointConfig:
        """Build from the flat ``<prefix>_*`` keys of the defaults mapping.

        Args:
            data: Merged defaults/flag mapping.
            prefix: ``"source"`` or ``"destination"``.

        Returns:
            The endpoint configuration.
        """

        def get(name: str, default: Any = "") -> Any:
            value = data.get(f"{prefix}_{name}")
            return default if value is None else value

        port = _as_int(get("port", 22), f"{prefix}_port")
        if not 0 < port < 65536:
            raise ConfigError(f"Invalid {prefix}_port: {port}")

        return cls(
            host=str(get("host")).strip(),
            port=port,
            user=str(get("user")).strip(),
            key_path=os.path.expanduser(str(get("key_path"))) if get("key_path") else "",
            password=str(get("password")),
            web_root=str(get("web_root")).rstrip("/"),
            db=DatabaseCredentials(
                host=str(get("db_host", "localhost")),
                user=str(get("db_user")),
                password=str(get("db_password")),
            ),
        )


@dataclass(frozen=True)
class PleskConfig:
    """Inputs for hosting-record provisioning on the destination."""

    domain: str = ""
    owner: str = "admin"
    service_plan: str = "Default Domain"
    ip_address: str = ""
    system_user: str = ""
    system_password: str = field(default="", repr=False)
    db_server: str = "localhost:3306"
    docroot_rel: str = "httpdocs"
    vhosts_root: str = "/var/www/vhosts"


@dataclass(frozen=True)
class DatabaseSpec:
    """A source database and the name it gets on the destination."""

    source: str
    destination: str

    @classmethod
    def parse(cls, spec: str) -> DatabaseSpec:
        """Parse ``name`` or ``old:new``.

        Raises:
            ConfigError: If either side of an ``old:new`` pair is empty.
        """
        spec = spec.strip()
        if ":" not in spec:
            if not spec:
                raise ConfigError("Empty database name")
            return cls(spec, spec)
        source, _, destination = spec.partition(":")
        source, destination = source.strip(), destination.strip()
        if not source or not destination:
            raise ConfigError(f"Invalid database mapping {spec!r}: expected old:new")
        return cls(source, destination)


@dataclass(frozen=True)
class RelocationConfig:
    """Immutable configuration for one relocation run. Built once, shared everywhere."""

    source: EndpointConfig = field(default_factory=EndpointConfig)
    destination: EndpointConfig = field(default_factory=EndpointConfig)

    # What moves
    databases: tuple[DatabaseSpec, ...] = ()
    exclude_tables: tuple[str, ...] = ()
    rsync_excludes: tuple[str, ...] = DEFAULT_RSYNC_EXCLUDES
    assets_dir: str = ""
    skip_code: bool = False
    skip_assets: bool = False
    skip_db: bool = False

    # Strategies
    site_mode: SiteMode = SiteMode.AUTO
    transfer_mode: TransferStrategy = TransferStrategy.DIRECT
    db_mode: DbMode = DbMode.BUFFER
    db_compress: str = "auto"
    maintenance: str = "prompt"
    rsync_destination_user: str = ""
    staging_root: str = ""

    # Run control
    start_step: int = 1
    resume: bool = False
    dry_run: bool = False
    origin: Origin = Origin.AUTO
    allow_legacy_ssh: bool = False
    legacy_algorithms: str = LEGACY_SSH_ALGORITHMS
    log_file: str | None = None

    # Collaborators
    old_url: str = ""
    new_url: str = ""
    search_replace: bool = True
    provision: bool = False
    fix_ownership: bool = True
    plesk: PleskConfig = field(default_factory=PleskConfig)

    def endpoint(self, role: Role) -> EndpointConfig:
        return self.source if role is Role.SOURCE else self.destination

    @property
    def secrets(self) -> tuple[str, ...]:
        """Every credential value that must never reach a log."""
        values = (
            self.source.password,
            self.source.db.password,
            self.destination.password,
            self.destination.db.password,
            self.plesk.system_password,
        )
        return tuple(v for v in values if v)

    @property
    def moves_files(self) -> bool:
        return not (self.skip_code and self.skip_assets)

    def assets_dir_for(self, mode: SiteMode) -> str:
        """Assets directory relative to the web root for the detected site mode."""
        if self.assets_dir:
            return self.assets_dir.strip("/")
        if mode is SiteMode.WORDPRESS:
            return WORDPRESS_ASSETS_DIR
        return DEFAULT_ASSETS_DIR

    def validate(self) -> None:
        """Check that everything the enabled steps need is present.

        Raises:
            ConfigError: Describing every missing value at once.
        """
        missing = []
        for role in Role:
            endpoint = self.endpoint(role)
            if not endpoint.host:
                missing.append(f"{role.value}_host")
            if not endpoint.user:
                missing.append(f"{role.value}_user")
        if self.moves_files:
            if not self.source.web_root:
                missing.append("source_web_root")
            if not self.destination.web_root and not self.provision:
                missing.append("destination_web_root")
        if not self.skip_db:
            if not self.databases:
                missing.append("databases")
            if not self.source.db.user:
                missing.append("source_db_user")
            if not self.destination.db.user:
                missing.append("destination_db_user")
        if self.provision and not self.plesk.domain:
            missing.append("plesk_domain")
        if missing:
            raise ConfigError("Missing required settings: " + ", ".join(missing))
        if self.start_step < 1:
            raise ConfigError(f"start_step must be >= 1, got {self.start_step}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelocationConfig:
        """Create from the merged flat mapping, coercing and checking every value.

        Args:
            data: Defaults-file values overlaid with command-line values.

        Returns:
            The frozen configuration.

        Raises:
            ConfigError: If a value has the wrong type or an unknown choice.
        """
        unknown = set(data) - set(KNOWN_KEYS)
        if unknown:
            log_with_context(
                logging.WARNING,
                f"Ignoring unknown settings: {', '.join(sorted(unknown))}",
            )

        def get(key: str, default: Any = None) -> Any:
            value = data.get(key)
            return default if value is None else value

        only_db = _as_bool(get("only_db", False), "only_db")
        rsync_excludes = (
            _as_list(data["rsync_excludes"])
            if data.get("rsync_excludes") is not None
            else DEFAULT_RSYNC_EXCLUDES
        )

        log_file = data.get("log_file")
        if log_file is None:
            log_file = default_log_file()
        elif log_file is False or str(log_file).strip() == "":
            log_file = None
        else:
            log_file = os.path.expanduser(str(log_file))

        return cls(
            source=EndpointConfig.from_dict(data, "source"),
            destination=EndpointConfig.from_dict(data, "destination"),
            databases=tuple(
                DatabaseSpec.parse(spec) for spec in _as_list(get("databases"))
            ),
            exclude_tables=_as_list(get("exclude_tables")),
            rsync_excludes=rsync_excludes,
            assets_dir=str(get("assets_dir", "")),
            skip_code=only_db or _as_bool(get("skip_code", False), "skip_code"),
            skip_assets=only_db or _as_bool(get("skip_assets", False), "skip_assets"),
            skip_db=_as_bool(get("skip_db", False), "skip_db"),
            site_mode=_as_enum(SiteMode, get("site_mode", "auto"), "site_mode"),
            transfer_mode=_as_enum(
                TransferStrategy, get("transfer_mode", "direct"), "transfer_mode"
            ),
            db_mode=_as_enum(DbMode, get("db_mode", "buffer"), "db_mode"),
            db_compress=_as_choice(
                get("db_compress", "auto"), "db_compress", COMPRESS_CHOICES
            ),
            maintenance=_maintenance(get("maintenance", "prompt")),
            rsync_destination_user=str(get("rsync_destination_user", "")),
            staging_root=str(get("staging_root", "")),
            start_step=_as_int(get("start_step", 1), "start_step"),
            resume=_as_bool(get("resume", False), "resume"),
            dry_run=_as_bool(get("dry_run", False), "dry_run"),
            origin=_as_enum(Origin, get("origin", "auto"), "origin"),
            allow_legacy_ssh=_as_bool(
                get("allow_legacy_ssh", False), "allow_legacy_ssh"
            ),
            legacy_algorithms=str(get("legacy_algorithms", LEGACY_SSH_ALGORITHMS)),
            log_file=log_file,
            old_url=str(get("old_url", "")).rstrip("/"),
            new_url=str(get("new_url", "")).rstrip("/"),
            search_replace=_as_bool(get("search_replace", True), "search_replace"),
            provision=_as_bool(get("provision", False), "provision"),
            fix_ownership=_as_bool(get("fix_ownership", True), "fix_ownership"),
            plesk=PleskConfig(
                domain=str(get("plesk_domain", "")),
                owner=str(get("plesk_owner", "admin")),
                service_plan=str(get("plesk_service_plan", "Default Domain")),
                ip_address=str(get("plesk_ip_address", "")),
                system_user=str(get("plesk_system_user", "")),
                system_password=str(get("plesk_system_password", "")),
                db_server=str(get("plesk_db_server", "localhost:3306")),
                docroot_rel=str(get("plesk_docroot_rel", "httpdocs")),
                vhosts_root=str(get("plesk_vhosts_root", "/var/www/vhosts")),
            ),
        )


_ENDPOINT_KEYS = (
    "host",
    "port",
    "user",
    "key_path",
    "password",
    "web_root",
    "db_host",
    "db_user",
    "db_password",
)

KNOWN_KEYS: tuple[str, ...] = (
    *(f"source_{k}" for k in _ENDPOINT_KEYS),
    *(f"destination_{k}" for k in _ENDPOINT_KEYS),
    "databases",
    "exclude_tables",
    "rsync_excludes",
    "assets_dir",
    "skip_code",
    "skip_assets",
    "skip_db",
    "only_db",
    "site_mode",
    "transfer_mode",
    "db_mode",
    "db_compress",
    "maintenance",
    "rsync_destination_user",
    "staging_root",
    "start_step",
    "resume",
    "dry_run",
    "origin",
    "allow_legacy_ssh",
    "legacy_algorithms",
    "log_file",
    "old_url",
    "new_url",
    "search_replace",
    "provision",
    "fix_ownership",
    "plesk_domain",
    "plesk_owner",
    "plesk_service_plan",
    "plesk_ip_address",
    "plesk_system_user",
    "plesk_system_password",
    "plesk_db_server",
    "plesk_docroot_rel",
    "plesk_vhosts_root",
)


# ---------------------------------------------------------------------------
# Defaults file
# ---------------------------------------------------------------------------


def config_dir() -> Path:
    """Per-user configuration directory (``$XDG_CONFIG_HOME/site-relocator``)."""
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(
        os.path.expanduser("~"), ".config"
    )
    return Path(base) / TOOL_NAME


def default_config_path() -> Path:
    return config_dir() / DEFAULTS_FILENAME


def default_log_file() -> str:
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return os.path.join(os.path.expanduser("~"), f"{TOOL_NAME}-{stamp}.jsonl")


def load_defaults(config_path: Path) -> dict[str, Any]:
    """
    Load the flat defaults mapping from a YAML file.

    A missing file is not an error: a warning is logged and an empty mapping
    returned so that flags alone can drive the run.

    Args:
        config_path: Path to the defaults YAML file

    Returns:
        The raw mapping

    Raises:
        ConfigError: If the file exists but is not a valid YAML mapping
    """
    if not config_path.exists():
        log_with_context(
            logging.WARNING,
            f"Defaults file {config_path} not found, using command-line values only",
        )
        return {}

    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        raise ConfigError(f"Failed to load defaults file {config_path}: {e}") from e

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Defaults file {config_path} must contain a mapping")

    log_with_context(logging.INFO, f"Loaded defaults from {config_path}")
    return {str(k): v for k, v in loaded.items()}


def save_defaults(config_path: Path, values: dict[str, Any]) -> None:
    """
    Atomically write the defaults mapping, readable only by the owner.

    The directory is created with mode 0700 and the file with mode 0600,
    since it may hold credentials.

    Args:
        config_path: Destination path
        values: Flat mapping to persist; None values are omitted
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)
    os.chmod(config_path.parent, 0o700)

    data = {k: v for k, v in values.items() if v is not None}
    tmp = config_path.with_suffix(".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)
    os.chmod(tmp, 0o600)
    tmp.replace(config_path)
    log_with_context(logging.INFO, f"Saved defaults to {config_path}")


def create_default_config(output_path: Path) -> bool:
    """
    Create a defaults file listing every supported key.

    Secrets are left empty; supply them through ``SITE_RELOCATOR_*``
    environment variables or fill them in by hand. An existing file is
    never overwritten.

    Args:
        output_path: Path where the defaults file should be saved

    Returns:
        True if the file was created, False if it already existed
    """
    if output_path.exists():
        log_with_context(
            logging.WARNING,
            f"Defaults file {output_path} already exists, not overwriting",
        )
        return False

    template: dict[str, Any] = {key: "" for key in KNOWN_KEYS}
    template.update(
        {
            "source_port": 22,
            "destination_port": 22,
            "source_db_host": "localhost",
            "destination_db_host": "localhost",
            "databases": [],
            "exclude_tables": [],
            "rsync_excludes": list(DEFAULT_RSYNC_EXCLUDES),
            "skip_code": False,
            "skip_assets": False,
            "skip_db": False,
            "only_db": False,
            "site_mode": SiteMode.AUTO.value,
            "transfer_mode": TransferStrategy.DIRECT.value,
            "db_mode": DbMode.BUFFER.value,
            "db_compress": "auto",
            "maintenance": "prompt",
            "start_step": 1,
            "resume": False,
            "dry_run": False,
            "origin": Origin.AUTO.value,
            "allow_legacy_ssh": False,
            "legacy_algorithms": LEGACY_SSH_ALGORITHMS,
            "log_file": None,
            "search_replace": True,
            "provision": False,
            "fix_ownership": True,
            "plesk_owner": "admin",
            "plesk_service_plan": "Default Domain",
            "plesk_db_server": "localhost:3306",
            "plesk_docroot_rel": "httpdocs",
            "plesk_vhosts_root": "/var/www/vhosts",
        }
    )
    save_defaults(output_path, template)
    return True
