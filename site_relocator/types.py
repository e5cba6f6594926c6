"""Shared type definitions for the site relocation tool.

Enums for endpoint roles, run context, step and transfer outcomes, and the
policy values accepted on the command line and in the defaults file.
"""

from __future__ import annotations

from enum import Enum

# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class Role(str, Enum):
    """Which side of the relocation an endpoint plays."""

    SOURCE = "source"
    DESTINATION = "destination"


class RunContext(str, Enum):
    """Where this process is executing relative to the two endpoints."""

    AT_SOURCE = "local-at-source"
    AT_DESTINATION = "local-at-destination"
    NEITHER = "neither"

    def is_local(self, role: Role) -> bool:
        """Return True when operations against ``role`` run without a channel."""
        if role is Role.SOURCE:
            return self is RunContext.AT_SOURCE
        return self is RunContext.AT_DESTINATION


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


class StepStatus(str, Enum):
    """Lifecycle of a declared step."""

    PENDING = "pending"
    SKIPPED_BY_RESUME = "skipped-by-resume"
    RUNNING = "running"
    OK = "ok"
    FAILED = "failed"
    SKIPPED_DISABLED = "skipped-disabled"


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


class ResourceClass(str, Enum):
    CODE = "code"
    ASSETS = "assets"


class TransferStrategy(str, Enum):
    """How a file tree travels from source to destination."""

    DIRECT = "direct"
    STAGE = "stage"
    STREAM = "stream"


class TransferOutcome(str, Enum):
    SUCCESS = "success"
    SUCCESS_WITH_FALLBACK = "success-with-fallback"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Databases
# ---------------------------------------------------------------------------


class Codec(str, Enum):
    """Compression applied to a dump on its way to the destination.

    ``lz4`` is the fast block compressor, ``gzip`` the general-purpose one.
    """

    NONE = "none"
    LZ4 = "lz4"
    GZIP = "gzip"


class DbMode(str, Enum):
    BUFFER = "buffer"
    STREAM = "stream"
    AUTO = "auto"


class TaskOutcome(str, Enum):
    OK = "ok"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Site
# ---------------------------------------------------------------------------


class SiteMode(str, Enum):
    AUTO = "auto"
    WORDPRESS = "wordpress"
    GENERIC = "generic"


class Origin(str, Enum):
    """Run-context override requested on the command line."""

    AUTO = "auto"
    SOURCE = "source"
    DESTINATION = "destination"
    NEITHER = "neither"
