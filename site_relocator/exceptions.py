"""Custom exception hierarchy for the site relocation tool."""

from __future__ import annotations


class RelocatorError(Exception):
    """Base exception for all relocation-related errors."""


class ConfigError(RelocatorError):
    """Raised when configuration is invalid or missing."""


class ChannelError(RelocatorError):
    """Raised when a control channel to an endpoint cannot be opened."""


class CommandError(RelocatorError):
    """Raised when a command exits with a non-zero status."""

    def __init__(self, message: str, returncode: int = 1, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class DependencyError(RelocatorError):
    """Raised when a required tool is missing on an endpoint."""


class TransferError(RelocatorError):
    """Raised when a code or asset tree transfer fails."""


class PipelineError(RelocatorError):
    """Raised when one or more stages of a byte pipeline fail."""

    def __init__(self, label: str, failures: list[str]) -> None:
        super().__init__(f"{label} failed: " + "; ".join(failures))
        self.label = label
        self.failures = failures


class DatabaseError(RelocatorError):
    """Raised when a database migration task fails."""


class ProvisioningError(RelocatorError):
    """Raised when hosting records cannot be created."""


class StepAbortedError(RelocatorError):
    """Raised when a mandatory step, or an unreachable endpoint, aborts the run."""

    def __init__(self, number: int, label: str, cause: str) -> None:
        super().__init__(f"Step {number} ({label}) failed: {cause}")
        self.number = number
        self.label = label
