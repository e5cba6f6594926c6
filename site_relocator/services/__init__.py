"""Services that act on endpoints: commands, channels, transfers, databases."""

__all__ = [
    "capabilities",
    "channel",
    "commands",
    "database",
    "pipeline",
    "preflight",
    "provisioning",
    "transfer",
    "wordpress",
]
