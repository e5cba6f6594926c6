"""Command-line interface for the site relocation tool."""

__all__ = [
    "check_cmd",
    "commands",
    "common",
    "config_cmd",
    "migrate_cmd",
    "report",
]
