"""Constants shared across the site relocation tool."""

from __future__ import annotations

TOOL_NAME = "site-relocator"

# Environment variable prefix for secrets supplied outside the defaults file
ENV_PREFIX = "SITE_RELOCATOR_"

# rsync: "some files vanished before they could be transferred"
RSYNC_PARTIAL_VANISHED = 24

DEFAULT_RSYNC_EXCLUDES = ("logs", "tmp")
DEFAULT_ASSETS_DIR = "public/uploads"
WORDPRESS_ASSETS_DIR = "wp-content/uploads"
WORDPRESS_MARKER_FILE = "wp-config.php"
WORDPRESS_MAINTENANCE_FILE = ".maintenance"
WORDPRESS_MAINTENANCE_BODY = "<?php $upgrading = time();"

# OpenSSH multiplexing
CONTROL_PERSIST_SECONDS = 600
LEGACY_SSH_ALGORITHMS = "+ssh-rsa"

# Import session tuning
IMPORT_MAX_ALLOWED_PACKET = 1073741824
IMPORT_SESSION_TIMEOUT = 600
DATABASE_CHARSET = "utf8mb4"
DATABASE_COLLATION = "utf8mb4_unicode_ci"

DUMP_OPTIONS = (
    "--single-transaction",
    "--quick",
    "--routines",
    "--triggers",
    "--events",
    "--no-tablespaces",
    "--default-character-set=utf8mb4",
    f"--max-allowed-packet={IMPORT_MAX_ALLOWED_PACKET}",
)

# Byte relay
RELAY_CHUNK_SIZE = 64 * 1024

CHECKPOINT_FILENAME = "checkpoint.json"
DEFAULTS_FILENAME = "defaults.yaml"
