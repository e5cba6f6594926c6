"""Shared test fixtures for the site_relocator test suite."""

from __future__ import annotations

import logging
from typing import Any, Iterator

import pytest

from site_relocator.utils.logging import LOGGER_NAME


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Leave the package logger propagating to root so caplog sees records."""
    logger = logging.getLogger(LOGGER_NAME)
    yield
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture()
def base_settings() -> dict[str, Any]:
    """Flat settings for a complete source/destination pair."""
    return {
        "source_host": "old.example.com",
        "source_user": "deploy",
        "source_web_root": "/var/www/site",
        "source_db_user": "olddb",
        "source_db_password": "old-db-secret",
        "destination_host": "new.example.com",
        "destination_user": "deploy",
        "destination_web_root": "/srv/site",
        "destination_db_user": "newdb",
        "destination_db_password": "new-db-secret",
        "databases": ["shop"],
        "log_file": "",
    }
