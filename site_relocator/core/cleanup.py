"""
Guaranteed teardown at the end of a run.

Whatever ends the run (success, failed step, Ctrl-C or SIGTERM), the
finalizer closes every control channel and removes the local staging
directory.
"""

from __future__ import annotations

import logging
import signal
from contextlib import contextmanager
from types import FrameType
from typing import Iterator

from site_relocator.services.channel import ControlChannelManager
from site_relocator.services.transfer import StagingArea
from site_relocator.utils.logging import log_with_context

SIGTERM_EXIT_CODE = 128 + signal.SIGTERM


def _raise_on_sigterm(signum: int, frame: FrameType | None) -> None:
    raise SystemExit(SIGTERM_EXIT_CODE)


def run_cleanup(channels: ControlChannelManager, staging: StagingArea) -> None:
    """Close channels and remove staging; each part runs even if the other fails."""
    try:
        channels.close_all()
    finally:
        staging.remove()
    log_with_context(logging.DEBUG, "Cleanup complete")


@contextmanager
def guaranteed_cleanup(
    channels: ControlChannelManager, staging: StagingArea
) -> Iterator[None]:
    """Run the body, then always run :func:`run_cleanup`.

    SIGTERM is turned into ``SystemExit`` for the duration so that it unwinds
    through the finalizer like Ctrl-C does.
    """
    previous = signal.signal(signal.SIGTERM, _raise_on_sigterm)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)
        run_cleanup(channels, staging)
