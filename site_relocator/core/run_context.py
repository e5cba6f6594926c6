"""Decide where this process runs relative to the two endpoints."""

from __future__ import annotations

import logging
import socket
import sys
from typing import Iterable

import click
import psutil

from site_relocator.types import Origin, RunContext
from site_relocator.utils.logging import log_with_context

LOOPBACK = frozenset({"127.0.0.1", "::1"})

_OVERRIDES = {
    Origin.SOURCE: RunContext.AT_SOURCE,
    Origin.DESTINATION: RunContext.AT_DESTINATION,
    Origin.NEITHER: RunContext.NEITHER,
}

_PROMPT_CHOICES = {"s": RunContext.AT_SOURCE, "d": RunContext.AT_DESTINATION, "n": RunContext.NEITHER}


def local_addresses() -> set[str]:
    """Addresses of every local interface, loopback included."""
    addresses = set(LOOPBACK)
    for entries in psutil.net_if_addrs().values():
        for entry in entries:
            if entry.family in (socket.AF_INET, socket.AF_INET6):
                # Drop IPv6 zone suffixes such as fe80::1%eth0
                addresses.add(entry.address.split("%", 1)[0])
    return addresses


def resolve_addresses(host: str) -> set[str]:
    """Resolve ``host`` to its address set; empty when resolution fails."""
    try:
        infos = socket.getaddrinfo(host, None)
    except (socket.gaierror, UnicodeError) as e:
        log_with_context(logging.WARNING, f"Cannot resolve {host}: {e}")
        return set()
    return {info[4][0].split("%", 1)[0] for info in infos}


def detect_run_context(
    source_addresses: Iterable[str],
    destination_addresses: Iterable[str],
    local: Iterable[str],
) -> RunContext | None:
    """Match local addresses against both endpoints.

    Returns:
        The matching context, ``NEITHER`` when nothing matches, or None when
        both endpoints match and the answer is ambiguous.
    """
    local = set(local)
    at_source = bool(local & set(source_addresses))
    at_destination = bool(local & set(destination_addresses))
    if at_source and at_destination:
        return None
    if at_source:
        return RunContext.AT_SOURCE
    if at_destination:
        return RunContext.AT_DESTINATION
    return RunContext.NEITHER


def resolve_run_context(
    source_host: str,
    destination_host: str,
    origin: Origin = Origin.AUTO,
    interactive: bool | None = None,
) -> RunContext:
    """
    Decide once per invocation whether we run on the source, the destination
    or neither.

    Never fails: unresolvable hosts simply do not match, and an ambiguous
    result without a terminal falls back to ``NEITHER``.

    Args:
        source_host: Configured source hostname or address
        destination_host: Configured destination hostname or address
        origin: Explicit override from the command line
        interactive: Whether a terminal is available for confirmation

    Returns:
        The run context
    """
    if origin in _OVERRIDES:
        context = _OVERRIDES[origin]
        log_with_context(logging.INFO, f"Run context forced: {context.value}")
        return context

    context = detect_run_context(
        resolve_addresses(source_host),
        resolve_addresses(destination_host),
        local_addresses(),
    )
    if context is not None:
        log_with_context(logging.INFO, f"Run context detected: {context.value}")
        return context

    if interactive is None:
        interactive = sys.stdin.isatty()
    if not interactive:
        log_with_context(
            logging.WARNING,
            "Both endpoints resolve to this machine; assuming neither",
        )
        return RunContext.NEITHER

    answer = click.prompt(
        "This machine matches both endpoints. Running on [s]ource, "
        "[d]estination or [n]either?",
        type=click.Choice(sorted(_PROMPT_CHOICES)),
        default="n",
    )
    context = _PROMPT_CHOICES[answer]
    log_with_context(logging.INFO, f"Run context confirmed: {context.value}")
    return context
