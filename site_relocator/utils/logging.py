"""
Logging module for the site relocation tool

Console output is human oriented; the optional structured log is one JSON
object per line with ``ts``, ``level``, ``message`` and an optional ``meta``.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Iterable

LOGGER_NAME = "site_relocator"

# Custom level for step banners, between INFO and WARNING
STEP = 25
logging.addLevelName(STEP, "STEP")

_LEVEL_NAMES = {
    STEP: "STEP",
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}

_STANDARD_ATTRIBUTES = frozenset(
    (
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    )
)

REDACTED = "***"


def level_label(levelno: int) -> str:
    """Map a numeric level onto the structured log vocabulary."""
    if levelno in _LEVEL_NAMES:
        return _LEVEL_NAMES[levelno]
    return "ERROR" if levelno > logging.WARNING else "INFO"


class JsonLinesFormatter(logging.Formatter):
    """Render records as ``{"ts", "level", "message", "meta"}`` JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            ),
            "level": level_label(record.levelno),
            "message": record.getMessage(),
        }
        meta = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRIBUTES and not key.startswith("_")
        }
        if meta:
            data["meta"] = meta
        return json.dumps(data, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Console formatter: timestamped lines, warnings and errors labelled,
    step records rendered as a banner.
    """

    def __init__(self, verbose: bool = False) -> None:
        if verbose:
            fmt = "[%(asctime)s] [%(module)s:%(lineno)d] %(message)s"
        else:
            fmt = "[%(asctime)s] %(message)s"
        super().__init__(fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)
        if record.levelno == STEP:
            rule = "=" * 60
            return f"\n{rule}\n{result}\n{rule}"
        if record.levelno >= logging.WARNING:
            label = level_label(record.levelno)
            stamp, _, rest = result.partition("] ")
            return f"{stamp}] {label}: {rest}"
        return result


class SecretRedactingFilter(logging.Filter):
    """Replace known secret values in messages and extras with ``***``."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        # Longest first so overlapping secrets are fully masked
        self.secrets = sorted({s for s in secrets if s}, key=len, reverse=True)

    def _redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        record.msg = self._redact(record.getMessage())
        record.args = ()
        for key, value in list(record.__dict__.items()):
            if key not in _STANDARD_ATTRIBUTES and isinstance(value, str):
                setattr(record, key, self._redact(value))
        return True


def setup_structured_log(
    log_file: str, secrets: Iterable[str] = ()
) -> logging.FileHandler:
    """
    Attach the JSON-lines handler to the package logger.

    Args:
        log_file: Path of the structured log; parent directories are created
        secrets: Values that must never reach the file

    Returns:
        The file handler that was added
    """
    directory = os.path.dirname(os.path.abspath(log_file))
    os.makedirs(directory, exist_ok=True)

    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(JsonLinesFormatter())
    handler.addFilter(SecretRedactingFilter(secrets))

    logging.getLogger(LOGGER_NAME).addHandler(handler)
    return handler


def setup_logger(
    verbose: bool = False,
    log_file: str | None = None,
    secrets: Iterable[str] = (),
) -> logging.Logger:
    """
    Set up and return the logger with appropriate formatting.

    Args:
        verbose: If True, set console handler to DEBUG level; otherwise INFO level
        log_file: Optional structured log path; None or empty disables it
        secrets: Values redacted from every handler

    Returns:
        Configured logger instance
    """
    secrets = tuple(secrets)
    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to prevent duplicate messages
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ConsoleFormatter(verbose=verbose))
    console_handler.addFilter(SecretRedactingFilter(secrets))
    logger.addHandler(console_handler)

    if log_file:
        setup_structured_log(log_file, secrets)
        logger.debug(f"Structured log: {log_file}")

    return logger


def log_with_context(level: int, message: str, **kwargs: Any) -> None:
    """
    Log a message with additional context information.

    Args:
        level: The logging level (e.g., logging.INFO)
        message: The log message
        **kwargs: Additional context, written to ``meta`` in the structured log;
            ``exc_info`` is passed through to the logger instead
    """
    exc_info = kwargs.pop("exc_info", None)
    extras = {k: v for k, v in kwargs.items() if v is not None}
    logging.getLogger(LOGGER_NAME).log(level, message, exc_info=exc_info, extra=extras)


def log_step(number: int, label: str) -> None:
    """Emit the STEP record that opens a step."""
    log_with_context(STEP, f"STEP {number}: {label}", step=number)

