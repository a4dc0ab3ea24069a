"""Logging setup for Taskpilot.

Every ``taskpilot.*`` logger writes to one rotating file, and optionally the
console. Lines are redacted as they are formatted, so GitHub tokens, runner
bearer tokens and webhook signatures never reach disk, even inside tracebacks.
"""

from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR_ENV = "TASKPILOT_LOG_DIR"
LOG_LEVEL_ENV = "TASKPILOT_LOG_LEVEL"

DEFAULT_LOG_DIR = "logs"
LOG_FILE = "taskpilot.log"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# httpx logs every runner request URL at INFO
QUIET_LOGGERS = ("httpx", "httpcore")

_REDACTIONS = (
    (re.compile(r"gh[pousr]_[A-Za-z0-9]{36}"), "[GITHUB_TOKEN]"),
    (re.compile(r"github_pat_[A-Za-z0-9_]{82}"), "[GITHUB_TOKEN]"),
    (re.compile(r"Bearer [A-Za-z0-9._-]+"), "Bearer [REDACTED]"),
    (re.compile(r"sha256=[A-Fa-f0-9]{64}"), "sha256=[REDACTED]"),
    (re.compile(r"token=[A-Za-z0-9._-]+"), "token=[REDACTED]"),
)


def sanitize_for_log(text: str) -> str:
    """Redact tokens and webhook signatures."""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def truncate_output(output: str, max_length: int = 2000) -> str:
    """Cut runner replies and payload excerpts down to max_length characters."""
    if len(output) <= max_length:
        return output
    return output[:max_length] + f"\n... [truncated, {len(output) - max_length} more chars]"


class RedactingFormatter(logging.Formatter):
    """Formatter that runs sanitize_for_log over the finished line."""

    def format(self, record: logging.LogRecord) -> str:
        return sanitize_for_log(super().format(record))


def _resolve_level(level: str | None) -> int:
    name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    log_dir: str | Path | None = None,
    level: str | None = None,
    console: bool = True,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> logging.Logger:
    """Configure the ``taskpilot`` logger for the API server.

    Args:
        log_dir: Directory for taskpilot.log. Falls back to TASKPILOT_LOG_DIR,
                 then 'logs'.
        level: Level name. Falls back to TASKPILOT_LOG_LEVEL, then INFO.
                 Unknown names mean INFO.
        console: Also log to stderr.
        max_bytes: Size at which the file rotates.
        backup_count: Rotated files to keep.

    Returns:
        The ``taskpilot`` logger.
    """
    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or DEFAULT_LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    log_level = _resolve_level(level)

    logger = logging.getLogger("taskpilot")
    logger.setLevel(log_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            directory / LOG_FILE,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())

    formatter = RedactingFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logger.info(
        "Taskpilot logging to %s at %s", directory / LOG_FILE, logging.getLevelName(log_level)
    )
    return logger
