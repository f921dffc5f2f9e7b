"""Structured logging for opskit hosts, with TeamCity build-log integration."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO

from teamcity.messages import TeamcityServiceMessages

ROOT_LOGGER = "opskit"
DEFAULT_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_SIZE = 10 * 1024 * 1024


def is_in_teamcity() -> bool:
    """True when running as a TeamCity build step."""
    return bool(os.environ.get("TEAMCITY_VERSION") or os.environ.get("BUILD_NUMBER"))


class TeamCityErrorHandler(logging.Handler):
    """Reports ERROR records as TeamCity service messages."""

    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__(level=logging.ERROR)
        self.messages = TeamcityServiceMessages(output=stream or sys.stdout)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.messages.customMessage(record.getMessage(), "ERROR")
        except Exception:
            self.handleError(record)


def configure_logging(
    debug: bool = False,
    log_file: Optional[Path] = None,
    max_bytes: int = MAX_LOG_SIZE,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the ``opskit`` logger hierarchy.

    Args:
        debug: Emit DEBUG records (command lines, captured output)
        log_file: Optional log file, rolled over once it exceeds max_bytes
        max_bytes: Rollover threshold for the log file
        stream: Console stream (defaults to stdout)

    Returns:
        The configured root opskit logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT)

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # Keeps a single ".1" backup
        file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=1)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if is_in_teamcity():
        logger.addHandler(TeamCityErrorHandler(stream))

    return logger


def write_progress(message: str, stream: Optional[TextIO] = None) -> None:
    """Report a progress milestone to TeamCity, or as a banner in the log."""
    if is_in_teamcity():
        TeamcityServiceMessages(output=stream or sys.stdout).progressMessage(message)
        return

    logging.getLogger(ROOT_LOGGER).info(f"==== {message} ====")
