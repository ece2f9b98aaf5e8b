# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Logging setup for quotasync.

All failures in the reconciliation paths surface only through logs, so every
component logs under the ``quotasync`` hierarchy and this module attaches the
handlers once, at the top of that hierarchy.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "quotasync"

CONSOLE_FORMAT = "[%(asctime)s] [%(name)s:%(levelname)s] %(message)s"
FILE_FORMAT = (
    "%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def parse_level(level: Optional[str]) -> int:
    """Convert string level to logging constant"""
    if not level:
        return logging.INFO
    return _LEVELS.get(level.upper(), logging.INFO)


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    console_output: bool = True,
    file_output: bool = False,
) -> logging.Logger:
    """
    Attach handlers to the ``quotasync`` logger.

    Calling this again replaces the handlers, so the CLI can reconfigure
    after the config file has been read.

    Args:
        level: Log level name; falls back to QUOTASYNC_LOG_LEVEL, then INFO
        log_file: Target for the rotating file handler
        console_output: Log to stdout
        file_output: Log to ``log_file`` (defaults to ~/.quotasync/logs)

    Returns:
        The configured root logger of the package
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    resolved = parse_level(level or os.getenv("QUOTASYNC_LOG_LEVEL", "INFO"))
    logger.setLevel(resolved)
    logger.propagate = False

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(
            logging.Formatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT)
        )
        console_handler.setLevel(resolved)
        logger.addHandler(console_handler)

    if file_output:
        if log_file is None:
            log_file = Path.home() / ".quotasync" / "logs" / "quotasync.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # Rotate after 10MB, keep 5 backup files
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter(fmt=FILE_FORMAT, datefmt=DATE_FORMAT)
        )
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    return logger
