"""Logging setup for the reconciliation engine and its CLI."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER_NAME = "church_ledger_recon"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"


def resolve_level(level: Union[int, str], verbose: bool = False) -> int:
    """
    Turn a configured level into a logging constant.

    Unknown names fall back to INFO. ``verbose`` always wins with DEBUG.
    """
    if verbose:
        return logging.DEBUG
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    log_format: Optional[str] = None,
    verbose: bool = False,
) -> logging.Logger:
    """
    Configure the package logger.

    Handlers are replaced on every call so repeated CLI invocations in one
    process do not duplicate output.

    Args:
        level: Level constant or name such as "INFO"
        log_file: Optional rotating log file, always written at DEBUG
        log_format: Console format, defaults to DEFAULT_FORMAT
        verbose: Force DEBUG on the console

    Returns:
        The configured ``church_ledger_recon`` logger
    """
    console_level = resolve_level(level, verbose)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG if log_file else console_level)
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(log_format or DEFAULT_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger
