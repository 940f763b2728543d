"""Tests for logging setup."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from church_ledger_recon.utils.logging_config import (
    ROOT_LOGGER_NAME,
    resolve_level,
    setup_logging,
)


def test_resolve_level_accepts_names_and_constants() -> None:
    assert resolve_level("error") == logging.ERROR
    assert resolve_level(" Warning ") == logging.WARNING
    assert resolve_level(logging.CRITICAL) == logging.CRITICAL
    assert resolve_level("chatty") == logging.INFO
    assert resolve_level("ERROR", verbose=True) == logging.DEBUG


def test_setup_replaces_handlers() -> None:
    setup_logging("INFO")
    logger = setup_logging("ERROR")

    assert logger.name == ROOT_LOGGER_NAME
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.ERROR


def test_log_file_captures_debug(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "recon.log"

    logger = setup_logging("WARNING", log_file=log_file)
    logging.getLogger(f"{ROOT_LOGGER_NAME}.matching").debug("rule 십일 scored")
    for handler in logger.handlers:
        handler.flush()

    assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    assert "rule 십일 scored" in log_file.read_text(encoding="utf-8")
    for handler in logger.handlers:
        handler.close()
