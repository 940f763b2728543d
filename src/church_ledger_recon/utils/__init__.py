"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    ConfigurationError,
    BankLedgerParseError,
    CashOfferingParseError,
    ValidationError,
    StateConflictError,
    StoreReadError,
    StoreWriteError,
    ReconciliationMismatch,
)
from .logging_config import resolve_level, setup_logging

__all__ = [
    "ReconciliationError",
    "ConfigurationError",
    "BankLedgerParseError",
    "CashOfferingParseError",
    "ValidationError",
    "StateConflictError",
    "StoreReadError",
    "StoreWriteError",
    "ReconciliationMismatch",
    "resolve_level",
    "setup_logging",
]
