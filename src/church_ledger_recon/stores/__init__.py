"""Store interfaces and adapters."""

from .base import (
    BankTransactionStore,
    BatchUpdateResult,
    CashOfferingSource,
    LedgerStore,
    RuleStore,
    StatusUpdate,
)
from .memory import InMemoryStore
from .workbook import WorkbookStore

__all__ = [
    "BankTransactionStore",
    "BatchUpdateResult",
    "CashOfferingSource",
    "LedgerStore",
    "RuleStore",
    "StatusUpdate",
    "InMemoryStore",
    "WorkbookStore",
]
