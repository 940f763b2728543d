"""
Collaborator interfaces for the backing stores.

The engine only talks to persistence through these four abstractions, so
any backend works as long as `batch_update_status` reports per-item
outcomes and only moves rows that are still pending.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from ..models.transaction import (
    BankTransaction,
    CashOffering,
    ExpenseRecord,
    IncomeRecord,
    MatchingRule,
    MatchStatus,
    RuleType,
)


@dataclass(frozen=True)
class StatusUpdate:
    """A requested `pending -> matched|suppressed` transition."""

    id: str
    matched_status: MatchStatus
    matched_type: Optional[str] = None
    matched_ids: Optional[str] = None
    suppressed_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if not MatchStatus(self.matched_status).is_terminal:
            raise ValueError(f"Status update for {self.id} must target a terminal status")


@dataclass
class BatchUpdateResult:
    """
    Per-item outcome of a batch status update.

    `conflicted` holds ids whose live row was no longer pending at write
    time; `failed` holds ids that could not be written at all.
    """

    success: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    conflicted: list[str] = field(default_factory=list)
    error: Optional[str] = None


class BankTransactionStore(ABC):
    """Authoritative store of imported bank ledger lines."""

    @abstractmethod
    async def list_pending(self) -> list[BankTransaction]:
        """Return transactions whose status is pending, in ledger order."""

    @abstractmethod
    async def list_all(self) -> list[BankTransaction]:
        """Return every stored transaction, in ledger order."""

    @abstractmethod
    async def get_status_map(self, ids: Iterable[str]) -> dict[str, MatchStatus]:
        """Return the live status of each known id; unknown ids are omitted."""

    @abstractmethod
    async def batch_update_status(self, updates: list[StatusUpdate]) -> BatchUpdateResult:
        """
        Apply status transitions with compare-and-set semantics.

        Only rows that are pending at write time are changed.
        """

    @abstractmethod
    async def append_transactions(self, transactions: list[BankTransaction]) -> int:
        """Append newly imported transactions; returns how many were stored."""


class LedgerStore(ABC):
    """Append-only income and expense ledgers."""

    @abstractmethod
    async def append_income(self, records: list[IncomeRecord]) -> None:
        """Append income records."""

    @abstractmethod
    async def append_expense(self, records: list[ExpenseRecord]) -> None:
        """Append expense records."""


class RuleStore(ABC):
    """Persisted matching rules."""

    @abstractmethod
    async def list_rules(self, rule_type: Optional[RuleType] = None) -> list[MatchingRule]:
        """Return rules in stored order, optionally of one type."""

    @abstractmethod
    async def increment_usage(self, rule_id: str) -> None:
        """Add one to the rule's usage count."""

    @abstractmethod
    async def add_rule(self, rule: MatchingRule) -> str:
        """Persist a new rule and return its id."""

    @abstractmethod
    async def update_confidence(self, rule_id: str, confidence: float) -> None:
        """Replace the confidence of an existing rule."""


class CashOfferingSource(ABC):
    """Individually attributed cash offerings counted from the offering box."""

    @abstractmethod
    async def list_offerings(self, start_date: date, end_date: date) -> list[CashOffering]:
        """Return offerings dated within [start_date, end_date]."""
