"""In-memory implementation of every store interface."""

from dataclasses import replace
from datetime import date
from typing import Iterable, Optional
import asyncio
import logging

from ..models.transaction import (
    BankTransaction,
    CashOffering,
    ExpenseRecord,
    IncomeRecord,
    MatchingRule,
    MatchStatus,
    RuleType,
    generate_id,
    now_kst,
)
from .base import (
    BankTransactionStore,
    BatchUpdateResult,
    CashOfferingSource,
    LedgerStore,
    RuleStore,
    StatusUpdate,
)

logger = logging.getLogger(__name__)


class InMemoryStore(BankTransactionStore, LedgerStore, RuleStore, CashOfferingSource):
    """
    Process-local store backing all four collaborator interfaces.

    Every read returns copies so callers can never mutate stored state
    outside of `batch_update_status`.
    """

    def __init__(
        self,
        transactions: Optional[list[BankTransaction]] = None,
        rules: Optional[list[MatchingRule]] = None,
        offerings: Optional[list[CashOffering]] = None,
    ):
        self._transactions: dict[str, BankTransaction] = {}
        for txn in transactions or []:
            self._transactions[txn.id] = replace(txn)
        self._rules: dict[str, MatchingRule] = {r.id: replace(r) for r in rules or []}
        self._offerings: list[CashOffering] = list(offerings or [])
        self.income: list[IncomeRecord] = []
        self.expense: list[ExpenseRecord] = []
        self._lock = asyncio.Lock()

    # Bank transactions

    async def list_pending(self) -> list[BankTransaction]:
        return [replace(t) for t in self._transactions.values() if t.is_pending]

    async def list_all(self) -> list[BankTransaction]:
        return [replace(t) for t in self._transactions.values()]

    async def get_status_map(self, ids: Iterable[str]) -> dict[str, MatchStatus]:
        # Yield like a network round trip would
        await asyncio.sleep(0)
        return {
            txn_id: self._transactions[txn_id].matched_status
            for txn_id in ids
            if txn_id in self._transactions
        }

    async def batch_update_status(self, updates: list[StatusUpdate]) -> BatchUpdateResult:
        await asyncio.sleep(0)
        result = BatchUpdateResult()
        async with self._lock:
            for update in updates:
                txn = self._transactions.get(update.id)
                if txn is None:
                    logger.warning(f"Status update for unknown transaction {update.id}")
                    result.failed.append(update.id)
                    continue
                if txn.matched_status is not MatchStatus.PENDING:
                    result.conflicted.append(update.id)
                    continue
                self._apply(txn, update)
                result.success.append(update.id)
        return result

    @staticmethod
    def _apply(txn: BankTransaction, update: StatusUpdate) -> None:
        txn.matched_status = MatchStatus(update.matched_status)
        if update.matched_type is not None:
            txn.matched_type = update.matched_type
        if update.matched_ids is not None:
            txn.matched_ids = update.matched_ids
        if txn.matched_status is MatchStatus.SUPPRESSED:
            txn.suppressed = True
            txn.suppressed_reason = update.suppressed_reason

    async def append_transactions(self, transactions: list[BankTransaction]) -> int:
        stored = 0
        for txn in transactions:
            if txn.id in self._transactions:
                logger.warning(f"Skipping transaction with existing id {txn.id}")
                continue
            self._transactions[txn.id] = replace(txn)
            stored += 1
        return stored

    def get(self, transaction_id: str) -> Optional[BankTransaction]:
        txn = self._transactions.get(transaction_id)
        return replace(txn) if txn else None

    # Ledgers

    async def append_income(self, records: list[IncomeRecord]) -> None:
        self.income.extend(records)

    async def append_expense(self, records: list[ExpenseRecord]) -> None:
        self.expense.extend(records)

    # Rules

    async def list_rules(self, rule_type: Optional[RuleType] = None) -> list[MatchingRule]:
        return [
            replace(r)
            for r in self._rules.values()
            if rule_type is None or r.rule_type == rule_type
        ]

    async def increment_usage(self, rule_id: str) -> None:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise KeyError(f"Matching rule {rule_id} not found")
        rule.usage_count += 1
        rule.updated_at = now_kst()

    async def add_rule(self, rule: MatchingRule) -> str:
        rule_id = rule.id or generate_id("RULE")
        self._rules[rule_id] = replace(rule, id=rule_id)
        return rule_id

    async def update_confidence(self, rule_id: str, confidence: float) -> None:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise KeyError(f"Matching rule {rule_id} not found")
        self._rules[rule_id] = replace(rule, confidence=confidence, updated_at=now_kst())

    # Cash offerings

    async def list_offerings(self, start_date: date, end_date: date) -> list[CashOffering]:
        return [o for o in self._offerings if start_date <= o.date <= end_date]

    async def add_offerings(self, offerings: list[CashOffering]) -> None:
        self._offerings.extend(offerings)
