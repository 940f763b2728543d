"""
Batch confirmation committer.

Commits operator-approved classifications as three independent
sub-batches: income, expense and suppressed. Each sub-batch goes through
the duplicate-prevention gate, one compare-and-set status update, and
only then appends ledger records for the rows that actually moved.
Rule bookkeeping runs afterwards as detached tasks and never affects the
commit outcome.
"""

from decimal import Decimal
from typing import Awaitable, Callable, Optional, Union
import asyncio
import logging
import math

from ..models.results import (
    ConfirmationItem,
    ConfirmationRequest,
    ConfirmationResult,
    LedgerRecord,
    SubBatchResult,
    SuppressionItem,
)
from ..models.transaction import MatchedType, MatchStatus
from ..stores.base import BankTransactionStore, LedgerStore, StatusUpdate
from ..utils.exceptions import StoreReadError, StoreWriteError, ValidationError
from .gate import DuplicatePreventionGate
from .rules import RuleRepository

logger = logging.getLogger(__name__)

Appender = Callable[[list], Awaitable[None]]
Item = Union[ConfirmationItem, SuppressionItem]


class BatchConfirmationCommitter:
    """Writes confirmed classifications without ever double-committing a line."""

    def __init__(
        self,
        bank_store: BankTransactionStore,
        ledger_store: LedgerStore,
        rules: Optional[RuleRepository] = None,
        gate: Optional[DuplicatePreventionGate] = None,
    ):
        """
        Initialize the committer.

        Args:
            bank_store: Authoritative bank transaction store
            ledger_store: Income and expense ledgers
            rules: Rule accessor for usage counts and learning
            gate: Gate to use; defaults to one over `bank_store`
        """
        self.bank_store = bank_store
        self.ledger_store = ledger_store
        self.rules = rules
        self.gate = gate or DuplicatePreventionGate(bank_store)
        self._background: set[asyncio.Task] = set()

    async def confirm(self, request: ConfirmationRequest) -> ConfirmationResult:
        """
        Commit the three sub-batches of a confirmation request in turn.

        A failure in one sub-batch is reported in its result and does not
        stop the others.

        Args:
            request: Approved income, expense and suppression items

        Returns:
            Per-sub-batch counts, success flags and errors
        """
        income = await self._commit_records(
            "Income",
            request.income,
            MatchedType.INCOME_DETAIL,
            self.ledger_store.append_income,
        )
        expense = await self._commit_records(
            "Expense",
            request.expense,
            MatchedType.EXPENSE_DETAIL,
            self.ledger_store.append_expense,
        )
        suppressed = await self._commit_suppressions(request.suppressed)

        result = ConfirmationResult(income=income, expense=expense, suppressed=suppressed)
        if result.error:
            logger.warning(f"Confirmation finished with errors: {result.error}")
        logger.info(f"Confirmation: {result.message}")
        return result

    async def drain(self) -> None:
        """Wait for detached rule bookkeeping tasks to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return len(self._background)

    async def _commit_records(
        self,
        name: str,
        items: list[ConfirmationItem],
        matched_type: MatchedType,
        append: Appender,
    ) -> SubBatchResult:
        result = SubBatchResult(name=name, submitted=len(items))
        valid = self._validate(items, result, _validate_confirmation)
        if not valid:
            return result

        admitted = await self._admit(valid, result)
        if not admitted:
            return result

        updates = [
            StatusUpdate(
                id=txn_id,
                matched_status=MatchStatus.MATCHED,
                matched_type=matched_type.value,
                matched_ids=admitted[txn_id].record.id,
            )
            for txn_id in admitted
        ]
        committed_ids = await self._update_status(updates, result)
        if not committed_ids:
            return result

        committed = [admitted[txn_id] for txn_id in committed_ids]
        records: list[LedgerRecord] = [item.record for item in committed]
        try:
            await append(records)
        except Exception as e:
            logger.error(
                f"{name}: appending {len(records)} ledger record(s) failed after "
                f"status update: {e}"
            )
            result.failed.extend(committed_ids)
            result.error = (
                f"Ledger append failed after status update; "
                f"reconcile manually: {', '.join(committed_ids)}"
            )
            return result

        result.committed = committed_ids
        self._schedule_bookkeeping(committed)
        return result

    async def _commit_suppressions(self, items: list[SuppressionItem]) -> SubBatchResult:
        result = SubBatchResult(name="Suppressed", submitted=len(items))
        valid = self._validate(items, result, _validate_suppression)
        if not valid:
            return result

        admitted = await self._admit(valid, result)
        if not admitted:
            return result

        updates = [
            StatusUpdate(
                id=txn_id,
                matched_status=MatchStatus.SUPPRESSED,
                matched_type=item.matched_type or MatchedType.MANUAL_SUPPRESSED.value,
                suppressed_reason=item.reason or "Suppressed by operator",
            )
            for txn_id, item in admitted.items()
        ]
        result.committed = await self._update_status(updates, result)
        return result

    def _validate(
        self,
        items: list,
        result: SubBatchResult,
        check: Callable[[Item], None],
    ) -> list:
        valid = []
        for item in items:
            try:
                check(item)
            except ValidationError as e:
                logger.warning(f"{result.name}: skipped invalid item {e}")
                result.invalid.append(e.item_id or "")
                continue
            valid.append(item)
        return valid

    async def _admit(self, items: list, result: SubBatchResult) -> dict:
        """Gate the items; returns admitted items keyed by transaction id."""
        try:
            decision = await self.gate.admit(item.transaction.id for item in items)
        except StoreReadError as e:
            result.failed.extend(item.transaction.id for item in items)
            result.error = str(e)
            return {}

        result.conflicts.extend(decision.conflict_ids)
        result.invalid.extend(decision.unknown)

        by_id = {}
        for item in items:
            by_id.setdefault(item.transaction.id, item)
        return {txn_id: by_id[txn_id] for txn_id in decision.admitted}

    async def _update_status(
        self, updates: list[StatusUpdate], result: SubBatchResult
    ) -> list[str]:
        """Run the compare-and-set update; returns the ids that moved."""
        try:
            outcome = await self.bank_store.batch_update_status(updates)
        except Exception as e:
            logger.error(f"{result.name}: status update failed: {e}")
            result.failed.extend(u.id for u in updates)
            result.error = str(StoreWriteError(f"Status update failed: {e}"))
            return []

        if outcome.conflicted:
            logger.info(
                f"{result.name}: {len(outcome.conflicted)} transaction(s) were committed "
                f"concurrently and skipped"
            )
        result.conflicts.extend(outcome.conflicted)
        result.failed.extend(outcome.failed)

        requested = {u.id for u in updates}
        succeeded = set(outcome.success) & requested
        committed = [u.id for u in updates if u.id in succeeded]

        if not committed and outcome.failed:
            result.error = outcome.error or f"Status update failed for {len(outcome.failed)} item(s)"
        return committed

    def _schedule_bookkeeping(self, items: list[ConfirmationItem]) -> None:
        if self.rules is None:
            return
        for item in items:
            if item.rule is not None:
                self._spawn(
                    self.rules.record_usage(item.rule.id),
                    f"usage count of rule {item.rule.id}",
                )
            elif item.learn:
                self._spawn(
                    self.rules.learn(
                        item.transaction,
                        item.record.code,
                        item.target_name or str(item.record.code),
                    ),
                    f"rule learning for {item.transaction.id}",
                )

    def _spawn(self, coro: Awaitable, description: str) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning(f"Background {description} failed: {exc}")

        task.add_done_callback(_done)


def _validate_confirmation(item: ConfirmationItem) -> None:
    txn_id = item.transaction.id if item.transaction else None
    if not txn_id:
        raise ValidationError(None, "missing transaction id")
    record = item.record
    if record is None:
        raise ValidationError(txn_id, "missing ledger record")
    if not record.id:
        raise ValidationError(txn_id, "ledger record has no id")
    if record.date is None:
        raise ValidationError(txn_id, "ledger record has no date")
    if record.code is None:
        raise ValidationError(txn_id, "ledger record has no account code")
    amount = record.amount
    if isinstance(amount, bool) or not isinstance(amount, (Decimal, int, float)):
        raise ValidationError(txn_id, f"amount {amount!r} is not a number")
    finite = amount.is_finite() if isinstance(amount, Decimal) else math.isfinite(amount)
    if not finite:
        raise ValidationError(txn_id, f"amount {amount} is not finite")
    if amount <= 0:
        raise ValidationError(txn_id, f"amount {amount} must be positive")


def _validate_suppression(item: SuppressionItem) -> None:
    if item.transaction is None or not item.transaction.id:
        raise ValidationError(None, "missing transaction id")
