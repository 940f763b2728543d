"""
Lump-sum reconcilers.

Some money reaches the ledgers line by line through another channel
(cash counted from the offering box, card purchases entered from the card
statement) while the bank shows it as one aggregate line. These
reconcilers find that single bank line and suppress it so the money is not
counted twice.
"""

from abc import ABC, abstractmethod
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
import logging

from ..config import LumpSumSettings
from ..models.results import LumpSumPlan, LumpSumSyncResult
from ..models.transaction import (
    BankTransaction,
    CashOffering,
    CashOfferingBatch,
    IncomeRecord,
    MatchedType,
    MatchStatus,
    generate_id,
    now_kst,
)
from ..stores.base import (
    BankTransactionStore,
    CashOfferingSource,
    LedgerStore,
    StatusUpdate,
)
from ..utils.exceptions import ReconciliationMismatch, StoreReadError
from .gate import DuplicatePreventionGate

logger = logging.getLogger(__name__)


class LumpSumReconciler(ABC):
    """Matches an aggregate total to exactly one pending bank line."""

    channel: str = ""
    matched_type: MatchedType

    def __init__(self, settings: LumpSumSettings):
        self.settings = settings

    @abstractmethod
    def line_amount(self, transaction: BankTransaction) -> Decimal:
        """Amount of the bank line on the side this channel settles."""

    def is_candidate(self, transaction: BankTransaction, start: date, end: date) -> bool:
        """Pending line in range, on the right side, carrying an indicator keyword."""
        if not transaction.is_pending:
            return False
        if not start <= transaction.transaction_date <= end:
            return False
        if self.line_amount(transaction) <= 0:
            return False
        text = transaction.search_text
        return any(k.lower() in text for k in self.settings.indicator_keywords)

    def plan(
        self,
        total: Decimal,
        count: int,
        pending: list[BankTransaction],
        start: date,
        end: date,
        reason: str,
    ) -> LumpSumPlan:
        """
        Decide which bank line, if any, the total accounts for.

        Only a single line within tolerance is suppressed; several equally
        plausible lines are left for an operator.
        """
        candidates = [t for t in pending if self.is_candidate(t, start, end)]
        matches = [
            t for t in candidates if abs(self.line_amount(t) - total) < self.settings.tolerance
        ]
        plan = LumpSumPlan(
            total=total,
            count=count,
            candidates=candidates,
            matches=matches,
            reason=reason,
        )

        if plan.deposit_to_suppress is None:
            if total > self.settings.materiality_threshold:
                mismatch = ReconciliationMismatch(self.channel, total, len(matches))
                plan.warning = str(mismatch)
                logger.warning(plan.warning)
            else:
                logger.debug(
                    f"{self.channel} total {total} below materiality, no warning raised"
                )
        else:
            logger.info(
                f"{self.channel} total {total:,.0f} matches bank line "
                f"{plan.deposit_to_suppress.id} ({self.line_amount(plan.deposit_to_suppress):,.0f})"
            )

        return plan

    async def apply(
        self,
        plan: LumpSumPlan,
        store: BankTransactionStore,
        gate: DuplicatePreventionGate,
        result: LumpSumSyncResult,
    ) -> None:
        """Suppress the planned line through the gate; failures become warnings."""
        target = plan.deposit_to_suppress
        if target is None:
            if plan.warning:
                result.warnings.append(plan.warning)
            return

        try:
            decision = await gate.admit([target.id])
        except StoreReadError as e:
            result.warnings.append(f"{self.channel}: bank line {target.id} not suppressed: {e}")
            return

        if not decision.admitted:
            result.warnings.append(
                f"{self.channel}: bank line {target.id} was already processed"
            )
            return

        update = StatusUpdate(
            id=target.id,
            matched_status=MatchStatus.SUPPRESSED,
            matched_type=self.matched_type.value,
            suppressed_reason=plan.reason,
        )
        try:
            outcome = await store.batch_update_status([update])
        except Exception as e:
            logger.error(f"Suppressing {target.id} failed: {e}")
            result.warnings.append(f"{self.channel}: bank line {target.id} not suppressed: {e}")
            return

        if target.id in outcome.success:
            result.suppressed_bank_transactions += 1
            result.suppressed_ids.append(target.id)
        elif target.id in outcome.conflicted:
            result.warnings.append(
                f"{self.channel}: bank line {target.id} was already processed"
            )
        else:
            result.warnings.append(
                f"{self.channel}: bank line {target.id} not suppressed: "
                f"{outcome.error or 'write failed'}"
            )


class CashOfferingReconciler(LumpSumReconciler):
    """
    Reconciles offering-box cash against the bank deposit that carried it.

    Individual offerings are always posted to the income ledger; the lump
    deposit is suppressed only when exactly one candidate is within
    tolerance of their total.
    """

    channel = "Cash offering"
    matched_type = MatchedType.CASH_OFFERING_BATCH

    def __init__(
        self,
        bank_store: BankTransactionStore,
        ledger_store: LedgerStore,
        source: CashOfferingSource,
        gate: DuplicatePreventionGate,
        settings: Optional[LumpSumSettings] = None,
    ):
        super().__init__(
            settings
            or LumpSumSettings(
                tolerance=Decimal("1000"),
                materiality_threshold=Decimal("10000"),
                indicator_keywords=["헌금함", "헌금", "현금"],
            )
        )
        self.bank_store = bank_store
        self.ledger_store = ledger_store
        self.source = source
        self.gate = gate

    def line_amount(self, transaction: BankTransaction) -> Decimal:
        return transaction.deposit

    def plan_batch(self, batch: CashOfferingBatch, pending: list[BankTransaction]) -> LumpSumPlan:
        """Plan the suppression for one batch of offerings."""
        total = batch.total
        reason = f"Cash offering batch: {batch.count} entries, total {total:,.0f}"
        return self.plan(total, batch.count, pending, batch.start_date, batch.end_date, reason)

    async def sync(self, start_date: date, end_date: date) -> LumpSumSyncResult:
        """
        Post the period's cash offerings and suppress their bank deposit.

        Args:
            start_date: First offering date (inclusive)
            end_date: Last offering date (inclusive)

        Returns:
            Counts of posted records and suppressed deposits, plus warnings
        """
        offerings = await self.source.list_offerings(start_date, end_date)
        batch = CashOfferingBatch(start_date, end_date, offerings)
        result = LumpSumSyncResult(total_amount=batch.total)

        if not offerings:
            logger.info(f"No cash offerings between {start_date} and {end_date}")
            return result

        pending = await self.bank_store.list_pending()
        plan = self.plan_batch(batch, pending)
        await self.apply(plan, self.bank_store, self.gate, result)

        records = [offering_to_income(o) for o in offerings]
        try:
            await self.ledger_store.append_income(records)
        except Exception as e:
            logger.error(f"Posting {len(records)} cash offering record(s) failed: {e}")
            result.warnings.append(f"Cash offering records were not posted: {e}")
            return result

        result.processed = len(records)
        logger.info(
            f"Synced {result.processed} cash offering(s), total {batch.total:,.0f}, "
            f"{result.suppressed_bank_transactions} deposit(s) suppressed"
        )
        return result


class CardPaymentReconciler(LumpSumReconciler):
    """
    Reconciles a card statement total against the card-payment withdrawal.

    Card purchases are entered individually from the statement, so the
    monthly withdrawal to the card company is suppressed when found.
    """

    channel = "Card payment"
    matched_type = MatchedType.CARD_PAYMENT_BATCH

    def __init__(
        self,
        bank_store: BankTransactionStore,
        gate: DuplicatePreventionGate,
        settings: Optional[LumpSumSettings] = None,
    ):
        super().__init__(
            settings
            or LumpSumSettings(
                tolerance=Decimal("1000"),
                search_window_days=30,
                indicator_keywords=["nh카드", "신용카드", "체크카드", "카드결제", "카드대금"],
            )
        )
        self.bank_store = bank_store
        self.gate = gate

    def line_amount(self, transaction: BankTransaction) -> Decimal:
        return transaction.withdrawal

    def plan_billing(
        self, total: Decimal, billing_date: date, count: int, pending: list[BankTransaction]
    ) -> LumpSumPlan:
        """Plan the suppression for one card billing."""
        window = timedelta(days=self.settings.search_window_days)
        reason = f"Card payment batch: total {total:,.0f}, billing date {billing_date.isoformat()}"
        return self.plan(
            total, count, pending, billing_date - window, billing_date + window, reason
        )

    async def sync(
        self, billing_date: date, total: Decimal, count: int = 0
    ) -> LumpSumSyncResult:
        """
        Suppress the bank withdrawal that paid a card statement.

        Args:
            billing_date: Statement billing date
            total: Sum of the statement's purchases
            count: Number of purchases on the statement

        Returns:
            Suppression count and warnings
        """
        result = LumpSumSyncResult(processed=count, total_amount=total)
        pending = await self.bank_store.list_pending()
        plan = self.plan_billing(total, billing_date, count, pending)
        await self.apply(plan, self.bank_store, self.gate, result)
        return result


def offering_to_income(offering: CashOffering) -> IncomeRecord:
    """Build the income ledger entry for one cash offering."""
    return IncomeRecord(
        id=generate_id("INC"),
        date=offering.date,
        amount=offering.amount,
        code=offering.code,
        source=offering.source or "헌금함",
        donor_name=offering.attribution,
        representative=offering.attribution,
        note=offering.note,
        input_method="현금헌금",
        created_at=now_kst(),
        created_by="cash_sync",
        transaction_date=offering.date,
    )
