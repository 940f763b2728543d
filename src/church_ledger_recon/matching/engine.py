"""
Auto-match orchestrator.
Classifies pending bank transactions into auto-matched, suppressed and
needs-review, without writing anything.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union
import logging

from ..config import ReconConfig
from ..models.results import (
    AutoMatchItem,
    ClassificationResult,
    ReviewItem,
    ReviewReason,
    RuleCandidate,
    SuppressedItem,
)
from ..models.transaction import (
    BankTransaction,
    CashOfferingBatch,
    ExpenseRecord,
    IncomeRecord,
    MatchedType,
    MatchingRule,
    RuleType,
    generate_id,
    now_kst,
)
from ..stores.base import BankTransactionStore, CashOfferingSource
from .lump_sum import CashOfferingReconciler
from .matcher import PatternMatcher
from .rules import RuleRepository, rule_type_for

logger = logging.getLogger(__name__)

RuleSet = Union[dict[RuleType, list[MatchingRule]], list[MatchingRule]]


class AutoMatchOrchestrator:
    """
    Classifies each pending bank transaction.

    Classification is a pure function of the pending transactions, the
    rule set and the cash offerings of the period, so running it twice
    over unchanged inputs gives the same answer. Writing the outcome is
    left to the batch confirmation committer.
    """

    def __init__(
        self,
        config: ReconConfig,
        bank_store: Optional[BankTransactionStore] = None,
        rules: Optional[RuleRepository] = None,
        cash_source: Optional[CashOfferingSource] = None,
        cash_reconciler: Optional[CashOfferingReconciler] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Application configuration
            bank_store: Store to load pending transactions from (for `run`)
            rules: Rule accessor (for `run`)
            cash_source: Source of cash offerings (for `run`)
            cash_reconciler: Reconciler used to pick the cash deposit
        """
        self.config = config
        self.bank_store = bank_store
        self.rules = rules
        self.cash_source = cash_source
        self.cash_reconciler = cash_reconciler
        self.matcher = PatternMatcher(max_candidates=config.matching.max_candidates)

    async def run(
        self, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> ClassificationResult:
        """
        Load current state and classify it.

        Cash offerings are only reconciled when a date range is given.
        """
        if self.bank_store is None or self.rules is None:
            raise RuntimeError("AutoMatchOrchestrator.run needs a bank store and rules")

        pending = await self.bank_store.list_pending()
        grouped = await self.rules.all_rules()

        cash_batch: Optional[CashOfferingBatch] = None
        if self.cash_source is not None and start_date and end_date:
            offerings = await self.cash_source.list_offerings(start_date, end_date)
            if offerings:
                cash_batch = CashOfferingBatch(start_date, end_date, offerings)

        return self.classify(pending, grouped, cash_batch)

    def classify(
        self,
        pending: list[BankTransaction],
        rules: RuleSet,
        cash_batch: Optional[CashOfferingBatch] = None,
    ) -> ClassificationResult:
        """
        Classify pending transactions.

        Args:
            pending: Transactions to classify, in ledger order
            rules: Rules grouped by type, or a flat list
            cash_batch: Cash offerings whose bank deposit should be suppressed

        Returns:
            Classification result
        """
        grouped = _group_rules(rules)
        result = ClassificationResult()
        now = now_kst()

        open_txns = [t for t in pending if t.is_pending]
        skipped = len(pending) - len(open_txns)
        if skipped:
            logger.debug(f"Skipped {skipped} transaction(s) that are no longer pending")

        cash_deposit_id: Optional[str] = None
        cash_reason = ""
        cash_batch_used = cash_batch is not None and self.cash_reconciler is not None
        if cash_batch_used:
            plan = self.cash_reconciler.plan_batch(cash_batch, open_txns)
            if plan.deposit_to_suppress is not None:
                cash_deposit_id = plan.deposit_to_suppress.id
                cash_reason = plan.reason
            elif plan.warning:
                result.warnings.append(plan.warning)

        first_by_key: dict[str, str] = {}

        for txn in open_txns:
            if txn.id == cash_deposit_id:
                result.suppressed.append(
                    SuppressedItem(txn, cash_reason, MatchedType.CASH_OFFERING_BATCH.value)
                )
                continue

            if self.config.suppression.detect_duplicate_lines:
                first_id = first_by_key.setdefault(txn.duplicate_key, txn.id)
                if first_id != txn.id:
                    result.suppressed.append(
                        SuppressedItem(
                            txn,
                            f"Duplicate of bank line {first_id}",
                            MatchedType.DUPLICATE_LINE.value,
                        )
                    )
                    continue

            covered = cash_batch_used and cash_batch.covers(txn)
            channel_reason = self._channel_suppression(txn, cash_covered=covered)
            if channel_reason:
                result.suppressed.append(
                    SuppressedItem(txn, channel_reason, MatchedType.CHANNEL_SUPPRESSED.value)
                )
                continue

            self._classify_one(txn, grouped, result, now)

        logger.info(
            f"Classified {len(open_txns)} pending transaction(s): "
            f"{len(result.auto_matched)} auto-matched, {len(result.suppressed)} suppressed, "
            f"{len(result.needs_review)} need review"
        )
        return result

    def _classify_one(
        self,
        txn: BankTransaction,
        grouped: dict[RuleType, list[MatchingRule]],
        result: ClassificationResult,
        now: datetime,
    ) -> None:
        rule_type = rule_type_for(txn)
        if rule_type is None:
            result.needs_review.append(ReviewItem(txn, ReviewReason.NO_AMOUNT))
            return

        candidates = self.matcher.rank_transaction(txn, grouped.get(rule_type, []))
        reason = self._review_reason(candidates)

        if reason is None:
            rule = candidates[0].rule
            if rule_type is RuleType.BANK_INCOME:
                record = income_from_transaction(txn, rule, now)
            else:
                record = expense_from_transaction(txn, rule, now)
            result.auto_matched.append(AutoMatchItem(txn, rule, record))
            return

        item = ReviewItem(txn, reason, suggestions=[c.rule for c in candidates])
        if rule_type is RuleType.BANK_INCOME:
            item.default_code, item.default_name = self.default_income_code(txn.deposit)
        result.needs_review.append(item)

    def _review_reason(self, candidates: list[RuleCandidate]) -> Optional[ReviewReason]:
        """None when the top candidate may be applied without review."""
        settings = self.config.matching
        if not candidates:
            return ReviewReason.NO_CANDIDATE
        top = candidates[0]
        if top.score < settings.auto_match_threshold:
            return ReviewReason.BELOW_THRESHOLD
        # Rounded so 0.95 - 0.90 and 0.90 - 0.85 both land on the margin.
        if len(candidates) > 1 and round(top.score - candidates[1].score, 6) <= round(
            settings.ambiguity_margin, 6
        ):
            return ReviewReason.AMBIGUOUS
        return None

    def _channel_suppression(
        self, txn: BankTransaction, cash_covered: bool = False
    ) -> Optional[str]:
        """
        Reason when the line is settled through the cash or card channel.

        Deposits covered by a cash batch of the period are left to the batch
        plan, which suppresses at most the one within tolerance.
        """
        text = txn.search_text
        settings = self.config.suppression
        cash_box = any(k.lower() in text for k in settings.cash_box_keywords)
        if txn.is_deposit and cash_box and not cash_covered:
            return "Cash box deposit, posted from cash offerings"
        if txn.is_withdrawal and any(k.lower() in text for k in settings.card_payment_keywords):
            return "Card payment, posted from card statement"
        return None

    def default_income_code(self, amount: Decimal) -> tuple[int, str]:
        """
        Suggest an offering code for a deposit no rule explains.

        Small gifts are Sunday offerings; amounts that are not round
        ten-thousands are usually tithes; the rest thanksgiving offerings.
        """
        codes = self.config.matching.default_income_codes
        if amount < self.config.matching.small_offering_limit:
            choice = codes["small"]
        elif amount % 10000 != 0:
            choice = codes["tithe"]
        else:
            choice = codes["thanksgiving"]
        return choice.code, choice.name


def _group_rules(
    rules: RuleSet,
) -> dict[RuleType, list[MatchingRule]]:
    if isinstance(rules, dict):
        return {RuleType(k): list(v) for k, v in rules.items()}
    grouped: dict[RuleType, list[MatchingRule]] = {t: [] for t in RuleType}
    for rule in rules:
        grouped[rule.rule_type].append(rule)
    return grouped


def income_from_transaction(
    txn: BankTransaction,
    rule: MatchingRule,
    now: Optional[datetime] = None,
    created_by: str = "auto_matcher",
) -> IncomeRecord:
    """Draft income record for a deposit explained by a rule."""
    donor = txn.detail or txn.memo or rule.target_name
    return IncomeRecord(
        id=generate_id("INC"),
        date=txn.transaction_date,
        amount=txn.deposit,
        code=rule.target_code,
        source="계좌이체",
        donor_name=donor,
        representative=donor,
        note=f"{txn.description} | {txn.detail}",
        input_method="은행원장",
        created_at=now or now_kst(),
        created_by=created_by,
        transaction_date=txn.transaction_date,
    )


def expense_from_transaction(
    txn: BankTransaction,
    rule: MatchingRule,
    now: Optional[datetime] = None,
    created_by: str = "auto_matcher",
) -> ExpenseRecord:
    """Draft expense record for a withdrawal explained by a rule."""
    return ExpenseRecord(
        id=generate_id("EXP"),
        date=txn.transaction_date,
        amount=txn.withdrawal,
        code=rule.target_code,
        payment_method="계좌이체",
        vendor=txn.memo or txn.detail or txn.description or "기타",
        description=txn.detail or txn.description or "",
        note=txn.description or "",
        created_at=now or now_kst(),
        created_by=created_by,
        transaction_date=txn.transaction_date,
    )
