"""Result and request models produced and consumed by the matching engine."""

from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from .transaction import (
    BankTransaction,
    ExpenseRecord,
    IncomeRecord,
    MatchedType,
    MatchingRule,
)

LedgerRecord = Union[IncomeRecord, ExpenseRecord]


class ReviewReason(str, Enum):
    """Why a transaction was left for an operator."""

    NO_CANDIDATE = "no_candidate"
    BELOW_THRESHOLD = "below_threshold"
    AMBIGUOUS = "ambiguous"
    NO_AMOUNT = "no_amount"


@dataclass(frozen=True)
class RuleCandidate:
    """A rule whose pattern hit the transaction text."""

    rule: MatchingRule
    score: float
    match_kind: str  # "pattern" or "token"


@dataclass
class AutoMatchItem:
    """A transaction confidently explained by a single rule."""

    transaction: BankTransaction
    rule: MatchingRule
    record: LedgerRecord

    @property
    def is_income(self) -> bool:
        return isinstance(self.record, IncomeRecord)


@dataclass
class SuppressedItem:
    """A transaction already accounted for through another channel."""

    transaction: BankTransaction
    reason: str
    matched_type: str


@dataclass
class ReviewItem:
    """A transaction that needs an operator's decision."""

    transaction: BankTransaction
    reason: ReviewReason
    suggestions: list[MatchingRule] = field(default_factory=list)
    default_code: Optional[int] = None
    default_name: Optional[str] = None


@dataclass
class ClassificationResult:
    """Output of one auto-match run over the pending transactions."""

    auto_matched: list[AutoMatchItem] = field(default_factory=list)
    suppressed: list[SuppressedItem] = field(default_factory=list)
    needs_review: list[ReviewItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def signature(self) -> tuple:
        """
        Identity of the classification, independent of draft record ids.

        Two runs over the same inputs must produce equal signatures.
        """
        return (
            tuple((i.transaction.id, i.rule.id, type(i.record).__name__) for i in self.auto_matched),
            tuple((i.transaction.id, i.matched_type, i.reason) for i in self.suppressed),
            tuple(
                (i.transaction.id, i.reason.value, tuple(r.id for r in i.suggestions))
                for i in self.needs_review
            ),
        )

    def summary(self) -> dict[str, int]:
        income = sum(1 for i in self.auto_matched if i.is_income)
        return {
            "incomeCount": income,
            "expenseCount": len(self.auto_matched) - income,
            "suppressedCount": len(self.suppressed),
            "needsReviewCount": len(self.needs_review),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "autoMatched": [to_jsonable(i) for i in self.auto_matched],
            "suppressed": [to_jsonable(i) for i in self.suppressed],
            "needsReview": [to_jsonable(i) for i in self.needs_review],
            "warnings": list(self.warnings),
            "summary": self.summary(),
        }


@dataclass
class ConfirmationItem:
    """
    An operator-approved income or expense classification.

    `rule` is set when the classification came from a matching rule;
    manual classifications leave it empty and may be learned as new rules.
    """

    transaction: BankTransaction
    record: LedgerRecord
    rule: Optional[MatchingRule] = None
    target_name: str = ""
    learn: bool = True


@dataclass
class SuppressionItem:
    """An operator-approved suppression of a bank line."""

    transaction: BankTransaction
    reason: str = ""
    matched_type: Optional[str] = None


@dataclass
class ConfirmationRequest:
    """The three independent sub-batches of one confirmation."""

    income: list[ConfirmationItem] = field(default_factory=list)
    expense: list[ConfirmationItem] = field(default_factory=list)
    suppressed: list[SuppressionItem] = field(default_factory=list)

    @classmethod
    def from_classification(cls, result: ClassificationResult) -> "ConfirmationRequest":
        """
        Confirm everything the orchestrator decided without review.

        A cash-batch deposit is left out: `CashOfferingReconciler.sync`
        suppresses it together with posting the offerings.
        """
        return cls(
            income=[
                ConfirmationItem(i.transaction, i.record, i.rule, learn=False)
                for i in result.auto_matched
                if i.is_income
            ],
            expense=[
                ConfirmationItem(i.transaction, i.record, i.rule, learn=False)
                for i in result.auto_matched
                if not i.is_income
            ],
            suppressed=[
                SuppressionItem(i.transaction, i.reason, i.matched_type)
                for i in result.suppressed
                if i.matched_type != MatchedType.CASH_OFFERING_BATCH.value
            ],
        )


@dataclass
class SubBatchResult:
    """Outcome of committing one sub-batch."""

    name: str
    submitted: int = 0
    committed: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.committed)

    @property
    def success(self) -> bool:
        """A sub-batch succeeds when at least one item was committed."""
        return self.count > 0

    def describe(self) -> str:
        parts = [f"{self.name}: {self.count} committed"]
        if self.conflicts:
            parts.append(f"{len(self.conflicts)} already processed")
        if self.failed:
            parts.append(f"{len(self.failed)} failed")
        if self.invalid:
            parts.append(f"{len(self.invalid)} invalid")
        return ", ".join(parts)


@dataclass
class ConfirmationResult:
    """Aggregated outcome of a batch confirmation."""

    income: SubBatchResult
    expense: SubBatchResult
    suppressed: SubBatchResult

    @property
    def income_count(self) -> int:
        return self.income.count

    @property
    def expense_count(self) -> int:
        return self.expense.count

    @property
    def suppressed_count(self) -> int:
        return self.suppressed.count

    @property
    def income_success(self) -> bool:
        return self.income.success

    @property
    def expense_success(self) -> bool:
        return self.expense.success

    @property
    def suppressed_success(self) -> bool:
        return self.suppressed.success

    @property
    def success(self) -> bool:
        """Partially successful whenever any sub-batch succeeded."""
        return self.income_success or self.expense_success or self.suppressed_success

    @property
    def sub_batches(self) -> list[SubBatchResult]:
        return [self.income, self.expense, self.suppressed]

    @property
    def message(self) -> str:
        submitted = [b for b in self.sub_batches if b.submitted]
        if not submitted:
            return "Nothing to confirm"
        return "; ".join(b.describe() for b in submitted)

    @property
    def error(self) -> Optional[str]:
        errors = [f"{b.name}: {b.error}" for b in self.sub_batches if b.error]
        return "; ".join(errors) if errors else None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "incomeCount": self.income_count,
            "expenseCount": self.expense_count,
            "suppressedCount": self.suppressed_count,
            "incomeSuccess": self.income_success,
            "expenseSuccess": self.expense_success,
            "suppressedSuccess": self.suppressed_success,
            "message": self.message,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class LumpSumPlan:
    """Decision on which single bank line an aggregate total accounts for."""

    total: Decimal
    count: int
    candidates: list[BankTransaction] = field(default_factory=list)
    matches: list[BankTransaction] = field(default_factory=list)
    reason: str = ""
    warning: Optional[str] = None

    @property
    def deposit_to_suppress(self) -> Optional[BankTransaction]:
        """The bank line to suppress, only when exactly one is within tolerance."""
        return self.matches[0] if len(self.matches) == 1 else None


@dataclass
class LumpSumSyncResult:
    """Outcome of syncing a cash-offering or card-payment batch."""

    processed: int = 0
    total_amount: Decimal = Decimal("0")
    suppressed_bank_transactions: int = 0
    suppressed_ids: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "totalAmount": to_jsonable(self.total_amount),
            "suppressedBankTransactions": self.suppressed_bank_transactions,
            "warnings": list(self.warnings),
        }


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums, decimals and dates into JSON-friendly values."""
    if is_dataclass(value) and not isinstance(value, type):
        return {k: to_jsonable(v) for k, v in asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
