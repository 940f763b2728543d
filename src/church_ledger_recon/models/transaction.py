"""Data models for bank transactions, matching rules and ledger records."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
import random
import string

KST = timezone(timedelta(hours=9))


class MatchStatus(str, Enum):
    """Reconciliation state of a bank transaction."""

    PENDING = "pending"
    MATCHED = "matched"
    SUPPRESSED = "suppressed"

    @property
    def is_terminal(self) -> bool:
        return self is not MatchStatus.PENDING


class RuleType(str, Enum):
    """Which side of the bank ledger a rule classifies."""

    BANK_INCOME = "bank_income"
    BANK_EXPENSE = "bank_expense"


class TargetType(str, Enum):
    """Ledger the rule's target code belongs to."""

    INCOME = "income"
    EXPENSE = "expense"


class MatchedType(str, Enum):
    """How a transaction left the pending state."""

    INCOME_DETAIL = "income_detail"
    EXPENSE_DETAIL = "expense_detail"
    CASH_OFFERING_BATCH = "cash_offering_batch"
    CARD_PAYMENT_BATCH = "card_payment_batch"
    DUPLICATE_LINE = "duplicate_line"
    CHANNEL_SUPPRESSED = "channel_suppressed"
    MANUAL_SUPPRESSED = "manual_suppressed"


def now_kst() -> datetime:
    """Current time in Korea Standard Time."""
    return datetime.now(KST)


def generate_id(prefix: str) -> str:
    """
    Generate a record id: prefix, KST date, six time digits, four random chars.

    Args:
        prefix: Id prefix such as "INC", "EXP" or "RULE"

    Returns:
        New identifier string
    """
    now = now_kst()
    time_digits = str(int(now.timestamp() * 1000))[-6:]
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"{prefix}{now:%Y%m%d}{time_digits}{suffix}"


@dataclass
class BankTransaction:
    """
    A raw line from the church's bank ledger.

    Created on ledger import with status pending; only the gate-protected
    commit path moves it to matched or suppressed, and never back.
    """

    id: str
    transaction_date: date
    withdrawal: Decimal = Decimal("0")
    deposit: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    description: str = ""
    detail: str = ""
    memo: str = ""
    time: str = ""
    branch: str = ""

    matched_status: MatchStatus = MatchStatus.PENDING
    matched_type: Optional[str] = None
    matched_ids: Optional[str] = None
    suppressed: bool = False
    suppressed_reason: Optional[str] = None
    uploaded_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Coerce status and amounts loaded from text-based stores."""
        self.matched_status = MatchStatus(self.matched_status)
        self.withdrawal = Decimal(str(self.withdrawal or 0))
        self.deposit = Decimal(str(self.deposit or 0))
        self.balance = Decimal(str(self.balance or 0))

    @property
    def search_text(self) -> str:
        """Lower-cased description, detail and memo joined by spaces."""
        return f"{self.description or ''} {self.detail or ''} {self.memo or ''}".lower()

    @property
    def duplicate_key(self) -> str:
        """Key identifying the same bank line imported twice."""
        return duplicate_key(
            self.transaction_date, self.deposit, self.withdrawal, self.balance
        )

    @property
    def is_deposit(self) -> bool:
        return self.deposit > 0

    @property
    def is_withdrawal(self) -> bool:
        return self.withdrawal > 0

    @property
    def amount(self) -> Decimal:
        """Absolute amount moved by this line."""
        return self.deposit if self.is_deposit else self.withdrawal

    @property
    def is_pending(self) -> bool:
        return self.matched_status is MatchStatus.PENDING and not self.suppressed


def duplicate_key(
    transaction_date: date, deposit: Decimal, withdrawal: Decimal, balance: Decimal
) -> str:
    """Build the `date|deposit|withdrawal|balance` duplicate key."""
    return (
        f"{transaction_date.isoformat()}|{_plain(deposit)}|"
        f"{_plain(withdrawal)}|{_plain(balance)}"
    )


def _plain(value: Decimal) -> str:
    # 500000, 500000.0 and 500000.00 must produce the same key
    normalized = Decimal(value).normalize()
    return format(normalized, "f")


@dataclass
class MatchingRule:
    """A pattern that maps bank line text to an income or expense code."""

    id: str
    rule_type: RuleType
    pattern: str
    target_type: TargetType
    target_code: int
    target_name: str
    confidence: float
    usage_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Coerce enum fields and validate ranges."""
        self.rule_type = RuleType(self.rule_type)
        self.target_type = TargetType(self.target_type)
        if not 0.0 <= float(self.confidence) <= 1.0:
            raise ValueError(
                f"Rule {self.id}: confidence {self.confidence} outside [0, 1]"
            )
        if self.usage_count < 0:
            raise ValueError(f"Rule {self.id}: usage_count must be >= 0")
        self.confidence = float(self.confidence)


@dataclass
class IncomeRecord:
    """An offering entry in the income ledger."""

    id: str
    date: date
    amount: Decimal
    code: int
    source: str = "계좌이체"
    donor_name: str = ""
    representative: str = ""
    note: str = ""
    input_method: str = "은행원장"
    created_at: Optional[datetime] = None
    created_by: str = ""
    transaction_date: Optional[date] = None


@dataclass
class ExpenseRecord:
    """A payment entry in the expense ledger."""

    id: str
    date: date
    amount: Decimal
    code: int
    category_code: Optional[int] = None
    payment_method: str = "계좌이체"
    vendor: str = ""
    description: str = ""
    note: str = ""
    created_at: Optional[datetime] = None
    created_by: str = ""
    transaction_date: Optional[date] = None

    def __post_init__(self) -> None:
        """Derive the category from the account code when not given."""
        if self.category_code is None and self.code is not None:
            self.category_code = (int(self.code) // 10) * 10


@dataclass
class CashOffering:
    """A single individually attributed cash gift from the offering box."""

    date: date
    amount: Decimal
    attribution: str
    code: int = 11
    item: str = "주일헌금"
    category_code: int = 10
    source: str = "헌금함"
    note: str = ""


@dataclass
class CashOfferingBatch:
    """Cash offerings of a date range, reconciled as one bank deposit."""

    start_date: date
    end_date: date
    offerings: list[CashOffering] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((o.amount for o in self.offerings), Decimal("0"))

    @property
    def count(self) -> int:
        return len(self.offerings)

    def covers(self, transaction: BankTransaction) -> bool:
        """True for a deposit dated inside the batch period."""
        return transaction.is_deposit and (
            self.start_date <= transaction.transaction_date <= self.end_date
        )
