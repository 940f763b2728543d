"""Shared fixtures for the reconciliation tests."""

from datetime import date
from decimal import Decimal
from typing import Iterable
import logging

import pytest

from church_ledger_recon.config import ReconConfig
from church_ledger_recon.models.transaction import (
    BankTransaction,
    CashOffering,
    MatchingRule,
    MatchStatus,
    RuleType,
    TargetType,
)
from church_ledger_recon.stores.base import BatchUpdateResult, StatusUpdate
from church_ledger_recon.stores.memory import InMemoryStore
from church_ledger_recon.utils.logging_config import ROOT_LOGGER_NAME


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.handlers = []
    logger.setLevel(logging.NOTSET)


def _make_txn(
    txn_id: str,
    day: date = date(2024, 1, 7),
    deposit: int = 0,
    withdrawal: int = 0,
    description: str = "",
    detail: str = "",
    memo: str = "",
    balance: int = 0,
    status: MatchStatus = MatchStatus.PENDING,
) -> BankTransaction:
    return BankTransaction(
        id=txn_id,
        transaction_date=day,
        deposit=Decimal(deposit),
        withdrawal=Decimal(withdrawal),
        balance=Decimal(balance),
        description=description,
        detail=detail,
        memo=memo,
        matched_status=status,
    )


def _make_rule(
    rule_id: str,
    pattern: str,
    code: int,
    name: str,
    confidence: float,
    rule_type: RuleType = RuleType.BANK_INCOME,
) -> MatchingRule:
    return MatchingRule(
        id=rule_id,
        rule_type=rule_type,
        pattern=pattern,
        target_type=(
            TargetType.INCOME if rule_type is RuleType.BANK_INCOME else TargetType.EXPENSE
        ),
        target_code=code,
        target_name=name,
        confidence=confidence,
    )


@pytest.fixture
def make_txn():
    return _make_txn


@pytest.fixture
def make_rule():
    return _make_rule


@pytest.fixture
def config() -> ReconConfig:
    return ReconConfig()


@pytest.fixture
def rules() -> list[MatchingRule]:
    return [
        _make_rule("R-TITHE", "십일", 12, "십일조", 0.95),
        _make_rule("R-BUILD", "건축", 501, "건축헌금", 0.95),
        _make_rule("R-THANKS", "감사", 13, "감사헌금", 0.9),
        _make_rule("R-SUNDAY", "주일", 11, "주일헌금", 0.85),
        _make_rule("R-KEPCO", "한국전력", 61, "전기료", 0.95, RuleType.BANK_EXPENSE),
        _make_rule("R-POWER", "전기", 61, "전기료", 0.85, RuleType.BANK_EXPENSE),
    ]


@pytest.fixture
def store(rules) -> InMemoryStore:
    return InMemoryStore(
        transactions=[
            _make_txn("T1", deposit=100000, description="김철수", detail="십일조", balance=1100000),
            _make_txn(
                "T2",
                withdrawal=85000,
                description="한국전력공사",
                detail="전기요금",
                balance=1015000,
            ),
            _make_txn("T3", deposit=30000, description="홍길동", balance=1045000),
        ],
        rules=rules,
    )


@pytest.fixture
def offerings() -> list[CashOffering]:
    return [
        CashOffering(date=date(2024, 1, 7), amount=Decimal("200000"), attribution="김철수"),
        CashOffering(date=date(2024, 1, 7), amount=Decimal("150000"), attribution="이영희"),
        CashOffering(date=date(2024, 1, 7), amount=Decimal("150000"), attribution="무명"),
    ]


class FlakyStore(InMemoryStore):
    """In-memory store whose individual operations can be made to fail."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_status_read = False
        self.fail_status_update_types: set[str] = set()
        self.fail_income_append = False
        self.status_reads = 0

    async def get_status_map(self, ids: Iterable[str]) -> dict[str, MatchStatus]:
        self.status_reads += 1
        if self.fail_status_read:
            raise ConnectionError("sheet service unavailable")
        return await super().get_status_map(ids)

    async def batch_update_status(self, updates: list[StatusUpdate]) -> BatchUpdateResult:
        if any(u.matched_type in self.fail_status_update_types for u in updates):
            raise ConnectionError("write quota exceeded")
        return await super().batch_update_status(updates)

    async def append_income(self, records) -> None:
        if self.fail_income_append:
            raise ConnectionError("income sheet locked")
        await super().append_income(records)


@pytest.fixture
def flaky_store(rules) -> FlakyStore:
    return FlakyStore(
        transactions=[
            _make_txn("T1", deposit=100000, description="김철수", detail="십일조"),
            _make_txn("T2", withdrawal=85000, description="한국전력공사", detail="전기요금"),
            _make_txn("T3", deposit=30000, description="홍길동"),
        ],
        rules=rules,
    )
