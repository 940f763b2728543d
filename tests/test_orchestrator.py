"""Tests for the auto-match orchestrator."""

from datetime import date
from decimal import Decimal

import pytest

from church_ledger_recon.matching.engine import AutoMatchOrchestrator
from church_ledger_recon.matching.gate import DuplicatePreventionGate
from church_ledger_recon.matching.lump_sum import CashOfferingReconciler
from church_ledger_recon.matching.rules import RuleRepository
from church_ledger_recon.models.results import ReviewReason
from church_ledger_recon.models.transaction import (
    CashOfferingBatch,
    ExpenseRecord,
    IncomeRecord,
    MatchedType,
    MatchStatus,
    RuleType,
)
from church_ledger_recon.stores.memory import InMemoryStore


def _orchestrator(config, store=None, with_cash=False) -> AutoMatchOrchestrator:
    store = store or InMemoryStore()
    reconciler = None
    if with_cash:
        reconciler = CashOfferingReconciler(
            store, store, store, DuplicatePreventionGate(store), config.cash_offering
        )
    return AutoMatchOrchestrator(
        config,
        bank_store=store,
        rules=RuleRepository(store, config.rule_learning),
        cash_source=store,
        cash_reconciler=reconciler,
    )


def test_confident_deposit_is_auto_matched(config, rules, make_txn) -> None:
    txn = make_txn("T1", deposit=100000, description="김철수", detail="십일조")

    result = _orchestrator(config).classify([txn], rules)

    assert len(result.auto_matched) == 1
    item = result.auto_matched[0]
    assert item.rule.id == "R-TITHE"
    assert isinstance(item.record, IncomeRecord)
    assert item.record.code == 12
    assert item.record.amount == Decimal("100000")
    assert item.record.transaction_date == date(2024, 1, 7)
    assert item.record.id.startswith("INC")
    assert result.summary() == {
        "incomeCount": 1,
        "expenseCount": 0,
        "suppressedCount": 0,
        "needsReviewCount": 0,
    }


def test_confident_withdrawal_is_auto_matched_as_expense(config, rules, make_txn) -> None:
    txn = make_txn("T2", withdrawal=85000, description="한국전력공사", detail="전기요금")

    result = _orchestrator(config).classify([txn], rules)

    assert len(result.auto_matched) == 1
    record = result.auto_matched[0].record
    assert isinstance(record, ExpenseRecord)
    assert record.code == 61
    assert record.category_code == 60
    assert record.amount == Decimal("85000")


def test_tied_candidates_need_review_as_ambiguous(config, rules, make_txn) -> None:
    txn = make_txn("T1", deposit=300000, description="홍길동 십일조 건축헌금")

    result = _orchestrator(config).classify([txn], rules)

    assert result.auto_matched == []
    item = result.needs_review[0]
    assert item.reason is ReviewReason.AMBIGUOUS
    assert [r.id for r in item.suggestions] == ["R-TITHE", "R-BUILD"]


def test_ranking_example_auto_matches_the_tithe(config, make_txn, make_rule) -> None:
    rules = [
        make_rule("R1", "십일", 12, "십일조", 0.95),
        make_rule("R2", "건축", 501, "건축헌금", 0.95),
        make_rule("R3", "감사", 13, "감사헌금", 0.9),
    ]
    txn = make_txn("T1", deposit=100000, description="성도 십일조 입금")

    result = _orchestrator(config).classify([txn], rules)

    assert [(i.transaction.id, i.rule.id) for i in result.auto_matched] == [("T1", "R1")]
    assert result.needs_review == []


@pytest.mark.parametrize(
    "text, expected",
    [
        ("홍길동 십일조 감사", ["R-TITHE", "R-THANKS"]),
        ("홍길동 주일 감사헌금", ["R-THANKS", "R-SUNDAY"]),
    ],
)
def test_runner_up_exactly_at_margin_is_ambiguous(config, rules, make_txn, text, expected) -> None:
    txn = make_txn("T1", deposit=50000, description=text)

    result = _orchestrator(config).classify([txn], rules)

    assert result.auto_matched == []
    item = result.needs_review[0]
    assert item.reason is ReviewReason.AMBIGUOUS
    assert [r.id for r in item.suggestions] == expected


def test_runner_up_beyond_margin_auto_matches(config, make_txn, make_rule) -> None:
    rules = [
        make_rule("R1", "십일", 12, "십일조", 0.95),
        make_rule("R2", "감사", 13, "감사헌금", 0.89),
    ]
    txn = make_txn("T1", deposit=50000, description="홍길동 십일조 감사")

    result = _orchestrator(config).classify([txn], rules)

    assert [i.rule.id for i in result.auto_matched] == ["R1"]


def test_low_confidence_rule_needs_review(config, make_txn, make_rule) -> None:
    rule = make_rule("R-PRAISE", "찬양", 31, "찬양대", 0.7)
    txn = make_txn("T1", deposit=20000, description="찬양대 회비")

    result = _orchestrator(config).classify([txn], [rule])

    assert result.needs_review[0].reason is ReviewReason.BELOW_THRESHOLD
    assert result.needs_review[0].suggestions == [rule]


@pytest.mark.parametrize(
    "amount, code",
    [
        (30000, 11),
        (123000, 12),
        (120000, 13),
    ],
)
def test_unmatched_deposit_gets_default_income_code(config, rules, make_txn, amount, code) -> None:
    txn = make_txn("T1", deposit=amount, description="홍길동")

    result = _orchestrator(config).classify([txn], rules)

    item = result.needs_review[0]
    assert item.reason is ReviewReason.NO_CANDIDATE
    assert item.default_code == code


def test_unmatched_withdrawal_has_no_default_code(config, rules, make_txn) -> None:
    txn = make_txn("T1", withdrawal=40000, description="철물점")

    result = _orchestrator(config).classify([txn], rules)

    assert result.needs_review[0].default_code is None


def test_line_without_amount_needs_review(config, rules, make_txn) -> None:
    txn = make_txn("T1", description="십일조")

    result = _orchestrator(config).classify([txn], rules)

    assert result.needs_review[0].reason is ReviewReason.NO_AMOUNT


def test_repeated_bank_line_is_suppressed_as_duplicate(config, rules, make_txn) -> None:
    first = make_txn("T1", deposit=100000, description="김철수", detail="십일조", balance=500000)
    repeat = make_txn("T9", deposit=100000, description="김철수", detail="십일조", balance=500000)

    result = _orchestrator(config).classify([first, repeat], rules)

    assert [i.transaction.id for i in result.auto_matched] == ["T1"]
    suppressed = result.suppressed[0]
    assert suppressed.transaction.id == "T9"
    assert suppressed.matched_type == MatchedType.DUPLICATE_LINE.value
    assert "T1" in suppressed.reason


def test_duplicate_detection_can_be_disabled(config, rules, make_txn) -> None:
    config.suppression.detect_duplicate_lines = False
    first = make_txn("T1", deposit=100000, detail="십일조", balance=500000)
    repeat = make_txn("T9", deposit=100000, detail="십일조", balance=500000)

    result = _orchestrator(config).classify([first, repeat], rules)

    assert len(result.auto_matched) == 2


def test_cash_box_deposit_and_card_payment_are_suppressed(config, rules, make_txn) -> None:
    cash = make_txn("T1", deposit=480000, description="헌금함 입금")
    card = make_txn("T2", withdrawal=1234000, description="NH카드 결제")

    result = _orchestrator(config).classify([cash, card], rules)

    assert {i.transaction.id for i in result.suppressed} == {"T1", "T2"}
    assert all(i.matched_type == MatchedType.CHANNEL_SUPPRESSED.value for i in result.suppressed)
    assert result.auto_matched == []
    assert result.needs_review == []


def test_non_pending_lines_are_skipped(config, rules, make_txn) -> None:
    done = make_txn("T1", deposit=100000, detail="십일조", status=MatchStatus.MATCHED)

    result = _orchestrator(config).classify([done], rules)

    assert result.summary()["incomeCount"] == 0
    assert result.needs_review == []
    assert result.suppressed == []


def test_cash_batch_deposit_is_suppressed(config, rules, make_txn, offerings) -> None:
    deposit = make_txn("T1", deposit=500800, description="헌금함입금")
    other = make_txn("T2", deposit=100000, detail="십일조")
    batch = CashOfferingBatch(date(2024, 1, 7), date(2024, 1, 7), offerings)

    result = _orchestrator(config, with_cash=True).classify([deposit, other], rules, batch)

    suppressed = result.suppressed[0]
    assert suppressed.transaction.id == "T1"
    assert suppressed.matched_type == MatchedType.CASH_OFFERING_BATCH.value
    assert suppressed.reason == "Cash offering batch: 3 entries, total 500,000"
    assert [i.transaction.id for i in result.auto_matched] == ["T2"]


def test_unreconciled_cash_box_deposit_stays_open(config, rules, make_txn, offerings) -> None:
    deposit = make_txn("T1", deposit=502000, description="헌금함입금")
    batch = CashOfferingBatch(date(2024, 1, 7), date(2024, 1, 7), offerings)

    result = _orchestrator(config, with_cash=True).classify([deposit], rules, batch)

    assert result.suppressed == []
    assert [i.transaction.id for i in result.needs_review] == ["T1"]
    assert len(result.warnings) == 1
    assert "500,000" in result.warnings[0]


def test_cash_box_deposit_outside_batch_period_is_channel_suppressed(
    config, rules, make_txn, offerings
) -> None:
    later = make_txn("T1", day=date(2024, 1, 14), deposit=320000, description="헌금함 입금")
    batch = CashOfferingBatch(date(2024, 1, 7), date(2024, 1, 7), offerings)

    result = _orchestrator(config, with_cash=True).classify([later], rules, batch)

    assert [i.matched_type for i in result.suppressed] == [MatchedType.CHANNEL_SUPPRESSED.value]


def test_only_the_planned_cash_deposit_is_suppressed(config, rules, make_txn, offerings) -> None:
    planned = make_txn("T1", deposit=500800, description="헌금함입금")
    other = make_txn("T2", deposit=120000, description="헌금함입금", balance=1)
    batch = CashOfferingBatch(date(2024, 1, 7), date(2024, 1, 7), offerings)

    result = _orchestrator(config, with_cash=True).classify([planned, other], rules, batch)

    assert [(i.transaction.id, i.matched_type) for i in result.suppressed] == [
        ("T1", MatchedType.CASH_OFFERING_BATCH.value)
    ]
    assert [i.transaction.id for i in result.needs_review] == ["T2"]


def test_accepts_rules_grouped_by_type(config, rules, make_txn) -> None:
    grouped = {
        RuleType.BANK_INCOME: [r for r in rules if r.rule_type is RuleType.BANK_INCOME],
        RuleType.BANK_EXPENSE: [r for r in rules if r.rule_type is RuleType.BANK_EXPENSE],
    }
    txn = make_txn("T1", deposit=100000, detail="십일조")

    result = _orchestrator(config).classify([txn], grouped)

    assert result.auto_matched[0].rule.id == "R-TITHE"


@pytest.mark.asyncio
async def test_run_is_idempotent(config, store) -> None:
    orchestrator = _orchestrator(config, store)

    first = await orchestrator.run()
    second = await orchestrator.run()

    assert first.signature() == second.signature()
    assert first.summary() == {
        "incomeCount": 1,
        "expenseCount": 1,
        "suppressedCount": 0,
        "needsReviewCount": 1,
    }


@pytest.mark.asyncio
async def test_run_does_not_write(config, store) -> None:
    await _orchestrator(config, store).run()

    assert all(t.matched_status is MatchStatus.PENDING for t in await store.list_all())
    assert store.income == []
    assert store.expense == []


@pytest.mark.asyncio
async def test_run_loads_cash_offerings_for_date_range(config, rules, make_txn, offerings) -> None:
    store = InMemoryStore(
        transactions=[make_txn("T1", deposit=500800, description="헌금함입금")],
        rules=rules,
        offerings=offerings,
    )

    result = await _orchestrator(config, store, with_cash=True).run(
        date(2024, 1, 1), date(2024, 1, 31)
    )

    assert result.suppressed[0].matched_type == MatchedType.CASH_OFFERING_BATCH.value


@pytest.mark.asyncio
async def test_run_requires_stores(config) -> None:
    with pytest.raises(RuntimeError):
        await AutoMatchOrchestrator(config).run()


def test_to_dict_uses_camel_case_keys(config, rules, make_txn) -> None:
    txn = make_txn("T1", deposit=100000, detail="십일조")

    payload = _orchestrator(config).classify([txn], rules).to_dict()

    assert set(payload) >= {"autoMatched", "suppressed", "needsReview"}
    assert payload["autoMatched"][0]["record"]["amount"] == 100000
