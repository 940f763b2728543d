"""Tests for the xlsx-backed store."""

import asyncio
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from filelock import FileLock
from openpyxl import load_workbook

from church_ledger_recon.matching.committer import BatchConfirmationCommitter
from church_ledger_recon.matching.engine import income_from_transaction
from church_ledger_recon.matching.rules import RuleRepository
from church_ledger_recon.models.results import ConfirmationItem, ConfirmationRequest
from church_ledger_recon.models.transaction import CashOffering, MatchStatus, RuleType
from church_ledger_recon.stores.base import StatusUpdate
from church_ledger_recon.stores.workbook import SHEET_MODELS, WorkbookStore
from church_ledger_recon.utils.exceptions import StoreReadError, StoreWriteError


@pytest.fixture
def workbook_store(tmp_path: Path) -> WorkbookStore:
    store = WorkbookStore(tmp_path / "ledger.xlsx")
    store.initialize()
    return store


def test_initialize_creates_every_sheet(workbook_store) -> None:
    wb = load_workbook(workbook_store.path)

    assert set(wb.sheetnames) == set(SHEET_MODELS)
    assert wb["BankTransactions"]["A1"].value == "id"


def test_initialize_keeps_existing_data(workbook_store, make_txn) -> None:
    asyncio.run(workbook_store.append_transactions([make_txn("T1", deposit=1000)]))

    workbook_store.initialize()

    assert len(asyncio.run(workbook_store.list_all())) == 1


@pytest.mark.asyncio
async def test_transactions_round_trip(workbook_store, make_txn) -> None:
    txn = make_txn(
        "T1", deposit=100000, description="김철수", detail="십일조", balance=1100000
    )

    stored = await workbook_store.append_transactions([txn, txn])
    loaded = await workbook_store.list_pending()

    assert stored == 1
    assert len(loaded) == 1
    assert loaded[0].transaction_date == date(2024, 1, 7)
    assert loaded[0].deposit == Decimal("100000")
    assert loaded[0].detail == "십일조"
    assert loaded[0].matched_status is MatchStatus.PENDING
    assert loaded[0].duplicate_key == txn.duplicate_key


@pytest.mark.asyncio
async def test_batch_update_is_compare_and_set(workbook_store, make_txn) -> None:
    await workbook_store.append_transactions(
        [make_txn("T1", deposit=1000), make_txn("T2", deposit=2000, balance=1)]
    )

    first = await workbook_store.batch_update_status(
        [
            StatusUpdate("T1", MatchStatus.MATCHED, "income_detail", "INC1"),
            StatusUpdate("T2", MatchStatus.SUPPRESSED, "manual_suppressed", suppressed_reason="x"),
            StatusUpdate("T9", MatchStatus.MATCHED),
        ]
    )
    second = await workbook_store.batch_update_status(
        [StatusUpdate("T1", MatchStatus.MATCHED, "income_detail", "INC2")]
    )

    assert first.success == ["T1", "T2"]
    assert first.failed == ["T9"]
    assert second.conflicted == ["T1"]
    statuses = await workbook_store.get_status_map(["T1", "T2", "T9"])
    assert statuses == {"T1": MatchStatus.MATCHED, "T2": MatchStatus.SUPPRESSED}
    all_txns = {t.id: t for t in await workbook_store.list_all()}
    assert all_txns["T1"].matched_ids == "INC1"
    assert all_txns["T2"].suppressed
    assert all_txns["T2"].suppressed_reason == "x"
    assert await workbook_store.list_pending() == []


@pytest.mark.asyncio
async def test_rules_are_persisted_and_updated(workbook_store) -> None:
    repo = RuleRepository(workbook_store)
    rule = await repo.add(RuleType.BANK_INCOME, "십일", 12, "십일조", 0.95)

    await workbook_store.increment_usage(rule.id)
    await workbook_store.update_confidence(rule.id, 0.9)
    loaded = await workbook_store.list_rules(RuleType.BANK_INCOME)

    assert len(loaded) == 1
    assert loaded[0].id == rule.id
    assert loaded[0].usage_count == 1
    assert loaded[0].confidence == pytest.approx(0.9)
    assert loaded[0].created_at is not None
    assert await workbook_store.list_rules(RuleType.BANK_EXPENSE) == []


@pytest.mark.asyncio
async def test_unknown_rule_raises_key_error(workbook_store) -> None:
    with pytest.raises(KeyError):
        await workbook_store.increment_usage("RULE-MISSING")


@pytest.mark.asyncio
async def test_ledger_records_are_appended(workbook_store, make_txn, make_rule) -> None:
    txn = make_txn("T1", deposit=100000, detail="십일조")
    record = income_from_transaction(txn, make_rule("R1", "십일", 12, "십일조", 0.95))

    await workbook_store.append_income([record])
    loaded = await workbook_store.list_income()

    assert len(loaded) == 1
    assert loaded[0].id == record.id
    assert loaded[0].amount == Decimal("100000")
    assert loaded[0].code == 12


@pytest.mark.asyncio
async def test_offerings_are_filtered_by_date(workbook_store) -> None:
    await workbook_store.add_offerings(
        [
            CashOffering(date=date(2024, 1, 7), amount=Decimal("10000"), attribution="김철수"),
            CashOffering(date=date(2024, 2, 4), amount=Decimal("20000"), attribution="이영희"),
        ]
    )

    january = await workbook_store.list_offerings(date(2024, 1, 1), date(2024, 1, 31))

    assert [o.attribution for o in january] == ["김철수"]


@pytest.mark.asyncio
async def test_missing_workbook_raises_store_read_error(tmp_path: Path) -> None:
    with pytest.raises(StoreReadError):
        await WorkbookStore(tmp_path / "nowhere.xlsx").list_pending()


@pytest.mark.asyncio
async def test_concurrent_commits_write_one_record(workbook_store, make_txn, make_rule) -> None:
    txn = make_txn("T1", deposit=100000, detail="십일조")
    rule = make_rule("R1", "십일", 12, "십일조", 0.95)
    await workbook_store.append_transactions([txn])

    def request() -> ConfirmationRequest:
        return ConfirmationRequest(
            income=[ConfirmationItem(txn, income_from_transaction(txn, rule), learn=False)]
        )

    results = await asyncio.gather(
        BatchConfirmationCommitter(workbook_store, workbook_store).confirm(request()),
        BatchConfirmationCommitter(workbook_store, workbook_store).confirm(request()),
    )

    assert sorted(r.income_count for r in results) == [0, 1]
    assert len(await workbook_store.list_income()) == 1


@pytest.mark.asyncio
async def test_two_stores_on_one_file_commit_once(workbook_store, make_txn, make_rule) -> None:
    txn = make_txn("T1", deposit=100000, detail="십일조")
    rule = make_rule("R1", "십일", 12, "십일조", 0.95)
    await workbook_store.append_transactions([txn])
    first = WorkbookStore(workbook_store.path)
    second = WorkbookStore(workbook_store.path)

    def request() -> ConfirmationRequest:
        return ConfirmationRequest(
            income=[ConfirmationItem(txn, income_from_transaction(txn, rule), learn=False)]
        )

    results = await asyncio.gather(
        BatchConfirmationCommitter(first, first).confirm(request()),
        BatchConfirmationCommitter(second, second).confirm(request()),
    )

    assert sorted(r.income_count for r in results) == [0, 1]
    assert all(r.error is None for r in results)
    assert len(await workbook_store.list_income()) == 1
    assert (await workbook_store.get_status_map(["T1"])) == {"T1": MatchStatus.MATCHED}


@pytest.mark.asyncio
async def test_write_waits_for_lock_held_elsewhere(tmp_path: Path, make_txn) -> None:
    store = WorkbookStore(tmp_path / "ledger.xlsx", lock_timeout=0.2)
    store.initialize()

    with FileLock(str(store.lock_path)):
        with pytest.raises(StoreWriteError):
            await store.append_transactions([make_txn("T1", deposit=1000)])

    assert await store.append_transactions([make_txn("T1", deposit=1000)]) == 1


def test_saves_leave_no_temporary_files(workbook_store, make_txn) -> None:
    asyncio.run(workbook_store.append_transactions([make_txn("T1", deposit=1000)]))

    leftovers = [
        p.name
        for p in workbook_store.path.parent.iterdir()
        if p.suffix == ".xlsx" and p != workbook_store.path
    ]
    assert leftovers == []
