"""Tests for the command-line interface."""

import asyncio
import json
from datetime import date
from pathlib import Path

import pytest
from click.testing import CliRunner

from church_ledger_recon.cli import main
from church_ledger_recon.matching.rules import DEFAULT_SEED_RULES
from church_ledger_recon.models.transaction import MatchStatus
from church_ledger_recon.stores.workbook import WorkbookStore

LEDGER = "\n".join(
    [
        "거래일자,거래시간,적요,내용,출금금액,입금금액,잔액,거래점,메모",
        '2024-01-07,10:30:00,김철수,십일조,0,"100,000","1,100,000",본점,',
        '2024-01-08,09:00:00,한국전력공사,전기요금,"85,000",0,"1,015,000",,',
        '2024-01-09,11:00:00,홍길동,,0,"30,000","1,045,000",,',
    ]
) + "\n"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def workspace(tmp_path: Path, runner: CliRunner) -> dict[str, Path]:
    workbook = tmp_path / "ledger.xlsx"
    ledger = tmp_path / "bank.csv"
    ledger.write_text(LEDGER, encoding="utf-8")
    config = tmp_path / "config.yaml"
    config.write_text("logging:\n  level: ERROR\n", encoding="utf-8")

    result = runner.invoke(main, ["init-workbook", "-w", str(workbook)])
    assert result.exit_code == 0, result.output
    return {"workbook": workbook, "ledger": ledger, "config": config}


def test_init_config_writes_file(runner: CliRunner, tmp_path: Path) -> None:
    output = tmp_path / "config.yaml"

    result = runner.invoke(main, ["init-config", "-o", str(output)])

    assert result.exit_code == 0
    assert output.exists()


def test_init_workbook_seeds_rules(runner: CliRunner, workspace) -> None:
    result = runner.invoke(main, ["rules", "list", "-w", str(workspace["workbook"])])

    assert result.exit_code == 0, result.output
    assert f"Total rules: {len(DEFAULT_SEED_RULES)}" in result.output


def test_rules_add(runner: CliRunner, workspace) -> None:
    result = runner.invoke(
        main,
        ["rules", "add", "부활", "14", "부활절헌금", "-w", str(workspace["workbook"])],
    )
    listing = runner.invoke(main, ["rules", "list", "-w", str(workspace["workbook"])])

    assert result.exit_code == 0, result.output
    assert "Added rule" in result.output
    assert f"Total rules: {len(DEFAULT_SEED_RULES) + 1}" in listing.output


def test_import_skips_duplicates_on_second_run(runner: CliRunner, workspace) -> None:
    args = [
        "import-bank",
        str(workspace["ledger"]),
        "-w",
        str(workspace["workbook"]),
        "-c",
        str(workspace["config"]),
    ]

    first = runner.invoke(main, args)
    second = runner.invoke(main, args)

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    transactions = asyncio.run(WorkbookStore(workspace["workbook"]).list_all())
    assert len(transactions) == 3


def test_auto_match_preview_then_commit(runner: CliRunner, workspace) -> None:
    common = ["-w", str(workspace["workbook"]), "-c", str(workspace["config"])]
    runner.invoke(main, ["import-bank", str(workspace["ledger"]), *common])

    preview = runner.invoke(main, ["auto-match", "--json", *common])
    assert preview.exit_code == 0, preview.output
    payload = json.loads(preview.output)
    assert payload["classification"]["summary"] == {
        "incomeCount": 1,
        "expenseCount": 1,
        "suppressedCount": 0,
        "needsReviewCount": 1,
    }
    assert "confirmation" not in payload

    committed = runner.invoke(main, ["auto-match", "--commit", "--json", *common])
    assert committed.exit_code == 0, committed.output
    confirmation = json.loads(committed.output)["confirmation"]
    assert confirmation["success"] is True
    assert confirmation["incomeCount"] == 1
    assert confirmation["expenseCount"] == 1

    store = WorkbookStore(workspace["workbook"])
    statuses = {t.description: t.matched_status for t in asyncio.run(store.list_all())}
    assert statuses["김철수"] is MatchStatus.MATCHED
    assert statuses["한국전력공사"] is MatchStatus.MATCHED
    assert statuses["홍길동"] is MatchStatus.PENDING
    assert len(asyncio.run(store.list_income())) == 1
    assert len(asyncio.run(store.list_expense())) == 1


def test_sync_card_without_match_reports_warning(runner: CliRunner, workspace) -> None:
    result = runner.invoke(
        main,
        [
            "sync-card",
            "2024-02-01",
            "1,234,000",
            "-w",
            str(workspace["workbook"]),
            "-c",
            str(workspace["config"]),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Warning" in result.output


def test_sync_card_rejects_bad_amount(runner: CliRunner, workspace) -> None:
    result = runner.invoke(
        main, ["sync-card", "2024-02-01", "lots", "-w", str(workspace["workbook"])]
    )

    assert result.exit_code == 2


def test_sync_cash_without_offerings(runner: CliRunner, workspace) -> None:
    result = runner.invoke(
        main,
        [
            "sync-cash",
            "2024-01-01",
            "2024-01-31",
            "-w",
            str(workspace["workbook"]),
            "-c",
            str(workspace["config"]),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Cash Offering Sync" in result.output


def test_missing_workbook_is_reported(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(main, ["auto-match", "-w", str(tmp_path / "none.xlsx")])

    assert result.exit_code == 1
    assert "Workbook not found" in result.output


OFFERINGS = "\n".join(
    [
        "날짜,금액,성명,코드,항목",
        '2024-01-07,"100,000",이영희,12,십일조',
        '2024-01-07,"120,000",,,',
        '2024-01-07,"30,000",박민수,13,감사헌금',
    ]
) + "\n"


def _write_cash_inputs(workspace) -> Path:
    offerings = workspace["ledger"].with_name("offerings.csv")
    offerings.write_text(OFFERINGS, encoding="utf-8")
    workspace["ledger"].write_text(
        "\n".join(
            [
                "거래일자,거래시간,적요,내용,출금금액,입금금액,잔액,거래점,메모",
                '2024-01-08,12:00:00,헌금함입금,,0,"250,000","1,250,000",본점,',
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    return offerings


def test_import_cash_skips_offerings_already_stored(runner: CliRunner, workspace) -> None:
    offerings = _write_cash_inputs(workspace)
    common = ["-w", str(workspace["workbook"]), "-c", str(workspace["config"])]

    first = runner.invoke(main, ["import-cash", str(offerings), *common])
    second = runner.invoke(main, ["import-cash", str(offerings), *common])

    assert first.exit_code == 0, first.output
    assert "Cash Offering Import" in first.output
    assert second.exit_code == 0, second.output
    stored = asyncio.run(
        WorkbookStore(workspace["workbook"]).list_offerings(date(2024, 1, 1), date(2024, 1, 31))
    )
    assert len(stored) == 3
    assert {o.attribution for o in stored} == {"이영희", "무명", "박민수"}


def test_import_cash_dry_run_stores_nothing(runner: CliRunner, workspace) -> None:
    offerings = _write_cash_inputs(workspace)

    result = runner.invoke(
        main, ["import-cash", str(offerings), "--dry-run", "-w", str(workspace["workbook"])]
    )

    assert result.exit_code == 0, result.output
    assert "Dry run" in result.output
    stored = asyncio.run(
        WorkbookStore(workspace["workbook"]).list_offerings(date(2024, 1, 1), date(2024, 1, 31))
    )
    assert stored == []


def test_auto_match_commit_posts_cash_offerings_and_suppresses_deposit(
    runner: CliRunner, workspace
) -> None:
    offerings = _write_cash_inputs(workspace)
    common = ["-w", str(workspace["workbook"]), "-c", str(workspace["config"])]
    runner.invoke(main, ["import-cash", str(offerings), *common])
    runner.invoke(main, ["import-bank", str(workspace["ledger"]), *common])

    result = runner.invoke(
        main,
        [
            "auto-match",
            "--start",
            "2024-01-01",
            "--end",
            "2024-01-31",
            "--commit",
            "--json",
            *common,
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["classification"]["summary"]["suppressedCount"] == 1
    assert payload["confirmation"]["suppressedCount"] == 0
    assert payload["cashSync"]["processed"] == 3
    assert payload["cashSync"]["suppressedBankTransactions"] == 1

    store = WorkbookStore(workspace["workbook"])
    (deposit,) = asyncio.run(store.list_all())
    assert deposit.matched_status is MatchStatus.SUPPRESSED
    assert deposit.matched_type == "cash_offering_batch"
    assert len(asyncio.run(store.list_income())) == 3
    assert asyncio.run(store.list_expense()) == []
