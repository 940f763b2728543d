"""
Command-line interface for the church ledger reconciliation tool.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional
import asyncio
import json
import sys

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ReconConfig, generate_default_config, load_config
from .matching.committer import BatchConfirmationCommitter
from .matching.engine import AutoMatchOrchestrator
from .matching.gate import DuplicatePreventionGate
from .matching.lump_sum import CardPaymentReconciler, CashOfferingReconciler
from .matching.rules import RuleRepository
from .models.results import (
    ClassificationResult,
    ConfirmationRequest,
    ConfirmationResult,
    LumpSumSyncResult,
)
from .models.transaction import RuleType
from .parsers.bank_ledger_parser import BankLedgerParser, filter_new
from .parsers.cash_offering_parser import CashOfferingParser, filter_new_offerings
from .stores.workbook import WorkbookStore
from .utils.logging_config import setup_logging

console = Console()

DEFAULT_WORKBOOK = Path("church_ledger.xlsx")

config_option = click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
workbook_option = click.option(
    "-w",
    "--workbook",
    type=click.Path(path_type=Path),
    default=DEFAULT_WORKBOOK,
    show_default=True,
    help="Ledger workbook (xlsx)",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")


@dataclass
class Services:
    """Engine components wired to one workbook."""

    config: ReconConfig
    store: WorkbookStore
    rules: RuleRepository
    gate: DuplicatePreventionGate

    def orchestrator(self) -> AutoMatchOrchestrator:
        return AutoMatchOrchestrator(
            self.config,
            bank_store=self.store,
            rules=self.rules,
            cash_source=self.store,
            cash_reconciler=self.cash_reconciler(),
        )

    def committer(self) -> BatchConfirmationCommitter:
        return BatchConfirmationCommitter(self.store, self.store, self.rules, self.gate)

    def cash_reconciler(self) -> CashOfferingReconciler:
        return CashOfferingReconciler(
            self.store, self.store, self.store, self.gate, self.config.cash_offering
        )

    def card_reconciler(self) -> CardPaymentReconciler:
        return CardPaymentReconciler(self.store, self.gate, self.config.card_payment)


def _setup(config: Optional[Path], verbose: bool) -> ReconConfig:
    """Load configuration and configure logging."""
    recon_config = load_config(config)
    settings = recon_config.logging
    setup_logging(
        settings.level,
        log_file=Path(settings.file) if settings.file else None,
        log_format=settings.format,
        verbose=verbose,
    )
    return recon_config


def _services(recon_config: ReconConfig, workbook: Path) -> Services:
    if not workbook.exists():
        raise click.ClickException(
            f"Workbook not found: {workbook} (create it with 'church-recon init-workbook')"
        )
    store = WorkbookStore(workbook)
    return Services(
        config=recon_config,
        store=store,
        rules=RuleRepository(store, recon_config.rule_learning),
        gate=DuplicatePreventionGate(store),
    )


def _parse_amount(value: str) -> Decimal:
    try:
        amount = Decimal(value.replace(",", ""))
    except InvalidOperation:
        raise click.BadParameter(f"'{value}' is not an amount")
    if amount <= 0:
        raise click.BadParameter("amount must be positive")
    return amount


def _to_date(value: Optional[datetime]) -> Optional[date]:
    return value.date() if value else None


def _fail(e: Exception, verbose: bool) -> None:
    console.print(f"[red]Error: {e}[/red]")
    if verbose:
        console.print_exception()
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def main():
    """Church Bookkeeping Bank Ledger Reconciliation Tool."""
    pass


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


@main.command("init-workbook")
@workbook_option
@click.option("--overwrite", is_flag=True, help="Replace an existing workbook")
@click.option("--seed/--no-seed", default=True, help="Add the default matching rules")
def init_workbook(workbook: Path, overwrite: bool, seed: bool):
    """Create the ledger workbook with its sheets."""
    if workbook.exists() and overwrite and not click.confirm(
        f"Replace {workbook}? All stored data will be lost", default=False
    ):
        console.print("[yellow]Aborted[/yellow]")
        return

    store = WorkbookStore(workbook)
    store.initialize(overwrite=overwrite)
    console.print(f"[green]Workbook ready: {workbook}[/green]")

    if seed:
        added = asyncio.run(RuleRepository(store).seed())
        console.print(f"Added {len(added)} default matching rule(s)")


@main.command("import-bank")
@click.argument("ledger_file", type=click.Path(exists=True, path_type=Path))
@workbook_option
@config_option
@verbose_option
@click.option("--dry-run", is_flag=True, help="Parse and show summary without storing")
def import_bank(
    ledger_file: Path,
    workbook: Path,
    config: Optional[Path],
    verbose: bool,
    dry_run: bool,
):
    """
    Import a bank ledger export as pending transactions.

    LEDGER_FILE: CSV or Excel export of the church account
    """
    try:
        recon_config = _setup(config, verbose)
        parser = BankLedgerParser(recon_config)
        transactions = parser.parse_file(ledger_file)

        if dry_run:
            _display_import_summary(parser.get_file_summary(transactions), len(transactions), 0)
            console.print("\n[yellow]Dry run - nothing stored[/yellow]")
            return

        services = _services(recon_config, workbook)
        stored, skipped = asyncio.run(_import(services, transactions))
        _display_import_summary(parser.get_file_summary(transactions), stored, skipped)

    except click.ClickException:
        raise
    except Exception as e:
        _fail(e, verbose)


async def _import(services: Services, transactions) -> tuple[int, int]:
    existing = await services.store.list_all()
    new, duplicates = filter_new(transactions, (t.duplicate_key for t in existing))
    stored = await services.store.append_transactions(new)
    return stored, len(duplicates)


@main.command("import-cash")
@click.argument("offerings_file", type=click.Path(exists=True, path_type=Path))
@workbook_option
@config_option
@verbose_option
@click.option("--dry-run", is_flag=True, help="Parse and show summary without storing")
def import_cash(
    offerings_file: Path,
    workbook: Path,
    config: Optional[Path],
    verbose: bool,
    dry_run: bool,
):
    """
    Import the counted offering-box gifts for later cash sync.

    OFFERINGS_FILE: CSV or Excel sheet of individually attributed cash gifts
    """
    try:
        recon_config = _setup(config, verbose)
        parser = CashOfferingParser(recon_config)
        offerings = parser.parse_file(offerings_file)
        summary = parser.get_file_summary(offerings)

        if dry_run:
            _display_cash_import_summary(summary, len(offerings), 0)
            console.print("\n[yellow]Dry run - nothing stored[/yellow]")
            return

        services = _services(recon_config, workbook)
        stored, skipped = asyncio.run(_import_cash(services, offerings))
        _display_cash_import_summary(summary, stored, skipped)

    except click.ClickException:
        raise
    except Exception as e:
        _fail(e, verbose)


async def _import_cash(services: Services, offerings) -> tuple[int, int]:
    if not offerings:
        return 0, 0
    start = min(o.date for o in offerings)
    end = max(o.date for o in offerings)
    existing = await services.store.list_offerings(start, end)
    new, duplicates = filter_new_offerings(offerings, existing)
    if new:
        await services.store.add_offerings(new)
    return len(new), len(duplicates)


@main.group()
def rules():
    """Manage matching rules."""
    pass


@rules.command("list")
@workbook_option
@click.option(
    "--type",
    "rule_type",
    type=click.Choice([t.value for t in RuleType]),
    help="Only rules of this type",
)
def list_rules(workbook: Path, rule_type: Optional[str]):
    """Show stored matching rules."""
    services = _services(ReconConfig(), workbook)
    found = asyncio.run(
        services.store.list_rules(RuleType(rule_type) if rule_type else None)
    )

    table = Table(title=f"Matching Rules: {workbook.name}")
    table.add_column("Type")
    table.add_column("Pattern")
    table.add_column("Code", justify="right")
    table.add_column("Name")
    table.add_column("Confidence", justify="right")
    table.add_column("Uses", justify="right")

    for rule in found:
        table.add_row(
            rule.rule_type.value,
            rule.pattern,
            str(rule.target_code),
            rule.target_name,
            f"{rule.confidence:.2f}",
            str(rule.usage_count),
        )

    console.print(table)
    console.print(f"\nTotal rules: {len(found)}")


@rules.command("seed")
@workbook_option
def seed_rules(workbook: Path):
    """Add the default matching rules that are missing."""
    services = _services(ReconConfig(), workbook)
    added = asyncio.run(services.rules.seed())
    console.print(f"[green]Added {len(added)} default matching rule(s)[/green]")


@rules.command("add")
@click.argument("pattern")
@click.argument("code", type=int)
@click.argument("name")
@click.option(
    "--type",
    "rule_type",
    type=click.Choice([t.value for t in RuleType]),
    default=RuleType.BANK_INCOME.value,
    show_default=True,
)
@click.option("--confidence", type=click.FloatRange(0.0, 1.0), default=0.9, show_default=True)
@workbook_option
def add_rule(
    pattern: str, code: int, name: str, rule_type: str, confidence: float, workbook: Path
):
    """
    Add a matching rule.

    PATTERN: Text to look for in bank lines
    CODE: Income or expense account code
    NAME: Display name of the code
    """
    services = _services(ReconConfig(), workbook)
    rule = asyncio.run(
        services.rules.add(RuleType(rule_type), pattern, code, name, confidence)
    )
    console.print(f"[green]Added rule {rule.id}: '{pattern}' -> {code} {name}[/green]")


@main.command("auto-match")
@workbook_option
@config_option
@verbose_option
@click.option("--start", type=click.DateTime(formats=["%Y-%m-%d"]), help="Cash offering period start")
@click.option("--end", type=click.DateTime(formats=["%Y-%m-%d"]), help="Cash offering period end")
@click.option("--commit", is_flag=True, help="Confirm auto-matched and suppressed lines")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def auto_match(
    workbook: Path,
    config: Optional[Path],
    verbose: bool,
    start: Optional[datetime],
    end: Optional[datetime],
    commit: bool,
    as_json: bool,
):
    """Classify pending bank lines, optionally committing the confident ones."""
    try:
        recon_config = _setup(config, verbose)
        services = _services(recon_config, workbook)
        result, confirmation, cash_sync = asyncio.run(
            _auto_match(services, _to_date(start), _to_date(end), commit)
        )

        if as_json:
            payload = {"classification": result.to_dict()}
            if confirmation is not None:
                payload["confirmation"] = confirmation.to_dict()
            if cash_sync is not None:
                payload["cashSync"] = cash_sync.to_dict()
            click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
            return

        _display_classification(result)
        if confirmation is not None:
            _display_confirmation(confirmation)
            if cash_sync is not None:
                _display_sync("Cash Offering Sync", cash_sync)
        elif result.auto_matched or result.suppressed:
            console.print("\n[yellow]Preview only - rerun with --commit to confirm[/yellow]")

    except click.ClickException:
        raise
    except Exception as e:
        _fail(e, verbose)


async def _auto_match(
    services: Services, start: Optional[date], end: Optional[date], commit: bool
) -> tuple[ClassificationResult, Optional[ConfirmationResult], Optional[LumpSumSyncResult]]:
    result = await services.orchestrator().run(start, end)
    if not commit:
        return result, None, None

    committer = services.committer()
    confirmation = await committer.confirm(ConfirmationRequest.from_classification(result))
    await committer.drain()

    # The cash deposit is suppressed by the sync that posts the offerings.
    cash_sync = None
    if start and end:
        cash_sync = await services.cash_reconciler().sync(start, end)
    return result, confirmation, cash_sync


@main.command("sync-cash")
@click.argument("start", type=click.DateTime(formats=["%Y-%m-%d"]))
@click.argument("end", type=click.DateTime(formats=["%Y-%m-%d"]))
@workbook_option
@config_option
@verbose_option
def sync_cash(
    start: datetime, end: datetime, workbook: Path, config: Optional[Path], verbose: bool
):
    """
    Post cash offerings of a period and suppress their bank deposit.

    START: First offering date (YYYY-MM-DD)
    END: Last offering date (YYYY-MM-DD)
    """
    try:
        recon_config = _setup(config, verbose)
        services = _services(recon_config, workbook)
        result = asyncio.run(services.cash_reconciler().sync(start.date(), end.date()))
        _display_sync("Cash Offering Sync", result)
    except click.ClickException:
        raise
    except Exception as e:
        _fail(e, verbose)


@main.command("sync-card")
@click.argument("billing_date", type=click.DateTime(formats=["%Y-%m-%d"]))
@click.argument("amount")
@click.option("--count", type=int, default=0, help="Number of purchases on the statement")
@workbook_option
@config_option
@verbose_option
def sync_card(
    billing_date: datetime,
    amount: str,
    count: int,
    workbook: Path,
    config: Optional[Path],
    verbose: bool,
):
    """
    Suppress the bank withdrawal that paid a card statement.

    BILLING_DATE: Statement billing date (YYYY-MM-DD)
    AMOUNT: Statement total
    """
    total = _parse_amount(amount)
    try:
        recon_config = _setup(config, verbose)
        services = _services(recon_config, workbook)
        result = asyncio.run(
            services.card_reconciler().sync(billing_date.date(), total, count)
        )
        _display_sync("Card Payment Sync", result)
    except click.ClickException:
        raise
    except Exception as e:
        _fail(e, verbose)


def _display_import_summary(summary: dict, stored: int, skipped: int) -> None:
    table = Table(title="Bank Ledger Import")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    totals = summary["totals"]
    date_range = summary["date_range"]
    table.add_row("Rows Parsed", str(summary["row_count"]))
    table.add_row("Period", f"{date_range['start'] or '-'} to {date_range['end'] or '-'}")
    table.add_row("Deposits", f"{totals['deposit_count']} ({totals['total_deposits']:,.0f})")
    table.add_row(
        "Withdrawals", f"{totals['withdrawal_count']} ({totals['total_withdrawals']:,.0f})"
    )
    table.add_row("Stored", str(stored))
    table.add_row("Duplicates Skipped", str(skipped))

    console.print(table)


def _display_cash_import_summary(summary: dict, stored: int, skipped: int) -> None:
    table = Table(title="Cash Offering Import")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    date_range = summary["date_range"]
    table.add_row("Rows Parsed", str(summary["row_count"]))
    table.add_row("Period", f"{date_range['start'] or '-'} to {date_range['end'] or '-'}")
    table.add_row("Total", f"{summary['total']:,.0f}")
    table.add_row("Stored", str(stored))
    table.add_row("Duplicates Skipped", str(skipped))

    console.print(table)


def _display_classification(result: ClassificationResult) -> None:
    """Display auto-match classification in console."""
    table = Table(title="Auto-Match Classification")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("Outcome", style="cyan")
    table.add_column("Detail")

    for item in result.auto_matched:
        txn = item.transaction
        table.add_row(
            str(txn.transaction_date),
            f"{txn.amount:,.0f}",
            _short(txn.description or txn.detail),
            "auto-matched",
            f"{item.rule.target_code} {item.rule.target_name} ({item.rule.confidence:.2f})",
        )
    for item in result.suppressed:
        txn = item.transaction
        table.add_row(
            str(txn.transaction_date),
            f"{txn.amount:,.0f}",
            _short(txn.description or txn.detail),
            "suppressed",
            _short(item.reason),
        )
    for item in result.needs_review:
        txn = item.transaction
        hint = ", ".join(f"{r.target_code} {r.target_name}" for r in item.suggestions)
        if not hint and item.default_code:
            hint = f"default {item.default_code} {item.default_name}"
        table.add_row(
            str(txn.transaction_date),
            f"{txn.amount:,.0f}",
            _short(txn.description or txn.detail),
            f"review ({item.reason.value})",
            hint or "-",
        )

    console.print(table)
    summary = result.summary()
    console.print(
        f"\nIncome: {summary['incomeCount']}, Expense: {summary['expenseCount']}, "
        f"Suppressed: {summary['suppressedCount']}, Needs review: {summary['needsReviewCount']}"
    )
    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


def _display_confirmation(result: ConfirmationResult) -> None:
    style = "green" if result.success else "red"
    console.print(f"\n[{style}]{result.message}[/{style}]")
    if result.error:
        console.print(f"[red]{result.error}[/red]")


def _display_sync(title: str, result: LumpSumSyncResult) -> None:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Entries", str(result.processed))
    table.add_row("Total Amount", f"{result.total_amount:,.0f}")
    table.add_row("Bank Lines Suppressed", str(result.suppressed_bank_transactions))
    console.print(table)
    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


def _short(text: str, width: int = 40) -> str:
    text = text or ""
    return text[:width] + "..." if len(text) > width else text


if __name__ == "__main__":
    main()
