"""
Spreadsheet-backed store.

Keeps every collection in one xlsx workbook, one sheet per collection,
with a styled header row naming the model fields. openpyxl is blocking,
so all file access runs in a worker thread. Every read and every
read-modify-save holds an OS file lock on a sidecar `.lock` file, and saves
go through a temporary file swapped in with `os.replace`, so the
compare-and-set status update holds across processes sharing the workbook.
"""

from dataclasses import fields
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TypeVar
import asyncio
import logging
import os
import shutil
import tempfile

from filelock import FileLock
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet

from ..models.transaction import (
    BankTransaction,
    CashOffering,
    ExpenseRecord,
    IncomeRecord,
    MatchingRule,
    MatchStatus,
    RuleType,
    generate_id,
    now_kst,
)
from ..utils.exceptions import StoreReadError, StoreWriteError
from .base import (
    BankTransactionStore,
    BatchUpdateResult,
    CashOfferingSource,
    LedgerStore,
    RuleStore,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

BANK_SHEET = "BankTransactions"
INCOME_SHEET = "IncomeRecords"
EXPENSE_SHEET = "ExpenseRecords"
RULES_SHEET = "MatchingRules"
CASH_SHEET = "CashOfferings"

SHEET_MODELS: dict[str, type] = {
    BANK_SHEET: BankTransaction,
    INCOME_SHEET: IncomeRecord,
    EXPENSE_SHEET: ExpenseRecord,
    RULES_SHEET: MatchingRule,
    CASH_SHEET: CashOffering,
}

DATE_FIELDS = {"transaction_date", "date"}
DATETIME_FIELDS = {"created_at", "updated_at", "uploaded_at"}
DECIMAL_FIELDS = {"withdrawal", "deposit", "balance", "amount"}
INT_FIELDS = {"code", "category_code", "target_code", "usage_count"}
FLOAT_FIELDS = {"confidence"}
BOOL_FIELDS = {"suppressed"}


def columns_for(model: type) -> list[str]:
    """Sheet header for a model: its dataclass field names in order."""
    return [f.name for f in fields(model)]


def to_cell(value: Any) -> Any:
    """Convert a model value into something openpyxl can store."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else str(value)
    if isinstance(value, datetime):
        # Excel cells cannot hold timezone-aware datetimes
        return value.isoformat()
    return value


def from_cell(name: str, value: Any) -> Any:
    """Convert a cell value back into the model's field type."""
    if value is None or value == "":
        return None
    if name in DATE_FIELDS:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value)[:10])
    if name in DATETIME_FIELDS:
        if isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value))
    if name in DECIMAL_FIELDS:
        try:
            return Decimal(str(value).replace(",", ""))
        except InvalidOperation as e:
            raise ValueError(f"{name}: '{value}' is not an amount") from e
    if name in INT_FIELDS:
        return int(value)
    if name in FLOAT_FIELDS:
        return float(value)
    if name in BOOL_FIELDS:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "y")
        return bool(value)
    return str(value) if not isinstance(value, str) else value


def model_to_row(obj: Any, columns: list[str]) -> list[Any]:
    return [to_cell(getattr(obj, name, None)) for name in columns]


def row_to_model(model: type, header: list[str], values: Iterable[Any]) -> Any:
    """Build a model from a sheet row; empty cells fall back to field defaults."""
    known = set(columns_for(model))
    kwargs = {}
    for name, value in zip(header, values):
        if name not in known:
            continue
        converted = from_cell(name, value)
        if converted is not None:
            kwargs[name] = converted
    return model(**kwargs)


class WorkbookStore(BankTransactionStore, LedgerStore, RuleStore, CashOfferingSource):
    """Implements every store interface over a single xlsx file."""

    def __init__(self, path: Path, lock_timeout: float = 30.0):
        """
        Initialize the store.

        Args:
            path: Path of the workbook; create it with `initialize()`
            lock_timeout: Seconds to wait for another process to release the file
        """
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._file_lock = FileLock(str(self.lock_path), timeout=lock_timeout)
        self._lock = asyncio.Lock()

    def initialize(self, overwrite: bool = False) -> Path:
        """
        Create the workbook with one header row per sheet.

        Existing workbooks are left alone unless `overwrite` is set; missing
        sheets are added either way.

        Returns:
            Path to the workbook
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._file_lock:
            if self.path.exists() and not overwrite:
                wb = load_workbook(self.path)
            else:
                wb = Workbook()
                if wb.active:
                    wb.remove(wb.active)

            for sheet_name, model in SHEET_MODELS.items():
                if sheet_name not in wb.sheetnames:
                    self._create_sheet(wb, sheet_name, columns_for(model))

            self._save(wb)
        logger.info(f"Workbook ready: {self.path}")
        return self.path

    @staticmethod
    def _create_sheet(wb: Workbook, sheet_name: str, columns: list[str]) -> Worksheet:
        ws = wb.create_sheet(sheet_name)
        for col, header in enumerate(columns, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER
            ws.column_dimensions[cell.column_letter].width = max(12, len(header) + 4)
        ws.freeze_panes = "A2"
        return ws

    # Blocking helpers, run through asyncio.to_thread

    def _save(self, wb: Workbook) -> None:
        """Write to a temporary file beside the workbook, then swap it in."""
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.stem}-", suffix=self.path.suffix, dir=self.path.parent
        )
        os.close(fd)
        try:
            wb.save(tmp_name)
            if self.path.exists():
                shutil.copymode(self.path, tmp_name)
            os.replace(tmp_name, self.path)
        except Exception:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

    def _locked(self, fn: Callable[..., T], *args) -> T:
        with self._file_lock:
            return fn(*args)

    def _open(self) -> Workbook:
        if not self.path.exists():
            raise FileNotFoundError(f"Workbook not found: {self.path}")
        return load_workbook(self.path)

    def _sheet(self, wb: Workbook, sheet_name: str) -> Worksheet:
        if sheet_name not in wb.sheetnames:
            return self._create_sheet(wb, sheet_name, columns_for(SHEET_MODELS[sheet_name]))
        return wb[sheet_name]

    @staticmethod
    def _header(ws: Worksheet) -> list[str]:
        return [str(c.value) if c.value is not None else "" for c in ws[1]]

    def _read_models(self, sheet_name: str) -> list:
        wb = self._open()
        ws = self._sheet(wb, sheet_name)
        header = self._header(ws)
        model = SHEET_MODELS[sheet_name]
        items = []
        for row_num, values in enumerate(ws.iter_rows(min_row=2, values_only=True), start=2):
            if not any(v not in (None, "") for v in values):
                continue
            try:
                items.append(row_to_model(model, header, values))
            except (TypeError, ValueError) as e:
                logger.warning(f"{sheet_name} row {row_num} skipped: {e}")
        return items

    def _append_models(self, sheet_name: str, items: list) -> None:
        wb = self._open()
        ws = self._sheet(wb, sheet_name)
        header = self._header(ws)
        for item in items:
            ws.append(model_to_row(item, header))
        self._save(wb)

    async def _read(self, sheet_name: str) -> list:
        async with self._lock:
            try:
                return await asyncio.to_thread(self._locked, self._read_models, sheet_name)
            except Exception as e:
                logger.error(f"Reading {sheet_name} from {self.path} failed: {e}")
                raise StoreReadError(f"Could not read {sheet_name}: {e}") from e

    async def _write(self, description: str, fn: Callable[[], T]) -> T:
        async with self._lock:
            try:
                return await asyncio.to_thread(self._locked, fn)
            except (KeyError, StoreWriteError):
                raise
            except Exception as e:
                logger.error(f"{description} in {self.path} failed: {e}")
                raise StoreWriteError(f"{description} failed: {e}") from e

    # Bank transactions

    async def list_pending(self) -> list[BankTransaction]:
        return [t for t in await self._read(BANK_SHEET) if t.is_pending]

    async def list_all(self) -> list[BankTransaction]:
        return await self._read(BANK_SHEET)

    async def get_status_map(self, ids: Iterable[str]) -> dict[str, MatchStatus]:
        wanted = set(ids)
        transactions = await self._read(BANK_SHEET)
        return {t.id: t.matched_status for t in transactions if t.id in wanted}

    async def batch_update_status(self, updates: list[StatusUpdate]) -> BatchUpdateResult:
        return await self._write(
            "Status update", lambda: self._batch_update_sync(updates)
        )

    def _batch_update_sync(self, updates: list[StatusUpdate]) -> BatchUpdateResult:
        wb = self._open()
        ws = self._sheet(wb, BANK_SHEET)
        col = {name: idx for idx, name in enumerate(self._header(ws), start=1)}

        rows: dict[str, int] = {}
        for row_num in range(2, ws.max_row + 1):
            txn_id = ws.cell(row=row_num, column=col["id"]).value
            if txn_id is not None:
                rows.setdefault(str(txn_id), row_num)

        result = BatchUpdateResult()
        for update in updates:
            row_num = rows.get(update.id)
            if row_num is None:
                logger.warning(f"Status update for unknown transaction {update.id}")
                result.failed.append(update.id)
                continue

            live = ws.cell(row=row_num, column=col["matched_status"]).value
            suppressed = from_cell("suppressed", ws.cell(row=row_num, column=col["suppressed"]).value)
            if (live or MatchStatus.PENDING.value) != MatchStatus.PENDING.value or suppressed:
                result.conflicted.append(update.id)
                continue

            status = MatchStatus(update.matched_status)
            ws.cell(row=row_num, column=col["matched_status"], value=status.value)
            if update.matched_type is not None:
                ws.cell(row=row_num, column=col["matched_type"], value=update.matched_type)
            if update.matched_ids is not None:
                ws.cell(row=row_num, column=col["matched_ids"], value=update.matched_ids)
            if status is MatchStatus.SUPPRESSED:
                ws.cell(row=row_num, column=col["suppressed"], value=True)
                ws.cell(
                    row=row_num, column=col["suppressed_reason"], value=update.suppressed_reason
                )
            result.success.append(update.id)

        if result.success:
            self._save(wb)
        return result

    async def append_transactions(self, transactions: list[BankTransaction]) -> int:
        def append() -> int:
            existing = {t.id for t in self._read_models(BANK_SHEET)}
            new = []
            for txn in transactions:
                if txn.id in existing:
                    logger.warning(f"Skipping transaction with existing id {txn.id}")
                    continue
                existing.add(txn.id)
                new.append(txn)
            if new:
                self._append_models(BANK_SHEET, new)
            return len(new)

        return await self._write("Bank transaction import", append)

    # Ledgers

    async def append_income(self, records: list[IncomeRecord]) -> None:
        await self._write(
            "Income append", lambda: self._append_models(INCOME_SHEET, records)
        )

    async def append_expense(self, records: list[ExpenseRecord]) -> None:
        await self._write(
            "Expense append", lambda: self._append_models(EXPENSE_SHEET, records)
        )

    async def list_income(self) -> list[IncomeRecord]:
        return await self._read(INCOME_SHEET)

    async def list_expense(self) -> list[ExpenseRecord]:
        return await self._read(EXPENSE_SHEET)

    # Rules

    async def list_rules(self, rule_type: Optional[RuleType] = None) -> list[MatchingRule]:
        rules = await self._read(RULES_SHEET)
        if rule_type is None:
            return rules
        return [r for r in rules if r.rule_type == rule_type]

    async def add_rule(self, rule: MatchingRule) -> str:
        if not rule.id:
            rule.id = generate_id("RULE")
        await self._write(
            "Rule append", lambda: self._append_models(RULES_SHEET, [rule])
        )
        return rule.id

    async def increment_usage(self, rule_id: str) -> None:
        def increment(ws: Worksheet, row_num: int, col: dict[str, int]) -> None:
            current = ws.cell(row=row_num, column=col["usage_count"]).value or 0
            ws.cell(row=row_num, column=col["usage_count"], value=int(current) + 1)

        await self._write(
            "Rule usage increment", lambda: self._update_rule_sync(rule_id, increment)
        )

    async def update_confidence(self, rule_id: str, confidence: float) -> None:
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Rule {rule_id}: confidence {confidence} outside [0, 1]")

        def set_confidence(ws: Worksheet, row_num: int, col: dict[str, int]) -> None:
            ws.cell(row=row_num, column=col["confidence"], value=confidence)

        await self._write(
            "Rule confidence update", lambda: self._update_rule_sync(rule_id, set_confidence)
        )

    def _update_rule_sync(
        self, rule_id: str, change: Callable[[Worksheet, int, dict[str, int]], None]
    ) -> None:
        wb = self._open()
        ws = self._sheet(wb, RULES_SHEET)
        col = {name: idx for idx, name in enumerate(self._header(ws), start=1)}
        for row_num in range(2, ws.max_row + 1):
            if str(ws.cell(row=row_num, column=col["id"]).value) == rule_id:
                change(ws, row_num, col)
                ws.cell(row=row_num, column=col["updated_at"], value=now_kst().isoformat())
                self._save(wb)
                return
        raise KeyError(f"Matching rule {rule_id} not found")

    # Cash offerings

    async def list_offerings(self, start_date: date, end_date: date) -> list[CashOffering]:
        offerings = await self._read(CASH_SHEET)
        return [o for o in offerings if start_date <= o.date <= end_date]

    async def add_offerings(self, offerings: list[CashOffering]) -> None:
        await self._write(
            "Cash offering append", lambda: self._append_models(CASH_SHEET, offerings)
        )
