"""
Bank ledger export parser.
Parses CSV or Excel exports of the church account into pending bank
transactions.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, Optional
import logging

import pandas as pd

from ..config import ReconConfig, TabularInputConfig
from ..models.transaction import (
    BankTransaction,
    MatchStatus,
    generate_id,
    now_kst,
)
from ..utils.exceptions import BankLedgerParseError, ReconciliationError

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}


class BankLedgerParser:
    """
    Parser for bank ledger exports.

    Column names come from `input.bank_ledger.column_mappings`, so exports
    from different banks only need a config change.
    """

    label = "bank ledger"
    error_class: type[ReconciliationError] = BankLedgerParseError

    def __init__(self, config: ReconConfig):
        """
        Initialize the parser with configuration.

        Args:
            config: Application configuration object
        """
        self.config = config
        self.ledger_config = self.input_config(config)
        self.column_mappings = self.ledger_config.column_mappings

    @staticmethod
    def input_config(config: ReconConfig) -> TabularInputConfig:
        return config.input.bank_ledger

    def parse_file(self, file_path: Path) -> list[BankTransaction]:
        """
        Parse a bank ledger export and return pending transactions.

        Args:
            file_path: Path to a CSV or Excel file

        Returns:
            Transactions in file order

        Raises:
            BankLedgerParseError: If the file cannot be read or lacks required columns
        """
        logger.info(f"Parsing {self.label} file: {file_path}")

        try:
            if file_path.suffix.lower() in EXCEL_SUFFIXES:
                df = pd.read_excel(
                    file_path,
                    sheet_name=self.ledger_config.sheet_name or 0,
                    dtype=object,
                )
            else:
                df = pd.read_csv(
                    file_path,
                    encoding=self.ledger_config.encoding,
                    delimiter=self.ledger_config.delimiter,
                    dtype=str,
                    keep_default_na=False,
                )
        except Exception as e:
            logger.error(f"Failed to read {self.label} file: {e}")
            raise self.error_class(f"Failed to read {self.label} file: {e}") from e

        return self.parse_dataframe(df)

    def parse_dataframe(self, df: pd.DataFrame) -> list[BankTransaction]:
        """
        Convert a DataFrame of ledger rows to transactions.

        Rows without a date or without any amount are skipped with a warning.
        """
        df.columns = [str(c).strip() for c in df.columns]
        date_col = self.column_mappings.get("transaction_date", "거래일자")
        if date_col not in df.columns:
            raise BankLedgerParseError(
                f"Missing required column '{date_col}' (found: {', '.join(df.columns)})"
            )

        uploaded_at = now_kst()
        transactions: list[BankTransaction] = []

        for idx, row in df.iterrows():
            try:
                txn = self._normalize_row(row, int(idx), uploaded_at)
                if txn:
                    transactions.append(txn)
            except Exception as e:
                logger.warning(f"Failed to process row {idx}: {e}")
                continue

        logger.info(f"Extracted {len(transactions)} transactions from bank ledger")
        return transactions

    def _normalize_row(
        self, row: pd.Series, idx: int, uploaded_at: datetime
    ) -> Optional[BankTransaction]:
        mapping = self.column_mappings

        txn_date = self._parse_date(row.get(mapping.get("transaction_date", "거래일자")))
        if not txn_date:
            logger.warning(f"Row {idx}: Invalid date, skipping")
            return None

        withdrawal = self._parse_amount(row.get(mapping.get("withdrawal", "출금금액")))
        deposit = self._parse_amount(row.get(mapping.get("deposit", "입금금액")))
        if withdrawal <= 0 and deposit <= 0:
            logger.warning(f"Row {idx}: No valid amount found, skipping")
            return None

        return BankTransaction(
            id=generate_id("BANK"),
            transaction_date=txn_date,
            withdrawal=withdrawal,
            deposit=deposit,
            balance=self._parse_amount(row.get(mapping.get("balance", "잔액"))),
            description=self._text(row.get(mapping.get("description", "적요"))),
            detail=self._text(row.get(mapping.get("detail", "내용"))),
            memo=self._text(row.get(mapping.get("memo", "메모"))),
            time=self._text(row.get(mapping.get("time", "거래시간"))),
            branch=self._text(row.get(mapping.get("branch", "거래점"))),
            matched_status=MatchStatus.PENDING,
            uploaded_at=uploaded_at,
        )

    @staticmethod
    def _text(value) -> str:
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return ""
        return str(value).strip()

    def _parse_date(self, date_value) -> Optional[date]:
        """
        Parse a date value from the export.

        Args:
            date_value: Date value (string, date or Timestamp)

        Returns:
            Python date object or None
        """
        if date_value is None or (not isinstance(date_value, str) and pd.isna(date_value)):
            return None

        if isinstance(date_value, datetime):
            return date_value.date()
        if isinstance(date_value, date):
            return date_value

        text = str(date_value).strip()
        if not text:
            return None

        try:
            return datetime.strptime(text, self.ledger_config.date_format).date()
        except ValueError:
            pass

        # Bank exports mix "2024.01.07", "2024/01/07" and "2024-01-07 10:30"
        normalized = text.replace(".", "-").replace("/", "-").rstrip("-")
        try:
            return pd.to_datetime(normalized).date()
        except (ValueError, TypeError):
            return None

    def _parse_amount(self, amount_value) -> Decimal:
        """
        Parse an amount value from the export.

        Args:
            amount_value: Amount value (string, number or None)

        Returns:
            Decimal amount, zero when empty or unparseable
        """
        if amount_value is None or (not isinstance(amount_value, str) and pd.isna(amount_value)):
            return Decimal("0")

        if isinstance(amount_value, str):
            amount_value = amount_value.replace(",", "").replace("원", "").strip()
            if not amount_value or amount_value == "-":
                return Decimal("0")

        try:
            return Decimal(str(amount_value))
        except (InvalidOperation, ValueError):
            logger.debug(f"Unparseable amount: {amount_value!r}")
            return Decimal("0")

    def get_file_summary(self, transactions: list[BankTransaction]) -> dict:
        """
        Summarize parsed transactions.

        Args:
            transactions: Parsed transactions

        Returns:
            Dictionary with row counts, date range and totals
        """
        dates = [t.transaction_date for t in transactions]
        deposits = [t.deposit for t in transactions if t.is_deposit]
        withdrawals = [t.withdrawal for t in transactions if t.is_withdrawal]
        return {
            "row_count": len(transactions),
            "date_range": {
                "start": min(dates).isoformat() if dates else None,
                "end": max(dates).isoformat() if dates else None,
            },
            "totals": {
                "deposit_count": len(deposits),
                "withdrawal_count": len(withdrawals),
                "total_deposits": sum(deposits, Decimal("0")),
                "total_withdrawals": sum(withdrawals, Decimal("0")),
            },
        }


def filter_new(
    transactions: list[BankTransaction], existing_keys: Iterable[str]
) -> tuple[list[BankTransaction], list[BankTransaction]]:
    """
    Drop rows already stored, or repeated within the same upload.

    Rows are compared by duplicate key (date, deposit, withdrawal, balance).

    Args:
        transactions: Freshly parsed rows
        existing_keys: Duplicate keys of stored transactions

    Returns:
        Tuple of (new rows, skipped duplicates)
    """
    seen = set(existing_keys)
    new: list[BankTransaction] = []
    duplicates: list[BankTransaction] = []
    for txn in transactions:
        key = txn.duplicate_key
        if key in seen:
            duplicates.append(txn)
            continue
        seen.add(key)
        new.append(txn)

    if duplicates:
        logger.info(f"Skipped {len(duplicates)} duplicate bank line(s)")
    return new, duplicates
