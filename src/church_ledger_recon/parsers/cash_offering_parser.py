"""
Cash offering sheet parser.
Reads the counting team's sheet of individually attributed offering-box
gifts so they can be stored and later synced against the bank deposit.
"""

from collections import Counter
from decimal import Decimal
from typing import Iterable, Optional
import logging

import pandas as pd

from ..config import ReconConfig, TabularInputConfig
from ..models.transaction import CashOffering
from ..utils.exceptions import CashOfferingParseError, ReconciliationError
from .bank_ledger_parser import BankLedgerParser

logger = logging.getLogger(__name__)


class CashOfferingParser(BankLedgerParser):
    """
    Parser for counted cash offerings.

    File reading and date/amount parsing are shared with the bank ledger
    parser; only the row shape differs.
    """

    label = "cash offering"
    error_class: type[ReconciliationError] = CashOfferingParseError

    @staticmethod
    def input_config(config: ReconConfig) -> TabularInputConfig:
        return config.input.cash_offerings

    def parse_dataframe(self, df: pd.DataFrame) -> list[CashOffering]:
        """
        Convert a DataFrame of counted gifts to offerings.

        Rows without a date or a positive amount are skipped with a warning.
        """
        df.columns = [str(c).strip() for c in df.columns]
        required = [self.column_mappings.get(k, k) for k in ("date", "amount")]
        missing = [c for c in required if c not in df.columns]
        if missing:
            raise CashOfferingParseError(
                f"Missing required column(s) {', '.join(missing)} "
                f"(found: {', '.join(df.columns)})"
            )

        offerings: list[CashOffering] = []
        for idx, row in df.iterrows():
            offering = self._offering_from_row(row, int(idx))
            if offering:
                offerings.append(offering)

        logger.info(f"Extracted {len(offerings)} cash offerings")
        return offerings

    def _offering_from_row(self, row: pd.Series, idx: int) -> Optional[CashOffering]:
        mapping = self.column_mappings
        settings = self.ledger_config

        offering_date = self._parse_date(row.get(mapping.get("date", "날짜")))
        if not offering_date:
            logger.warning(f"Row {idx}: Invalid date, skipping")
            return None

        amount = self._parse_amount(row.get(mapping.get("amount", "금액")))
        if amount <= 0:
            logger.warning(f"Row {idx}: No valid amount found, skipping")
            return None

        code_text = self._text(row.get(mapping.get("code", "코드")))
        try:
            code = int(float(code_text)) if code_text else settings.default_code
        except ValueError:
            logger.warning(f"Row {idx}: Unknown code {code_text!r}, using {settings.default_code}")
            code = settings.default_code

        return CashOffering(
            date=offering_date,
            amount=amount,
            attribution=self._text(row.get(mapping.get("attribution", "성명"))) or "무명",
            code=code,
            item=self._text(row.get(mapping.get("item", "항목"))) or settings.default_item,
            note=self._text(row.get(mapping.get("note", "비고"))),
        )

    def get_file_summary(self, offerings: list[CashOffering]) -> dict:
        dates = [o.date for o in offerings]
        return {
            "row_count": len(offerings),
            "date_range": {
                "start": min(dates).isoformat() if dates else None,
                "end": max(dates).isoformat() if dates else None,
            },
            "total": sum((o.amount for o in offerings), Decimal("0")),
        }


def offering_key(offering: CashOffering) -> tuple:
    return (offering.date, offering.amount, offering.attribution, offering.code)


def filter_new_offerings(
    offerings: list[CashOffering], existing: Iterable[CashOffering]
) -> tuple[list[CashOffering], list[CashOffering]]:
    """
    Drop offerings already stored for the same date, amount, donor and code.

    Matching is by count: two anonymous 10,000 gifts on one Sunday are both
    kept unless the store already holds two.

    Returns:
        Tuple of (new offerings, skipped duplicates)
    """
    stored = Counter(offering_key(o) for o in existing)
    new: list[CashOffering] = []
    duplicates: list[CashOffering] = []
    for offering in offerings:
        key = offering_key(offering)
        if stored[key] > 0:
            stored[key] -= 1
            duplicates.append(offering)
            continue
        new.append(offering)

    if duplicates:
        logger.info(f"Skipped {len(duplicates)} cash offering(s) already stored")
    return new, duplicates
