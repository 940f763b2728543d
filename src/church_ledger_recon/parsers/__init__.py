"""Parsers for bank ledger exports and counted cash offerings."""

from .bank_ledger_parser import BankLedgerParser, filter_new
from .cash_offering_parser import CashOfferingParser, filter_new_offerings

__all__ = ["BankLedgerParser", "CashOfferingParser", "filter_new", "filter_new_offerings"]
