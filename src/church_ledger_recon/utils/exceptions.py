"""Custom exceptions for the reconciliation engine."""

from decimal import Decimal
from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class BankLedgerParseError(ReconciliationError):
    """Error parsing a bank ledger export."""

    pass


class CashOfferingParseError(ReconciliationError):
    """Error parsing a counted cash offering sheet."""

    pass


class ValidationError(ReconciliationError):
    """A record or item is missing a required field."""

    def __init__(self, item_id: Optional[str], reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"{item_id or '<no id>'}: {reason}")


class StateConflictError(ReconciliationError):
    """A transaction is no longer pending when re-checked before a write."""

    def __init__(self, transaction_id: str, live_status: Optional[str]):
        self.transaction_id = transaction_id
        self.live_status = live_status
        super().__init__(
            f"Transaction {transaction_id} is {live_status or 'missing'}, not pending"
        )


class StoreReadError(ReconciliationError):
    """Reading authoritative state from a backing store failed."""

    pass


class StoreWriteError(ReconciliationError):
    """Writing to a backing store failed."""

    pass


class ReconciliationMismatch(ReconciliationError):
    """
    A lump-sum total has no single matching bank line within tolerance.

    Non-fatal: reconcilers attach this to their result as a warning
    instead of raising it.
    """

    def __init__(self, channel: str, total: Decimal, candidates: int = 0):
        self.channel = channel
        self.total = total
        self.candidates = candidates
        if candidates > 1:
            detail = f"{candidates} bank lines are within tolerance"
        else:
            detail = "no bank line is within tolerance"
        super().__init__(
            f"{channel} total {total:,.0f} could not be reconciled: {detail}"
        )
