"""Bank ledger reconciliation for church bookkeeping."""

__version__ = "0.1.0"
