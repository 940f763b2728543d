"""
Duplicate-prevention gate.

Every write path re-reads the live status of the transactions it is about
to touch, straight from the bank transaction store, and drops anything
that is no longer pending. This is optimistic, lock-free concurrency: the
read happens immediately before the write, and the store's compare-and-set
batch update settles the rare race where two commits pass the gate at the
same instant.

If the status re-read itself fails the gate fails closed: it raises and
the caller writes nothing for that batch. Status supplied by the caller
(for example a page loaded minutes ago) is never trusted.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional
import logging

from ..models.transaction import MatchStatus
from ..stores.base import BankTransactionStore
from ..utils.exceptions import StateConflictError, StoreReadError

logger = logging.getLogger(__name__)


@dataclass
class GateDecision:
    """Which ids may be written, and why the others were dropped."""

    admitted: list[str] = field(default_factory=list)
    conflicts: list[StateConflictError] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)

    @property
    def conflict_ids(self) -> list[str]:
        return [c.transaction_id for c in self.conflicts]


class DuplicatePreventionGate:
    """Admits only transactions whose live status is pending."""

    def __init__(self, store: BankTransactionStore):
        """
        Initialize the gate.

        Args:
            store: Authoritative bank transaction store
        """
        self.store = store

    async def admit(self, transaction_ids: Iterable[str]) -> GateDecision:
        """
        Filter ids down to those that are still pending right now.

        Args:
            transaction_ids: Ids the caller intends to write, in request order

        Returns:
            Gate decision preserving request order among admitted ids

        Raises:
            StoreReadError: If the live status could not be read
        """
        decision = GateDecision()
        ordered: list[str] = []
        seen: set[str] = set()
        for txn_id in transaction_ids:
            if txn_id in seen:
                decision.duplicates.append(txn_id)
                continue
            seen.add(txn_id)
            ordered.append(txn_id)

        if not ordered:
            return decision

        try:
            live = await self.store.get_status_map(ordered)
        except Exception as e:
            logger.error(f"Status re-read failed for {len(ordered)} transaction(s): {e}")
            raise StoreReadError(f"Could not verify transaction status: {e}") from e

        for txn_id in ordered:
            status: Optional[MatchStatus] = live.get(txn_id)
            if status is None:
                logger.warning(f"Transaction {txn_id} not found in bank store")
                decision.unknown.append(txn_id)
            elif MatchStatus(status) is MatchStatus.PENDING:
                decision.admitted.append(txn_id)
            else:
                conflict = StateConflictError(txn_id, MatchStatus(status).value)
                logger.info(f"Excluded: {conflict}")
                decision.conflicts.append(conflict)

        if decision.duplicates:
            logger.info(f"Ignored {len(decision.duplicates)} repeated id(s) in one request")

        return decision
