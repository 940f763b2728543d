"""
Pattern matcher for bank transaction text.
Ranks matching rules by confidence; no side effects.
"""

from typing import Iterable, Optional

from ..models.results import RuleCandidate
from ..models.transaction import BankTransaction, MatchingRule

PATTERN_MATCH = "pattern"
TOKEN_MATCH = "token"


def build_search_text(transaction: BankTransaction) -> str:
    """Lower-cased concatenation of description, detail and memo."""
    return transaction.search_text


class PatternMatcher:
    """
    Deterministic substring ranker.

    A rule is a candidate when its whole pattern occurs in the text, or
    when any whitespace-delimited token of the pattern does. Candidates
    are ordered by confidence, highest first; equal confidences keep the
    order the rules were given in.
    """

    def __init__(self, max_candidates: int = 3):
        """
        Initialize the matcher.

        Args:
            max_candidates: Maximum number of ranked candidates returned
        """
        self.max_candidates = max_candidates

    def rank(self, search_text: str, rules: Iterable[MatchingRule]) -> list[RuleCandidate]:
        """
        Rank the rules that match the given text.

        Args:
            search_text: Lower-cased transaction text
            rules: Rules of the relevant rule type, in stored order

        Returns:
            Up to `max_candidates` candidates, best first
        """
        text = (search_text or "").lower()
        candidates: list[RuleCandidate] = []

        for rule in rules:
            kind = self.match_kind(text, rule.pattern)
            if kind is not None:
                candidates.append(RuleCandidate(rule=rule, score=rule.confidence, match_kind=kind))

        # sorted() is stable, so ties keep input order
        candidates = sorted(candidates, key=lambda c: c.score, reverse=True)
        return candidates[: self.max_candidates]

    def rank_transaction(
        self, transaction: BankTransaction, rules: Iterable[MatchingRule]
    ) -> list[RuleCandidate]:
        """Rank rules against a transaction's search text."""
        return self.rank(build_search_text(transaction), rules)

    @staticmethod
    def match_kind(text: str, pattern: str) -> Optional[str]:
        """Return how the pattern hits the text, or None when it does not."""
        normalized = (pattern or "").strip().lower()
        if not normalized:
            return None
        if normalized in text:
            return PATTERN_MATCH
        if any(token in text for token in normalized.split()):
            return TOKEN_MATCH
        return None
