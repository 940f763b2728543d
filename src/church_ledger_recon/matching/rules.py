"""
Typed access to persisted matching rules, plus rule learning.
"""

from dataclasses import dataclass
from typing import Optional
import logging
import re

from ..config import RuleLearningSettings
from ..models.transaction import (
    BankTransaction,
    MatchingRule,
    RuleType,
    TargetType,
    generate_id,
    now_kst,
)
from ..stores.base import RuleStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeedRule:
    """A rule shipped with the application."""

    rule_type: RuleType
    pattern: str
    target_code: int
    target_name: str
    confidence: float

    @property
    def target_type(self) -> TargetType:
        if self.rule_type is RuleType.BANK_INCOME:
            return TargetType.INCOME
        return TargetType.EXPENSE


_I = RuleType.BANK_INCOME
_E = RuleType.BANK_EXPENSE

DEFAULT_SEED_RULES: list[SeedRule] = [
    SeedRule(_I, "십일", 12, "십일조", 0.95),
    SeedRule(_I, "건축", 501, "건축헌금", 0.95),
    SeedRule(_I, "감사", 13, "감사헌금", 0.9),
    SeedRule(_I, "선교", 21, "선교헌금", 0.95),
    SeedRule(_I, "주일", 11, "주일헌금", 0.85),
    SeedRule(_I, "구제", 22, "구제헌금", 0.95),
    SeedRule(_I, "큐티", 24, "큐티", 0.95),
    SeedRule(_E, "수도", 63, "수도료", 0.95),
    SeedRule(_E, "코원", 62, "가스비", 0.95),
    SeedRule(_E, "어린이재단", 53, "어린이재단", 0.95),
    SeedRule(_E, "대출", 501, "대출상환", 0.9),
    SeedRule(_E, "결산", 94, "결산", 0.85),
    SeedRule(_E, "현대엘리", 64, "엘리베이터", 0.95),
    SeedRule(_E, "전기", 61, "전기료", 0.85),
    SeedRule(_E, "한국전력", 61, "전기료", 0.95),
    SeedRule(_E, "LGU", 91, "통신비(LGU)", 0.9),
    SeedRule(_E, "렌탈", 64, "렌탈비", 0.9),
]


def rule_type_for(transaction: BankTransaction) -> Optional[RuleType]:
    """Rules for deposits are income rules, for withdrawals expense rules."""
    if transaction.is_deposit:
        return RuleType.BANK_INCOME
    if transaction.is_withdrawal:
        return RuleType.BANK_EXPENSE
    return None


class RuleRepository:
    """
    Read/write accessor over a RuleStore.

    Keeps rule bookkeeping (usage counts, learned rules) in one place so
    the orchestrator and committer never touch the store directly.
    """

    def __init__(self, store: RuleStore, settings: Optional[RuleLearningSettings] = None):
        self.store = store
        self.settings = settings or RuleLearningSettings()

    async def rules_for(self, rule_type: RuleType) -> list[MatchingRule]:
        """Rules of one type in stored order."""
        return await self.store.list_rules(rule_type)

    async def all_rules(self) -> dict[RuleType, list[MatchingRule]]:
        """Rules grouped by type."""
        rules = await self.store.list_rules()
        grouped: dict[RuleType, list[MatchingRule]] = {t: [] for t in RuleType}
        for rule in rules:
            grouped[rule.rule_type].append(rule)
        return grouped

    async def record_usage(self, rule_id: str) -> None:
        """Count one more confirmed use of a rule."""
        await self.store.increment_usage(rule_id)
        logger.debug(f"Incremented usage of rule {rule_id}")

    async def add(
        self,
        rule_type: RuleType,
        pattern: str,
        target_code: int,
        target_name: str,
        confidence: float = 0.9,
        usage_count: int = 0,
    ) -> MatchingRule:
        """Create and persist a new rule."""
        now = now_kst()
        rule = MatchingRule(
            id=generate_id("RULE"),
            rule_type=rule_type,
            pattern=pattern,
            target_type=(
                TargetType.INCOME if rule_type is RuleType.BANK_INCOME else TargetType.EXPENSE
            ),
            target_code=target_code,
            target_name=target_name,
            confidence=confidence,
            usage_count=usage_count,
            created_at=now,
            updated_at=now,
        )
        rule_id = await self.store.add_rule(rule)
        rule.id = rule_id
        logger.info(f"Added matching rule {rule_id}: '{pattern}' -> {target_code} {target_name}")
        return rule

    async def seed(self, seeds: Optional[list[SeedRule]] = None) -> list[MatchingRule]:
        """
        Add the default seed rules that are not stored yet.

        A seed counts as present when a rule of the same type, pattern
        and target code exists.

        Returns:
            The rules that were added
        """
        seeds = DEFAULT_SEED_RULES if seeds is None else seeds
        existing = {
            (r.rule_type, r.pattern, r.target_code) for r in await self.store.list_rules()
        }
        added: list[MatchingRule] = []
        for seed in seeds:
            if (seed.rule_type, seed.pattern, seed.target_code) in existing:
                continue
            added.append(
                await self.add(
                    seed.rule_type,
                    seed.pattern,
                    seed.target_code,
                    seed.target_name,
                    seed.confidence,
                )
            )
        return added

    async def learn(
        self,
        transaction: BankTransaction,
        target_code: int,
        target_name: str,
    ) -> Optional[MatchingRule]:
        """
        Learn from an operator's manual classification.

        An existing rule with the same pattern and target code gains one
        use and a small confidence step; otherwise a new low-confidence
        rule is added.

        Args:
            transaction: The classified bank transaction
            target_code: Income or expense code the operator chose
            target_name: Display name of the code

        Returns:
            The new or updated rule, or None when nothing could be learned
        """
        if not self.settings.enabled:
            return None

        rule_type = rule_type_for(transaction)
        if rule_type is None:
            return None

        pattern = self.extract_key_pattern(f"{transaction.description} {transaction.detail}")
        if not pattern:
            return None

        for rule in await self.store.list_rules(rule_type):
            if rule.pattern == pattern and rule.target_code == target_code:
                await self.store.increment_usage(rule.id)
                confidence = min(1.0, round(rule.confidence + self.settings.confidence_step, 4))
                if confidence != rule.confidence:
                    await self.store.update_confidence(rule.id, confidence)
                rule.usage_count += 1
                rule.confidence = confidence
                logger.info(f"Reinforced rule {rule.id} ('{pattern}') to {confidence:.2f}")
                return rule

        return await self.add(
            rule_type,
            pattern,
            target_code,
            target_name,
            confidence=self.settings.initial_confidence,
            usage_count=1,
        )

    def extract_key_pattern(self, text: str) -> str:
        """
        Reduce bank line text to a reusable pattern.

        Digits, bank names and transfer-channel tokens are removed,
        punctuation collapses to single spaces and the result is cut to
        the configured length.
        """
        pattern = re.sub(r"\d+", "", text or "")

        for bank in self.settings.bank_names:
            pattern = re.sub(re.escape(bank), "", pattern, flags=re.IGNORECASE)

        for token in self.settings.channel_tokens:
            pattern = pattern.replace(token, "")

        pattern = re.sub(r"[^\w\sㄱ-ㅎ가-힣]", " ", pattern)
        pattern = re.sub(r"_", " ", pattern)
        pattern = re.sub(r"\s+", " ", pattern).strip()

        if len(pattern) > self.settings.max_pattern_length:
            pattern = pattern[: self.settings.max_pattern_length].strip()

        return pattern
