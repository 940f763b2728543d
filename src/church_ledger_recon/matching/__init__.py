"""Matching engine, gate, committer and lump-sum reconcilers."""

from .committer import BatchConfirmationCommitter
from .engine import AutoMatchOrchestrator, expense_from_transaction, income_from_transaction
from .gate import DuplicatePreventionGate, GateDecision
from .lump_sum import CardPaymentReconciler, CashOfferingReconciler, LumpSumReconciler
from .matcher import PatternMatcher, build_search_text
from .rules import DEFAULT_SEED_RULES, RuleRepository, SeedRule, rule_type_for

__all__ = [
    "AutoMatchOrchestrator",
    "BatchConfirmationCommitter",
    "CardPaymentReconciler",
    "CashOfferingReconciler",
    "DEFAULT_SEED_RULES",
    "DuplicatePreventionGate",
    "GateDecision",
    "LumpSumReconciler",
    "PatternMatcher",
    "RuleRepository",
    "SeedRule",
    "build_search_text",
    "expense_from_transaction",
    "income_from_transaction",
    "rule_type_for",
]
