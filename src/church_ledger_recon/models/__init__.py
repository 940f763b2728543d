"""Data models for reconciliation."""

from .transaction import (
    BankTransaction,
    CashOffering,
    CashOfferingBatch,
    ExpenseRecord,
    IncomeRecord,
    MatchedType,
    MatchingRule,
    MatchStatus,
    RuleType,
    TargetType,
    generate_id,
    now_kst,
)
from .results import (
    AutoMatchItem,
    ClassificationResult,
    ConfirmationItem,
    ConfirmationRequest,
    ConfirmationResult,
    LumpSumPlan,
    LumpSumSyncResult,
    ReviewItem,
    ReviewReason,
    RuleCandidate,
    SubBatchResult,
    SuppressedItem,
    SuppressionItem,
)

__all__ = [
    "BankTransaction",
    "CashOffering",
    "CashOfferingBatch",
    "ExpenseRecord",
    "IncomeRecord",
    "MatchedType",
    "MatchingRule",
    "MatchStatus",
    "RuleType",
    "TargetType",
    "generate_id",
    "now_kst",
    "AutoMatchItem",
    "ClassificationResult",
    "ConfirmationItem",
    "ConfirmationRequest",
    "ConfirmationResult",
    "LumpSumPlan",
    "LumpSumSyncResult",
    "ReviewItem",
    "ReviewReason",
    "RuleCandidate",
    "SubBatchResult",
    "SuppressedItem",
    "SuppressionItem",
]
