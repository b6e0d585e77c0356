"""Data models for cascadeledger."""

from cascadeledger.models.ledger import (
    Account,
    AccountType,
    JournalEntry,
    Transaction,
    TransactionOrigin,
    TransactionType,
)
from cascadeledger.models.money import Money, Quantity
from cascadeledger.models.report import (
    BalanceCheckpoint,
    CoverageSummary,
    DiscrepancySeverity,
    ReconciliationResult,
    ReconciliationState,
    ValidationIssue,
    ValidationReport,
    ValidationStatus,
)
from cascadeledger.models.rows import SourceRow, TypedRow

__all__ = [
    "Account",
    "AccountType",
    "BalanceCheckpoint",
    "CoverageSummary",
    "DiscrepancySeverity",
    "JournalEntry",
    "Money",
    "Quantity",
    "ReconciliationResult",
    "ReconciliationState",
    "SourceRow",
    "Transaction",
    "TransactionOrigin",
    "TransactionType",
    "TypedRow",
    "ValidationIssue",
    "ValidationReport",
    "ValidationStatus",
]
