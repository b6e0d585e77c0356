"""
cascadeledger analyzers — pure computation over typed rows and transactions.

Nothing in this package performs I/O; the oracle and correctors that may
call an LLM live in :mod:`cascadeledger.agents`.
"""

from cascadeledger.analyzers.builder import TransactionBuilder, build_transactions, classify_action
from cascadeledger.analyzers.coverage import (
    CoverageIndex,
    coverage,
    coverage_percentage,
    find_gaps,
)
from cascadeledger.analyzers.reconciliation import (
    BalanceReconciler,
    Correction,
    DiscrepancyContext,
    RuleBasedCorrector,
    SeverityThresholds,
    reconcile_balances,
)
from cascadeledger.analyzers.settlement import (
    GroupKind,
    LeadingPrimaryPattern,
    RowGroup,
    SettlementPattern,
    SingleRowPattern,
    get_pattern,
    group_rows,
)
from cascadeledger.analyzers.tracker import LedgerState, Position, PositionTracker, replay
from cascadeledger.analyzers.validation import ValidationReporter, validate

__all__ = [
    "BalanceReconciler",
    "Correction",
    "CoverageIndex",
    "DiscrepancyContext",
    "GroupKind",
    "LeadingPrimaryPattern",
    "LedgerState",
    "Position",
    "PositionTracker",
    "RowGroup",
    "RuleBasedCorrector",
    "SettlementPattern",
    "SeverityThresholds",
    "SingleRowPattern",
    "TransactionBuilder",
    "ValidationReporter",
    "build_transactions",
    "classify_action",
    "coverage",
    "coverage_percentage",
    "find_gaps",
    "get_pattern",
    "group_rows",
    "reconcile_balances",
    "replay",
    "validate",
]
