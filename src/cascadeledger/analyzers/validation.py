"""
Validation Reporter — aggregate every consistency check into one report.

Pure aggregation: coverage, per-transaction balance, materialization
failures, settlement pairing, replay warnings and the reconciliation
outcome are folded into a :class:`ValidationReport`. Nothing here mutates
transactions or talks to the outside world.
"""

from __future__ import annotations

import logging
from typing import Iterable

from cascadeledger.analyzers.coverage import CoverageIndex
from cascadeledger.analyzers.settlement import RowGroup
from cascadeledger.analyzers.tracker import PositionTracker
from cascadeledger.errors import MaterializationError
from cascadeledger.models.ledger import Transaction
from cascadeledger.models.report import (
    IssueLevel,
    ReconciliationResult,
    ReconciliationState,
    ValidationIssue,
    ValidationReport,
)

logger = logging.getLogger("cascadeledger.analyzers.validation")


class ValidationReporter:
    """Builds validation reports.

    Example usage:
        reporter = ValidationReporter()
        report = reporter.report(transactions, total_rows=120, groups=groups)
        print(report.status, len(report.critical_issues))
    """

    def __init__(self, tracker: PositionTracker | None = None) -> None:
        self.tracker = tracker or PositionTracker()

    def report(
        self,
        transactions: list[Transaction],
        total_rows: int,
        excluded: Iterable[int] = (),
        groups: list[RowGroup] | None = None,
        errors: Iterable[MaterializationError] = (),
        reconciliation: ReconciliationResult | None = None,
        account_name: str = "",
        claims_complete: bool = True,
    ) -> ValidationReport:
        groups = groups or []
        issues: list[ValidationIssue] = []

        index = CoverageIndex.build(transactions)
        summary = index.summary(total_rows, excluded, claims_complete=claims_complete)
        issues.extend(self._coverage_issues(summary.gaps, summary.duplicate_rows))

        balanced = 0
        for txn in transactions:
            if txn.is_balanced:
                balanced += 1
                continue
            issues.append(
                ValidationIssue(
                    level=IssueLevel.CRITICAL,
                    code="unbalanced_transaction",
                    message=f"'{txn.description}' on {txn.date}: debits {txn.total_debits} != credits {txn.total_credits}",
                    rows=sorted(txn.source_rows),
                    transaction_ids=[txn.id],
                    metadata={c: str(d) for c, d in txn.imbalances().items()},
                )
            )

        orphans = [g for g in groups if g.is_orphaned]
        orphan_rows = {r for g in orphans for r in g.row_numbers}
        for group in orphans:
            issues.append(
                ValidationIssue(
                    level=IssueLevel.CRITICAL,
                    code="orphaned_settlement",
                    message=f"Settlement row(s) {group.row_numbers} have no preceding primary row",
                    rows=group.row_numbers,
                )
            )

        for error in errors:
            if error.row_numbers and set(error.row_numbers) <= orphan_rows:
                continue
            issues.append(
                ValidationIssue(
                    level=IssueLevel.CRITICAL,
                    code="materialization_error",
                    message=error.reason,
                    rows=list(error.row_numbers),
                    metadata=error.to_dict(),
                )
            )

        issues.extend(self._position_issues(transactions))

        if reconciliation is not None:
            issues.extend(self._reconciliation_issues(reconciliation))

        report = ValidationReport(
            account_name=account_name,
            coverage=summary,
            transaction_count=len(transactions),
            balanced_count=balanced,
            orphaned_settlements=len(orphans),
            settlement_groups=sum(1 for g in groups if not g.is_orphaned and g.settlements),
            reconciliation=reconciliation,
            issues=issues,
        )
        logger.info(
            "Validation %s: %d critical, %d warnings",
            report.status.value, len(report.critical_issues), len(report.warnings),
        )
        return report

    @staticmethod
    def _coverage_issues(gaps: list[int], duplicates: list[int]) -> list[ValidationIssue]:
        issues = []
        if gaps:
            issues.append(
                ValidationIssue(
                    level=IssueLevel.CRITICAL,
                    code="coverage_gap",
                    message=f"{len(gaps)} source row(s) are not covered by any transaction",
                    rows=gaps,
                )
            )
        if duplicates:
            issues.append(
                ValidationIssue(
                    level=IssueLevel.CRITICAL,
                    code="duplicate_row",
                    message=f"{len(duplicates)} source row(s) are claimed by more than one transaction",
                    rows=duplicates,
                )
            )
        return issues

    def _position_issues(self, transactions: list[Transaction]) -> list[ValidationIssue]:
        state = self.tracker.replay(transactions)
        grouped: dict[tuple[str, str], list] = {}
        for warning in state.warnings:
            grouped.setdefault((warning.code, warning.symbol), []).append(warning)

        rows_by_txn = {t.id: t.source_rows for t in transactions}
        issues = []
        for (code, symbol), warnings in sorted(grouped.items()):
            first = warnings[0]
            if code == "negative_position":
                message = f"{symbol} went negative ({first.quantity}) on {first.date}"
                metadata = {"lowest_quantity": str(min(w.quantity for w in warnings))}
            else:
                message = first.message
                metadata = {}
            issues.append(
                ValidationIssue(
                    level=IssueLevel.WARNING,
                    code=code,
                    message=message,
                    rows=sorted({r for w in warnings for r in rows_by_txn.get(w.transaction_id, ())}),
                    transaction_ids=[w.transaction_id for w in warnings],
                    metadata=metadata,
                )
            )
        return issues

    @staticmethod
    def _reconciliation_issues(result: ReconciliationResult) -> list[ValidationIssue]:
        if result.state == ReconciliationState.UNAVAILABLE:
            return [
                ValidationIssue(
                    level=IssueLevel.WARNING,
                    code="reconciliation_unavailable",
                    message=f"Balance reconciliation unavailable: {result.unavailable_reason}",
                )
            ]

        issues = [
            ValidationIssue(
                level=IssueLevel.WARNING,
                code="balance_discrepancy",
                message=(
                    f"Row {c.row_number}: computed {c.computed} vs reported {c.reported} "
                    f"({c.severity.value})"
                ),
                rows=[c.row_number],
                transaction_ids=[c.transaction_id] if c.transaction_id else [],
                metadata={"discrepancy": str(c.discrepancy.amount), "severity": c.severity.value},
            )
            for c in result.discrepancies
        ]
        if result.state == ReconciliationState.EXHAUSTED:
            issues.append(
                ValidationIssue(
                    level=IssueLevel.WARNING,
                    code="reconciliation_exhausted",
                    message=(
                        f"Repair loop stopped after {result.iterations} iteration(s) "
                        f"with {len(result.discrepancies)} discrepancies remaining"
                    ),
                    metadata={"final_max_discrepancy": str(result.final_max_discrepancy)},
                )
            )
        return issues


# Convenience function
def validate(
    transactions: list[Transaction],
    total_rows: int,
    **kwargs,
) -> ValidationReport:
    """Build a validation report with a default reporter."""
    return ValidationReporter().report(transactions, total_rows, **kwargs)
