"""
Report models — coverage, balance checkpoints, reconciliation and validation.

These are the serializable outputs of the core. They carry data only; the
analyzers compute them.
"""

from __future__ import annotations

from datetime import date as date_type, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from cascadeledger.models.ledger import Transaction
from cascadeledger.models.money import Money


class DiscrepancySeverity(str, Enum):
    """How far a computed balance is from the broker-reported one."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    NONE = "none"

    @property
    def rank(self) -> int:
        return {"critical": 3, "high": 2, "medium": 1, "none": 0}[self.value]


class ReconciliationState(str, Enum):
    """States of the balance reconciler."""

    IDLE = "idle"
    BUILDING_CHECKPOINTS = "building_checkpoints"
    DISCREPANCY_FOUND = "discrepancy_found"
    REPAIRING = "repairing"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"
    UNAVAILABLE = "unavailable"


class CoverageSummary(BaseModel):
    """Which source rows are accounted for by at least one transaction."""

    total_rows: int
    excluded_rows: list[int] = Field(default_factory=list)
    covered_rows: int = 0
    gaps: list[int] = Field(default_factory=list)
    duplicate_rows: list[int] = Field(default_factory=list)
    coverage_percentage: float = 1.0
    claims_complete: bool = True

    @property
    def is_perfect(self) -> bool:
        return not self.gaps and not self.duplicate_rows


class BalanceCheckpoint(BaseModel):
    """A row where the computed and the reported running balance meet."""

    row_number: int
    date: date_type | None = None
    transaction_id: str | None = None
    computed: Money
    reported: Money
    severity: DiscrepancySeverity = DiscrepancySeverity.NONE

    @property
    def discrepancy(self) -> Money:
        return self.computed - self.reported

    @property
    def has_discrepancy(self) -> bool:
        return self.severity != DiscrepancySeverity.NONE


class StateTransition(BaseModel):
    """One step of the reconciler state machine."""

    state: ReconciliationState
    iteration: int = 0
    severity: DiscrepancySeverity | None = None
    detail: str = ""


class AppliedCorrection(BaseModel):
    """A correction the repair loop accepted."""

    iteration: int
    description: str
    confidence: float
    replaced: list[str] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)


class ReconciliationResult(BaseModel):
    """End state of one reconciliation run."""

    state: ReconciliationState
    iterations: int = 0
    checkpoints: list[BalanceCheckpoint] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    corrections: list[AppliedCorrection] = Field(default_factory=list)
    history: list[StateTransition] = Field(default_factory=list)
    initial_max_discrepancy: Decimal = Decimal("0")
    unavailable_reason: str | None = None

    @property
    def discrepancies(self) -> list[BalanceCheckpoint]:
        return [c for c in self.checkpoints if c.has_discrepancy]

    @property
    def final_max_discrepancy(self) -> Decimal:
        return max((abs(c.discrepancy.amount) for c in self.checkpoints), default=Decimal("0"))

    @property
    def is_resolved(self) -> bool:
        return self.state == ReconciliationState.RESOLVED


class ValidationStatus(str, Enum):
    """Overall verdict of a validation report."""

    PASS = "pass"
    WARNING = "warning"
    CRITICAL = "critical"


class IssueLevel(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


class ValidationIssue(BaseModel):
    """One problem found by the validation reporter."""

    level: IssueLevel
    code: str
    message: str
    rows: list[int] = Field(default_factory=list)
    transaction_ids: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ValidationReport(BaseModel):
    """Aggregated coverage, balance, settlement and reconciliation checks.

    Presentation-agnostic: export with :meth:`to_json` or
    :meth:`to_markdown`.
    """

    account_name: str = ""
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    coverage: CoverageSummary
    transaction_count: int = 0
    balanced_count: int = 0
    orphaned_settlements: int = 0
    settlement_groups: int = 0
    reconciliation: ReconciliationResult | None = None
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def critical_issues(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.level == IssueLevel.CRITICAL]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.level == IssueLevel.WARNING]

    @property
    def status(self) -> ValidationStatus:
        if self.critical_issues:
            return ValidationStatus.CRITICAL
        if self.warnings:
            return ValidationStatus.WARNING
        return ValidationStatus.PASS

    def to_markdown(self) -> str:
        """Export report as Markdown."""
        from cascadeledger.exporters.markdown import render_markdown

        return render_markdown(self)

    def to_json(self) -> str:
        """Export report as JSON."""
        return self.model_dump_json(indent=2)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
