"""
Balance Reconciliation — compare replayed balances with the broker's own.

Most brokerage exports carry a running balance column. Replaying the
materialized transactions should reproduce it at every row that has one; a
mismatch points at a grouping or amount-inference problem upstream. The
reconciler builds those checkpoints, grades each mismatch, and runs a
bounded repair loop in which a corrector proposes replacement transactions
for the area around the worst checkpoint.

States::

    idle -> building_checkpoints -> discrepancy_found -> repairing
         -> resolved | exhausted          (or unavailable)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal, Protocol

from pydantic import BaseModel

from cascadeledger.analyzers.tracker import PositionTracker
from cascadeledger.errors import CurrencyMismatchError, OracleError, PriceUnavailableError
from cascadeledger.models.ledger import (
    AccountType,
    JournalEntry,
    Transaction,
    TransactionOrigin,
    TransactionType,
)
from cascadeledger.models.money import Money
from cascadeledger.models.report import (
    AppliedCorrection,
    BalanceCheckpoint,
    DiscrepancySeverity,
    ReconciliationResult,
    ReconciliationState,
    StateTransition,
)
from cascadeledger.models.rows import TypedRow

logger = logging.getLogger("cascadeledger.analyzers.reconciliation")

OPENING_BALANCE_EQUITY = "Opening Balance Equity"


class SeverityThresholds(BaseModel):
    """Lower bounds (inclusive) of each severity tier, in base currency."""

    critical: Decimal = Decimal("1000")
    high: Decimal = Decimal("100")
    medium: Decimal = Decimal("0.01")

    def classify(self, amount: Decimal) -> DiscrepancySeverity:
        size = abs(amount)
        if size >= self.critical:
            return DiscrepancySeverity.CRITICAL
        if size >= self.high:
            return DiscrepancySeverity.HIGH
        if size >= self.medium:
            return DiscrepancySeverity.MEDIUM
        return DiscrepancySeverity.NONE


@dataclass
class Correction:
    """A proposed repair: drop ``replaces`` and add ``adds``."""

    description: str
    confidence: float
    replaces: list[str] = field(default_factory=list)
    adds: list[Transaction] = field(default_factory=list)
    reasoning: str = ""


@dataclass
class DiscrepancyContext:
    """Everything a corrector may look at for one discrepancy."""

    checkpoint: BalanceCheckpoint
    previous: BalanceCheckpoint | None
    checkpoints: list[BalanceCheckpoint]
    transactions: list[Transaction]
    window: list[Transaction]
    rows: list[TypedRow]
    base_currency: str = "USD"

    @property
    def jump(self) -> Decimal:
        """How much the discrepancy grew since the previous checkpoint."""
        before = self.previous.discrepancy.amount if self.previous else Decimal("0")
        return self.checkpoint.discrepancy.amount - before

    @property
    def is_first(self) -> bool:
        return self.previous is None


class Corrector(Protocol):
    async def propose(self, context: DiscrepancyContext) -> list[Correction]:
        ...


class RuleBasedCorrector:
    """Deterministic repairs for the two most common materialization slips.

    * A single transaction booked with the wrong sign makes the discrepancy
      jump by twice its cash impact.
    * Funding that happened before the export starts shows up as the same
      offset at every checkpoint; it is booked as an opening balance.
    """

    name = "rules"

    def __init__(self, sign_confidence: float = 0.96, opening_confidence: float = 0.97) -> None:
        self.sign_confidence = sign_confidence
        self.opening_confidence = opening_confidence

    async def propose(self, context: DiscrepancyContext) -> list[Correction]:
        flip = self._sign_inversion(context)
        if flip is not None:
            return [flip]
        if context.is_first:
            return [self._opening_balance(context)]
        return []

    def _sign_inversion(self, context: DiscrepancyContext) -> Correction | None:
        movers = [t for t in context.window if t.net_cash_impact(context.base_currency) != 0]
        if len(movers) != 1:
            return None
        txn = movers[0]
        impact = txn.net_cash_impact(context.base_currency)
        if context.jump != 2 * impact:
            return None
        flipped = txn.with_entries(
            [e.flipped() for e in txn.entries],
            origin=TransactionOrigin.REPAIR,
        )
        return Correction(
            description=f"Invert the sign of '{txn.description}' on {txn.date}",
            confidence=self.sign_confidence,
            replaces=[txn.id],
            adds=[flipped],
            reasoning=f"discrepancy jumped by {context.jump}, twice the cash impact {impact}",
        )

    def _opening_balance(self, context: DiscrepancyContext) -> Correction:
        offset = context.checkpoint.discrepancy.amount
        constant = all(c.discrepancy.amount == offset for c in context.checkpoints)
        needed = Money(amount=abs(offset), currency=context.base_currency)
        cash_name = f"Cash {context.base_currency}"
        if offset < 0:
            # Computed balance is too low: money arrived before the export.
            entries = [
                JournalEntry.debit_of(AccountType.CASH, cash_name, needed),
                JournalEntry.credit_of(AccountType.EQUITY, OPENING_BALANCE_EQUITY, needed),
            ]
        else:
            entries = [
                JournalEntry.debit_of(AccountType.EQUITY, OPENING_BALANCE_EQUITY, needed),
                JournalEntry.credit_of(AccountType.CASH, cash_name, needed),
            ]
        first_date = min((t.date for t in context.transactions), default=context.checkpoint.date)
        opening = Transaction(
            date=first_date,
            description="Opening balance",
            type=TransactionType.OPENING_BALANCE,
            entries=tuple(entries),
            origin=TransactionOrigin.REPAIR,
        )
        return Correction(
            description=f"Book an opening balance of {-offset} {context.base_currency}",
            confidence=self.opening_confidence if constant else 0.6,
            adds=[opening],
            reasoning="same offset at every checkpoint" if constant else "offset at the first checkpoint only",
        )


class BalanceReconciler:
    """Builds checkpoints and drives the bounded repair loop.

    Example usage:
        reconciler = BalanceReconciler(PositionTracker(), corrector=RuleBasedCorrector())
        result = await reconciler.reconcile(transactions, typed_rows)
        if result.state == ReconciliationState.EXHAUSTED:
            print(result.discrepancies)
    """

    def __init__(
        self,
        tracker: PositionTracker | None = None,
        thresholds: SeverityThresholds | None = None,
        corrector: Corrector | None = None,
        max_iterations: int = 3,
        min_fix_confidence: float = 0.95,
        balance_basis: Literal["cash", "total_value"] = "cash",
        context_rows: int = 10,
    ) -> None:
        self.tracker = tracker or PositionTracker()
        self.thresholds = thresholds or SeverityThresholds()
        self.corrector = corrector or RuleBasedCorrector()
        self.max_iterations = max_iterations
        self.min_fix_confidence = min_fix_confidence
        self.balance_basis = balance_basis
        self.context_rows = context_rows

    @property
    def base_currency(self) -> str:
        return self.tracker.base_currency

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def classify(self, amount: Decimal) -> DiscrepancySeverity:
        return self.thresholds.classify(amount)

    def build_checkpoints(
        self, transactions: list[Transaction], rows: list[TypedRow] | None = None
    ) -> list[BalanceCheckpoint]:
        """One checkpoint per row that has a reported balance.

        Without ``rows`` the transactions' own ``reported_balance`` is used,
        one checkpoint per transaction.

        Raises:
            PriceUnavailableError: ``balance_basis`` is ``total_value`` and a
                held asset cannot be priced.
        """
        reported_by_row = {
            r.row_number: r.reported_balance for r in rows or [] if r.reported_balance is not None
        }
        ordered = self.tracker.order(transactions)
        points = self.tracker.running_balances(
            ordered, include_total_value=self.balance_basis == "total_value"
        )

        checkpoints: list[BalanceCheckpoint] = []
        for txn, point in zip(ordered, points):
            computed = point.cash
            if self.balance_basis == "total_value" and point.total_value is not None:
                computed = point.total_value
            if rows is None:
                if txn.reported_balance is not None and txn.source_rows:
                    checkpoints.append(self._checkpoint(max(txn.source_rows), txn, computed, txn.reported_balance.amount))
                continue
            for row_number in sorted(txn.source_rows):
                if row_number in reported_by_row:
                    checkpoints.append(self._checkpoint(row_number, txn, computed, reported_by_row[row_number]))
        return checkpoints

    def _checkpoint(self, row_number: int, txn: Transaction, computed: Money, reported: Decimal) -> BalanceCheckpoint:
        reported_money = Money(amount=reported, currency=computed.currency)
        return BalanceCheckpoint(
            row_number=row_number,
            date=txn.date,
            transaction_id=txn.id,
            computed=computed,
            reported=reported_money,
            severity=self.classify(computed.amount - reported),
        )

    # ------------------------------------------------------------------
    # Repair loop
    # ------------------------------------------------------------------

    async def reconcile(
        self, transactions: list[Transaction], rows: list[TypedRow] | None = None
    ) -> ReconciliationResult:
        history: list[StateTransition] = [StateTransition(state=ReconciliationState.IDLE)]
        current = self.tracker.order(transactions)

        history.append(StateTransition(state=ReconciliationState.BUILDING_CHECKPOINTS))
        try:
            checkpoints = self.build_checkpoints(current, rows)
        except (PriceUnavailableError, CurrencyMismatchError) as e:
            return self._unavailable(current, history, str(e))
        if not checkpoints:
            return self._unavailable(current, history, "no row carries a reported balance")

        initial_max = max(abs(c.discrepancy.amount) for c in checkpoints)
        corrections: list[AppliedCorrection] = []
        iteration = 0

        if not any(c.has_discrepancy for c in checkpoints):
            return self._finish(ReconciliationState.RESOLVED, 0, checkpoints, current, corrections, history, initial_max)

        while iteration < self.max_iterations:
            iteration += 1
            worst_index = self._worst(checkpoints)
            worst = checkpoints[worst_index]
            history.append(
                StateTransition(
                    state=ReconciliationState.DISCREPANCY_FOUND,
                    iteration=iteration,
                    severity=worst.severity,
                    detail=f"row {worst.row_number}: {worst.discrepancy}",
                )
            )
            history.append(StateTransition(state=ReconciliationState.REPAIRING, iteration=iteration))

            context = self._context(worst_index, checkpoints, current, rows or [])
            try:
                proposed = await self.corrector.propose(context)
            except OracleError as e:
                logger.warning("Corrector failed on iteration %d: %s", iteration, e)
                proposed = []

            current, accepted = self._apply(current, proposed, iteration)
            corrections.extend(accepted)
            if not accepted:
                logger.info("No correction reached confidence %.2f; stopping", self.min_fix_confidence)
                break

            history.append(StateTransition(state=ReconciliationState.BUILDING_CHECKPOINTS, iteration=iteration))
            try:
                checkpoints = self.build_checkpoints(current, rows)
            except (PriceUnavailableError, CurrencyMismatchError) as e:
                return self._unavailable(current, history, str(e))

            if not any(c.has_discrepancy for c in checkpoints):
                return self._finish(
                    ReconciliationState.RESOLVED, iteration, checkpoints, current, corrections, history, initial_max
                )

        return self._finish(
            ReconciliationState.EXHAUSTED, iteration, checkpoints, current, corrections, history, initial_max
        )

    def reconcile_sync(
        self, transactions: list[Transaction], rows: list[TypedRow] | None = None
    ) -> ReconciliationResult:
        """Synchronous wrapper around :meth:`reconcile`."""
        return asyncio.run(self.reconcile(transactions, rows))

    @staticmethod
    def _worst(checkpoints: list[BalanceCheckpoint]) -> int:
        # Highest severity, then largest amount, then earliest position.
        best = 0
        for i, c in enumerate(checkpoints):
            b = checkpoints[best]
            if (c.severity.rank, abs(c.discrepancy.amount)) > (b.severity.rank, abs(b.discrepancy.amount)):
                best = i
        return best

    def _context(
        self,
        index: int,
        checkpoints: list[BalanceCheckpoint],
        ordered: list[Transaction],
        rows: list[TypedRow],
    ) -> DiscrepancyContext:
        worst = checkpoints[index]
        previous = checkpoints[index - 1] if index > 0 else None
        ids = [t.id for t in ordered]
        end = ids.index(worst.transaction_id)
        start = ids.index(previous.transaction_id) + 1 if previous is not None else 0
        if previous is not None and previous.transaction_id == worst.transaction_id:
            start = end
        window = ordered[start : end + 1]

        window_rows = {r for t in window for r in t.source_rows} or {worst.row_number}
        low, high = min(window_rows) - self.context_rows, max(window_rows) + self.context_rows
        nearby = [r for r in rows if low <= r.row_number <= high]

        return DiscrepancyContext(
            checkpoint=worst,
            previous=previous,
            checkpoints=checkpoints,
            transactions=ordered,
            window=window,
            rows=nearby,
            base_currency=self.base_currency,
        )

    def _apply(
        self, transactions: list[Transaction], proposed: list[Correction], iteration: int
    ) -> tuple[list[Transaction], list[AppliedCorrection]]:
        by_id = {t.id: t for t in transactions}
        accepted: list[AppliedCorrection] = []
        for correction in sorted(proposed, key=lambda c: -c.confidence):
            if correction.confidence < self.min_fix_confidence:
                logger.debug("Skipping correction below threshold: %s (%.2f)", correction.description, correction.confidence)
                continue
            if not all(t.is_balanced for t in correction.adds):
                logger.debug("Skipping correction that adds an unbalanced transaction: %s", correction.description)
                continue
            if any(i not in by_id for i in correction.replaces):
                logger.debug("Skipping correction that targets a replaced transaction: %s", correction.description)
                continue
            for txn_id in correction.replaces:
                del by_id[txn_id]
            added = [t.model_copy(update={"origin": TransactionOrigin.REPAIR}) for t in correction.adds]
            for txn in added:
                by_id[txn.id] = txn
            logger.info(
                "Iteration %d: applied '%s' (confidence %.2f)", iteration, correction.description, correction.confidence
            )
            accepted.append(
                AppliedCorrection(
                    iteration=iteration,
                    description=correction.description,
                    confidence=correction.confidence,
                    replaced=list(correction.replaces),
                    added=[t.id for t in added],
                )
            )
        return self.tracker.order(list(by_id.values())), accepted

    def _finish(
        self,
        state: ReconciliationState,
        iterations: int,
        checkpoints: list[BalanceCheckpoint],
        transactions: list[Transaction],
        corrections: list[AppliedCorrection],
        history: list[StateTransition],
        initial_max: Decimal,
    ) -> ReconciliationResult:
        history.append(StateTransition(state=state, iteration=iterations))
        remaining = sum(1 for c in checkpoints if c.has_discrepancy)
        logger.info(
            "Reconciliation %s after %d iteration(s), %d discrepancies remaining",
            state.value, iterations, remaining,
        )
        return ReconciliationResult(
            state=state,
            iterations=iterations,
            checkpoints=checkpoints,
            transactions=transactions,
            corrections=corrections,
            history=history,
            initial_max_discrepancy=initial_max,
        )

    @staticmethod
    def _unavailable(
        transactions: list[Transaction], history: list[StateTransition], reason: str
    ) -> ReconciliationResult:
        logger.warning("Reconciliation unavailable: %s", reason)
        history.append(StateTransition(state=ReconciliationState.UNAVAILABLE, detail=reason))
        return ReconciliationResult(
            state=ReconciliationState.UNAVAILABLE,
            transactions=transactions,
            history=history,
            unavailable_reason=reason,
        )


# Convenience function
def reconcile_balances(
    transactions: list[Transaction],
    rows: list[TypedRow] | None = None,
    thresholds: SeverityThresholds | None = None,
) -> ReconciliationResult:
    """Reconcile with the rule-based corrector and default settings."""
    return BalanceReconciler(thresholds=thresholds).reconcile_sync(transactions, rows)
