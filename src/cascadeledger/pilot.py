"""
LedgerPilot — Main orchestrator.

Wires the parse plan, settlement pattern, transaction builder, position
tracker, balance reconciler, validation reporter and categorization oracle
together from one :class:`LedgerConfig`, and runs them end to end over a
list of source rows.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from cascadeledger.agents.base import CategorizationOracle
from cascadeledger.agents.rules import RuleBasedOracle
from cascadeledger.analyzers.builder import TransactionBuilder
from cascadeledger.analyzers.reconciliation import BalanceReconciler, Corrector, RuleBasedCorrector
from cascadeledger.analyzers.settlement import RowGroup, SettlementPattern, get_pattern
from cascadeledger.analyzers.tracker import PositionTracker, PriceLookup
from cascadeledger.analyzers.validation import ValidationReporter
from cascadeledger.config import LedgerConfig
from cascadeledger.connectors.parse_plan import ParsePlan, builtin_plan
from cascadeledger.errors import MaterializationError, TransformError
from cascadeledger.models.ledger import Account, Transaction
from cascadeledger.models.report import ReconciliationResult, ValidationReport
from cascadeledger.models.rows import SourceRow, TypedRow
from cascadeledger.session import CategorizationPipeline, CategorizationSession, ProgressCallback

logger = logging.getLogger("cascadeledger")


@dataclass
class LedgerPilot:
    """Top-level orchestrator for cascadeledger.

    Usage::

        from cascadeledger import LedgerPilot

        pilot = LedgerPilot.from_config("cascadeledger.yaml", base_currency="USD")
        report = await pilot.run(source_rows)
        print(report.status)

    The LedgerPilot coordinates:
    - **Parse plan**: types raw CSV rows.
    - **Oracle**: rule-based or LLM categorization, windowed per session.
    - **Reconciler**: replays balances and repairs discrepancies.
    - **Reporter**: aggregates coverage, balance and settlement checks.
    """

    config: LedgerConfig
    price_lookup: PriceLookup | None = None
    on_progress: ProgressCallback | None = None
    plan: ParsePlan | None = None
    pattern: SettlementPattern = field(init=False, repr=False)
    builder: TransactionBuilder = field(init=False, repr=False)
    tracker: PositionTracker = field(init=False, repr=False)
    reconciler: BalanceReconciler = field(init=False, repr=False)
    reporter: ValidationReporter = field(init=False, repr=False)
    oracle: CategorizationOracle = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._setup()

    @classmethod
    def from_config(
        cls,
        config_path: str | None = None,
        price_lookup: PriceLookup | None = None,
        **overrides: Any,
    ) -> LedgerPilot:
        """Create a LedgerPilot from a config file or keyword arguments."""
        config = LedgerConfig.load(config_path, **overrides)
        return cls(config=config, price_lookup=price_lookup)

    def _setup(self) -> None:
        """Initialize the collaborators from config."""
        cfg = self.config
        institution = cfg.categorization.institution
        use_llm = not cfg.categorization.local_only

        self.plan = self.plan or builtin_plan(institution)
        self.pattern = get_pattern(institution)
        self.builder = TransactionBuilder(base_currency=cfg.base_currency)
        self.tracker = PositionTracker(price_lookup=self.price_lookup, base_currency=cfg.base_currency)

        corrector: Corrector = RuleBasedCorrector()
        if use_llm and cfg.reconciliation.corrector == "llm":
            from cascadeledger.agents.investigator import DiscrepancyInvestigator

            corrector = DiscrepancyInvestigator(cfg)

        rc = cfg.reconciliation
        self.reconciler = BalanceReconciler(
            tracker=self.tracker,
            thresholds=rc.thresholds,
            corrector=corrector,
            max_iterations=rc.max_iterations,
            min_fix_confidence=rc.min_fix_confidence,
            balance_basis=rc.balance_basis,
            context_rows=rc.context_rows,
        )
        self.reporter = ValidationReporter(tracker=self.tracker)

        if use_llm and cfg.categorization.oracle == "llm":
            from cascadeledger.agents.categorizer import LLMCategorizationOracle

            self.oracle = LLMCategorizationOracle(cfg)
        else:
            self.oracle = RuleBasedOracle(pattern=self.pattern, builder=self.builder)

        logger.info(
            "LedgerPilot initialized for %s (oracle: %s, corrector: %s)",
            institution, type(self.oracle).__name__, type(corrector).__name__,
        )

    @property
    def account(self) -> Account:
        return Account(
            name=self.config.account_name,
            institution=self.config.categorization.institution,
            base_currency=self.config.base_currency,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def prepare(self, rows: list[SourceRow]) -> tuple[list[TypedRow], set[int], list[MaterializationError]]:
        """Apply the parse plan.

        Returns typed rows, excluded row numbers, and one error per row whose
        values could not be typed.
        """
        plan = self.plan or builtin_plan(self.config.categorization.institution)
        typed: list[TypedRow] = []
        excluded: set[int] = set()
        errors: list[MaterializationError] = []
        for row in rows:
            if plan.is_excluded(row):
                excluded.add(row.row_number)
                continue
            try:
                typed.append(plan.apply(row))
            except TransformError as e:
                logger.warning("Row %d could not be typed: %s", row.row_number, e)
                errors.append(MaterializationError(str(e), [row.row_number], leg=e.field))
        return typed, excluded, errors

    def materialize(
        self, rows: list[TypedRow], account: Account | None = None
    ) -> tuple[list[Transaction], list[MaterializationError], list[RowGroup]]:
        """Group and build transactions without a session."""
        groups = self.pattern.group(rows)
        transactions, errors = self.builder.build_all(groups, account or self.account)
        return transactions, errors, groups

    def new_session(self, rows: list[SourceRow], name: str = "", account: Account | None = None) -> CategorizationSession:
        session = CategorizationSession(account=account or self.account, name=name)
        session.register_rows(rows)
        return session

    async def categorize(self, session: CategorizationSession, rows: list[TypedRow]) -> CategorizationSession:
        """Run (or resume) the categorization pipeline for ``session``."""
        pipeline = CategorizationPipeline(self.oracle, self.config.categorization, on_progress=self.on_progress)
        return await pipeline.run(session, rows)

    async def reconcile(self, session: CategorizationSession, rows: list[TypedRow] | None = None) -> ReconciliationResult:
        """Reconcile a completed session.

        Raises:
            SessionNotCompleteError: The session is still running, paused or failed.
        """
        session.require_complete()
        return await self.reconciler.reconcile(session.transactions, rows)

    def validate(
        self,
        session: CategorizationSession,
        rows: list[TypedRow] | None = None,
        reconciliation: ReconciliationResult | None = None,
    ) -> ValidationReport:
        transactions = reconciliation.transactions if reconciliation is not None else session.transactions
        groups = self.pattern.group(rows) if rows else None
        return self.reporter.report(
            transactions,
            total_rows=session.total_rows,
            excluded=session.excluded_rows,
            groups=groups,
            errors=session.materialization_errors,
            reconciliation=reconciliation,
            account_name=session.account.name,
            claims_complete=session.is_complete,
        )

    # ------------------------------------------------------------------
    # End to end
    # ------------------------------------------------------------------

    async def run(self, rows: list[SourceRow], account: Account | None = None) -> ValidationReport:
        """Type, categorize, reconcile and validate ``rows``.

        An incomplete session (paused or failed) is still reported; its
        coverage gaps are not claimed and reconciliation is skipped.
        """
        session = self.new_session(rows, account=account)
        typed, excluded, errors = self.prepare(rows)
        session.excluded_rows = excluded
        session.rejected.extend(errors)

        logger.info("Running %d rows (%d excluded)", len(rows), len(excluded))
        await self.categorize(session, typed)

        reconciliation = None
        if session.is_complete and self.config.reconciliation.enabled:
            reconciliation = await self.reconcile(session, typed)
        elif not session.is_complete:
            logger.warning("Session %s ended %s: %s", session.id, session.status.value, session.error_message or "")

        report = self.validate(session, typed, reconciliation)
        logger.info(
            "Run complete: %d transactions, status %s",
            report.transaction_count,
            report.status.value,
        )
        return report

    def run_sync(self, rows: list[SourceRow], account: Account | None = None) -> ValidationReport:
        """Synchronous wrapper around :meth:`run`."""
        return asyncio.run(self.run(rows, account))
