"""
Rule-based categorization oracle — settlement grouping plus the transaction builder.

Needs no network access, so it is the oracle used in local-only mode and in
tests. Behaves like the LLM oracle at window boundaries: when more rows
follow, a trailing multi-row group is held back until the next window.
"""

from __future__ import annotations

import logging

from cascadeledger.agents.base import OracleContext, OracleProposal
from cascadeledger.analyzers.builder import TransactionBuilder
from cascadeledger.analyzers.settlement import SettlementPattern, get_pattern
from cascadeledger.models.rows import TypedRow

logger = logging.getLogger("cascadeledger.agents.rules")


class RuleBasedOracle:
    """Deterministic oracle built from a settlement pattern and a builder."""

    name = "rules"

    def __init__(
        self,
        pattern: SettlementPattern | None = None,
        builder: TransactionBuilder | None = None,
    ) -> None:
        self.pattern = pattern or get_pattern("generic")
        self.builder = builder or TransactionBuilder()

    async def propose(self, rows: list[TypedRow], context: OracleContext) -> OracleProposal:
        groups = self.pattern.group(rows)

        needs_more = False
        if context.has_more_rows and groups and getattr(self.pattern, "spans_rows", False):
            # Settlement rows for the last group may sit in the next window.
            held = groups.pop()
            needs_more = True
            logger.debug("Holding back rows %s until the next window", held.row_numbers)

        transactions, errors = self.builder.build_all(groups, context.account)
        return OracleProposal(transactions=transactions, needs_more_rows=needs_more, errors=errors)
