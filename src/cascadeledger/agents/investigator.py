"""
Discrepancy investigator — an LLM corrector for the balance reconciler.

Shows the model the worst balance discrepancy, the CSV rows around it and
the transactions in the affected window, and asks for fixes expressed as
create / update / delete deltas. Confidence is the model's own; the
reconciler decides which fixes clear its threshold.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from cascadeledger.agents.base import BaseAgent, transaction_from_payload
from cascadeledger.analyzers.reconciliation import Correction, DiscrepancyContext
from cascadeledger.models.ledger import TransactionOrigin

if TYPE_CHECKING:
    from cascadeledger.config import LedgerConfig

logger = logging.getLogger("cascadeledger.agents.investigator")


class DiscrepancyInvestigator(BaseAgent):
    """LLM-backed corrector.

    Example usage:
        reconciler = BalanceReconciler(tracker, corrector=DiscrepancyInvestigator(config))
    """

    name = "investigator"
    description = "Investigates balance discrepancies and proposes ledger corrections"

    def __init__(self, config: LedgerConfig, max_rows: int = 20, max_transactions: int = 10) -> None:
        super().__init__(config)
        self.max_rows = max_rows
        self.max_transactions = max_transactions

    @property
    def system_prompt(self) -> str:
        return (
            "You are a meticulous accountant investigating balance discrepancies in a financial "
            "ledger. Never fudge numbers to force a match; only propose fixes supported by the "
            "CSV evidence. Respond with ONLY valid JSON."
        )

    async def propose(self, context: DiscrepancyContext) -> list[Correction]:
        prompt = self._build_prompt(context)
        raw = await self._call_llm([{"role": "user", "content": prompt}])
        data = self._parse_payload(raw)
        logger.info("[%s] Hypothesis: %s", self.name, str(data.get("hypothesis", ""))[:200])

        known = {t.id for t in context.transactions}
        corrections = []
        for fix in data.get("proposedFixes", []) or []:
            correction = self._correction(fix, known, context.base_currency)
            if correction is not None:
                corrections.append(correction)
        return corrections

    def _correction(self, fix: dict[str, Any], known: set[str], base_currency: str) -> Correction | None:
        replaces: list[str] = []
        adds = []
        try:
            confidence = confidence_of(fix.get("confidence", 0))
            for delta in fix.get("deltas", []):
                action = str(delta.get("action", "")).lower()
                if action in ("delete", "update"):
                    txn_id = str(delta["transactionId"])
                    if txn_id not in known:
                        logger.warning("Fix references unknown transaction %s; ignoring fix", txn_id)
                        return None
                    replaces.append(txn_id)
                if action in ("create", "update"):
                    adds.append(transaction_from_payload(delta["transaction"], base_currency, TransactionOrigin.REPAIR))
        except (KeyError, TypeError, ValueError, InvalidOperation, ValidationError) as e:
            logger.warning("Ignoring malformed fix '%s': %s", fix.get("description", ""), e)
            return None

        if not replaces and not adds:
            return None
        return Correction(
            description=str(fix.get("description", "")),
            confidence=confidence,
            replaces=replaces,
            adds=adds,
            reasoning=str(fix.get("reasoning", "")),
        )

    def _build_prompt(self, context: DiscrepancyContext) -> str:
        checkpoint = context.checkpoint
        lines = [
            "ACCOUNTANT MODE: Discrepancy Investigation",
            "",
            "=== DISCREPANCY ===",
            f"Row: {checkpoint.row_number} ({checkpoint.date})",
            f"Expected (CSV balance): {checkpoint.reported}",
            f"Actual (computed balance): {checkpoint.computed}",
            f"Discrepancy: {checkpoint.discrepancy}",
            f"Change since previous checkpoint: {context.jump}",
            f"Severity: {checkpoint.severity.value.upper()}",
            "",
            "=== CSV DATA (Context Window) ===",
            "```csv",
            "row,date,action,symbol,quantity,amount,balance",
        ]
        for row in context.rows[: self.max_rows]:
            lines.append(
                ",".join(
                    str(v) if v is not None else ""
                    for v in (
                        row.row_number,
                        row.date,
                        row.action,
                        row.symbol,
                        row.quantity,
                        row.amount,
                        row.reported_balance,
                    )
                )
            )
        lines.append("```")
        lines.append("")
        lines.append("=== EXISTING TRANSACTIONS ===")
        for index, txn in enumerate(context.window[: self.max_transactions], start=1):
            lines.append("")
            lines.append(f"Transaction #{index} [ID: {txn.id}] (Rows #{', '.join(str(r) for r in sorted(txn.source_rows))}):")
            lines.append(f"  Date: {txn.date.isoformat()}")
            lines.append(f'  Description: "{txn.description}"')
            lines.append(f"  Type: {txn.type.value}")
            lines.append(f"  Journal Entries: {len(txn.entries)} ({'BALANCED' if txn.is_balanced else 'UNBALANCED'})")
            for entry in txn.entries:
                side = "DR" if entry.is_debit else "CR"
                qty = f" (qty: {entry.quantity.amount})" if entry.quantity else ""
                lines.append(f"    {side}: {entry.account_name} {entry.amount}{qty}")

        lines.append(
            """

=== YOUR TASK ===
Investigate this discrepancy and propose 1-3 corrections, each with a confidence (0.0-1.0).
If uncertain, say so (confidence < 0.7).

RESPONSE FORMAT (JSON):
{
  "hypothesis": "Your hypothesis about what's wrong",
  "proposedFixes": [
    {
      "description": "Description of fix",
      "confidence": 0.90,
      "reasoning": "Why you think this is correct",
      "deltas": [
        {"action": "delete", "transactionId": "<id>"},
        {
          "action": "create",
          "transaction": {
            "sourceRows": [],
            "date": "2024-04-21",
            "description": "Transaction description",
            "transactionType": "deposit",
            "journalEntries": [
              {"type": "debit", "accountType": "cash", "accountName": "Cash USD", "amount": 1000.00},
              {"type": "credit", "accountType": "equity", "accountName": "Opening Balance Equity", "amount": 1000.00}
            ]
          }
        }
      ]
    }
  ]
}"""
        )
        return "\n".join(lines)


def confidence_of(value: Any) -> float:
    """Confidence as a float in [0, 1]."""
    number = float(Decimal(str(value)))
    return max(0.0, min(1.0, number))
