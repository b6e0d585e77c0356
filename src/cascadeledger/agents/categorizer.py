"""
LLM categorization oracle — ask a model to group and journal a window of rows.

The model sees a sliding window of typed rows (oldest first) and returns
balanced transactions that reference rows by their global row number. It
may leave rows at the end of the window unconsumed as look-ahead; the
pipeline advances only through the rows it actually used.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import TYPE_CHECKING, Any

from cascadeledger.agents.base import BaseAgent, OracleContext, OracleProposal
from cascadeledger.errors import MaterializationError, OracleFailedError
from cascadeledger.models.ledger import TransactionOrigin
from cascadeledger.models.rows import CANONICAL_FIELDS, TypedRow

if TYPE_CHECKING:
    from cascadeledger.config import LedgerConfig

logger = logging.getLogger("cascadeledger.agents.categorizer")


class LLMCategorizationOracle(BaseAgent):
    """Categorization oracle backed by any litellm-supported model.

    Example usage:
        oracle = LLMCategorizationOracle(config)
        proposal = await oracle.propose(window_rows, context)
    """

    name = "categorizer"
    description = "Turns brokerage CSV rows into balanced double-entry transactions"

    def __init__(self, config: LedgerConfig, max_transactions: int = 15) -> None:
        super().__init__(config)
        self.max_transactions = max_transactions

    @property
    def system_prompt(self) -> str:
        return """You are a meticulous bookkeeper converting brokerage CSV exports into double-entry transactions.

Rules:
- Every transaction has two or more journal entries and debits equal credits exactly.
- Group settlement rows (no action, no symbol) with the primary row before them.
- Use symbols exactly as they appear in the CSV.
- Account types: asset (securities, needs quantity), cash, income (Dividend Income, Interest Income),
  expense (Fees & Commissions, Taxes Withheld, Other Expenses), equity (Owner Contributions, Owner Withdrawals).
- Reference rows only by their "_row" value, never invent rows.

Respond with ONLY a JSON object."""

    async def propose(self, rows: list[TypedRow], context: OracleContext) -> OracleProposal:
        if not rows:
            return OracleProposal()

        prompt = self._build_prompt(rows, context)
        raw = await self._call_llm([{"role": "user", "content": prompt}])
        data = self._parse_payload(raw)

        items = data.get("transactions")
        if not isinstance(items, list):
            raise OracleFailedError("LLM response has no 'transactions' array")

        transactions, problems = self._transactions(items, context.account.base_currency, TransactionOrigin.ORACLE)
        window = {r.row_number for r in rows}
        kept = []
        for txn in transactions:
            outside = txn.source_rows - window
            if outside:
                logger.warning("Dropping transaction that uses rows outside the window: %s", sorted(outside))
                # Only the in-window rows are settled by this error.
                problems.append(
                    MaterializationError(
                        f"'{txn.description}' references rows outside the window: {sorted(outside)}",
                        txn.source_rows & window,
                    )
                )
                continue
            kept.append(txn)

        if problems:
            logger.info("LLM returned %d unusable transaction(s)", len(problems))

        input_tokens, output_tokens = self.last_usage
        return OracleProposal(
            transactions=kept,
            needs_more_rows=bool(data.get("needsMoreRows", False)),
            errors=problems,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    def _build_prompt(self, rows: list[TypedRow], context: OracleContext) -> str:
        fields = [f for f in CANONICAL_FIELDS if any(f in r.values for r in rows)]
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["_row", *fields])
        for row in rows:
            writer.writerow([row.row_number, *(self._cell(row.values.get(f)) for f in fields)])

        if context.processed_transactions:
            progress = (
                f"You already generated {context.processed_transactions} transactions. "
                f"Generate the NEXT {self.max_transactions} transactions from the start of this window."
            )
        else:
            progress = f"Generate the FIRST {self.max_transactions} transactions from the start of this window."

        lookahead = (
            "More rows follow this window. If the last rows may belong to a transaction that continues "
            'past the window, leave them out and set "needsMoreRows": true.'
            if context.has_more_rows
            else "This window ends the export; use every row."
        )

        return f"""I'm showing you a WINDOW of {len(rows)} rows (rows {rows[0].row_number}-{rows[-1].row_number}
of {context.total_rows}), sorted OLDEST to NEWEST.

{progress}
{lookahead}

Account: {context.account.name}
Institution: {context.account.institution}
Base currency: {context.account.base_currency}

Return dates as yyyy-MM-dd using the exact year from the CSV.

RESPONSE FORMAT (JSON):
{{
  "transactions": [
    {{
      "sourceRows": [42, 43],
      "date": "2024-03-15",
      "description": "YOU BOUGHT AAPL",
      "transactionType": "buy",
      "journalEntries": [
        {{"type": "debit", "accountType": "asset", "accountName": "AAPL", "amount": 1000.00, "quantity": 10}},
        {{"type": "credit", "accountType": "cash", "accountName": "Cash USD", "amount": 1000.00}}
      ]
    }}
  ],
  "needsMoreRows": false
}}

CSV Data:
```csv
{buffer.getvalue()}```"""

    @staticmethod
    def _cell(value: Any) -> str:
        if value is None:
            return ""
        if hasattr(value, "isoformat"):
            return value.isoformat()
        return str(value)
