"""
Base agent — shared LLM plumbing for cascadeledger agents.

Agents are the only part of cascadeledger that talks to an LLM. They
propose transactions (categorization) or corrections (reconciliation); the
analyzers decide what to accept.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Protocol

import litellm
from pydantic import ValidationError

from cascadeledger.analyzers.builder import quantity_unit
from cascadeledger.errors import MaterializationError, OracleFailedError, RateLimitedError
from cascadeledger.models.ledger import (
    Account,
    AccountType,
    JournalEntry,
    Transaction,
    TransactionOrigin,
    TransactionType,
)
from cascadeledger.models.money import Money, Quantity
from cascadeledger.models.rows import TypedRow

if TYPE_CHECKING:
    from cascadeledger.config import LedgerConfig, LLMConfig

logger = logging.getLogger("cascadeledger.agents")


@dataclass
class OracleContext:
    """What an oracle knows about the session around the current window."""

    account: Account
    window_start: int = 0
    total_rows: int = 0
    processed_transactions: int = 0
    has_more_rows: bool = False
    covered_rows: frozenset[int] = frozenset()


@dataclass
class OracleProposal:
    """Transactions proposed for a window of rows.

    ``needs_more_rows`` signals that the rows at the end of the window may
    belong to a transaction that continues past it.
    """

    transactions: list[Transaction] = field(default_factory=list)
    needs_more_rows: bool = False
    errors: list[MaterializationError] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def consumed_rows(self) -> set[int]:
        rows: set[int] = set()
        for txn in self.transactions:
            rows.update(txn.source_rows)
        for error in self.errors:
            rows.update(error.row_numbers)
        return rows


class CategorizationOracle(Protocol):
    """Anything that can turn a window of typed rows into transactions."""

    async def propose(self, rows: list[TypedRow], context: OracleContext) -> OracleProposal:
        ...


_TYPE_ALIASES = {
    "transfer_in": TransactionType.DEPOSIT,
    "transfer_out": TransactionType.WITHDRAWAL,
}


def extract_json(content: str) -> Any:
    """Parse the JSON object embedded in an LLM response.

    Takes everything from the first ``{`` to the last ``}`` so markdown
    fences and chatter around the object are ignored. Numbers become
    ``Decimal``.

    Raises:
        ValueError: No JSON object could be parsed.
    """
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in response")
    return json.loads(content[start : end + 1], parse_float=Decimal, parse_int=Decimal)


def parse_date(value: str) -> date:
    for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return datetime.fromisoformat(value.strip()).date()


def _payload_rows(payload: Any) -> list[int]:
    """Whatever row numbers a (possibly malformed) payload names."""
    if not isinstance(payload, dict) or not isinstance(payload.get("sourceRows"), list):
        return []
    rows = []
    for value in payload["sourceRows"]:
        try:
            rows.append(int(value))
        except (TypeError, ValueError, ArithmeticError):
            continue
    return rows


def transaction_from_payload(
    payload: dict[str, Any],
    base_currency: str = "USD",
    origin: TransactionOrigin = TransactionOrigin.ORACLE,
) -> Transaction:
    """Build a transaction from the JSON shape the prompts ask for.

    Raises:
        ValueError: A required field is missing or malformed.
    """
    try:
        rows = frozenset(int(r) for r in payload.get("sourceRows", []))
        txn_date = parse_date(str(payload["date"]))
    except (KeyError, TypeError) as e:
        raise ValueError(f"malformed transaction: {e}") from e

    type_name = str(payload.get("transactionType", "other")).lower()
    if type_name in _TYPE_ALIASES:
        txn_type = _TYPE_ALIASES[type_name]
    elif type_name in {t.value for t in TransactionType}:
        txn_type = TransactionType(type_name)
    else:
        txn_type = TransactionType.OTHER

    entries = []
    for leg in payload.get("journalEntries", []):
        account_type = AccountType(str(leg["accountType"]).lower())
        amount = Money(amount=Decimal(str(leg["amount"])), currency=leg.get("currency", base_currency))
        kwargs: dict[str, Any] = {"source_rows": rows}
        if leg.get("quantity") is not None:
            symbol = str(leg.get("symbol") or leg["accountName"])
            kwargs["quantity"] = Quantity(amount=abs(Decimal(str(leg["quantity"]))), unit=quantity_unit(symbol))
            kwargs["symbol"] = symbol
        if str(leg.get("type", "")).lower() == "debit":
            entries.append(JournalEntry.debit_of(account_type, str(leg["accountName"]), amount, **kwargs))
        else:
            entries.append(JournalEntry.credit_of(account_type, str(leg["accountName"]), amount, **kwargs))

    return Transaction(
        date=txn_date,
        description=str(payload.get("description", "")),
        type=txn_type,
        entries=tuple(entries),
        origin=origin,
    )


class BaseAgent(ABC):
    """Abstract base class for all cascadeledger agents.

    Subclass this to create new LLM-backed agents. Each agent:
    - Has a system prompt defining its task.
    - Calls the LLM through litellm (any provider).
    - Maps provider rate limits and failures onto the oracle error types.
    """

    name: str = "base_agent"
    description: str = "Base ledger agent"

    def __init__(self, config: LedgerConfig) -> None:
        self.config = config
        self.llm_config: LLMConfig = config.llm
        self.last_usage: tuple[int, int] = (0, 0)

    @property
    @abstractmethod
    def system_prompt(self) -> str:
        """The system prompt that defines this agent's task."""
        ...

    async def _call_llm(
        self,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Call the LLM via litellm (supports any provider).

        Raises:
            RateLimitedError: The provider asked us to back off.
            OracleFailedError: Any other provider failure.
        """
        full_messages = [{"role": "system", "content": self.system_prompt}] + messages

        try:
            response = await litellm.acompletion(
                model=self.llm_config.model,
                messages=full_messages,
                temperature=temperature if temperature is not None else self.llm_config.temperature,
                max_tokens=max_tokens or self.llm_config.max_tokens,
                api_key=self.llm_config.api_key,
                api_base=self.llm_config.api_base,
                timeout=self.llm_config.timeout,
            )
        except litellm.RateLimitError as e:
            retry_after = self.config.categorization.default_retry_after_seconds
            logger.warning("[%s] Rate limited, retry after %ss", self.name, retry_after)
            raise RateLimitedError(retry_after, str(e)) from e
        except Exception as e:
            logger.error("[%s] LLM call failed: %s", self.name, e)
            raise OracleFailedError(f"LLM call failed: {e}") from e

        usage = getattr(response, "usage", None)
        self.last_usage = (
            int(getattr(usage, "prompt_tokens", 0) or 0),
            int(getattr(usage, "completion_tokens", 0) or 0),
        )
        content = response.choices[0].message.content or ""
        logger.debug("[%s] LLM response: %s...", self.name, content[:200])
        return content

    @staticmethod
    def _parse_payload(content: str) -> dict[str, Any]:
        try:
            data = extract_json(content)
        except (ValueError, json.JSONDecodeError) as e:
            raise OracleFailedError(f"unparseable LLM response: {e}") from e
        if not isinstance(data, dict):
            raise OracleFailedError("LLM response is not a JSON object")
        return data

    @staticmethod
    def _transactions(
        items: list[Any], base_currency: str, origin: TransactionOrigin
    ) -> tuple[list[Transaction], list[MaterializationError]]:
        """Parse transaction payloads; each bad one becomes an error for its rows."""
        transactions: list[Transaction] = []
        problems: list[MaterializationError] = []
        for index, item in enumerate(items):
            try:
                transactions.append(transaction_from_payload(item, base_currency, origin))
            except (ValueError, KeyError, TypeError, InvalidOperation, ValidationError) as e:
                logger.warning("Skipping transaction #%d from LLM: %s", index, e)
                problems.append(MaterializationError(f"unusable transaction #{index} from LLM: {e}", _payload_rows(item)))
        return transactions, problems
