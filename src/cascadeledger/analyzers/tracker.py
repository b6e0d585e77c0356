"""
Position/Balance Tracker — replay transactions into cash and per-asset positions.

Replay is a pure fold over an ordered transaction list: the same ordered
input always yields the same cash balance and position map, which is what
makes reconciliation re-runs reproducible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from cascadeledger.errors import PriceUnavailableError
from cascadeledger.models.ledger import AccountType, Transaction
from cascadeledger.models.money import Money

logger = logging.getLogger("cascadeledger.analyzers.tracker")

# Returns the unit price of ``symbol`` on a date, or None when unknown.
PriceLookup = Callable[[str, date], Optional[Decimal]]


@dataclass(frozen=True)
class Position:
    """Holding of one asset after replay."""

    symbol: str
    quantity: Decimal
    cost_basis: Money

    @property
    def is_negative(self) -> bool:
        return self.quantity < 0

    @property
    def average_cost(self) -> Decimal | None:
        if self.quantity == 0:
            return None
        return self.cost_basis.amount / self.quantity


@dataclass(frozen=True)
class PositionWarning:
    """A data-quality problem noticed during replay."""

    code: str
    symbol: str
    quantity: Decimal
    transaction_id: str
    date: date
    message: str = ""


@dataclass
class LedgerState:
    """Cash per currency, positions per symbol, and replay warnings."""

    base_currency: str = "USD"
    cash: dict[str, Money] = field(default_factory=dict)
    positions: dict[str, Position] = field(default_factory=dict)
    warnings: list[PositionWarning] = field(default_factory=list)

    @property
    def cash_balance(self) -> Money:
        return self.cash.get(self.base_currency, Money.zero(self.base_currency))

    @property
    def negative_positions(self) -> list[Position]:
        return [p for p in self.positions.values() if p.is_negative]


@dataclass(frozen=True)
class BalancePoint:
    """Balances right after one transaction has been applied."""

    transaction_id: str
    date: date
    cash: Money
    total_value: Money | None = None


class PositionTracker:
    """Replays transactions in a deterministic order.

    Overselling is not rejected here: the position goes negative, the cost
    basis reduction is capped at the remaining basis, and a
    ``negative_position`` warning is recorded for the validation report.

    Example usage:
        tracker = PositionTracker()
        state = tracker.replay(transactions)
        print(state.cash_balance, state.positions["AAPL"].quantity)
    """

    def __init__(self, price_lookup: PriceLookup | None = None, base_currency: str = "USD") -> None:
        self.price_lookup = price_lookup
        self.base_currency = base_currency

    @staticmethod
    def order(transactions: list[Transaction]) -> list[Transaction]:
        """Ascending date; same-date ties by ascending smallest source row.

        Transactions without source rows (opening balances, repairs) sort
        first within their date.
        """

        def key(txn: Transaction) -> tuple[date, bool, int]:
            row = txn.min_source_row
            return (txn.date, row is not None, row or 0)

        return sorted(transactions, key=key)

    def replay(self, transactions: list[Transaction]) -> LedgerState:
        state = LedgerState(base_currency=self.base_currency)
        for txn in self.order(transactions):
            self._apply(state, txn)
        return state

    def running_balances(
        self, transactions: list[Transaction], include_total_value: bool = False
    ) -> list[BalancePoint]:
        """Cash (and optionally total value) after each transaction.

        Raises:
            PriceUnavailableError: ``include_total_value`` is set and a held
                asset has no price on the transaction date.
        """
        state = LedgerState(base_currency=self.base_currency)
        points: list[BalancePoint] = []
        for txn in self.order(transactions):
            self._apply(state, txn)
            total = None
            if include_total_value:
                total = state.cash_balance + self.market_value(state, txn.date)
            points.append(
                BalancePoint(transaction_id=txn.id, date=txn.date, cash=state.cash_balance, total_value=total)
            )
        return points

    def market_value(self, state: LedgerState, on: date) -> Money:
        """Value of all non-zero positions at the prices known on ``on``."""
        total = Money.zero(self.base_currency)
        for symbol, position in sorted(state.positions.items()):
            if position.quantity == 0:
                continue
            price = self.price_lookup(symbol, on) if self.price_lookup else None
            if price is None:
                raise PriceUnavailableError(symbol, on)
            total = total + Money(amount=position.quantity * price, currency=self.base_currency)
        return total

    def annotate(self, transactions: list[Transaction]) -> list[Transaction]:
        """Copies of the ordered transactions with ``computed_balance`` set."""
        points = self.running_balances(transactions)
        by_id = {p.transaction_id: p for p in points}
        return [
            txn.model_copy(update={"computed_balance": by_id[txn.id].cash})
            for txn in self.order(transactions)
        ]

    # ------------------------------------------------------------------

    def _apply(self, state: LedgerState, txn: Transaction) -> None:
        for entry in txn.entries:
            if entry.account_type == AccountType.CASH:
                current = state.cash.get(entry.currency, Money.zero(entry.currency))
                state.cash[entry.currency] = current + Money(amount=entry.signed_amount, currency=entry.currency)
            elif entry.account_type == AccountType.ASSET:
                self._apply_asset(state, txn, entry.account_name, entry.net_quantity_change, entry.amount)

    def _apply_asset(
        self, state: LedgerState, txn: Transaction, symbol: str, change: Decimal, value: Money
    ) -> None:
        held = state.positions.get(symbol) or Position(symbol, Decimal("0"), Money.zero(value.currency))

        if change >= 0:
            basis = held.cost_basis
            if held.quantity == 0 and basis.amount == 0:
                basis = Money.zero(value.currency)
            if value.currency == basis.currency:
                basis = basis + value
            else:
                # Quantity still moves; the basis stays in its first currency.
                self._warn(
                    state, txn, "mixed_currency_basis", symbol, held.quantity + change,
                    f"{symbol} bought in {value.currency} but its cost basis is in {basis.currency}",
                )
            new = Position(symbol, held.quantity + change, basis)
        else:
            sold = -change
            if held.quantity <= 0:
                reduction = Money.zero(held.cost_basis.currency)
            elif sold >= held.quantity:
                reduction = held.cost_basis
            else:
                reduction = held.cost_basis * sold / held.quantity
            new = Position(symbol, held.quantity - sold, held.cost_basis - reduction)

        state.positions[symbol] = new
        if new.quantity < 0 and change < 0:
            self._warn(state, txn, "negative_position", symbol, new.quantity, f"sold more {symbol} than held")

    @staticmethod
    def _warn(
        state: LedgerState, txn: Transaction, code: str, symbol: str, quantity: Decimal, message: str
    ) -> None:
        logger.warning("%s in transaction %s on %s: %s", code, txn.id, txn.date, message)
        state.warnings.append(
            PositionWarning(
                code=code,
                symbol=symbol,
                quantity=quantity,
                transaction_id=txn.id,
                date=txn.date,
                message=message,
            )
        )


# Convenience function
def replay(transactions: list[Transaction], base_currency: str = "USD") -> LedgerState:
    """Replay transactions with a tracker that has no price data."""
    return PositionTracker(base_currency=base_currency).replay(transactions)
