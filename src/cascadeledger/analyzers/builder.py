"""
Transaction Builder — turn one row group into a balanced double-entry transaction.

Cash amounts are signed the way brokers report them: negative when cash
leaves the account, positive when it arrives. The builder resolves the cash
movement of a group, picks a leg pattern from the action keyword, and
refuses to emit anything that does not balance exactly.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from cascadeledger.analyzers.settlement import RowGroup
from cascadeledger.errors import MaterializationError
from cascadeledger.models.ledger import (
    Account,
    AccountType,
    JournalEntry,
    Transaction,
    TransactionType,
)
from cascadeledger.models.money import Money, Quantity
from cascadeledger.models.rows import TypedRow

logger = logging.getLogger("cascadeledger.analyzers.builder")

ZERO = Decimal("0")

# Checked in order, first match wins.
ACTION_KEYWORDS: list[tuple[tuple[str, ...], TransactionType]] = [
    (("REINVEST",), TransactionType.BUY),
    (("YOU BOUGHT", "BOUGHT", "BUY"), TransactionType.BUY),
    (("YOU SOLD", "SOLD", "SELL"), TransactionType.SELL),
    (("DIVIDEND",), TransactionType.DIVIDEND),
    (("INTEREST",), TransactionType.INTEREST),
    (("TAX", "WITHHOLDING"), TransactionType.TAX),
    (("FEE", "COMMISSION"), TransactionType.FEE),
    (("TRANSFERRED TO", "TRANSFERRED FROM", "TRANSFER"), TransactionType.TRANSFER),
    (("DEPOSIT", "CONTRIBUTION"), TransactionType.DEPOSIT),
    (("WITHDRAWAL",), TransactionType.WITHDRAWAL),
]

CRYPTO_UNITS = {"BTC", "ETH", "SOL", "ADA"}

DIVIDEND_INCOME = "Dividend Income"
INTEREST_INCOME = "Interest Income"
FEES_EXPENSE = "Fees & Commissions"
TAX_EXPENSE = "Taxes Withheld"
OWNER_CONTRIBUTIONS = "Owner Contributions"
OWNER_WITHDRAWALS = "Owner Withdrawals"
OTHER_INCOME = "Other Income"
OTHER_EXPENSES = "Other Expenses"


def classify_action(action: str) -> TransactionType:
    """Map a broker action string onto a transaction type."""
    upper = action.upper()
    for keywords, txn_type in ACTION_KEYWORDS:
        if any(k in upper for k in keywords):
            return txn_type
    return TransactionType.OTHER


def quantity_unit(symbol: str) -> str:
    """Crypto tickers count in their own unit, everything else in shares."""
    upper = symbol.upper()
    return upper if upper in CRYPTO_UNITS else "shares"


class TransactionBuilder:
    """Builds balanced transactions from settlement-grouped rows.

    Example usage:
        builder = TransactionBuilder()
        txn = builder.build(group, account)
        transactions, errors = builder.build_all(groups, account)
    """

    def __init__(self, base_currency: str = "USD") -> None:
        self.base_currency = base_currency

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, group: RowGroup, account: Account | None = None) -> Transaction:
        """Materialize one row group.

        Raises:
            MaterializationError: The group is orphaned, lacks required
                fields, disagrees with its settlement rows, or would not
                balance.
        """
        account = account or Account(name="default", base_currency=self.base_currency)
        rows = group.row_numbers
        primary = group.primary
        if primary is None:
            raise MaterializationError("settlement rows with no primary row", rows)
        if primary.date is None:
            raise MaterializationError("primary row has no date", rows)

        txn_type = classify_action(primary.action)
        currency = primary.currency or account.base_currency
        cash = self._resolve_cash(group, primary, txn_type)

        legs = self._legs(group, primary, txn_type, cash, currency)

        reported = None
        for row in sorted(group.rows, key=lambda r: r.row_number, reverse=True):
            if row.reported_balance is not None:
                reported = Money(amount=row.reported_balance, currency=currency)
                break

        txn = Transaction(
            date=primary.date,
            description=primary.description or primary.action,
            type=txn_type,
            entries=tuple(legs),
            reported_balance=reported,
        )
        self._check_balanced(txn, rows)
        return txn

    def build_all(
        self, groups: list[RowGroup], account: Account | None = None
    ) -> tuple[list[Transaction], list[MaterializationError]]:
        """Materialize every group, collecting failures instead of stopping."""
        transactions: list[Transaction] = []
        errors: list[MaterializationError] = []
        for group in groups:
            try:
                transactions.append(self.build(group, account))
            except MaterializationError as e:
                logger.warning("Could not materialize rows %s: %s", group.row_numbers, e.reason)
                errors.append(e)
        logger.info("Built %d transactions, %d groups failed", len(transactions), len(errors))
        return transactions, errors

    # ------------------------------------------------------------------
    # Cash resolution
    # ------------------------------------------------------------------

    def _resolve_cash(self, group: RowGroup, primary: TypedRow, txn_type: TransactionType) -> Decimal | None:
        """Signed cash movement of the group.

        Settlement rows are authoritative, then the primary row's amount,
        then ``quantity * price`` for trades.
        """
        settled = [r.amount for r in group.settlements if r.amount is not None]

        if settled:
            total = sum(settled, ZERO)
            if primary.amount is not None and primary.amount != 0 and primary.amount != total:
                raise MaterializationError(
                    "primary amount disagrees with settlement rows",
                    group.row_numbers,
                    leg="settlement",
                    shortfall=abs(primary.amount - total),
                )
            return total

        if primary.amount is not None:
            return primary.amount

        if primary.quantity is not None and primary.price is not None:
            gross = abs(primary.quantity) * primary.price
            fees = self._fees(primary)
            if txn_type == TransactionType.BUY:
                return -(gross + fees)
            if txn_type == TransactionType.SELL:
                return gross - fees
        return None

    @staticmethod
    def _fees(row: TypedRow) -> Decimal:
        return abs(row.commission or ZERO) + abs(row.fees or ZERO)

    # ------------------------------------------------------------------
    # Leg patterns
    # ------------------------------------------------------------------

    def _legs(
        self,
        group: RowGroup,
        primary: TypedRow,
        txn_type: TransactionType,
        cash: Decimal | None,
        currency: str,
    ) -> list[JournalEntry]:
        primary_rows = frozenset({primary.row_number})
        cash_rows = frozenset(group.row_numbers)
        cash_name = f"Cash {currency}"
        symbol = primary.symbol

        def money(value: Decimal) -> Money:
            return Money(amount=value, currency=currency)

        if txn_type in (TransactionType.BUY, TransactionType.SELL):
            if cash is None:
                raise MaterializationError("trade has no resolvable cash amount", group.row_numbers, leg="cash")
            qty = abs(primary.quantity or ZERO)
            if qty == 0:
                raise MaterializationError("trade has no quantity", group.row_numbers, leg="asset")
            return self._trade_legs(
                txn_type, symbol, qty, abs(cash), self._fees(primary), money, cash_name, primary_rows, cash_rows
            )

        if txn_type == TransactionType.DIVIDEND and not cash and primary.quantity:
            # Reinvested without a cash movement: shares arrive as income.
            qty = abs(primary.quantity)
            value = abs(primary.amount or ZERO) or qty * (primary.price or ZERO)
            return [
                JournalEntry.debit_of(
                    AccountType.ASSET,
                    symbol,
                    money(value),
                    quantity=Quantity(amount=qty, unit=quantity_unit(symbol)),
                    symbol=symbol,
                    source_rows=cash_rows,
                ),
                JournalEntry.credit_of(AccountType.INCOME, DIVIDEND_INCOME, money(value), source_rows=primary_rows),
            ]

        if cash is None:
            raise MaterializationError("row group has no cash amount", group.row_numbers, leg="cash")

        if txn_type == TransactionType.OTHER and primary.quantity and symbol:
            # Unknown action with an asset component: the cash sign decides direction.
            side = TransactionType.BUY if cash < 0 else TransactionType.SELL
            return self._trade_legs(
                side, symbol, abs(primary.quantity), abs(cash), ZERO, money, cash_name, primary_rows, cash_rows
            )

        counter_type, counter_name = self._counter_account(txn_type, cash)
        return self._cash_against(counter_type, counter_name, cash, money, cash_name, primary_rows, cash_rows)

    @staticmethod
    def _trade_legs(
        side: TransactionType,
        symbol: str,
        qty: Decimal,
        cash: Decimal,
        fees: Decimal,
        money,
        cash_name: str,
        primary_rows: frozenset[int],
        cash_rows: frozenset[int],
    ) -> list[JournalEntry]:
        quantity = Quantity(amount=qty, unit=quantity_unit(symbol))
        if side == TransactionType.BUY:
            # Cash paid covers the asset and the fees.
            asset_value = cash - fees
            if asset_value < 0:
                raise MaterializationError(
                    "fees exceed the cash paid", primary_rows, leg="asset", shortfall=-asset_value
                )
            legs = [
                JournalEntry.debit_of(
                    AccountType.ASSET, symbol, money(asset_value), quantity=quantity, symbol=symbol, source_rows=primary_rows
                )
            ]
            if fees:
                legs.append(JournalEntry.debit_of(AccountType.EXPENSE, FEES_EXPENSE, money(fees), source_rows=primary_rows))
            legs.append(JournalEntry.credit_of(AccountType.CASH, cash_name, money(cash), source_rows=cash_rows))
            return legs

        # Proceeds received are the asset value net of fees.
        legs = [JournalEntry.debit_of(AccountType.CASH, cash_name, money(cash), source_rows=cash_rows)]
        if fees:
            legs.append(JournalEntry.debit_of(AccountType.EXPENSE, FEES_EXPENSE, money(fees), source_rows=primary_rows))
        legs.append(
            JournalEntry.credit_of(
                AccountType.ASSET, symbol, money(cash + fees), quantity=quantity, symbol=symbol, source_rows=primary_rows
            )
        )
        return legs

    @staticmethod
    def _counter_account(txn_type: TransactionType, cash: Decimal) -> tuple[AccountType, str]:
        inflow = cash >= 0
        if txn_type == TransactionType.DIVIDEND:
            return AccountType.INCOME, DIVIDEND_INCOME
        if txn_type == TransactionType.INTEREST:
            return AccountType.INCOME, INTEREST_INCOME
        if txn_type == TransactionType.FEE:
            return AccountType.EXPENSE, FEES_EXPENSE
        if txn_type == TransactionType.TAX:
            return AccountType.EXPENSE, TAX_EXPENSE
        if txn_type in (TransactionType.TRANSFER, TransactionType.DEPOSIT, TransactionType.WITHDRAWAL):
            return AccountType.EQUITY, OWNER_CONTRIBUTIONS if inflow else OWNER_WITHDRAWALS
        if inflow:
            return AccountType.INCOME, OTHER_INCOME
        return AccountType.EXPENSE, OTHER_EXPENSES

    @staticmethod
    def _cash_against(
        counter_type: AccountType,
        counter_name: str,
        cash: Decimal,
        money,
        cash_name: str,
        primary_rows: frozenset[int],
        cash_rows: frozenset[int],
    ) -> list[JournalEntry]:
        value = money(abs(cash))
        if cash >= 0:
            return [
                JournalEntry.debit_of(AccountType.CASH, cash_name, value, source_rows=cash_rows),
                JournalEntry.credit_of(counter_type, counter_name, value, source_rows=primary_rows),
            ]
        return [
            JournalEntry.debit_of(counter_type, counter_name, value, source_rows=primary_rows),
            JournalEntry.credit_of(AccountType.CASH, cash_name, value, source_rows=cash_rows),
        ]

    @staticmethod
    def _check_balanced(txn: Transaction, rows: list[int]) -> None:
        if len(txn.entries) < 2:
            raise MaterializationError("transaction needs at least two legs", rows)
        for currency, diff in txn.imbalances().items():
            raise MaterializationError(
                f"debits and credits differ in {currency}",
                rows,
                leg="debit" if diff < 0 else "credit",
                shortfall=abs(diff),
            )


# Convenience function
def build_transactions(
    groups: list[RowGroup], account: Account | None = None
) -> tuple[list[Transaction], list[MaterializationError]]:
    """Build transactions for all groups with a default builder."""
    return TransactionBuilder().build_all(groups, account)
