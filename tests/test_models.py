"""Tests for data models — money, journal entries, transactions and rows."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from cascadeledger.errors import CurrencyMismatchError
from cascadeledger.models.ledger import (
    AccountType,
    JournalEntry,
    Transaction,
    TransactionOrigin,
    TransactionType,
)
from cascadeledger.models.money import Money, Quantity
from cascadeledger.models.report import BalanceCheckpoint, DiscrepancySeverity
from cascadeledger.models.rows import TypedRow


def usd(value: str) -> Money:
    return Money(amount=Decimal(value))


def _deposit(amount: str = "100.00") -> Transaction:
    return Transaction(
        date=date(2024, 1, 2),
        description="Deposit",
        type=TransactionType.DEPOSIT,
        entries=(
            JournalEntry.debit_of(AccountType.CASH, "Cash USD", usd(amount), source_rows=frozenset({1})),
            JournalEntry.credit_of(AccountType.EQUITY, "Owner Contributions", usd(amount), source_rows=frozenset({1})),
        ),
    )


class TestMoney:
    def test_exact_addition(self) -> None:
        total = Money(amount="0.10") + Money(amount="0.20")
        assert total.amount == Decimal("0.30")
        assert total.currency == "USD"

    def test_sum_starts_from_zero(self) -> None:
        total = sum([usd("1.50"), usd("2.25"), usd("3")])
        assert total == usd("6.75")

    def test_currency_mismatch(self) -> None:
        with pytest.raises(CurrencyMismatchError):
            usd("1") + Money(amount="1", currency="EUR")

    def test_mismatch_is_a_type_error(self) -> None:
        with pytest.raises(TypeError):
            usd("1") - Money(amount="1", currency="CAD")

    def test_money_and_quantity_do_not_mix(self) -> None:
        with pytest.raises(CurrencyMismatchError):
            usd("1") + Quantity(amount="1")

    def test_floats_rejected(self) -> None:
        with pytest.raises(TypeError):
            Money(amount=1.5)

    def test_garbage_string_rejected(self) -> None:
        with pytest.raises(ValueError):
            Money(amount="twelve")

    def test_scalar_arithmetic(self) -> None:
        basis = usd("1000")
        assert basis * 40 / 100 == usd("400")
        assert -basis == usd("-1000")
        assert abs(usd("-5")) == usd("5")

    def test_comparisons(self) -> None:
        assert usd("1") < usd("2")
        assert usd("2") >= usd("2")
        assert usd("0").is_zero
        assert usd("-0.01").is_negative

    def test_str(self) -> None:
        assert str(usd("12.50")) == "12.50 USD"
        assert str(Quantity(amount="0.5", unit="BTC")) == "0.5 BTC"


class TestJournalEntry:
    def test_needs_exactly_one_side(self) -> None:
        with pytest.raises(ValidationError):
            JournalEntry(account_type=AccountType.CASH, account_name="Cash USD")
        with pytest.raises(ValidationError):
            JournalEntry(
                account_type=AccountType.CASH, account_name="Cash USD", debit=usd("1"), credit=usd("1")
            )

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(ValidationError):
            JournalEntry.debit_of(AccountType.CASH, "Cash USD", usd("-1"))

    def test_asset_leg_needs_quantity(self) -> None:
        with pytest.raises(ValidationError):
            JournalEntry.debit_of(AccountType.ASSET, "AAPL", usd("100"))

    def test_signed_and_net_effect(self) -> None:
        cash_out = JournalEntry.credit_of(AccountType.CASH, "Cash USD", usd("25"))
        income = JournalEntry.credit_of(AccountType.INCOME, "Dividend Income", usd("25"))
        assert cash_out.signed_amount == Decimal("-25")
        assert cash_out.net_effect == Decimal("-25")
        assert income.net_effect == Decimal("25")

    def test_quantity_change_and_price(self) -> None:
        leg = JournalEntry.credit_of(
            AccountType.ASSET, "AAPL", usd("600"), quantity=Quantity(amount="4"), symbol="AAPL"
        )
        assert leg.net_quantity_change == Decimal("-4")
        assert leg.price_per_unit == Decimal("150")

    def test_flipped(self) -> None:
        leg = JournalEntry.debit_of(AccountType.CASH, "Cash USD", usd("10"))
        flipped = leg.flipped()
        assert not flipped.is_debit
        assert flipped.credit == usd("10")
        assert flipped.flipped().debit == usd("10")
        assert flipped.flipped().credit is None


class TestTransaction:
    def test_balanced(self) -> None:
        txn = _deposit()
        assert txn.is_balanced
        assert txn.imbalances() == {}
        assert txn.total_debits == txn.total_credits == Decimal("100.00")

    def test_unbalanced(self) -> None:
        txn = Transaction(
            date=date(2024, 1, 2),
            entries=(
                JournalEntry.debit_of(AccountType.CASH, "Cash USD", usd("100")),
                JournalEntry.credit_of(AccountType.INCOME, "Other Income", usd("99.99")),
            ),
        )
        assert not txn.is_balanced
        assert txn.imbalances() == {"USD": Decimal("0.01")}

    def test_single_leg_is_not_balanced(self) -> None:
        txn = Transaction(
            date=date(2024, 1, 2),
            entries=(JournalEntry.debit_of(AccountType.CASH, "Cash USD", usd("0")),),
        )
        assert not txn.is_balanced

    def test_balances_per_currency(self) -> None:
        eur = Money(amount="50", currency="EUR")
        txn = Transaction(
            date=date(2024, 1, 2),
            entries=(
                JournalEntry.debit_of(AccountType.CASH, "Cash USD", usd("50")),
                JournalEntry.credit_of(AccountType.CASH, "Cash EUR", eur),
            ),
        )
        assert set(txn.unit_groups()) == {"EUR", "USD"}
        assert txn.imbalances() == {"EUR": Decimal("-50"), "USD": Decimal("50")}

    def test_source_rows_union(self) -> None:
        txn = Transaction(
            date=date(2024, 1, 2),
            entries=(
                JournalEntry.debit_of(
                    AccountType.ASSET, "VTI", usd("200"), quantity=Quantity(amount="1"), source_rows=frozenset({7})
                ),
                JournalEntry.credit_of(AccountType.CASH, "Cash USD", usd("200"), source_rows=frozenset({7, 8, 9})),
            ),
        )
        assert txn.source_rows == frozenset({7, 8, 9})
        assert txn.min_source_row == 7
        assert txn.net_cash_impact() == Decimal("-200")
        assert txn.quantity_change("VTI") == Decimal("1")

    def test_with_entries_is_a_new_transaction(self) -> None:
        txn = _deposit()
        flipped = txn.with_entries([e.flipped() for e in txn.entries], origin=TransactionOrigin.REPAIR)
        assert flipped.id != txn.id
        assert flipped.origin == TransactionOrigin.REPAIR
        assert flipped.net_cash_impact() == Decimal("-100.00")
        assert txn.net_cash_impact() == Decimal("100.00")

    def test_frozen(self) -> None:
        txn = _deposit()
        with pytest.raises(ValidationError):
            txn.description = "changed"  # type: ignore[misc]

    def test_serializes(self) -> None:
        restored = Transaction.model_validate_json(_deposit().model_dump_json())
        assert restored.is_balanced
        assert restored.source_rows == frozenset({1})


class TestTypedRow:
    def test_accessors(self) -> None:
        row = TypedRow(
            row_number=3,
            values={
                "date": date(2024, 5, 1),
                "action": " YOU BOUGHT ",
                "quantity": Decimal("2"),
                "amount": "-300.00",
                "balance": Decimal("700"),
            },
        )
        assert row.action == "YOU BOUGHT"
        assert row.is_classified
        assert row.amount == Decimal("-300.00")
        assert row.reported_balance == Decimal("700")
        assert row.price is None

    def test_settlement_row_is_unclassified(self) -> None:
        row = TypedRow(row_number=4, values={"amount": Decimal("-1.00")})
        assert not row.is_classified


class TestBalanceCheckpoint:
    def test_discrepancy(self) -> None:
        cp = BalanceCheckpoint(
            row_number=1,
            computed=usd("1005.00"),
            reported=usd("1000.00"),
            severity=DiscrepancySeverity.MEDIUM,
        )
        assert cp.discrepancy == usd("5.00")
        assert cp.has_discrepancy
