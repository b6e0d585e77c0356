"""Tests for the transaction builder."""

from datetime import date
from decimal import Decimal

import pytest

from cascadeledger.analyzers.builder import (
    DIVIDEND_INCOME,
    FEES_EXPENSE,
    OWNER_CONTRIBUTIONS,
    OWNER_WITHDRAWALS,
    TransactionBuilder,
    build_transactions,
    classify_action,
    quantity_unit,
)
from cascadeledger.analyzers.settlement import GroupKind, RowGroup
from cascadeledger.errors import MaterializationError
from cascadeledger.models.ledger import AccountType, TransactionType
from cascadeledger.models.rows import TypedRow


def _row(n: int, **values) -> TypedRow:
    values.setdefault("date", date(2024, 3, 1))
    typed = {k: Decimal(v) if k in ("quantity", "price", "amount", "commission", "fees", "balance") else v for k, v in values.items()}
    return TypedRow(row_number=n, values=typed)


def _group(*rows: TypedRow) -> RowGroup:
    return RowGroup(rows=list(rows))


def _leg(txn, account_type: AccountType):
    return [e for e in txn.entries if e.account_type == account_type]


class TestClassifyAction:
    @pytest.mark.parametrize(
        "action,expected",
        [
            ("YOU BOUGHT APPLE INC (AAPL)", TransactionType.BUY),
            ("REINVESTMENT VANGUARD TOTAL", TransactionType.BUY),
            ("YOU SOLD", TransactionType.SELL),
            ("DIVIDEND RECEIVED", TransactionType.DIVIDEND),
            ("INTEREST EARNED", TransactionType.INTEREST),
            ("FOREIGN TAX PAID", TransactionType.TAX),
            ("ADVISORY FEE", TransactionType.FEE),
            ("TRANSFERRED FROM VS X12-345", TransactionType.TRANSFER),
            ("Electronic Funds Transfer Received", TransactionType.TRANSFER),
            ("CONTRIBUTION", TransactionType.DEPOSIT),
            ("WITHDRAWAL", TransactionType.WITHDRAWAL),
            ("JOURNALED SPP", TransactionType.OTHER),
        ],
    )
    def test_keywords(self, action: str, expected: TransactionType) -> None:
        assert classify_action(action) == expected

    def test_quantity_unit(self) -> None:
        assert quantity_unit("btc") == "BTC"
        assert quantity_unit("AAPL") == "shares"


class TestTrades:
    def test_buy_single_row(self) -> None:
        txn = TransactionBuilder().build(
            _group(_row(1, action="YOU BOUGHT", symbol="AAPL", quantity="10", price="150", amount="-1500"))
        )
        assert txn.type == TransactionType.BUY
        assert txn.is_balanced
        (asset,) = _leg(txn, AccountType.ASSET)
        assert asset.is_debit
        assert asset.amount.amount == Decimal("1500")
        assert asset.quantity.amount == Decimal("10")
        assert txn.net_cash_impact() == Decimal("-1500")

    def test_buy_with_commission(self) -> None:
        txn = TransactionBuilder().build(
            _group(
                _row(
                    1, action="YOU BOUGHT", symbol="AAPL", quantity="10", price="150",
                    commission="4.95", amount="-1504.95",
                )
            )
        )
        assert txn.is_balanced
        assert _leg(txn, AccountType.ASSET)[0].amount.amount == Decimal("1500.00")
        (fee,) = _leg(txn, AccountType.EXPENSE)
        assert fee.account_name == FEES_EXPENSE
        assert fee.amount.amount == Decimal("4.95")
        assert _leg(txn, AccountType.CASH)[0].amount.amount == Decimal("1504.95")

    def test_sell_with_fees(self) -> None:
        txn = TransactionBuilder().build(
            _group(_row(1, action="YOU SOLD", symbol="MSFT", quantity="-5", price="400", fees="5", amount="1995"))
        )
        assert txn.type == TransactionType.SELL
        assert txn.is_balanced
        (asset,) = _leg(txn, AccountType.ASSET)
        assert not asset.is_debit
        assert asset.amount.amount == Decimal("2000")
        assert asset.quantity.amount == Decimal("5")
        assert txn.net_cash_impact() == Decimal("1995")

    def test_cash_inferred_from_quantity_and_price(self) -> None:
        txn = TransactionBuilder().build(
            _group(_row(1, action="BUY", symbol="VTI", quantity="4", price="250"))
        )
        assert txn.net_cash_impact() == Decimal("-1000")

    def test_crypto_units(self) -> None:
        txn = TransactionBuilder().build(
            _group(_row(1, action="Buy", symbol="BTC", quantity="0.01", price="60000"))
        )
        assert _leg(txn, AccountType.ASSET)[0].quantity.unit == "BTC"

    def test_buy_without_price_or_amount(self) -> None:
        with pytest.raises(MaterializationError) as exc:
            TransactionBuilder().build(_group(_row(1, action="YOU BOUGHT", symbol="AAPL", quantity="10")))
        assert exc.value.leg == "cash"
        assert exc.value.row_numbers == (1,)

    def test_trade_without_quantity(self) -> None:
        with pytest.raises(MaterializationError) as exc:
            TransactionBuilder().build(_group(_row(1, action="YOU BOUGHT", symbol="AAPL", amount="-100")))
        assert exc.value.leg == "asset"


class TestSettlementRows:
    def test_settlement_amount_is_authoritative(self) -> None:
        txn = TransactionBuilder().build(
            _group(
                _row(1, action="YOU BOUGHT", symbol="AAPL", quantity="10", price="100"),
                _row(2, amount="-1002"),
            )
        )
        assert txn.is_balanced
        (cash,) = _leg(txn, AccountType.CASH)
        assert cash.amount.amount == Decimal("1002")
        assert cash.source_rows == frozenset({1, 2})
        assert txn.source_rows == frozenset({1, 2})

    def test_settlements_are_summed(self) -> None:
        txn = TransactionBuilder().build(
            _group(
                _row(1, action="YOU BOUGHT", symbol="AAPL", quantity="10", price="100"),
                _row(2, amount="-1000"),
                _row(3, amount="-2.50"),
            )
        )
        assert txn.net_cash_impact() == Decimal("-1002.50")

    def test_disagreeing_primary_amount(self) -> None:
        with pytest.raises(MaterializationError) as exc:
            TransactionBuilder().build(
                _group(
                    _row(1, action="YOU BOUGHT", symbol="AAPL", quantity="10", price="100", amount="-1000"),
                    _row(2, amount="-1002"),
                )
            )
        assert exc.value.leg == "settlement"
        assert exc.value.shortfall == Decimal("2")
        assert exc.value.row_numbers == (1, 2)

    def test_reported_balance_from_last_row(self) -> None:
        txn = TransactionBuilder().build(
            _group(
                _row(1, action="YOU BOUGHT", symbol="AAPL", quantity="1", price="10", balance="990"),
                _row(2, amount="-10", balance="980"),
            )
        )
        assert txn.reported_balance.amount == Decimal("980")

    def test_orphaned_group(self) -> None:
        group = RowGroup(rows=[_row(1, amount="-5")], kind=GroupKind.ORPHANED_SETTLEMENT)
        with pytest.raises(MaterializationError, match="no primary row"):
            TransactionBuilder().build(group)


class TestCashTransactions:
    def test_cash_dividend(self) -> None:
        txn = TransactionBuilder().build(_group(_row(1, action="DIVIDEND RECEIVED", symbol="VTI", amount="12.34")))
        assert txn.type == TransactionType.DIVIDEND
        assert txn.is_balanced
        (income,) = _leg(txn, AccountType.INCOME)
        assert income.account_name == DIVIDEND_INCOME
        assert not income.is_debit
        assert txn.net_cash_impact() == Decimal("12.34")

    def test_reinvested_dividend_without_cash(self) -> None:
        txn = TransactionBuilder().build(
            _group(_row(1, action="DIVIDEND RECEIVED", symbol="VTI", quantity="0.5", price="200"))
        )
        assert txn.is_balanced
        assert txn.net_cash_impact() == Decimal("0")
        assert txn.quantity_change("VTI") == Decimal("0.5")

    def test_fee(self) -> None:
        txn = TransactionBuilder().build(_group(_row(1, action="ADVISORY FEE", amount="-25")))
        (expense,) = _leg(txn, AccountType.EXPENSE)
        assert expense.is_debit
        assert txn.net_cash_impact() == Decimal("-25")

    def test_deposit_and_withdrawal(self) -> None:
        builder = TransactionBuilder()
        deposit = builder.build(_group(_row(1, action="TRANSFERRED FROM BANK", amount="5000")))
        withdrawal = builder.build(_group(_row(2, action="WITHDRAWAL", amount="-300")))
        assert _leg(deposit, AccountType.EQUITY)[0].account_name == OWNER_CONTRIBUTIONS
        assert _leg(withdrawal, AccountType.EQUITY)[0].account_name == OWNER_WITHDRAWALS
        assert withdrawal.net_cash_impact() == Decimal("-300")

    def test_unknown_action_with_asset(self) -> None:
        txn = TransactionBuilder().build(
            _group(_row(1, action="JOURNALED", symbol="AAPL", quantity="2", amount="-300"))
        )
        assert txn.is_balanced
        assert txn.quantity_change("AAPL") == Decimal("2")

    def test_missing_cash(self) -> None:
        with pytest.raises(MaterializationError) as exc:
            TransactionBuilder().build(_group(_row(1, action="INTEREST EARNED")))
        assert exc.value.leg == "cash"

    def test_missing_date(self) -> None:
        row = TypedRow(row_number=1, values={"action": "DIVIDEND", "amount": Decimal("1")})
        with pytest.raises(MaterializationError, match="no date"):
            TransactionBuilder().build(_group(row))

    def test_currency_from_row(self) -> None:
        txn = TransactionBuilder().build(_group(_row(1, action="INTEREST", amount="3", currency="EUR")))
        assert {e.currency for e in txn.entries} == {"EUR"}
        assert txn.net_cash_impact("EUR") == Decimal("3")


class TestBuildAll:
    def test_one_bad_group_does_not_block_others(self) -> None:
        groups = [
            RowGroup(rows=[_row(1, amount="-5")], kind=GroupKind.ORPHANED_SETTLEMENT),
            _group(_row(2, action="DEPOSIT", amount="100")),
            _group(_row(3, action="YOU BOUGHT", symbol="X", quantity="1")),
            _group(_row(4, action="DIVIDEND", amount="2")),
        ]
        transactions, errors = build_transactions(groups)

        assert len(transactions) == 2
        assert all(t.is_balanced for t in transactions)
        assert [e.row_numbers for e in errors] == [(1,), (3,)]
