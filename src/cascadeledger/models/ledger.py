"""
Double-entry ledger models — journal legs, transactions, accounts.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cascadeledger.models.money import Money, Quantity


class AccountType(str, Enum):
    """Account classification of a journal leg."""

    CASH = "cash"
    ASSET = "asset"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"
    LIABILITY = "liability"

    @property
    def debit_normal(self) -> bool:
        return self in (AccountType.CASH, AccountType.ASSET, AccountType.EXPENSE)


class TransactionType(str, Enum):
    """Economic classification of a transaction."""

    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"
    INTEREST = "interest"
    FEE = "fee"
    TAX = "tax"
    TRANSFER = "transfer"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    OPENING_BALANCE = "opening_balance"
    OTHER = "other"


class TransactionOrigin(str, Enum):
    """Which producer created a transaction."""

    BUILDER = "builder"
    ORACLE = "oracle"
    REPAIR = "repair"


class Account(BaseModel):
    """The brokerage account a session materializes transactions for."""

    name: str
    institution: str = "generic"
    base_currency: str = "USD"

    @property
    def cash_account_name(self) -> str:
        return f"Cash {self.base_currency}"


class JournalEntry(BaseModel):
    """One leg of a double-entry transaction.

    Exactly one of ``debit`` or ``credit`` is set and it is never negative.
    Asset legs carry the quantity of units that moved.
    """

    model_config = ConfigDict(frozen=True)

    account_type: AccountType
    account_name: str
    debit: Money | None = None
    credit: Money | None = None
    quantity: Quantity | None = None
    symbol: str | None = None
    source_rows: frozenset[int] = Field(default_factory=frozenset)

    @model_validator(mode="after")
    def _one_side(self) -> JournalEntry:
        if (self.debit is None) == (self.credit is None):
            raise ValueError("journal entry must have exactly one of debit or credit")
        if self.amount.is_negative:
            raise ValueError("journal entry amounts must not be negative")
        if self.account_type == AccountType.ASSET and self.quantity is None:
            raise ValueError("asset journal entries must carry a quantity")
        return self

    @classmethod
    def debit_of(cls, account_type: AccountType, account_name: str, amount: Money, **kwargs) -> JournalEntry:
        return cls(account_type=account_type, account_name=account_name, debit=amount, **kwargs)

    @classmethod
    def credit_of(cls, account_type: AccountType, account_name: str, amount: Money, **kwargs) -> JournalEntry:
        return cls(account_type=account_type, account_name=account_name, credit=amount, **kwargs)

    @property
    def amount(self) -> Money:
        return self.debit if self.debit is not None else self.credit  # type: ignore[return-value]

    @property
    def currency(self) -> str:
        return self.amount.currency

    @property
    def is_debit(self) -> bool:
        return self.debit is not None

    @property
    def signed_amount(self) -> Decimal:
        """Debit positive, credit negative."""
        return self.amount.amount if self.is_debit else -self.amount.amount

    @property
    def net_effect(self) -> Decimal:
        """Change of the account balance in its normal direction."""
        return self.signed_amount if self.account_type.debit_normal else -self.signed_amount

    @property
    def net_quantity_change(self) -> Decimal:
        if self.account_type != AccountType.ASSET or self.quantity is None:
            return Decimal("0")
        return self.quantity.amount if self.is_debit else -self.quantity.amount

    @property
    def price_per_unit(self) -> Decimal | None:
        if self.quantity is None or self.quantity.amount == 0:
            return None
        return abs(self.amount.amount / self.quantity.amount)

    def flipped(self) -> JournalEntry:
        """The same leg on the opposite side."""
        if self.is_debit:
            return self.model_copy(update={"debit": None, "credit": self.debit})
        return self.model_copy(update={"debit": self.credit, "credit": None})


class Transaction(BaseModel):
    """A set of journal legs describing one economic event.

    The core accounting law: for every currency present in the legs,
    total debits equal total credits exactly.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    date: date
    description: str = ""
    type: TransactionType = TransactionType.OTHER
    entries: tuple[JournalEntry, ...] = ()
    reported_balance: Money | None = None
    computed_balance: Money | None = None
    origin: TransactionOrigin = TransactionOrigin.BUILDER

    @property
    def source_rows(self) -> frozenset[int]:
        rows: set[int] = set()
        for entry in self.entries:
            rows.update(entry.source_rows)
        return frozenset(rows)

    @property
    def min_source_row(self) -> int | None:
        rows = self.source_rows
        return min(rows) if rows else None

    def unit_groups(self) -> dict[str, tuple[Decimal, Decimal]]:
        """Total debits and credits per currency."""
        debits: dict[str, Decimal] = defaultdict(Decimal)
        credits: dict[str, Decimal] = defaultdict(Decimal)
        for entry in self.entries:
            if entry.is_debit:
                debits[entry.currency] += entry.amount.amount
            else:
                credits[entry.currency] += entry.amount.amount
        return {c: (debits[c], credits[c]) for c in sorted(set(debits) | set(credits))}

    def imbalances(self) -> dict[str, Decimal]:
        """Debits minus credits for every currency that does not balance."""
        return {c: d - cr for c, (d, cr) in self.unit_groups().items() if d != cr}

    @property
    def total_debits(self) -> Decimal:
        return sum((d for d, _ in self.unit_groups().values()), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((c for _, c in self.unit_groups().values()), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return len(self.entries) >= 2 and not self.imbalances()

    def net_cash_impact(self, currency: str = "USD") -> Decimal:
        return sum(
            (e.signed_amount for e in self.entries if e.account_type == AccountType.CASH and e.currency == currency),
            Decimal("0"),
        )

    def quantity_change(self, symbol: str) -> Decimal:
        return sum(
            (e.net_quantity_change for e in self.entries if e.account_type == AccountType.ASSET and e.account_name == symbol),
            Decimal("0"),
        )

    def with_entries(self, entries: tuple[JournalEntry, ...] | list[JournalEntry], **changes) -> Transaction:
        """A replacement transaction with new legs (fresh id)."""
        update = {"entries": tuple(entries), "id": uuid.uuid4().hex, "computed_balance": None}
        update.update(changes)
        return self.model_copy(update=update)
