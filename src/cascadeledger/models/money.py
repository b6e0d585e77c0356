"""
Exact decimal amounts tagged with a currency or unit.

Every balance comparison in the ledger is an exact ``Decimal`` comparison,
so floats are refused at the boundary instead of being rounded silently.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator

from cascadeledger.errors import CurrencyMismatchError

M = TypeVar("M", bound="_Measure")


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, strings and Decimals to ``Decimal``; reject floats."""
    if isinstance(value, bool):
        raise TypeError("booleans are not amounts")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation as e:
            raise ValueError(f"{value!r} is not a decimal amount") from e
    if isinstance(value, float):
        raise TypeError(f"float {value!r} is not an exact amount; pass a Decimal or string")
    raise TypeError(f"cannot convert {type(value).__name__} to Decimal")


class _Measure(BaseModel):
    """Shared arithmetic for Money and Quantity."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal

    @field_validator("amount", mode="before")
    @classmethod
    def _exact(cls, value: Any) -> Decimal:
        return to_decimal(value)

    @property
    def unit_tag(self) -> str:
        raise NotImplementedError

    def _same(self, other: Any, op: str) -> None:
        if not isinstance(other, _Measure):
            raise TypeError(f"unsupported operand for {op}: {type(self).__name__} and {type(other).__name__}")
        if type(other) is not type(self) or other.unit_tag != self.unit_tag:
            raise CurrencyMismatchError(self.unit_tag, other.unit_tag, op)

    def _new(self: M, amount: Decimal) -> M:
        return self.model_copy(update={"amount": amount})

    def __add__(self: M, other: Any) -> M:
        # sum() starts from int 0
        if isinstance(other, int) and not isinstance(other, bool) and other == 0:
            return self
        self._same(other, "+")
        return self._new(self.amount + other.amount)

    def __radd__(self: M, other: Any) -> M:
        return self.__add__(other)

    def __sub__(self: M, other: Any) -> M:
        self._same(other, "-")
        return self._new(self.amount - other.amount)

    def __neg__(self: M) -> M:
        return self._new(-self.amount)

    def __abs__(self: M) -> M:
        return self._new(abs(self.amount))

    def __mul__(self: M, factor: Any) -> M:
        if isinstance(factor, _Measure):
            raise TypeError("cannot multiply two tagged amounts")
        return self._new(self.amount * to_decimal(factor))

    __rmul__ = __mul__

    def __truediv__(self: M, divisor: Any) -> M:
        if isinstance(divisor, _Measure):
            raise TypeError("cannot divide two tagged amounts; compare .amount values instead")
        return self._new(self.amount / to_decimal(divisor))

    def __lt__(self, other: Any) -> bool:
        self._same(other, "<")
        return self.amount < other.amount

    def __le__(self, other: Any) -> bool:
        self._same(other, "<=")
        return self.amount <= other.amount

    def __gt__(self, other: Any) -> bool:
        self._same(other, ">")
        return self.amount > other.amount

    def __ge__(self, other: Any) -> bool:
        self._same(other, ">=")
        return self.amount >= other.amount

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0


class Money(_Measure):
    """An exact amount of one currency.

    Example usage::

        fee = Money(amount="4.95")
        total = Money(amount="1000.00") + fee      # Money(1004.95 USD)
        Money(amount=1, currency="EUR") + fee      # CurrencyMismatchError
    """

    currency: str = "USD"

    @property
    def unit_tag(self) -> str:
        return self.currency

    @classmethod
    def zero(cls, currency: str = "USD") -> Money:
        return cls(amount=Decimal("0"), currency=currency)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


class Quantity(_Measure):
    """A number of units of an asset (shares, BTC, ...)."""

    unit: str = "shares"

    @property
    def unit_tag(self) -> str:
        return self.unit

    def __str__(self) -> str:
        return f"{self.amount} {self.unit}"
