"""
Source rows — raw CSV rows and their typed, field-mapped form.
"""

from __future__ import annotations

from datetime import date as date_type
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Canonical field names a parse plan maps onto.
CANONICAL_FIELDS = (
    "date",
    "action",
    "symbol",
    "quantity",
    "price",
    "amount",
    "commission",
    "fees",
    "description",
    "balance",
    "currency",
)


class SourceRow(BaseModel):
    """One CSV data row, exactly as the tokenizer produced it."""

    model_config = ConfigDict(frozen=True)

    row_number: int = Field(ge=1, description="Global 1-based row number, stable across re-parses")
    source_file: str = Field(description="Identifier of the originating file")
    fields: dict[str, str] = Field(default_factory=dict)
    reported_balance: Decimal | None = None


class TypedRow(BaseModel):
    """A row after the parse plan has been applied.

    ``values`` holds typed canonical fields (Decimal amounts, dates,
    stripped strings). Missing fields are simply absent.
    """

    model_config = ConfigDict(frozen=True)

    row_number: int = Field(ge=1)
    source_file: str = ""
    values: dict[str, Any] = Field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        value = self.values.get(name, default)
        return default if value is None else value

    def _text(self, name: str) -> str:
        value = self.values.get(name)
        return str(value).strip() if value is not None else ""

    def _decimal(self, name: str) -> Decimal | None:
        value = self.values.get(name)
        if value is None or value == "":
            return None
        return value if isinstance(value, Decimal) else Decimal(str(value))

    @property
    def action(self) -> str:
        return self._text("action")

    @property
    def symbol(self) -> str:
        return self._text("symbol")

    @property
    def description(self) -> str:
        return self._text("description")

    @property
    def currency(self) -> str | None:
        return self._text("currency") or None

    @property
    def date(self) -> date_type | None:
        return self.values.get("date")

    @property
    def quantity(self) -> Decimal | None:
        return self._decimal("quantity")

    @property
    def price(self) -> Decimal | None:
        return self._decimal("price")

    @property
    def amount(self) -> Decimal | None:
        return self._decimal("amount")

    @property
    def commission(self) -> Decimal | None:
        return self._decimal("commission")

    @property
    def fees(self) -> Decimal | None:
        return self._decimal("fees")

    @property
    def reported_balance(self) -> Decimal | None:
        return self._decimal("balance")

    @property
    def is_classified(self) -> bool:
        """Whether the row carries its own economic classification."""
        return bool(self.action)
