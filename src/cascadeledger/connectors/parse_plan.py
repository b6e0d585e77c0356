"""
Parse plans — declarative field mapping from raw CSV columns to typed rows.

A plan is plain data (JSON-serializable, versioned): for each canonical
field it names the source column(s) and the transform that types the raw
string. Applying a plan never guesses; a value that does not fit its
transform raises :class:`~cascadeledger.errors.TransformError`.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from cascadeledger.errors import TransformError
from cascadeledger.models.rows import CANONICAL_FIELDS, SourceRow, TypedRow

logger = logging.getLogger("cascadeledger.connectors.parse_plan")

Transform = Literal["string", "upper", "decimal", "currency", "date", "integer", "boolean"]

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M:%S %Z")
_BLANKS = {"", "--", "n/a"}


class FieldMapping(BaseModel):
    """Where a canonical field comes from and how it is typed."""

    source: list[str] = Field(description="Candidate column names; the first non-empty one wins")
    transform: Transform = "string"
    format: str | None = Field(default=None, description="strptime format for date fields")
    default: str | None = None


class ParsePlan(BaseModel):
    """A versioned mapping from one institution's CSV layout to canonical fields.

    Example usage:
        plan = builtin_plan("fidelity")
        typed = [plan.apply(row) for row in source_rows if not plan.is_excluded(row)]
    """

    version: int = 1
    institution: str = "generic"
    fields: dict[str, FieldMapping] = Field(default_factory=dict)
    required: list[str] = Field(
        default_factory=lambda: ["date"],
        description="Rows where all of these are blank are treated as non-transactional",
    )

    @field_validator("fields")
    @classmethod
    def _canonical_only(cls, value: dict[str, FieldMapping]) -> dict[str, FieldMapping]:
        unknown = sorted(set(value) - set(CANONICAL_FIELDS))
        if unknown:
            raise ValueError(f"not canonical fields: {unknown}")
        return value

    def apply(self, row: SourceRow) -> TypedRow:
        """Type every mapped field of ``row``.

        Raises:
            TransformError: A present value does not fit its transform.
        """
        lookup = {k.strip().lower(): v for k, v in row.fields.items()}
        values: dict[str, Any] = {}
        for name, mapping in self.fields.items():
            raw = self._raw(lookup, mapping)
            if raw is None:
                continue
            value = convert(raw, mapping.transform, mapping.format, row.row_number, name)
            if value is not None:
                values[name] = value

        if "balance" not in values and row.reported_balance is not None:
            values["balance"] = row.reported_balance

        return TypedRow(row_number=row.row_number, source_file=row.source_file, values=values)

    def apply_all(self, rows: list[SourceRow]) -> tuple[list[TypedRow], set[int]]:
        """Typed rows plus the row numbers excluded as non-transactional."""
        typed: list[TypedRow] = []
        excluded: set[int] = set()
        for row in rows:
            if self.is_excluded(row):
                excluded.add(row.row_number)
                continue
            typed.append(self.apply(row))
        if excluded:
            logger.info("Excluded %d non-transactional rows", len(excluded))
        return typed, excluded

    def is_excluded(self, row: SourceRow) -> bool:
        lookup = {k.strip().lower(): v for k, v in row.fields.items()}
        checks = [self.fields[f] for f in self.required if f in self.fields]
        if not checks:
            return False
        return all(self._raw(lookup, m) is None for m in checks)

    @staticmethod
    def _raw(lookup: dict[str, str], mapping: FieldMapping) -> str | None:
        for column in mapping.source:
            value = lookup.get(column.strip().lower())
            if value is not None and value.strip().lower() not in _BLANKS:
                return value.strip()
        return mapping.default

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def from_json(cls, data: str) -> ParsePlan:
        return cls.model_validate_json(data)


def convert(raw: str, transform: Transform, fmt: str | None = None, row_number: int = 0, field: str = "") -> Any:
    """Apply one transform to a raw CSV string."""
    if transform == "string":
        return raw.strip()
    if transform == "upper":
        return raw.strip().upper()
    if transform in ("decimal", "currency"):
        return _decimal(raw, row_number, field)
    if transform == "integer":
        try:
            return int(raw.replace(",", "").strip())
        except ValueError as e:
            raise TransformError(row_number, field, raw, "integer") from e
    if transform == "boolean":
        return raw.strip().lower() in ("true", "yes", "y", "1")
    if transform == "date":
        return _date(raw, fmt, row_number, field)
    raise ValueError(f"Unknown transform '{transform}'")


def _decimal(raw: str, row_number: int, field: str) -> Decimal:
    text = raw.strip().replace("$", "").replace(",", "").replace(" ", "")
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    if text.startswith("+"):
        text = text[1:]
    try:
        value = Decimal(text)
    except InvalidOperation as e:
        raise TransformError(row_number, field, raw, "decimal") from e
    if not value.is_finite():
        raise TransformError(row_number, field, raw, "decimal")
    return -value if negative else value


def _date(raw: str, fmt: str | None, row_number: int, field: str) -> date:
    text = raw.strip()
    for candidate in (fmt,) if fmt else DATE_FORMATS:
        try:
            return datetime.strptime(text, candidate).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as e:
        raise TransformError(row_number, field, raw, "date") from e


def _m(source: str | list[str], transform: Transform = "string", fmt: str | None = None) -> FieldMapping:
    return FieldMapping(source=[source] if isinstance(source, str) else source, transform=transform, format=fmt)


_BUILTIN_PLANS: dict[str, dict[str, FieldMapping]] = {
    "fidelity": {
        "date": _m("Run Date", "date", "%m/%d/%Y"),
        "action": _m("Action"),
        "symbol": _m("Symbol", "upper"),
        "description": _m(["Description", "Security Description"]),
        "quantity": _m("Quantity", "decimal"),
        "price": _m("Price ($)", "currency"),
        "commission": _m("Commission ($)", "currency"),
        "fees": _m("Fees ($)", "currency"),
        "amount": _m("Amount ($)", "currency"),
        "balance": _m(["Cash Balance ($)", "Balance"], "currency"),
    },
    "coinbase": {
        "date": _m("Timestamp", "date"),
        "action": _m("Transaction Type"),
        "symbol": _m("Asset", "upper"),
        "quantity": _m("Quantity Transacted", "decimal"),
        "price": _m(["Spot Price at Transaction", "Price at Transaction"], "currency"),
        "amount": _m(["Total (inclusive of fees and/or spread)", "Total"], "currency"),
        "fees": _m(["Fees and/or Spread", "Fees"], "currency"),
        "description": _m("Notes"),
        "currency": _m(["Spot Price Currency", "Price Currency"], "upper"),
    },
    "generic": {
        "date": _m(["Date", "Run Date", "Transaction Date", "Trade Date"], "date"),
        "action": _m(["Action", "Type", "Transaction Type", "Activity"]),
        "symbol": _m(["Symbol", "Ticker", "Asset"], "upper"),
        "description": _m(["Description", "Memo", "Details"]),
        "quantity": _m(["Quantity", "Shares", "Units"], "decimal"),
        "price": _m(["Price", "Price ($)", "Unit Price"], "currency"),
        "commission": _m(["Commission", "Commission ($)"], "currency"),
        "fees": _m(["Fees", "Fees ($)", "Fee"], "currency"),
        "amount": _m(["Amount", "Amount ($)", "Net Amount", "Total"], "currency"),
        "balance": _m(["Balance", "Cash Balance", "Cash Balance ($)", "Running Balance"], "currency"),
        "currency": _m("Currency", "upper"),
    },
}


def available_plans() -> list[str]:
    return sorted(_BUILTIN_PLANS)


def builtin_plan(institution: str) -> ParsePlan:
    """The bundled plan for ``institution``, falling back to ``generic``."""
    key = institution.strip().lower()
    if key not in _BUILTIN_PLANS:
        logger.info("No parse plan for '%s', using the generic plan", institution)
        key = "generic"
    fields = {k: v.model_copy() for k, v in _BUILTIN_PLANS[key].items()}
    return ParsePlan(institution=key, fields=fields)
