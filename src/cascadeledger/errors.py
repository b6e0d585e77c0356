"""
Error taxonomy for the ledger core.

Errors that are local to one row-group or one checkpoint are collected into
reports by the callers; only resource-level failures propagate to the
session.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable


class LedgerError(Exception):
    """Base class for every error raised by cascadeledger."""


class CurrencyMismatchError(LedgerError, TypeError):
    """Arithmetic between amounts tagged with different currencies or units."""

    def __init__(self, left: str, right: str, op: str = "") -> None:
        self.left = left
        self.right = right
        super().__init__(f"cannot apply {op or 'operation'} to {left} and {right}")


class TransformError(LedgerError, ValueError):
    """A raw CSV value could not be converted by its parse-plan transform."""

    def __init__(self, row_number: int, field: str, value: str, expected: str) -> None:
        self.row_number = row_number
        self.field = field
        self.value = value
        self.expected = expected
        super().__init__(f"row {row_number}: field '{field}' value {value!r} is not a valid {expected}")


class MaterializationError(LedgerError):
    """A row-group cannot be turned into a balanced transaction.

    ``leg`` names the journal leg that could not be produced or is short and
    ``shortfall`` carries the amount it is short by, when known.
    """

    def __init__(
        self,
        reason: str,
        row_numbers: Iterable[int] = (),
        leg: str | None = None,
        shortfall: Decimal | None = None,
    ) -> None:
        self.reason = reason
        self.row_numbers = tuple(sorted(row_numbers))
        self.leg = leg
        self.shortfall = shortfall
        detail = reason
        if leg:
            detail += f" (leg: {leg}"
            detail += f", short by {shortfall})" if shortfall is not None else ")"
        super().__init__(f"rows {list(self.row_numbers)}: {detail}")

    def to_dict(self) -> dict[str, object]:
        return {
            "reason": self.reason,
            "row_numbers": list(self.row_numbers),
            "leg": self.leg,
            "shortfall": str(self.shortfall) if self.shortfall is not None else None,
        }


class OracleError(LedgerError):
    """Failure reported by a categorization oracle."""


class RateLimitedError(OracleError):
    """The oracle asked us to come back after ``retry_after_seconds``."""

    def __init__(self, retry_after_seconds: float, message: str = "") -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message or f"rate limited, retry after {retry_after_seconds}s")


class OracleFailedError(OracleError):
    """The oracle failed for a reason a retry will not fix."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PriceUnavailableError(LedgerError):
    """No price is known for an asset on the requested date."""

    def __init__(self, symbol: str, on: object) -> None:
        self.symbol = symbol
        self.on = on
        super().__init__(f"no price for {symbol} on {on}")


class ReconciliationUnavailable(LedgerError):
    """Checkpoints cannot be built for this session."""


class SessionNotCompleteError(LedgerError):
    """Reconciliation was requested before the session finished."""


class NoRowsError(LedgerError):
    """A session was started without any source rows."""
