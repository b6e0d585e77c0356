"""
Settlement Grouper — split typed rows into transaction-shaped row groups.

Some brokers write a single economic event across several CSV rows: a
primary row carrying the action (``YOU BOUGHT``, ``DIVIDEND RECEIVED``)
followed by one or more settlement rows that only move cash. Others write
exactly one row per event. Each institution gets a pattern that knows which
shape to expect.

Grouping is strictly sequential: group boundaries are decided row by row in
source order, never by looking ahead.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from cascadeledger.models.rows import TypedRow

logger = logging.getLogger("cascadeledger.analyzers.settlement")


class GroupKind(str, Enum):
    """What a row group represents."""

    TRANSACTION = "transaction"
    ORPHANED_SETTLEMENT = "orphaned_settlement"


@dataclass
class RowGroup:
    """Rows that together describe one economic event.

    ``rows`` keeps the original source order. For a transaction group the
    first row is the primary row and the rest are its settlements.
    """

    rows: list[TypedRow]
    kind: GroupKind = GroupKind.TRANSACTION

    @property
    def primary(self) -> TypedRow | None:
        if self.kind == GroupKind.ORPHANED_SETTLEMENT or not self.rows:
            return None
        return self.rows[0]

    @property
    def settlements(self) -> list[TypedRow]:
        if self.kind == GroupKind.ORPHANED_SETTLEMENT:
            return list(self.rows)
        return self.rows[1:]

    @property
    def row_numbers(self) -> list[int]:
        return [r.row_number for r in self.rows]

    @property
    def is_orphaned(self) -> bool:
        return self.kind == GroupKind.ORPHANED_SETTLEMENT

    @property
    def first_row(self) -> int:
        return self.rows[0].row_number


@runtime_checkable
class SettlementPattern(Protocol):
    """Institution-specific row grouping."""

    name: str

    def group(self, rows: list[TypedRow]) -> list[RowGroup]:
        ...


class LeadingPrimaryPattern:
    """A classified row followed by zero or more settlement rows.

    A row whose classifying field (``action``) is non-empty opens a new
    group. Rows without one attach to the open group. A settlement row with
    no open group becomes its own orphaned group, it is never merged into
    the group that follows.

    Example usage:
        pattern = LeadingPrimaryPattern()
        groups = pattern.group(typed_rows)
        orphans = [g for g in groups if g.is_orphaned]
    """

    name = "fidelity"
    spans_rows = True

    def group(self, rows: list[TypedRow]) -> list[RowGroup]:
        groups: list[RowGroup] = []
        current: RowGroup | None = None

        for row in rows:
            if row.is_classified:
                current = RowGroup(rows=[row])
                groups.append(current)
            elif current is not None:
                current.rows.append(row)
            else:
                logger.warning(
                    "Row %d is a settlement row with no preceding primary row",
                    row.row_number,
                )
                groups.append(RowGroup(rows=[row], kind=GroupKind.ORPHANED_SETTLEMENT))

        logger.debug("Grouped %d rows into %d groups", len(rows), len(groups))
        return groups


class SingleRowPattern:
    """Every row is a complete transaction on its own."""

    name = "generic"
    spans_rows = False

    def __init__(self, name: str = "generic") -> None:
        self.name = name

    def group(self, rows: list[TypedRow]) -> list[RowGroup]:
        return [RowGroup(rows=[row]) for row in rows]


_BUILTIN_PATTERNS: dict[str, type] = {
    "fidelity": LeadingPrimaryPattern,
    "coinbase": SingleRowPattern,
    "schwab": SingleRowPattern,
    "generic": SingleRowPattern,
}


def available_patterns() -> list[str]:
    return sorted(_BUILTIN_PATTERNS)


def get_pattern(name: str) -> SettlementPattern:
    """Resolve a settlement pattern by institution name or dotted path.

    Args:
        name: A built-in institution (``fidelity``, ``coinbase``, ...) or a
            ``package.module.ClassName`` path to a custom pattern.
    """
    key = name.strip().lower()
    if key in _BUILTIN_PATTERNS:
        cls = _BUILTIN_PATTERNS[key]
        return cls(key) if cls is SingleRowPattern else cls()

    if "." not in name:
        raise ValueError(
            f"Unknown settlement pattern '{name}'. Available: {', '.join(available_patterns())}"
        )

    module_path, class_name = name.rsplit(".", 1)
    module = importlib.import_module(module_path)
    pattern = getattr(module, class_name)()
    if not isinstance(pattern, SettlementPattern):
        raise TypeError(f"{name} does not implement group(rows)")
    return pattern


# Convenience function
def group_rows(rows: list[TypedRow], institution: str = "generic") -> list[RowGroup]:
    """Group typed rows with the pattern registered for ``institution``."""
    return get_pattern(institution).group(rows)
