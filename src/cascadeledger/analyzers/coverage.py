"""
Coverage Index — which source rows are accounted for by transactions.

Always recomputed from the full transaction list in one pass; no counters
are kept between calls.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from cascadeledger.models.ledger import Transaction
from cascadeledger.models.report import CoverageSummary

logger = logging.getLogger("cascadeledger.analyzers.coverage")


def coverage(transactions: Iterable[Transaction]) -> set[int]:
    """Union of the source rows referenced by any journal leg."""
    covered: set[int] = set()
    for txn in transactions:
        covered.update(txn.source_rows)
    return covered


def find_gaps(total_rows: int, excluded: Iterable[int], covered: Iterable[int]) -> set[int]:
    """Rows ``1..total_rows`` that are neither covered nor excluded."""
    eligible = set(range(1, total_rows + 1)) - set(excluded)
    return eligible - set(covered)


def coverage_percentage(total_rows: int, excluded: Iterable[int], covered: Iterable[int]) -> float:
    """Covered eligible rows over eligible rows, 1.0 when nothing is eligible."""
    eligible = set(range(1, total_rows + 1)) - set(excluded)
    if not eligible:
        return 1.0
    return len(eligible & set(covered)) / len(eligible)


@dataclass(frozen=True)
class CoverageIndex:
    """Covered rows plus rows claimed by more than one transaction."""

    covered: frozenset[int]
    duplicates: frozenset[int] = frozenset()

    @classmethod
    def build(cls, transactions: Iterable[Transaction]) -> CoverageIndex:
        claims: Counter[int] = Counter()
        for txn in transactions:
            claims.update(txn.source_rows)
        duplicates = frozenset(row for row, n in claims.items() if n > 1)
        if duplicates:
            logger.warning("Rows claimed by more than one transaction: %s", sorted(duplicates))
        return cls(covered=frozenset(claims), duplicates=duplicates)

    def summary(self, total_rows: int, excluded: Iterable[int] = (), claims_complete: bool = True) -> CoverageSummary:
        """Coverage figures for a session of ``total_rows`` rows.

        Gaps are only reported when the session claims to be complete.
        """
        excluded = set(excluded)
        gaps = find_gaps(total_rows, excluded, self.covered) if claims_complete else set()
        eligible_covered = (set(range(1, total_rows + 1)) - excluded) & self.covered
        return CoverageSummary(
            total_rows=total_rows,
            excluded_rows=sorted(excluded),
            covered_rows=len(eligible_covered),
            gaps=sorted(gaps),
            duplicate_rows=sorted(self.duplicates),
            coverage_percentage=coverage_percentage(total_rows, excluded, self.covered),
            claims_complete=claims_complete,
        )
