"""
cascadeledger — double-entry ledgers from brokerage CSV exports.

Materialize. Reconcile. Validate.
"""

__version__ = "0.1.0"
__all__ = ["LedgerPilot"]

from cascadeledger.pilot import LedgerPilot  # noqa: E402
