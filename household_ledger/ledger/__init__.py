"""
Ledger Package

Optimistic concurrency guard and account balance bookkeeping.
"""

from household_ledger.ledger.guard import (
    ConcurrencyConflict,
    NotFoundConflict,
    StaleVersionConflict,
    VersionGuard,
    WriteCheck,
    normalize_version,
)
from household_ledger.ledger.balance import (
    BalanceLedger,
    RecalculationResult,
    balance_deltas,
    replay_balances,
)

__all__ = [
    "ConcurrencyConflict",
    "NotFoundConflict",
    "StaleVersionConflict",
    "VersionGuard",
    "WriteCheck",
    "normalize_version",
    "BalanceLedger",
    "RecalculationResult",
    "balance_deltas",
    "replay_balances",
]
