"""
Schedule Package

Expands plan transactions into dated occurrences and reconciles those
occurrences against linked actual transactions.
"""

from household_ledger.schedule.occurrence import WEEKDAY_CODES, occurrence_dates
from household_ledger.schedule.linker import (
    LinkIndex,
    Occurrence,
    PlanLinker,
    classify_occurrences,
    completed_occurrences,
    delayed_dates,
    is_delayed,
    open_occurrences,
    status_after_completion,
)

__all__ = [
    "WEEKDAY_CODES",
    "occurrence_dates",
    "LinkIndex",
    "Occurrence",
    "PlanLinker",
    "classify_occurrences",
    "completed_occurrences",
    "delayed_dates",
    "is_delayed",
    "open_occurrences",
    "status_after_completion",
]
