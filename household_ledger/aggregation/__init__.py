"""
Aggregation Package

Monthly income/expense aggregates and cash-flow projection.
"""

from household_ledger.aggregation.monthly import (
    MonthlyAggregationResult,
    MonthlyAggregator,
    compute_monthly_aggregates,
    is_eligible,
)
from household_ledger.aggregation.cashflow import (
    CashFlowEvent,
    CashFlowProjection,
    CashFlowProjector,
    FundsOverflowReport,
    MonthlyCashFlowRow,
    OverflowEntry,
    accumulate,
    ceil_div,
    completed_fund_events,
    event_type_for,
    funds_overflow,
    month_delta,
    monthly_cash_flow,
    open_events,
)

__all__ = [
    "MonthlyAggregationResult",
    "MonthlyAggregator",
    "compute_monthly_aggregates",
    "is_eligible",
    "CashFlowEvent",
    "CashFlowProjection",
    "CashFlowProjector",
    "FundsOverflowReport",
    "MonthlyCashFlowRow",
    "OverflowEntry",
    "accumulate",
    "ceil_div",
    "completed_fund_events",
    "event_type_for",
    "funds_overflow",
    "month_delta",
    "monthly_cash_flow",
    "open_events",
]
