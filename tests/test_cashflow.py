"""
Tests for the cash-flow projector.

Test strategy:
1. Event ordering and transfer handling
2. Completed funds from marks and linked actuals
3. Funds overflow with shortfall and catch-up contributions
4. Monthly cash-flow rows and the projector service
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from household_ledger.aggregation.cashflow import (
    CashFlowEvent,
    CashFlowProjector,
    accumulate,
    completed_fund_events,
    funds_overflow,
    month_delta,
    monthly_cash_flow,
    open_events,
    sort_events,
)
from household_ledger.config import TransferMode
from household_ledger.models.finance import PlanActualLink, PlanStatus, TransactionType
from household_ledger.schedule.linker import LinkIndex


TODAY = date(2024, 1, 10)


def income(day, amount) -> CashFlowEvent:
    return CashFlowEvent(occurs_on=day, event_type=TransactionType.INCOME, amount=Decimal(amount))


def expense(day, amount) -> CashFlowEvent:
    return CashFlowEvent(occurs_on=day, event_type=TransactionType.EXPENSE, amount=Decimal(amount))


@pytest.fixture
def salary_plan(make_transaction):
    """Income plan of 1000 on the 25th, Jan to Mar 2024."""
    return make_transaction(
        "1",
        project_type="plan",
        transaction_type="income",
        account_id_in="A1",
        amount=Decimal("1000"),
        date_from=date(2024, 1, 1),
        date_to=date(2024, 3, 31),
        frequency="monthly",
        cycle_unit="25",
        completed_plan_dates=frozenset({date(2024, 1, 25)}),
    )


class TestEventOrdering:
    """Tests for the date / income-first ordering."""

    def test_income_before_expense_on_same_day(self):
        """Test same-day income sorts ahead of expense."""
        events = sort_events([expense(TODAY, "5"), income(TODAY, "5"), expense(date(2024, 1, 1), "1")])
        assert [(e.occurs_on, e.event_type) for e in events] == [
            (date(2024, 1, 1), TransactionType.EXPENSE),
            (TODAY, TransactionType.INCOME),
            (TODAY, TransactionType.EXPENSE),
        ]

    def test_accumulate(self):
        """Test income adds and expense subtracts."""
        assert accumulate([income(TODAY, "100"), expense(TODAY, "30")]) == Decimal("70")


class TestCompletedFunds:
    """Tests for completed-funds events."""

    def test_marks_use_plan_amount_and_actuals_their_own(self, salary_plan, make_transaction):
        """Test a marked date contributes the plan amount, a linked actual its own."""
        actual = make_transaction("20", transaction_type="income", account_id_in="A1",
                                  amount=Decimal("900"), date_to=date(2024, 2, 25))
        index = LinkIndex(
            [PlanActualLink(plan_transaction_id="1", actual_transaction_id="20")],
            [salary_plan, actual],
        )

        events = completed_fund_events([salary_plan], index)

        assert [(e.occurs_on, e.amount) for e in events] == [
            (date(2024, 1, 25), Decimal("1000")),
            (date(2024, 2, 25), Decimal("900")),
        ]
        assert accumulate(events) == Decimal("1900")

    def test_canceled_plans_are_skipped(self, salary_plan):
        """Test canceled plans contribute nothing."""
        plan = salary_plan.model_copy(update={"plan_status": PlanStatus.CANCELED})
        assert completed_fund_events([plan], LinkIndex([], [plan])) == []

    def test_transfer_mode(self, salary_plan):
        """Test transfers are dropped by default and counted when configured."""
        plan = salary_plan.model_copy(update={"transaction_type": TransactionType.TRANSFER})
        index = LinkIndex([], [plan])

        assert completed_fund_events([plan], index) == []
        counted = completed_fund_events([plan], index, TransferMode.EXPENSE)
        assert [e.event_type for e in counted] == [TransactionType.EXPENSE]


class TestOpenEvents:
    """Tests for open-occurrence events."""

    def test_only_open_dates_of_planning_plans(self, salary_plan, make_transaction):
        """Test completed dates and non-planning plans are left out."""
        finished = make_transaction("2", project_type="plan", plan_status="complete",
                                    date_from=date(2024, 1, 1), date_to=date(2024, 1, 31))

        events = open_events([salary_plan, finished], LinkIndex([], [salary_plan, finished]))

        assert [e.occurs_on for e in events] == [date(2024, 2, 25), date(2024, 3, 25)]
        assert all(e.plan_id == "1" for e in events)


class TestFundsOverflow:
    """Tests for shortfall detection."""

    def test_shortfall_and_monthly_contribution(self):
        """Test 1000 of funds against a 1500 expense three months out."""
        report = funds_overflow(Decimal("1000"), [expense(date(2024, 4, 10), "1500")], TODAY)

        assert len(report.entries) == 1
        entry = report.entries[0]
        assert entry.shortfall == Decimal("500")
        assert entry.months_from_now == 3
        assert entry.monthly_contribution == Decimal("167")
        assert entry.funds_before_expense == Decimal("1000")
        assert entry.funds_after_expense == Decimal("-500")
        assert report.total_shortfall == Decimal("500")
        assert report.required_monthly_saving == Decimal("167")

    def test_same_day_income_covers_expense(self):
        """Test income on the expense's day is available to cover it."""
        report = funds_overflow(
            Decimal("0"),
            [expense(date(2024, 2, 1), "100"), income(date(2024, 2, 1), "100")],
            TODAY,
        )
        assert not report.has_overflow
        assert report.required_monthly_saving == Decimal("0")

    def test_deficit_carries_forward(self):
        """Test an uncovered expense keeps debiting the running funds."""
        report = funds_overflow(
            Decimal("0"),
            [expense(date(2024, 2, 1), "100"), expense(date(2024, 3, 1), "50")],
            TODAY,
        )

        assert [(e.funds_before_expense, e.shortfall, e.monthly_contribution) for e in report.entries] == [
            (Decimal("0"), Decimal("100"), Decimal("100")),
            (Decimal("-100"), Decimal("150"), Decimal("75")),
        ]
        assert report.total_shortfall == Decimal("250")
        assert report.months_to_last_event == 2
        assert report.required_monthly_saving == Decimal("125")

    def test_months_from_now_is_at_least_one(self):
        """Test an expense this month (or in the past) counts as one month away."""
        report = funds_overflow(Decimal("0"), [expense(date(2023, 11, 1), "10")], TODAY)
        assert report.entries[0].months_from_now == 1

    def test_covered_expense_is_not_recorded(self):
        """Test an expense equal to the funds is covered."""
        report = funds_overflow(Decimal("100"), [expense(date(2024, 2, 1), "100")], TODAY)
        assert report.entries == []


class TestMonthDelta:
    """Tests for calendar month distance."""

    @pytest.mark.parametrize("start,end,expected", [
        (date(2024, 1, 31), date(2024, 4, 1), 3),
        (date(2024, 1, 10), date(2024, 1, 31), 0),
        (date(2023, 12, 1), date(2025, 1, 1), 13),
        (date(2024, 3, 1), date(2024, 1, 1), -2),
    ])
    def test_month_delta(self, start, end, expected):
        """Test month_delta counts calendar months, ignoring days."""
        assert month_delta(start, end) == expected


class TestMonthlyCashFlow:
    """Tests for the per-month table."""

    def test_rows_accumulate_funds(self):
        """Test each month reports its plan totals and running funds."""
        rows = monthly_cash_flow(
            [
                income(date(2024, 2, 25), "1000"),
                expense(date(2024, 2, 1), "300"),
                expense(date(2024, 4, 1), "900"),
            ],
            starting_funds=Decimal("100"),
        )

        assert [(r.year, r.month, r.plan_income, r.plan_expense, r.plan_balance, r.funds) for r in rows] == [
            (2024, 2, Decimal("1000"), Decimal("300"), Decimal("700"), Decimal("800")),
            (2024, 4, Decimal("0"), Decimal("900"), Decimal("-900"), Decimal("-100")),
        ]


class TestCashFlowProjector:
    """Tests for the projector service."""

    def test_project(self, salary_plan, make_transaction, make_storage, make_session, make_account):
        """Test the projection over the user's visible plans."""
        trip = make_transaction("3", project_type="plan", transaction_type="expense",
                                account_id_out="A1", amount=Decimal("3500"),
                                date_from=date(2024, 4, 1), date_to=date(2024, 4, 30))
        elsewhere = make_transaction("4", project_type="plan", transaction_type="income",
                                     account_id_in="Z9", amount=Decimal("50000"),
                                     date_from=date(2024, 1, 1), date_to=date(2024, 1, 31))
        storage = make_storage(
            ACCOUNT=[make_account("A1"), make_account("Z9", owner="u2")],
            TRANSACTION=[salary_plan, trip, elsewhere],
        )
        projector = CashFlowProjector(
            make_session(storage),
            completed_funds_transfer_mode=TransferMode.EXCLUDE,
            open_events_transfer_mode=TransferMode.EXCLUDE,
        )

        projection = asyncio.run(projector.project(TODAY))

        # 1000 completed + 2 x 1000 open income before a 3500 expense on 2024-04-30
        assert projection.completed_funds == Decimal("1000")
        assert [e.shortfall for e in projection.overflow.entries] == [Decimal("500")]
        assert projection.overflow.entries[0].months_from_now == 3
        assert projection.overflow.required_monthly_saving == Decimal("167")
        assert [(r.month, r.funds) for r in projection.monthly] == [
            (2, Decimal("2000")),
            (3, Decimal("3000")),
            (4, Decimal("-500")),
        ]
