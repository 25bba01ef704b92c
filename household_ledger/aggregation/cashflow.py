"""
Cash-Flow Projector

Works on a stream of signed events {date, income|expense, amount},
always ordered by date with income before expense on the same day so
that same-day income can cover same-day expense.

Three computations:
1. Completed funds: the signed sum of every completed occurrence of every
   non-canceled plan. A completed occurrence contributes the linked
   actual's amount and type when one exists, the plan's own otherwise.
2. Funds overflow: starting from completed funds, replay the open
   occurrences of planning plans and flag every expense that the running
   funds cannot cover, with the monthly saving needed to close the gap.
3. Monthly cash flow: open events grouped by month with a running funds
   column.

Transfers are handled per computation through TransferMode.
"""

from collections import defaultdict
from datetime import date
from decimal import ROUND_CEILING, Decimal
from typing import Iterable, Optional

import structlog
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field

from household_ledger.config import TransferMode, get_settings
from household_ledger.models.finance import (
    Account,
    AccountPermission,
    PlanActualLink,
    PlanStatus,
    TableName,
    Transaction,
    TransactionType,
)
from household_ledger.schedule.linker import (
    LinkIndex,
    completed_occurrences,
    open_occurrences,
)
from household_ledger.session import SessionContext
from household_ledger.visibility import visible_account_ids


logger = structlog.get_logger(__name__)


# =============================================================================
# EVENTS
# =============================================================================

class CashFlowEvent(BaseModel):
    """One signed money movement on a date."""
    model_config = ConfigDict(frozen=True)

    occurs_on: date
    event_type: TransactionType = Field(..., description="income or expense")
    amount: Decimal
    plan_id: str = ""

    @property
    def sort_key(self) -> tuple[date, int]:
        return (self.occurs_on, 0 if self.event_type == TransactionType.INCOME else 1)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.event_type == TransactionType.INCOME else -self.amount


def event_type_for(kind: TransactionType, transfer_mode: TransferMode) -> Optional[TransactionType]:
    """Map a transaction type to an event type; None drops the event."""
    if kind != TransactionType.TRANSFER:
        return kind
    if transfer_mode == TransferMode.INCOME:
        return TransactionType.INCOME
    if transfer_mode == TransferMode.EXPENSE:
        return TransactionType.EXPENSE
    return None


def sort_events(events: Iterable[CashFlowEvent]) -> list[CashFlowEvent]:
    return sorted(events, key=lambda e: e.sort_key)


def completed_fund_events(
    plans: Iterable[Transaction],
    index: LinkIndex,
    transfer_mode: TransferMode = TransferMode.EXCLUDE,
) -> list[CashFlowEvent]:
    """Events of every completed occurrence of the non-canceled plans."""
    events = []
    for plan in plans:
        if not plan.is_plan or plan.deleted or plan.plan_status == PlanStatus.CANCELED:
            continue
        for occurrence in completed_occurrences(plan, index):
            sources = occurrence.actuals or (plan,)
            for source in sources:
                event_type = event_type_for(source.transaction_type, transfer_mode)
                if event_type is None:
                    continue
                events.append(CashFlowEvent(
                    occurs_on=occurrence.occurs_on,
                    event_type=event_type,
                    amount=source.amount,
                    plan_id=plan.id,
                ))
    return sort_events(events)


def open_events(
    plans: Iterable[Transaction],
    index: LinkIndex,
    transfer_mode: TransferMode = TransferMode.EXCLUDE,
) -> list[CashFlowEvent]:
    """Events of the open occurrences of planning plans."""
    events = []
    for plan in plans:
        if not plan.is_plan or plan.deleted or plan.plan_status != PlanStatus.PLANNING:
            continue
        event_type = event_type_for(plan.transaction_type, transfer_mode)
        if event_type is None:
            continue
        for day in open_occurrences(plan, index):
            events.append(CashFlowEvent(
                occurs_on=day,
                event_type=event_type,
                amount=plan.amount,
                plan_id=plan.id,
            ))
    return sort_events(events)


def accumulate(events: Iterable[CashFlowEvent], start: Decimal = Decimal("0")) -> Decimal:
    funds = start
    for event in sort_events(events):
        funds += event.signed_amount
    return funds


# =============================================================================
# FUNDS OVERFLOW
# =============================================================================

def month_delta(start: date, end: date) -> int:
    """Calendar months from `start`'s month to `end`'s month."""
    delta = relativedelta(end.replace(day=1), start.replace(day=1))
    return delta.years * 12 + delta.months


def ceil_div(amount: Decimal, months: int) -> Decimal:
    return (amount / Decimal(months)).to_integral_value(rounding=ROUND_CEILING)


class OverflowEntry(BaseModel):
    """An expense the running funds cannot cover."""
    occurs_on: date
    amount: Decimal
    funds_before_expense: Decimal
    funds_after_expense: Decimal
    months_from_now: int = Field(..., ge=1)
    shortfall: Decimal
    monthly_contribution: Decimal = Field(
        ...,
        description="Saving per month until the expense that closes this shortfall"
    )
    plan_id: str = ""


class FundsOverflowReport(BaseModel):
    starting_funds: Decimal
    entries: list[OverflowEntry] = Field(default_factory=list)
    total_shortfall: Decimal = Decimal("0")
    months_to_last_event: int = 0
    required_monthly_saving: Decimal = Decimal("0")

    @property
    def has_overflow(self) -> bool:
        return bool(self.entries)


def funds_overflow(
    starting_funds: Decimal,
    events: Iterable[CashFlowEvent],
    today: date,
) -> FundsOverflowReport:
    """
    Replay `events` from `starting_funds` and flag uncovered expenses.

    The running funds are debited by the full expense even when it is
    not covered, so deficits carry forward.
    """
    funds = starting_funds
    entries = []
    for event in sort_events(events):
        if event.event_type == TransactionType.INCOME:
            funds += event.amount
            continue

        before = funds
        funds -= event.amount
        if event.amount <= before:
            continue

        months = max(1, month_delta(today, event.occurs_on))
        shortfall = max(Decimal("0"), event.amount - before)
        entries.append(OverflowEntry(
            occurs_on=event.occurs_on,
            amount=event.amount,
            funds_before_expense=before,
            funds_after_expense=funds,
            months_from_now=months,
            shortfall=shortfall,
            monthly_contribution=ceil_div(shortfall, months),
            plan_id=event.plan_id,
        ))

    if not entries:
        return FundsOverflowReport(starting_funds=starting_funds)

    total = sum((e.shortfall for e in entries), Decimal("0"))
    months_to_last = max(e.months_from_now for e in entries)
    return FundsOverflowReport(
        starting_funds=starting_funds,
        entries=entries,
        total_shortfall=total,
        months_to_last_event=months_to_last,
        required_monthly_saving=ceil_div(total, months_to_last),
    )


# =============================================================================
# MONTHLY CASH FLOW
# =============================================================================

class MonthlyCashFlowRow(BaseModel):
    year: int
    month: int = Field(..., ge=1, le=12)
    plan_income: Decimal = Decimal("0")
    plan_expense: Decimal = Decimal("0")
    plan_balance: Decimal = Decimal("0")
    funds: Decimal = Field(
        default=Decimal("0"),
        description="Running funds at the end of the month"
    )


def monthly_cash_flow(
    events: Iterable[CashFlowEvent],
    starting_funds: Decimal = Decimal("0"),
) -> list[MonthlyCashFlowRow]:
    """Open events per month, oldest first, with forward-accumulated funds."""
    totals: dict[tuple[int, int], list[Decimal]] = defaultdict(
        lambda: [Decimal("0"), Decimal("0")]
    )
    for event in events:
        bucket = totals[(event.occurs_on.year, event.occurs_on.month)]
        if event.event_type == TransactionType.INCOME:
            bucket[0] += event.amount
        else:
            bucket[1] += event.amount

    rows = []
    funds = starting_funds
    for year, month in sorted(totals):
        income, expense = totals[(year, month)]
        funds += income - expense
        rows.append(MonthlyCashFlowRow(
            year=year,
            month=month,
            plan_income=income,
            plan_expense=expense,
            plan_balance=income - expense,
            funds=funds,
        ))
    return rows


# =============================================================================
# SERVICE
# =============================================================================

class CashFlowProjection(BaseModel):
    completed_funds: Decimal
    overflow: FundsOverflowReport
    monthly: list[MonthlyCashFlowRow] = Field(default_factory=list)


class CashFlowProjector:
    """
    Projects cash flow over the plans touching the user's visible accounts.

    Transfer handling defaults to the application settings and can be
    overridden per projector.
    """

    def __init__(
        self,
        session: SessionContext,
        completed_funds_transfer_mode: Optional[TransferMode] = None,
        open_events_transfer_mode: Optional[TransferMode] = None,
    ):
        self.session = session
        if completed_funds_transfer_mode is None or open_events_transfer_mode is None:
            app = get_settings().app
            completed_funds_transfer_mode = (
                completed_funds_transfer_mode or app.completed_funds_transfer_mode
            )
            open_events_transfer_mode = open_events_transfer_mode or app.open_events_transfer_mode
        self.completed_funds_transfer_mode = completed_funds_transfer_mode
        self.open_events_transfer_mode = open_events_transfer_mode

    async def _plans_and_index(self) -> tuple[list[Transaction], LinkIndex]:
        accounts = await self.session.load_records(TableName.ACCOUNT.value, Account)
        permissions = await self.session.load_records(
            TableName.ACCOUNT_PERMISSION.value, AccountPermission
        )
        visible = visible_account_ids(accounts, permissions, self.session.user_id)

        transactions = await self.session.load_records(TableName.TRANSACTION.value, Transaction)
        links = await self.session.load_records(
            TableName.TRANSACTION_MANAGEMENT.value, PlanActualLink
        )
        plans = [t for t in transactions if t.is_plan and t.touches(visible)]
        return plans, LinkIndex(links, transactions)

    async def project(self, today: Optional[date] = None) -> CashFlowProjection:
        today = today or self.session.today()
        plans, index = await self._plans_and_index()

        funds = accumulate(
            completed_fund_events(plans, index, self.completed_funds_transfer_mode)
        )
        pending = open_events(plans, index, self.open_events_transfer_mode)
        report = funds_overflow(funds, pending, today)

        logger.info(
            "cash_flow_projected",
            plan_count=len(plans),
            completed_funds=str(funds),
            open_event_count=len(pending),
            overflow_count=len(report.entries),
        )
        return CashFlowProjection(
            completed_funds=funds,
            overflow=report,
            monthly=monthly_cash_flow(pending, funds),
        )
