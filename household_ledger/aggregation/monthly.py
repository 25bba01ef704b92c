"""
Monthly Aggregator

Rebuilds TRANSACTION_MONTHLY: income, expense and balance totals per
(account, project type, year, month).

- actual rows are bucketed by their effective date
- plan rows in `planning` status are expanded into occurrences and every
  occurrence is bucketed (one plan can feed several months)
- a transfer counts as income for ACCOUNT_ID_IN and expense for
  ACCOUNT_ID_OUT

DESIGN DECISION: Rows are replaced wholesale for every account being
recomputed, never patched. Running the aggregation twice with no data
change in between yields identical rows: IDs are assigned after the
untouched rows, and a bucket whose totals did not change keeps its
previous audit stamps.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from household_ledger.models.finance import (
    Account,
    AccountPermission,
    MonthlyAggregate,
    PlanStatus,
    ProjectType,
    TableName,
    Transaction,
    TransactionType,
)
from household_ledger.schedule.occurrence import occurrence_dates
from household_ledger.session import SessionContext
from household_ledger.services.storage import Table
from household_ledger.visibility import visible_account_ids


logger = structlog.get_logger(__name__)

STAMP_FIELDS = ("version", "regist_datetime", "regist_user", "update_datetime", "update_user")


def is_eligible(transaction: Transaction, account_ids: set[str]) -> bool:
    """Non-deleted, touches a recomputed account, and (for plans) still planning."""
    if transaction.deleted or not transaction.touches(account_ids):
        return False
    if transaction.is_plan:
        return transaction.plan_status == PlanStatus.PLANNING
    return True


def compute_monthly_aggregates(
    transactions: Iterable[Transaction],
    account_ids: Iterable[str],
) -> tuple[list[MonthlyAggregate], int]:
    """
    Aggregate rows for `account_ids`, without IDs or audit stamps.

    Returns:
        (rows ordered by account, project type, year, month; eligible count)
    """
    ids = set(account_ids)
    totals: dict[tuple[str, str, int, int], list[Decimal]] = defaultdict(
        lambda: [Decimal("0"), Decimal("0")]
    )

    def add(account_id: str, project_type: str, year: int, month: int, income: Decimal, expense: Decimal) -> None:
        if account_id not in ids:
            return
        bucket = totals[(account_id, project_type, year, month)]
        bucket[0] += income
        bucket[1] += expense

    eligible = [t for t in transactions if is_eligible(t, ids)]
    for transaction in eligible:
        if transaction.is_actual:
            day = transaction.effective_date
            dates = [day] if day is not None else []
        else:
            dates = occurrence_dates(transaction)

        amount = transaction.amount
        kind = transaction.transaction_type
        project_type = transaction.project_type.value
        for day in dates:
            if kind in (TransactionType.INCOME, TransactionType.TRANSFER):
                add(transaction.account_id_in, project_type, day.year, day.month, amount, Decimal("0"))
            if kind in (TransactionType.EXPENSE, TransactionType.TRANSFER):
                add(transaction.account_id_out, project_type, day.year, day.month, Decimal("0"), amount)

    rows = []
    # Running balance per (account, project type); the first month carries 0.
    running: dict[tuple[str, str], Decimal] = {}
    for key in sorted(totals):
        account_id, project_type, year, month = key
        income, expense = totals[key]
        balance = income - expense

        group = (account_id, project_type)
        if group not in running:
            carryover = Decimal("0")
            running[group] = balance
        else:
            running[group] += balance
            carryover = running[group]

        rows.append(MonthlyAggregate(
            account_id=account_id,
            project_type=ProjectType(project_type),
            year=year,
            month=month,
            income_total=income,
            expense_total=expense,
            balance_total=balance,
            carryover=carryover,
        ))
    return rows, len(eligible)


def _numeric_id(row: dict[str, str]) -> tuple[int, str]:
    record_id = row.get("ID", "")
    try:
        return (int(record_id), record_id)
    except ValueError:
        return (0, record_id)


def _same_totals(a: MonthlyAggregate, b: MonthlyAggregate) -> bool:
    return (
        a.income_total == b.income_total
        and a.expense_total == b.expense_total
        and a.balance_total == b.balance_total
        and a.carryover == b.carryover
    )


class MonthlyAggregationResult(BaseModel):
    eligible_count: int = Field(..., ge=0, description="Transactions that fed the aggregation")
    result_count: int = Field(..., ge=0, description="Aggregate rows written")
    account_ids: list[str] = Field(default_factory=list)
    rows: list[MonthlyAggregate] = Field(default_factory=list)


class MonthlyAggregator:
    """Recomputes TRANSACTION_MONTHLY for the accounts a user can see."""

    def __init__(self, session: SessionContext):
        self.session = session

    async def visible_accounts(self) -> set[str]:
        accounts = await self.session.load_records(TableName.ACCOUNT.value, Account, fresh=True)
        permissions = await self.session.load_records(
            TableName.ACCOUNT_PERMISSION.value, AccountPermission, fresh=True
        )
        return visible_account_ids(accounts, permissions, self.session.user_id)

    async def recompute(
        self,
        account_ids: Optional[Iterable[str]] = None,
    ) -> MonthlyAggregationResult:
        """
        Replace every TRANSACTION_MONTHLY row of `account_ids`.

        Args:
            account_ids: Accounts to recompute; defaults to the accounts
                visible to the session user
        """
        ids = set(account_ids) if account_ids is not None else await self.visible_accounts()
        if not ids:
            return MonthlyAggregationResult(eligible_count=0, result_count=0)

        transactions = await self.session.load_records(
            TableName.TRANSACTION.value, Transaction, fresh=True
        )
        computed, eligible_count = compute_monthly_aggregates(transactions, ids)

        existing = await self.session.load(TableName.TRANSACTION_MONTHLY.value, fresh=True)
        previous = {
            row.bucket: row
            for row in existing.records(MonthlyAggregate)
            if row.account_id in ids
        }
        kept_rows = [row for row in existing.rows if row.get("ACCOUNT_ID", "") not in ids]
        table = Table(name=existing.name, header=list(existing.header), rows=kept_rows)
        table.ensure_columns(MonthlyAggregate.COLUMNS)

        user_id = self.session.user_id
        now = self.session.now()
        written = []
        for aggregate in computed:
            record = aggregate.stamped_new(table.next_id(), user_id, now)
            old = previous.get(aggregate.bucket)
            if old is not None and _same_totals(old, aggregate):
                record = record.model_copy(
                    update={name: getattr(old, name) for name in STAMP_FIELDS}
                )
            table.append(record)
            written.append(record)
        table.rows.sort(key=_numeric_id)

        await self.session.write(TableName.TRANSACTION_MONTHLY.value, table)
        logger.info(
            "monthly_aggregated",
            eligible_count=eligible_count,
            result_count=len(written),
            account_count=len(ids),
        )
        return MonthlyAggregationResult(
            eligible_count=eligible_count,
            result_count=len(written),
            account_ids=sorted(ids),
            rows=written,
        )
