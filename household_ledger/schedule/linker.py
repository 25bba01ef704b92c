"""
Plan-Actual Linker

Keeps the TRANSACTION_MANAGEMENT link table between a plan and the
actual transactions that realize its occurrences, and classifies every
occurrence of a plan as completed or open.

An occurrence is completed when its date is in the plan's
COMPLETED_PLANDATE set, or when a linked (non-deleted) actual is booked
on that date. Everything else is open.
"""

from collections import defaultdict
from datetime import date
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from household_ledger.ledger.guard import VersionGuard
from household_ledger.models.finance import (
    PlanActualLink,
    PlanStatus,
    TableName,
    Transaction,
)
from household_ledger.schedule.occurrence import occurrence_dates
from household_ledger.session import SessionContext


logger = structlog.get_logger(__name__)


class Occurrence(BaseModel):
    """One dated occurrence of a plan and how it was reconciled."""
    model_config = ConfigDict(frozen=True)

    plan_id: str
    occurs_on: date
    completed: bool = False
    actuals: tuple[Transaction, ...] = Field(
        default=(),
        description="Linked actual transactions booked on this date"
    )

    @property
    def realized_by_actual(self) -> bool:
        return bool(self.actuals)


class LinkIndex:
    """
    Plan ID -> linked actual transactions.

    Links to actuals that are missing or deleted are ignored.
    """

    def __init__(
        self,
        links: Iterable[PlanActualLink],
        transactions: Iterable[Transaction],
    ):
        actual_by_id = {
            t.id: t for t in transactions
            if t.is_actual and not t.deleted
        }
        self._actuals: dict[str, list[Transaction]] = defaultdict(list)
        for link in links:
            actual = actual_by_id.get(link.actual_transaction_id)
            if actual is not None:
                self._actuals[link.plan_transaction_id].append(actual)

    def actuals_for(self, plan_id: str) -> list[Transaction]:
        return list(self._actuals.get(plan_id, []))

    def actuals_by_date(self, plan_id: str) -> dict[date, list[Transaction]]:
        by_date: dict[date, list[Transaction]] = defaultdict(list)
        for actual in self._actuals.get(plan_id, []):
            if actual.effective_date is not None:
                by_date[actual.effective_date].append(actual)
        return dict(by_date)


def classify_occurrences(plan: Transaction, index: LinkIndex) -> list[Occurrence]:
    """Every occurrence of `plan`, in date order, flagged completed or open."""
    if plan.deleted or not plan.is_plan:
        return []
    by_date = index.actuals_by_date(plan.id)
    occurrences = []
    for day in occurrence_dates(plan):
        actuals = tuple(by_date.get(day, ()))
        occurrences.append(Occurrence(
            plan_id=plan.id,
            occurs_on=day,
            completed=day in plan.completed_plan_dates or bool(actuals),
            actuals=actuals,
        ))
    return occurrences


def open_occurrences(plan: Transaction, index: LinkIndex) -> list[date]:
    return [o.occurs_on for o in classify_occurrences(plan, index) if not o.completed]


def completed_occurrences(plan: Transaction, index: LinkIndex) -> list[Occurrence]:
    return [o for o in classify_occurrences(plan, index) if o.completed]


def delayed_dates(plan: Transaction, index: LinkIndex, today: date) -> list[date]:
    """Open occurrences strictly before `today` of a plan still in progress."""
    if plan.plan_status in (PlanStatus.COMPLETE, PlanStatus.CANCELED):
        return []
    return [day for day in open_occurrences(plan, index) if day < today]


def is_delayed(plan: Transaction, index: LinkIndex, today: date) -> bool:
    return bool(delayed_dates(plan, index, today))


def status_after_completion(
    current: PlanStatus,
    occurrences: list[date],
    completed: frozenset[date],
) -> PlanStatus:
    """
    Plan status once `completed` is the plan's completion set.

    planning becomes complete when every occurrence is completed;
    complete falls back to planning when one is not. canceled stays.
    """
    if not occurrences:
        return current
    all_done = all(day in completed for day in occurrences)
    if current == PlanStatus.PLANNING and all_done:
        return PlanStatus.COMPLETE
    if current == PlanStatus.COMPLETE and not all_done:
        return PlanStatus.PLANNING
    return current


class PlanLinker:
    """Reads and rewrites the link table and plan completion marks."""

    def __init__(self, session: SessionContext, guard: Optional[VersionGuard] = None):
        self.session = session
        self.guard = guard or VersionGuard(session)

    async def load_index(self, fresh: bool = False) -> LinkIndex:
        links = await self.session.load_records(
            TableName.TRANSACTION_MANAGEMENT.value, PlanActualLink, fresh=fresh
        )
        transactions = await self.session.load_records(
            TableName.TRANSACTION.value, Transaction, fresh=fresh
        )
        return LinkIndex(links, transactions)

    async def replace_links(self, plan_id: str, actual_ids: Iterable[str]) -> list[PlanActualLink]:
        """
        Make `actual_ids` the complete set of actuals linked to a plan.

        Previous links of the plan are removed; duplicates are written once.
        """
        table = await self.session.load(TableName.TRANSACTION_MANAGEMENT.value, fresh=True)
        table.ensure_columns(PlanActualLink.COLUMNS)
        table.remove_where(lambda row: row.get("TRAN_PLAN_ID", "") == plan_id)

        user_id = self.session.user_id
        now = self.session.now()
        created = []
        for actual_id in dict.fromkeys(a for a in actual_ids if a):
            link = PlanActualLink(
                plan_transaction_id=plan_id,
                actual_transaction_id=actual_id,
            ).stamped_new(table.next_id(), user_id, now)
            table.append(link)
            created.append(link)

        await self.session.write(TableName.TRANSACTION_MANAGEMENT.value, table)
        logger.info("plan_links_replaced", plan_id=plan_id, link_count=len(created))
        return created

    async def remove_links(self, transaction_ids: Iterable[str]) -> int:
        """Drop every link whose plan or actual side is one of `transaction_ids`."""
        ids = set(transaction_ids)
        if not ids:
            return 0
        table = await self.session.load(TableName.TRANSACTION_MANAGEMENT.value, fresh=True)
        removed = table.remove_where(
            lambda row: row.get("TRAN_PLAN_ID", "") in ids
            or row.get("TRAN_ACTUAL_ID", "") in ids
        )
        if removed:
            await self.session.write(TableName.TRANSACTION_MANAGEMENT.value, table)
            logger.info("plan_links_removed", removed=removed)
        return removed

    async def set_completed_plan_dates(
        self,
        plan_id: str,
        completed: Iterable[date],
        expected_version: Optional[str],
    ) -> Transaction:
        """
        Store the completion set of a plan and flip its status if needed.

        Dates that are not occurrences of the plan are ignored.

        Raises:
            ConcurrencyConflict: The plan changed or vanished since it was read
            ValueError: The row is not a plan
        """
        await self.guard.ensure_writable(TableName.TRANSACTION.value, plan_id, expected_version)

        table = await self.session.load(TableName.TRANSACTION.value)
        plan = Transaction.from_row(table.find(plan_id))
        if not plan.is_plan:
            raise ValueError(f"Transaction {plan_id} is not a plan")

        occurrences = occurrence_dates(plan)
        kept = frozenset(completed) & frozenset(occurrences)
        status = status_after_completion(plan.plan_status, occurrences, kept)

        updated = plan.model_copy(update={
            "completed_plan_dates": kept,
            "plan_status": status,
        }).bumped(self.session.user_id, self.session.now())
        table.upsert(updated)
        await self.session.write(TableName.TRANSACTION.value, table)

        logger.info(
            "plan_dates_completed",
            plan_id=plan_id,
            completed_count=len(kept),
            plan_status=status.value,
        )
        return updated
