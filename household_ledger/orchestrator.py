"""
Main Orchestrator for Household Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Transactions (register / update / delete, plan links, completion marks)
2. Maintenance (balance recalculation, monthly aggregation, purge,
   cash-flow projection, shutdown flush)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No row is updated or deleted without passing the version guard
- Conflicts are surfaced to the caller, never retried
- Every mutation and every failure is audited

This is the "glue" that keeps the link table, the balances and the
transactions consistent with each other.
"""

from datetime import date, datetime
from typing import Awaitable, Callable, Iterable, Optional, TypeVar
from uuid import UUID

import structlog

from household_ledger.aggregation import (
    CashFlowProjection,
    CashFlowProjector,
    MonthlyAggregationResult,
    MonthlyAggregator,
)
from household_ledger.audit import AuditLogger, create_correlation_id
from household_ledger.config import Settings, get_settings
from household_ledger.ledger import (
    BalanceLedger,
    ConcurrencyConflict,
    NotFoundConflict,
    RecalculationResult,
    VersionGuard,
)
from household_ledger.models.audit import AuditEventBuilder
from household_ledger.models.finance import (
    Account,
    PlanActualLink,
    TableName,
    Transaction,
    format_decimal,
)
from household_ledger.schedule import PlanLinker
from household_ledger.services.storage import (
    CsvDirectoryTableStorage,
    GoogleSheetsClient,
    GoogleSheetsTableStorage,
    InMemoryTableStorage,
    StorageError,
    TableStorageInterface,
)
from household_ledger.session import SessionContext


logger = structlog.get_logger(__name__)

ResultT = TypeVar("ResultT")


class InvalidOperationError(Exception):
    """The request does not make sense for the rows it names."""
    pass


class _AuditedFlow:
    """Shared audit plumbing of the flows."""

    def __init__(self, session: SessionContext, audit_logger: Optional[AuditLogger] = None):
        self.session = session
        self._audit_logger = audit_logger

    async def _audit(self, event) -> None:
        if self._audit_logger:
            await self._audit_logger.log(event)

    async def _run(
        self,
        operation: str,
        table: str,
        action: Awaitable[ResultT],
        correlation_id: Optional[UUID] = None,
    ) -> ResultT:
        """
        Await `action`, auditing conflicts and storage failures.

        Both are re-raised: the operation is aborted, not retried.
        """
        try:
            return await action
        except ConcurrencyConflict as e:
            reason = "not_found" if isinstance(e, NotFoundConflict) else "stale_version"
            if self._audit_logger:
                await self._audit_logger.log_version_conflict(
                    table=e.table,
                    entity_id=e.record_id,
                    reason=reason,
                    user_id=self.session.user_id,
                    correlation_id=correlation_id,
                )
            raise
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    operation=operation,
                    table=table,
                    error_message=str(e),
                    user_id=self.session.user_id,
                    correlation_id=correlation_id,
                )
            raise


class TransactionFlow(_AuditedFlow):
    """
    Orchestrates changes to TRANSACTION and everything derived from it.

    Flow of an update:
    1. Guard → re-read the row, reject if its version moved
    2. Write → the row with VERSION + 1 and the updater stamped
    3. Balances → apply the effect change of an actual
    4. Audit
    """

    def __init__(
        self,
        session: SessionContext,
        guard: Optional[VersionGuard] = None,
        ledger: Optional[BalanceLedger] = None,
        linker: Optional[PlanLinker] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(session, audit_logger)
        self._guard = guard or VersionGuard(session)
        self._ledger = ledger or BalanceLedger(session)
        self._linker = linker or PlanLinker(session, self._guard)

    # ------------------------------------------------------------------
    # Register / update / delete
    # ------------------------------------------------------------------

    async def register(
        self,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Insert a new transaction; an actual also moves balances."""
        correlation_id = correlation_id or create_correlation_id()
        return await self._run(
            "register",
            TableName.TRANSACTION.value,
            self._register(transaction, correlation_id),
            correlation_id,
        )

    async def _register(self, transaction: Transaction, correlation_id: UUID) -> Transaction:
        table = await self.session.load(TableName.TRANSACTION.value, fresh=True)
        created = transaction.model_copy(update={"deleted": False}).stamped_new(
            table.next_id(), self.session.user_id, self.session.now()
        )
        table.append(created)
        await self.session.write(TableName.TRANSACTION.value, table)

        await self._audit(AuditEventBuilder.transaction_registered(
            transaction_id=created.id,
            project_type=created.project_type.value,
            user_id=self.session.user_id,
            correlation_id=correlation_id,
        ))
        if created.is_actual:
            balances = await self._ledger.register(created)
            await self._audit_balances(created.id, "regist", balances, correlation_id)
        return created

    async def update(
        self,
        transaction: Transaction,
        expected_version: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Replace a transaction's fields.

        Args:
            transaction: New field values; `id` names the row
            expected_version: Version the caller last saw (defaults to
                transaction.version)

        Raises:
            StaleVersionConflict / NotFoundConflict: Reload and retry
        """
        correlation_id = correlation_id or create_correlation_id()
        version = transaction.version if expected_version is None else expected_version
        return await self._run(
            "update",
            TableName.TRANSACTION.value,
            self._update(transaction, version, correlation_id),
            correlation_id,
        )

    async def _update(
        self,
        transaction: Transaction,
        expected_version: str,
        correlation_id: UUID,
    ) -> Transaction:
        await self._guard.ensure_writable(TableName.TRANSACTION.value, transaction.id, expected_version)

        table = await self.session.load(TableName.TRANSACTION.value)
        previous = Transaction.from_row(table.find(transaction.id))
        if previous.deleted:
            raise InvalidOperationError(f"Transaction {transaction.id} is deleted")

        updated = transaction.model_copy(update={
            "version": previous.version,
            "regist_datetime": previous.regist_datetime,
            "regist_user": previous.regist_user,
            "deleted": False,
        }).bumped(self.session.user_id, self.session.now())
        table.upsert(updated)
        await self.session.write(TableName.TRANSACTION.value, table)

        await self._audit(AuditEventBuilder.transaction_updated(
            transaction_id=updated.id,
            version=updated.version,
            user_id=self.session.user_id,
            correlation_id=correlation_id,
        ))
        balances = await self._ledger.update(updated, previous)
        await self._audit_balances(updated.id, "update", balances, correlation_id)
        return updated

    async def delete(
        self,
        transaction_id: str,
        expected_version: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Logically delete a transaction (DLT_FLG=1).

        A deleted actual gives its amount back; a deleted plan loses its links.
        """
        correlation_id = correlation_id or create_correlation_id()
        return await self._run(
            "delete",
            TableName.TRANSACTION.value,
            self._delete(transaction_id, expected_version, correlation_id),
            correlation_id,
        )

    async def _delete(
        self,
        transaction_id: str,
        expected_version: Optional[str],
        correlation_id: UUID,
    ) -> Transaction:
        await self._guard.ensure_writable(TableName.TRANSACTION.value, transaction_id, expected_version)

        table = await self.session.load(TableName.TRANSACTION.value)
        previous = Transaction.from_row(table.find(transaction_id))
        if previous.deleted:
            raise InvalidOperationError(f"Transaction {transaction_id} is already deleted")

        deleted = previous.model_copy(update={"deleted": True}).bumped(
            self.session.user_id, self.session.now()
        )
        table.upsert(deleted)
        await self.session.write(TableName.TRANSACTION.value, table)

        await self._audit(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            user_id=self.session.user_id,
            correlation_id=correlation_id,
        ))
        if previous.is_actual:
            balances = await self._ledger.delete(previous)
            await self._audit_balances(transaction_id, "delete", balances, correlation_id)
        if previous.is_plan:
            await self._linker.remove_links([transaction_id])
        return deleted

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def set_plan_links(
        self,
        plan_id: str,
        actual_ids: Iterable[str],
        correlation_id: Optional[UUID] = None,
    ) -> list[PlanActualLink]:
        """Make `actual_ids` the set of actuals that realize the plan."""
        correlation_id = correlation_id or create_correlation_id()
        return await self._run(
            "set_plan_links",
            TableName.TRANSACTION_MANAGEMENT.value,
            self._set_plan_links(plan_id, list(actual_ids), correlation_id),
            correlation_id,
        )

    async def _set_plan_links(
        self,
        plan_id: str,
        actual_ids: list[str],
        correlation_id: UUID,
    ) -> list[PlanActualLink]:
        transactions = {
            t.id: t for t in await self.session.load_records(
                TableName.TRANSACTION.value, Transaction, fresh=True
            )
        }
        plan = transactions.get(plan_id)
        if plan is None or plan.deleted:
            raise NotFoundConflict(TableName.TRANSACTION.value, plan_id)
        if not plan.is_plan:
            raise InvalidOperationError(f"Transaction {plan_id} is not a plan")
        for actual_id in actual_ids:
            actual = transactions.get(actual_id)
            if actual is None or actual.deleted or not actual.is_actual:
                raise InvalidOperationError(f"Transaction {actual_id} is not an actual transaction")

        links = await self._linker.replace_links(plan_id, actual_ids)
        await self._audit(AuditEventBuilder.plan_links_replaced(
            plan_id=plan_id,
            actual_ids=[link.actual_transaction_id for link in links],
            user_id=self.session.user_id,
            correlation_id=correlation_id,
        ))
        return links

    async def set_completed_plan_dates(
        self,
        plan_id: str,
        completed: Iterable[date],
        expected_version: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Store the occurrences of a plan reconciled without an actual."""
        correlation_id = correlation_id or create_correlation_id()
        return await self._run(
            "set_completed_plan_dates",
            TableName.TRANSACTION.value,
            self._set_completed_plan_dates(plan_id, list(completed), expected_version, correlation_id),
            correlation_id,
        )

    async def _set_completed_plan_dates(
        self,
        plan_id: str,
        completed: list[date],
        expected_version: Optional[str],
        correlation_id: UUID,
    ) -> Transaction:
        try:
            plan = await self._linker.set_completed_plan_dates(plan_id, completed, expected_version)
        except ValueError as e:
            raise InvalidOperationError(str(e)) from e
        await self._audit(AuditEventBuilder.plan_dates_completed(
            plan_id=plan.id,
            completed_dates=[d.isoformat() for d in sorted(plan.completed_plan_dates)],
            plan_status=plan.plan_status.value,
            user_id=self.session.user_id,
            correlation_id=correlation_id,
        ))
        return plan

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _audit_balances(self, transaction_id: str, operation: str, balances: dict, correlation_id: UUID) -> None:
        if not balances:
            return
        await self._audit(AuditEventBuilder.balances_applied(
            transaction_id=transaction_id,
            operation=operation,
            balances={k: format_decimal(v) for k, v in balances.items()},
            user_id=self.session.user_id,
            correlation_id=correlation_id,
        ))


class MaintenanceFlow(_AuditedFlow):
    """
    Orchestrates whole-table maintenance runs.

    Each run reads fresh data, rewrites its target table wholesale and
    records one audit event.
    """

    def __init__(
        self,
        session: SessionContext,
        ledger: Optional[BalanceLedger] = None,
        aggregator: Optional[MonthlyAggregator] = None,
        projector: Optional[CashFlowProjector] = None,
        linker: Optional[PlanLinker] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(session, audit_logger)
        self._ledger = ledger or BalanceLedger(session)
        self._aggregator = aggregator or MonthlyAggregator(session)
        self._projector = projector or CashFlowProjector(session)
        self._linker = linker or PlanLinker(session)

    async def recalculate_balances(self) -> RecalculationResult:
        """Rebuild personal account balances from the actual transactions."""
        result = await self._run(
            "recalculate_balances",
            TableName.ACCOUNT.value,
            self._ledger.recalculate_all(),
        )
        await self._audit(AuditEventBuilder.balances_recalculated(
            transaction_count=result.transaction_count,
            account_count=result.account_count,
            user_id=self.session.user_id,
        ))
        return result

    async def run_monthly_aggregation(
        self,
        account_ids: Optional[Iterable[str]] = None,
    ) -> MonthlyAggregationResult:
        """Rebuild TRANSACTION_MONTHLY for the visible (or given) accounts."""
        result = await self._run(
            "run_monthly_aggregation",
            TableName.TRANSACTION_MONTHLY.value,
            self._aggregator.recompute(account_ids),
        )
        await self._audit(AuditEventBuilder.monthly_aggregated(
            eligible_count=result.eligible_count,
            result_count=result.result_count,
            account_ids=result.account_ids,
            user_id=self.session.user_id,
        ))
        return result

    async def purge_deleted(self) -> list[str]:
        """
        Physically remove logically deleted transactions.

        Link rows referencing a purged transaction go with it.

        Returns:
            IDs of the purged transactions
        """
        purged = await self._run(
            "purge_deleted",
            TableName.TRANSACTION.value,
            self._purge_deleted(),
        )
        if purged:
            await self._audit(AuditEventBuilder.deleted_transactions_purged(
                purged_ids=purged,
                user_id=self.session.user_id,
            ))
        return purged

    async def _purge_deleted(self) -> list[str]:
        table = await self.session.load(TableName.TRANSACTION.value, fresh=True)
        purged = [
            row.get("ID", "") for row in table.rows
            if row.get("DLT_FLG", "").strip().lower() in ("1", "true")
        ]
        if not purged:
            return []
        ids = set(purged)
        table.remove_where(lambda row: row.get("ID", "") in ids)
        await self.session.write(TableName.TRANSACTION.value, table)
        await self._linker.remove_links(ids)
        return purged

    async def project_cash_flow(self, today: Optional[date] = None) -> CashFlowProjection:
        return await self._run(
            "project_cash_flow",
            TableName.TRANSACTION.value,
            self._projector.project(today),
        )

    async def stage_account_order(self, account_ids: list[str]) -> None:
        """
        Stage a new SORT_ORDER for the user's accounts.

        Only the positions are held by the session; `close` applies them
        to the accounts as they are stored at that time.
        """
        accounts = {
            a.id: a for a in await self.session.load_records(TableName.ACCOUNT.value, Account, fresh=True)
        }
        user_id = self.session.user_id
        for account_id in account_ids:
            account = accounts.get(account_id)
            if account is None or account.owner_user_id != user_id:
                raise InvalidOperationError(f"Account {account_id} is not owned by {user_id}")
        for position, account_id in enumerate(account_ids, start=1):
            self.session.stage(TableName.ACCOUNT.value, Account, account_id, sort_order=str(position))

    async def close(self) -> list[str]:
        """
        Flush pending changes before shutdown.

        Failures are audited but never raised.

        Returns:
            Tables that could not be saved
        """
        failed = await self.session.flush_pending()
        for table in failed:
            if self._audit_logger:
                await self._audit_logger.log_flush_failed(
                    table=table,
                    error_message="write failed during shutdown flush",
                    user_id=self.session.user_id,
                )
        return failed


def create_storage(settings: Settings) -> TableStorageInterface:
    """Build the storage backend selected by HOUSEHOLD_STORAGE_BACKEND."""
    backend = settings.storage.backend
    if backend == "memory":
        return InMemoryTableStorage()
    if backend == "google_sheets":
        return GoogleSheetsTableStorage(GoogleSheetsClient())
    return CsvDirectoryTableStorage()


def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[TableStorageInterface] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> tuple[TransactionFlow, MaintenanceFlow, SessionContext]:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (defaults to get_settings())
        storage: Storage backend; built from the settings when omitted
        clock: Source of "now" for audit stamps (tests pin it)

    Returns:
        (transaction_flow, maintenance_flow, session)
    """
    settings = settings or get_settings()
    app = settings.app
    storage = storage or create_storage(settings)

    audit_logger = AuditLogger(
        storage,
        table_name=app.audit_table,
        persist=app.persist_audit,
    )
    session = SessionContext(storage, user_id=app.user_id, clock=clock)

    guard = VersionGuard(session)
    ledger = BalanceLedger(session)
    linker = PlanLinker(session, guard)

    transaction_flow = TransactionFlow(
        session,
        guard=guard,
        ledger=ledger,
        linker=linker,
        audit_logger=audit_logger,
    )
    maintenance_flow = MaintenanceFlow(
        session,
        ledger=ledger,
        aggregator=MonthlyAggregator(session),
        projector=CashFlowProjector(
            session,
            completed_funds_transfer_mode=app.completed_funds_transfer_mode,
            open_events_transfer_mode=app.open_events_transfer_mode,
        ),
        linker=linker,
        audit_logger=audit_logger,
    )

    logger.info(
        "app_components_created",
        backend=settings.storage.backend,
        user_id=app.user_id,
        persist_audit=audit_logger.persists,
    )
    return transaction_flow, maintenance_flow, session
