"""
Session Context

DESIGN DECISION: The tables a session has loaded are cached on an
explicit context object rather than in module state. Components receive
the context, read through it and write through it, and every successful
write invalidates the cached copy so later reads observe fresh data.

The context also owns:
- the acting user (stamped into REGIST_/UPDATE_ columns)
- the clock (so tests can pin "now" and "today")
- pending row changes, applied to a fresh read and flushed best-effort
  on shutdown
"""

from datetime import date, datetime
from typing import Any, Callable, Optional, TypeVar

import structlog
from pydantic import ValidationError

from household_ledger.models.finance import TableRecord
from household_ledger.services.storage import (
    StorageError,
    Table,
    TableStorageInterface,
    validate_table_name,
)


logger = structlog.get_logger(__name__)

RecordT = TypeVar("RecordT", bound=TableRecord)

AUDIT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class SessionContext:
    """
    Per-session view of the storage collaborator.

    Writes from one session are issued and awaited one at a time by the
    action that initiates them; nothing here makes a read-then-write
    atomic across processes.
    """

    def __init__(
        self,
        storage: TableStorageInterface,
        user_id: str,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.user_id = user_id
        self._clock = clock or datetime.now
        self._cache: dict[str, Table] = {}
        self._pending: dict[str, tuple[type[TableRecord], dict[str, dict[str, Any]]]] = {}

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def now(self) -> str:
        """Audit timestamp, "YYYY-MM-DD HH:MM:SS"."""
        return self._clock().strftime(AUDIT_TIMESTAMP_FORMAT)

    def today(self) -> date:
        return self._clock().date()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load(self, name: str, fresh: bool = False) -> Table:
        """
        Return a private copy of a table.

        Served from the cache unless `fresh` is set or the table has not
        been loaded yet. A fresh read refreshes the cache.
        """
        key = validate_table_name(name)
        if fresh or key not in self._cache:
            try:
                table = await self.storage.read_table(key)
            except StorageError as e:
                logger.error("table_read_failed", table=key, error=str(e))
                raise
            self._cache[key] = table
        return self._cache[key].model_copy(deep=True)

    async def load_records(
        self,
        name: str,
        model: type[RecordT],
        fresh: bool = False,
    ) -> list[RecordT]:
        table = await self.load(name, fresh=fresh)
        return table.records(model)

    def is_cached(self, name: str) -> bool:
        return validate_table_name(name) in self._cache

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def write(self, name: str, table: Table) -> None:
        """Replace a table in storage, then drop its cached copy."""
        key = validate_table_name(name)
        try:
            await self.storage.write_table(key, table)
        except StorageError as e:
            logger.error("table_write_failed", table=key, error=str(e))
            raise
        self.invalidate(key)
        logger.info("table_replaced", table=key, rows=len(table.rows), user_id=self.user_id)

    def invalidate(self, *names: str) -> None:
        """Forget cached tables; with no names, forget all of them."""
        if not names:
            self._cache.clear()
            return
        for name in names:
            self._cache.pop(validate_table_name(name), None)

    # ------------------------------------------------------------------
    # Pending changes
    # ------------------------------------------------------------------

    def stage(self, name: str, model: type[RecordT], record_id: str, **changes: Any) -> None:
        """
        Hold field changes for one row to be applied by `flush_pending`.

        Only the changed fields are kept, so writes to the same table made
        before the flush are not overwritten. Staging the same row again
        merges the new fields over the old ones.

        Args:
            name: Table name
            model: Record type used to read and stamp the row
            record_id: ID of the row to change
            **changes: Field name -> new value
        """
        key = validate_table_name(name)
        _, rows = self._pending.setdefault(key, (model, {}))
        rows.setdefault(str(record_id), {}).update(changes)

    @property
    def pending_tables(self) -> list[str]:
        return sorted(self._pending)

    async def flush_pending(self) -> list[str]:
        """
        Apply every staged change to a fresh read of its table, best-effort.

        A row whose staged fields already hold the staged values is left
        untouched; every other staged row gets VERSION + 1 and the
        updater stamped. A failed table is logged, kept pending and
        skipped so shutdown can proceed.

        Returns:
            Names of the tables that could not be written
        """
        failed = []
        for key in sorted(self._pending):
            model, rows = self._pending[key]
            try:
                await self._apply_pending(key, model, rows)
            except StorageError as e:
                logger.error("pending_flush_failed", table=key, error=str(e))
                failed.append(key)
                continue
            del self._pending[key]
        return failed

    async def _apply_pending(
        self,
        key: str,
        model: type[RecordT],
        rows: dict[str, dict[str, Any]],
    ) -> None:
        table = await self.load(key, fresh=True)
        now = self.now()
        changed = 0
        for record_id, changes in rows.items():
            row = table.find(record_id)
            if row is None:
                logger.warning("pending_row_missing", table=key, record_id=record_id)
                continue
            try:
                record = model.from_row(row)
            except ValidationError as e:
                logger.warning("pending_row_invalid", table=key, record_id=record_id, error=str(e))
                continue
            updated = record.model_copy(update=changes)
            if updated.to_row() == record.to_row():
                continue
            table.upsert(updated.bumped(self.user_id, now))
            changed += 1
        if changed:
            await self.write(key, table)
