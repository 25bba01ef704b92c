"""
Audit Logger

DESIGN DECISION: Every mutation of the shared tables is logged.
This provides:
1. Traceability of who changed what
2. Debugging capability when conflicts or storage failures occur
3. A record of maintenance runs

The audit logger:
- Is async like the storage it may write to
- Gracefully handles failures (an audit write never breaks a mutation)
- Supports correlation IDs to trace the writes of one user action
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from household_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from household_ledger.services.storage import StorageError, TableStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (always)
    2. The audit table of the storage backend (when persistence is on)
    """

    def __init__(
        self,
        storage: Optional[TableStorageInterface] = None,
        table_name: str = "AUDIT_LOG",
        persist: bool = True,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            table_name: Table the events are appended to
            persist: Set False to keep events local even with a storage
        """
        self._storage = storage if persist else None
        self._table_name = table_name
        self._logger = structlog.get_logger(__name__)

    @property
    def persists(self) -> bool:
        return self._storage is not None

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if configured.

        Returns True if the storage write succeeded (or no storage is configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage is None:
            return True

        try:
            table = await self._storage.read_table(self._table_name)
            table.ensure_columns(AuditEvent.COLUMNS)
            table.rows.append(event.to_row())
            await self._storage.write_table(self._table_name, table)
            return True
        except StorageError as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    async def log_version_conflict(
        self,
        table: str,
        entity_id: str,
        reason: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rejected guarded write."""
        event = AuditEventBuilder.version_conflict(
            table=table,
            entity_id=entity_id,
            reason=reason,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        table: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed table read or write."""
        event = AuditEventBuilder.storage_error(
            operation=operation,
            table=table,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_flush_failed(
        self,
        table: str,
        error_message: str,
        user_id: Optional[str] = None,
    ) -> None:
        """Log pending changes that could not be saved on shutdown."""
        event = AuditEventBuilder.flush_failed(
            table=table,
            error_message=error_message,
            user_id=user_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g. saving a transaction).
    Pass it through all subsequent operations.
    """
    return uuid4()
