"""
Audit Models for Household Ledger

Every mutation of the shared tables is logged for audit purposes.
This provides:
1. Traceability of who changed which row and when
2. Debugging information when a conflict or storage failure occurs
3. A record of maintenance runs (recalculation, aggregation, purge)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each mutating operation of the ledger has its own event type.
    """
    # Transactions
    TRANSACTION_REGISTERED = "transaction_registered"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    DELETED_TRANSACTIONS_PURGED = "deleted_transactions_purged"

    # Plans
    PLAN_LINKS_REPLACED = "plan_links_replaced"
    PLAN_DATES_COMPLETED = "plan_dates_completed"

    # Balances
    BALANCES_APPLIED = "balances_applied"
    BALANCES_RECALCULATED = "balances_recalculated"

    # Aggregation
    MONTHLY_AGGREGATED = "monthly_aggregated"

    # Concurrency
    VERSION_CONFLICT = "version_conflict"

    # System events
    STORAGE_ERROR = "storage_error"
    FLUSH_FAILED = "flush_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "EVENT_ID",
        "TIMESTAMP",
        "EVENT_TYPE",
        "SEVERITY",
        "ENTITY_TYPE",
        "ENTITY_ID",
        "CORRELATION_ID",
        "USER_ID",
        "DESCRIPTION",
        "DETAILS_JSON",
        "ERROR_MESSAGE",
    )

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'table')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all writes of one user action)"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="User the session acted for"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "user_id": self.user_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_row(self) -> dict[str, str]:
        """
        Convert to a row of the audit table, keyed by COLUMNS.
        """
        return {
            "EVENT_ID": str(self.event_id),
            "TIMESTAMP": self.timestamp.isoformat(),
            "EVENT_TYPE": self.event_type.value,
            "SEVERITY": self.severity.value,
            "ENTITY_TYPE": self.entity_type or "",
            "ENTITY_ID": self.entity_id or "",
            "CORRELATION_ID": str(self.correlation_id) if self.correlation_id else "",
            "USER_ID": self.user_id or "",
            "DESCRIPTION": self.description,
            "DETAILS_JSON": json.dumps(self.details, default=str) if self.details else "",
            "ERROR_MESSAGE": self.error_message or "",
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_registered(tx_id, "actual", user_id)
        event = AuditEventBuilder.version_conflict("TRANSACTION", tx_id, "stale")
    """

    @staticmethod
    def transaction_registered(
        transaction_id: str,
        project_type: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_REGISTERED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Registered {project_type} transaction {transaction_id}",
            details={"project_type": project_type},
        )

    @staticmethod
    def transaction_updated(
        transaction_id: str,
        version: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Updated transaction {transaction_id} to version {version}",
            details={"version": version},
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Deleted transaction {transaction_id}",
        )

    @staticmethod
    def deleted_transactions_purged(
        purged_ids: list[str],
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELETED_TRANSACTIONS_PURGED,
            entity_type="table",
            entity_id="TRANSACTION",
            user_id=user_id,
            description=f"Purged {len(purged_ids)} deleted transactions",
            details={"transaction_ids": purged_ids},
        )

    @staticmethod
    def plan_links_replaced(
        plan_id: str,
        actual_ids: list[str],
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLAN_LINKS_REPLACED,
            entity_type="transaction",
            entity_id=plan_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Plan {plan_id} now linked to {len(actual_ids)} actual transactions",
            details={"actual_ids": actual_ids},
        )

    @staticmethod
    def plan_dates_completed(
        plan_id: str,
        completed_dates: list[str],
        plan_status: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLAN_DATES_COMPLETED,
            entity_type="transaction",
            entity_id=plan_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Plan {plan_id} has {len(completed_dates)} completed dates ({plan_status})",
            details={
                "completed_dates": completed_dates,
                "plan_status": plan_status,
            },
        )

    @staticmethod
    def balances_applied(
        transaction_id: str,
        operation: str,
        balances: dict[str, str],
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCES_APPLIED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Balances updated for {operation} of transaction {transaction_id}",
            details={
                "operation": operation,
                "balances": balances,
            },
        )

    @staticmethod
    def balances_recalculated(
        transaction_count: int,
        account_count: int,
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCES_RECALCULATED,
            entity_type="table",
            entity_id="ACCOUNT",
            user_id=user_id,
            description=(
                f"Recalculated {account_count} account balances "
                f"from {transaction_count} transactions"
            ),
            details={
                "transaction_count": transaction_count,
                "account_count": account_count,
            },
        )

    @staticmethod
    def monthly_aggregated(
        eligible_count: int,
        result_count: int,
        account_ids: list[str],
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTHLY_AGGREGATED,
            entity_type="table",
            entity_id="TRANSACTION_MONTHLY",
            user_id=user_id,
            description=f"Monthly aggregation wrote {result_count} rows from {eligible_count} transactions",
            details={
                "eligible_count": eligible_count,
                "result_count": result_count,
                "account_ids": account_ids,
            },
        )

    @staticmethod
    def version_conflict(
        table: str,
        entity_id: str,
        reason: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VERSION_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type=table.lower(),
            entity_id=entity_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Write to {table} {entity_id} rejected: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def storage_error(
        operation: str,
        table: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type="table",
            entity_id=table,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Storage {operation} failed for {table}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def flush_failed(
        table: str,
        error_message: str,
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FLUSH_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="table",
            entity_id=table,
            user_id=user_id,
            description=f"Pending changes to {table} could not be saved",
            error_message=error_message,
        )
