"""
Data Models Package

This package contains all Pydantic models used in Household Ledger.
Every table row is parsed into one of these records at the storage boundary.
"""

from household_ledger.models.finance import (
    Account,
    AccountHistory,
    AccountPermission,
    Frequency,
    HistoryStatus,
    MonthlyAggregate,
    PermissionType,
    PlanActualLink,
    PlanStatus,
    ProjectType,
    TableName,
    TableRecord,
    Transaction,
    TransactionType,
    format_cell,
    format_decimal,
    parse_date,
    parse_decimal,
)
from household_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Finance models
    "Account",
    "AccountHistory",
    "AccountPermission",
    "Frequency",
    "HistoryStatus",
    "MonthlyAggregate",
    "PermissionType",
    "PlanActualLink",
    "PlanStatus",
    "ProjectType",
    "TableName",
    "TableRecord",
    "Transaction",
    "TransactionType",
    "format_cell",
    "format_decimal",
    "parse_date",
    "parse_decimal",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
