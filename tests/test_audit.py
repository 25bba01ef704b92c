"""
Tests for the audit logger: local-only logging, persistence to the
audit table, and failures that must never break the caller.
"""

import asyncio

from household_ledger.audit import AuditLogger, create_correlation_id
from household_ledger.models.audit import AuditEvent, AuditEventBuilder
from household_ledger.services.storage import InMemoryTableStorage, StorageError


class FailingStorage(InMemoryTableStorage):
    """Storage whose reads always fail."""

    async def read_table(self, name):
        raise StorageError(f"cannot reach {name}")


def registered(transaction_id="1") -> AuditEvent:
    return AuditEventBuilder.transaction_registered(transaction_id, "actual", user_id="u1")


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_local_only_without_storage(self):
        """Test logging succeeds with nothing to persist to."""
        audit_logger = AuditLogger()

        assert audit_logger.persists is False
        assert asyncio.run(audit_logger.log(registered())) is True

    def test_persist_disabled_keeps_storage_untouched(self):
        """Test persist=False never writes the audit table."""
        storage = InMemoryTableStorage()
        audit_logger = AuditLogger(storage, persist=False)

        asyncio.run(audit_logger.log(registered()))

        assert audit_logger.persists is False
        assert storage.write_count == 0

    def test_events_are_appended(self):
        """Test events accumulate in the audit table in order."""
        storage = InMemoryTableStorage()
        audit_logger = AuditLogger(storage, table_name="AUDIT_LOG")

        asyncio.run(audit_logger.log(registered("1")))
        asyncio.run(audit_logger.log(registered("2")))

        table = asyncio.run(storage.read_table("AUDIT_LOG"))
        assert table.header == list(AuditEvent.COLUMNS)
        assert [row["ENTITY_ID"] for row in table.rows] == ["1", "2"]
        assert table.rows[0]["USER_ID"] == "u1"

    def test_storage_failure_is_swallowed(self):
        """Test a failed audit write is reported, not raised."""
        audit_logger = AuditLogger(FailingStorage())

        assert asyncio.run(audit_logger.log(registered())) is False

    def test_helpers_write_typed_events(self):
        """Test the conflict / storage / flush helpers persist their event types."""
        storage = InMemoryTableStorage()
        audit_logger = AuditLogger(storage)

        asyncio.run(audit_logger.log_version_conflict("TRANSACTION", "5", "not_found", user_id="u1"))
        asyncio.run(audit_logger.log_storage_error("update", "ACCOUNT", "timeout"))
        asyncio.run(audit_logger.log_flush_failed("ACCOUNT", "write failed"))

        rows = asyncio.run(storage.read_table("AUDIT_LOG")).rows
        assert [(r["EVENT_TYPE"], r["SEVERITY"]) for r in rows] == [
            ("version_conflict", "warning"),
            ("storage_error", "error"),
            ("flush_failed", "error"),
        ]
        assert rows[1]["ERROR_MESSAGE"] == "timeout"


class TestCorrelationId:
    """Tests for correlation IDs."""

    def test_correlation_ids_are_unique(self):
        """Test each user action gets a fresh correlation ID."""
        assert create_correlation_id() != create_correlation_id()
