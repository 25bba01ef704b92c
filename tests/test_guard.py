"""
Tests for the concurrency guard.

The guard must compare against the stored row, never the session cache.
"""

import asyncio

import pytest

from household_ledger.ledger.guard import (
    NotFoundConflict,
    StaleVersionConflict,
    VersionGuard,
    WriteCheck,
    normalize_version,
)
from household_ledger.services.storage import Table


class TestCheckBeforeWrite:
    """Tests for VersionGuard.check_before_write."""

    def test_matching_version_is_allowed(self, make_storage, make_session, make_transaction):
        """Test the expected version equal to the stored one passes."""
        storage = make_storage(TRANSACTION=[make_transaction("1", version="3")])
        guard = VersionGuard(make_session(storage))

        result = asyncio.run(guard.check_before_write("TRANSACTION", "1", "3"))

        assert result == WriteCheck.ALLOWED

    def test_stale_version(self, make_storage, make_session, make_transaction):
        """Test stored version 1 against expected 0 is a stale-version conflict."""
        storage = make_storage(TRANSACTION=[make_transaction("1", version="1")])
        guard = VersionGuard(make_session(storage))

        result = asyncio.run(guard.check_before_write("TRANSACTION", "1", "0"))

        assert result == WriteCheck.STALE_VERSION

    def test_deleted_row_is_not_found(self, make_storage, make_session, make_transaction):
        """Test a row that no longer exists is a not-found conflict."""
        storage = make_storage(TRANSACTION=[make_transaction("2")])
        guard = VersionGuard(make_session(storage))

        result = asyncio.run(guard.check_before_write("TRANSACTION", "1", "0"))

        assert result == WriteCheck.NOT_FOUND

    def test_blank_stored_version_is_zero(self, make_session):
        """Test a blank VERSION cell matches an expected version of None or "0"."""
        from household_ledger.services.storage import InMemoryTableStorage

        storage = InMemoryTableStorage({
            "ACCOUNT": Table(
                name="ACCOUNT",
                header=["ID", "VERSION"],
                rows=[{"ID": "7", "VERSION": ""}],
            )
        })
        guard = VersionGuard(make_session(storage))

        assert asyncio.run(guard.check_before_write("ACCOUNT", "7", None)) == WriteCheck.ALLOWED
        assert asyncio.run(guard.check_before_write("ACCOUNT", "7", "0")) == WriteCheck.ALLOWED

    def test_bypasses_session_cache(self, make_storage, make_session, make_transaction):
        """Test a concurrent write is seen even though the table is cached."""
        storage = make_storage(TRANSACTION=[make_transaction("1", version="0")])
        session = make_session(storage)
        asyncio.run(session.load("TRANSACTION"))

        # Another process bumps the row behind the session's back
        table = asyncio.run(storage.read_table("TRANSACTION"))
        table.rows[0]["VERSION"] = "1"
        asyncio.run(storage.write_table("TRANSACTION", table))

        result = asyncio.run(VersionGuard(session).check_before_write("TRANSACTION", "1", "0"))
        assert result == WriteCheck.STALE_VERSION


class TestEnsureWritable:
    """Tests for VersionGuard.ensure_writable."""

    def test_raises_stale_version_conflict(self, make_storage, make_session, make_transaction):
        """Test a stale write raises with both versions attached."""
        storage = make_storage(TRANSACTION=[make_transaction("1", version="1")])
        guard = VersionGuard(make_session(storage))

        with pytest.raises(StaleVersionConflict) as exc_info:
            asyncio.run(guard.ensure_writable("TRANSACTION", "1", "0"))

        assert exc_info.value.expected_version == "0"
        assert exc_info.value.current_version == "1"
        assert "latest data" in str(exc_info.value)

    def test_raises_not_found_conflict(self, make_storage, make_session):
        """Test writing a vanished row raises NotFoundConflict."""
        guard = VersionGuard(make_session(make_storage()))

        with pytest.raises(NotFoundConflict) as exc_info:
            asyncio.run(guard.ensure_writable("ACCOUNT", "9", "0"))

        assert exc_info.value.table == "ACCOUNT"
        assert exc_info.value.record_id == "9"

    def test_allowed_returns_quietly(self, make_storage, make_session, make_transaction):
        """Test a current version passes without raising."""
        storage = make_storage(TRANSACTION=[make_transaction("1", version="2")])
        guard = VersionGuard(make_session(storage))

        asyncio.run(guard.ensure_writable("TRANSACTION", "1", "2"))

    @pytest.mark.parametrize("record_id,expected_version,error", [
        ("7", None, None),
        ("7", " 0 ", None),
        ("7", "1", StaleVersionConflict),
        ("8", "3", None),
        ("8", "03", StaleVersionConflict),
        ("9", "0", NotFoundConflict),
    ])
    def test_agrees_with_check_before_write(self, make_session, record_id, expected_version, error):
        """Test ensure_writable raises exactly when check_before_write refuses."""
        from household_ledger.services.storage import InMemoryTableStorage

        storage = InMemoryTableStorage({
            "ACCOUNT": Table(
                name="ACCOUNT",
                header=["ID", "VERSION"],
                rows=[{"ID": "7", "VERSION": ""}, {"ID": "8", "VERSION": "3"}],
            )
        })
        guard = VersionGuard(make_session(storage))

        check = asyncio.run(guard.check_before_write("ACCOUNT", record_id, expected_version))
        if error is None:
            assert check == WriteCheck.ALLOWED
            asyncio.run(guard.ensure_writable("ACCOUNT", record_id, expected_version))
        else:
            assert check != WriteCheck.ALLOWED
            with pytest.raises(error):
                asyncio.run(guard.ensure_writable("ACCOUNT", record_id, expected_version))


class TestNormalizeVersion:
    """Tests for version defaulting."""

    @pytest.mark.parametrize("raw,expected", [
        (None, "0"),
        ("", "0"),
        ("  ", "0"),
        ("4", "4"),
        (" 4 ", "4"),
    ])
    def test_normalize(self, raw, expected):
        """Test missing and blank versions become "0"."""
        assert normalize_version(raw) == expected
