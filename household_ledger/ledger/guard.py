"""
Concurrency Guard

Optimistic concurrency control for the shared tables. Before a row is
updated or deleted, the authoritative copy is re-read from storage
(never from the session cache) and its VERSION compared with the
version the caller last saw.

KNOWN LIMITATION: check and write are two separate storage calls. A
second writer can pass its own check between our check and our write,
and one of the two updates is then lost. The storage port only offers
whole-table replace, so this window is accepted rather than hidden.
"""

from enum import Enum
from typing import Optional

import structlog

from household_ledger.session import SessionContext


logger = structlog.get_logger(__name__)


RELOAD_AFTER_UPDATE_MESSAGE = (
    "Another user has updated this data. "
    "The latest data will be loaded; please review it."
)
RELOAD_AFTER_DELETE_MESSAGE = (
    "Another user has updated this data. "
    "The row no longer exists."
)


class WriteCheck(str, Enum):
    """Outcome of a check-before-write."""
    ALLOWED = "allowed"
    NOT_FOUND = "not_found"
    STALE_VERSION = "stale_version"


class ConcurrencyConflict(Exception):
    """A guarded write was rejected. The actor must reload and retry."""

    def __init__(self, table: str, record_id: str, message: str):
        self.table = table
        self.record_id = record_id
        super().__init__(message)


class StaleVersionConflict(ConcurrencyConflict):
    """Another writer changed the row since it was read."""

    def __init__(self, table: str, record_id: str, expected_version: str, current_version: str):
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(table, record_id, RELOAD_AFTER_UPDATE_MESSAGE)


class NotFoundConflict(ConcurrencyConflict):
    """The row was deleted by another writer."""

    def __init__(self, table: str, record_id: str):
        super().__init__(table, record_id, RELOAD_AFTER_DELETE_MESSAGE)


def normalize_version(version: Optional[str]) -> str:
    """Missing or blank versions are version "0"."""
    text = str(version if version is not None else "").strip()
    return text or "0"


class VersionGuard:
    """
    Check-before-write gate used by every mutating operation.

    On ALLOWED the caller writes the row with its version incremented by
    exactly one (see TableRecord.bumped).
    """

    def __init__(self, session: SessionContext):
        self.session = session

    async def check_before_write(
        self,
        table: str,
        record_id: str,
        expected_version: Optional[str],
    ) -> WriteCheck:
        check, _ = await self._check(table, record_id, expected_version)
        return check

    async def ensure_writable(
        self,
        table: str,
        record_id: str,
        expected_version: Optional[str],
    ) -> None:
        """
        Raise unless the row is still at `expected_version`.

        Raises:
            NotFoundConflict: The row no longer exists
            StaleVersionConflict: The row was changed concurrently
        """
        check, current_version = await self._check(table, record_id, expected_version)
        if check == WriteCheck.NOT_FOUND:
            logger.warning("write_rejected_not_found", table=table, record_id=record_id)
            raise NotFoundConflict(table, record_id)
        if check == WriteCheck.STALE_VERSION:
            expected = normalize_version(expected_version)
            logger.warning(
                "write_rejected_stale_version",
                table=table,
                record_id=record_id,
                expected_version=expected,
                current_version=current_version,
            )
            raise StaleVersionConflict(table, record_id, expected, current_version)

    async def _check(
        self,
        table: str,
        record_id: str,
        expected_version: Optional[str],
    ) -> tuple[WriteCheck, Optional[str]]:
        """Fresh-read the row; returns the verdict and the stored version."""
        current = await self.session.load(table, fresh=True)
        row = current.find(record_id)
        if row is None:
            return WriteCheck.NOT_FOUND, None
        current_version = normalize_version(row.get("VERSION"))
        if current_version != normalize_version(expected_version):
            return WriteCheck.STALE_VERSION, current_version
        return WriteCheck.ALLOWED, current_version
