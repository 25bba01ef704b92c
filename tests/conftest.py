"""
Shared fixtures for the Household Ledger tests.

No test touches the network or the file system outside tmp_path:
storage is the in-memory backend and the clock is pinned.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from household_ledger.models.finance import Account, TableRecord, Transaction
from household_ledger.services.storage import InMemoryTableStorage, Table
from household_ledger.session import SessionContext


FIXED_NOW = datetime(2024, 1, 10, 9, 30, 0)
USER_ID = "u1"


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def make_transaction():
    """Factory for Transaction records with sensible defaults."""
    def _make(record_id="1", **fields) -> Transaction:
        values = {
            "id": record_id,
            "transaction_type": "expense",
            "project_type": "actual",
            "date_from": date(2024, 1, 5),
            "date_to": date(2024, 1, 5),
            "amount": Decimal("100"),
        }
        values.update(fields)
        return Transaction(**values)
    return _make


@pytest.fixture
def make_account():
    """Factory for Account records owned by the session user."""
    def _make(record_id, balance="0", owner=USER_ID, **fields) -> Account:
        return Account(
            id=record_id,
            owner_user_id=owner,
            account_name=f"Account {record_id}",
            balance=Decimal(balance),
            **fields,
        )
    return _make


@pytest.fixture
def make_storage():
    """Factory for in-memory storage seeded with records per table."""
    def _make(**tables: list[TableRecord]) -> InMemoryTableStorage:
        seeded = {}
        for name, records in tables.items():
            columns = records[0].COLUMNS if records else ()
            table = Table.empty(name, columns)
            for record in records:
                table.append(record)
            seeded[name] = table
        return InMemoryTableStorage(seeded)
    return _make


@pytest.fixture
def make_session(clock):
    """Factory for a session acting as the default user with the pinned clock."""
    def _make(storage, user_id=USER_ID) -> SessionContext:
        return SessionContext(storage, user_id, clock=clock)
    return _make
