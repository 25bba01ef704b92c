"""
In-Memory Storage Implementation

Holds every table in a dict. Used by the test suite and for throwaway
sessions. Reads and writes hand out deep copies so callers can never
mutate the stored state behind the port's back.
"""

from typing import Optional

from household_ledger.services.storage.interface import (
    Table,
    TableStorageInterface,
    validate_table_name,
)


class InMemoryTableStorage(TableStorageInterface):
    """Whole-table storage kept in process memory."""

    def __init__(self, tables: Optional[dict[str, Table]] = None):
        self._tables: dict[str, Table] = {}
        for name, table in (tables or {}).items():
            key = validate_table_name(name)
            self._tables[key] = table.model_copy(update={"name": key}, deep=True)
        self.read_count = 0
        self.write_count = 0

    async def read_table(self, name: str) -> Table:
        key = validate_table_name(name)
        self.read_count += 1
        table = self._tables.get(key)
        if table is None:
            return Table(name=key)
        return table.model_copy(deep=True)

    async def write_table(self, name: str, table: Table) -> None:
        key = validate_table_name(name)
        self.write_count += 1
        self._tables[key] = table.model_copy(update={"name": key}, deep=True)
