"""
Abstract Storage Interface

DESIGN DECISION: Storage is a set of named tables, and the only two
operations are "read the whole table" and "replace the whole table".
This allows us to:
1. Serve the tables from CSV files, Google Sheets or memory
2. Use in-memory storage for testing
3. Put a row-level database behind the same port later
4. Keep the replace-all semantics explicit instead of hidden in call sites

There is no row-level patch at this boundary. Every mutation reads the
table, computes the new row set in memory and writes it back wholesale.
"""

from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional, TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError

from household_ledger.models.finance import TableRecord


logger = structlog.get_logger(__name__)

RecordT = TypeVar("RecordT", bound=TableRecord)


class Table(BaseModel):
    """
    In-memory copy of one table: a header and its rows.

    Rows stay raw (column -> cell text) so that rows this process does
    not understand survive a read/modify/write cycle untouched.
    """

    name: str
    header: list[str] = Field(default_factory=list)
    rows: list[dict[str, str]] = Field(default_factory=list)

    @classmethod
    def empty(cls, name: str, columns: Iterable[str] = ()) -> "Table":
        return cls(name=name, header=list(columns))

    @classmethod
    def from_values(cls, name: str, values: list[list[str]]) -> "Table":
        """Build a table from a header line followed by cell lines."""
        if not values:
            return cls(name=name)
        header = [str(h).strip() for h in values[0]]
        rows = []
        for cells in values[1:]:
            if not cells or all(not str(c).strip() for c in cells):
                continue
            rows.append({
                column: str(cells[i]).strip() if i < len(cells) else ""
                for i, column in enumerate(header)
            })
        return cls(name=name, header=header, rows=rows)

    def to_values(self) -> list[list[str]]:
        """Header line followed by one cell line per row, in header order."""
        values = [list(self.header)]
        for row in self.rows:
            values.append([row.get(column, "") for column in self.header])
        return values

    def ensure_columns(self, columns: Iterable[str]) -> None:
        for column in columns:
            if column not in self.header:
                self.header.append(column)

    def records(self, model: type[RecordT]) -> list[RecordT]:
        """
        Parse every row into `model`.

        Rows that fail validation are skipped (and logged), never raised:
        one bad row must not make a whole table unreadable.
        """
        parsed = []
        for row in self.rows:
            try:
                parsed.append(model.from_row(row))
            except ValidationError as e:
                logger.warning(
                    "table_row_skipped",
                    table=self.name,
                    row_id=row.get("ID", ""),
                    error_count=e.error_count(),
                )
        return parsed

    def find(self, record_id: str) -> Optional[dict[str, str]]:
        """Return the raw row with this ID, or None."""
        for row in self.rows:
            if row.get("ID", "") == str(record_id):
                return row
        return None

    def upsert(self, record: TableRecord) -> None:
        """Replace the row with the record's ID, or append it if absent."""
        new_row = record.to_row()
        self.ensure_columns(record.COLUMNS)
        self.ensure_columns(new_row.keys())
        for index, row in enumerate(self.rows):
            if row.get("ID", "") == record.id:
                merged = dict(row)
                merged.update(new_row)
                self.rows[index] = merged
                return
        self.rows.append(new_row)

    def append(self, record: TableRecord) -> None:
        new_row = record.to_row()
        self.ensure_columns(record.COLUMNS)
        self.ensure_columns(new_row.keys())
        self.rows.append(new_row)

    def remove_where(self, predicate: Callable[[dict[str, str]], bool]) -> int:
        """Drop every row matching `predicate`; returns how many were dropped."""
        kept = [row for row in self.rows if not predicate(row)]
        removed = len(self.rows) - len(kept)
        self.rows = kept
        return removed

    def next_id(self) -> str:
        """Next numeric ID: one more than the largest numeric ID present."""
        highest = 0
        for row in self.rows:
            try:
                highest = max(highest, int(row.get("ID", "")))
            except ValueError:
                continue
        return str(highest + 1)


class TableStorageInterface(ABC):
    """
    Abstract interface for table storage.

    Any storage implementation (CSV files, Google Sheets, a database)
    must implement these two methods with whole-table semantics.
    """

    @abstractmethod
    async def read_table(self, name: str) -> Table:
        """
        Read an entire table.

        Args:
            name: Table name (e.g. "TRANSACTION")

        Returns:
            The table; an empty table if it does not exist yet

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def write_table(self, name: str, table: Table) -> None:
        """
        Replace the entire contents of a table.

        Args:
            name: Table name
            table: The complete new row set (header included)

        Raises:
            StorageError: If the write fails
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class TableNotFoundError(StorageError):
    """The named table is not served by this backend."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


def validate_table_name(name: str) -> str:
    """
    Normalize a table name and reject anything that is not a plain name.

    Names are upper-case letters and underscores ("ACCOUNT_HISTORY"),
    which also keeps them safe to use as file or worksheet names.
    """
    normalized = str(name or "").strip().upper()
    if normalized.endswith(".CSV"):
        normalized = normalized[:-4]
    if not normalized or not all(c.isalpha() or c == "_" for c in normalized):
        raise TableNotFoundError(f"Invalid table name: {name!r}")
    return normalized
