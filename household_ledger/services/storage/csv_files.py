"""
CSV Directory Storage Implementation

DESIGN DECISION: Each table is one <NAME>.csv file in a data directory,
with the header on the first line. This is the household's native
format: the files can be opened, backed up and diffed by hand.

TRADEOFFS:
- A write rewrites the whole file (that is the port's contract anyway)
- No cross-process locking; concurrent writers are caught by the
  version guard, not here

File access runs in a worker thread so a slow disk never blocks the
event loop.
"""

import asyncio
import csv
import io
import os
from pathlib import Path
from typing import Optional

import structlog

from household_ledger.config import get_settings
from household_ledger.services.storage.interface import (
    StorageError,
    Table,
    TableStorageInterface,
    validate_table_name,
)


logger = structlog.get_logger(__name__)


class CsvDirectoryTableStorage(TableStorageInterface):
    """Whole-table storage backed by one CSV file per table."""

    def __init__(
        self,
        data_dir: Optional[str] = None,
        encoding: Optional[str] = None,
    ):
        settings = get_settings().storage if data_dir is None or encoding is None else None
        self._data_dir = Path(data_dir if data_dir is not None else settings.data_dir)
        self._encoding = encoding if encoding is not None else settings.encoding

    def _path_for(self, name: str) -> Path:
        return self._data_dir / f"{validate_table_name(name)}.csv"

    def _read_sync(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding=self._encoding)
        except FileNotFoundError:
            return None

    def _write_sync(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Readers see either the old file or the new one, never a partial write
        tmp_path = path.with_suffix(".csv.tmp")
        tmp_path.write_text(text, encoding=self._encoding)
        os.replace(tmp_path, path)

    async def read_table(self, name: str) -> Table:
        """Read <NAME>.csv; a missing file is an empty table."""
        path = self._path_for(name)
        key = path.stem
        try:
            text = await asyncio.to_thread(self._read_sync, path)
        except OSError as e:
            raise StorageError(f"Failed to read table {key}: {e}")
        if text is None:
            return Table(name=key)
        values = list(csv.reader(io.StringIO(text)))
        table = Table.from_values(key, values)
        logger.debug("table_read", table=key, rows=len(table.rows))
        return table

    async def write_table(self, name: str, table: Table) -> None:
        """Rewrite <NAME>.csv with the given header and rows."""
        path = self._path_for(name)
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerows(table.to_values())
        try:
            await asyncio.to_thread(self._write_sync, path, buffer.getvalue())
        except OSError as e:
            raise StorageError(f"Failed to write table {path.stem}: {e}")
        logger.debug("table_written", table=path.stem, rows=len(table.rows))
