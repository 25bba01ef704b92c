"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets can serve the tables instead of local
CSV files because:
1. The household can view and share its data directly in Sheets
2. No server setup is required
3. Built-in backup (Google's infrastructure)

Each table is one worksheet of the configured spreadsheet, header in
row 1. Reading fetches all values; writing clears the worksheet and
uploads the full row set, which is exactly the whole-table contract of
the storage port.

TRADEOFFS:
- Not suitable for high-volume data (fine for one household)
- No transactions; concurrent writers are caught by the version guard
"""

import asyncio
from typing import Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from household_ledger.config import get_settings
from household_ledger.services.storage.interface import (
    ConnectionError,
    StorageError,
    Table,
    TableStorageInterface,
    validate_table_name,
)


logger = structlog.get_logger(__name__)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication (retried with back-off) and worksheet lookup.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def find_worksheet(self, name: str) -> Optional[gspread.Worksheet]:
        """Get the worksheet for a table, or None if it was never created."""
        spreadsheet = self.get_spreadsheet()
        try:
            return spreadsheet.worksheet(name)
        except gspread.WorksheetNotFound:
            return None

    def get_or_create_worksheet(self, name: str, rows: int, cols: int) -> gspread.Worksheet:
        """Get the worksheet for a table, creating it if needed."""
        sheet = self.find_worksheet(name)
        if sheet is None:
            sheet = self.get_spreadsheet().add_worksheet(
                title=name,
                rows=max(rows, 1000),
                cols=max(cols, 1),
            )
        return sheet


class GoogleSheetsTableStorage(TableStorageInterface):
    """
    Google Sheets implementation of table storage.

    gspread is synchronous, so each call runs in a worker thread.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _read_sync(self, name: str) -> Table:
        sheet = self._client.find_worksheet(name)
        if sheet is None:
            return Table(name=name)
        return Table.from_values(name, sheet.get_all_values())

    def _write_sync(self, name: str, table: Table) -> None:
        values = table.to_values()
        sheet = self._client.get_or_create_worksheet(
            name,
            rows=len(values),
            cols=len(table.header),
        )
        sheet.clear()
        sheet.update(values=values, range_name="A1", value_input_option="RAW")

    async def read_table(self, name: str) -> Table:
        """Read every value of the table's worksheet."""
        key = validate_table_name(name)
        try:
            table = await asyncio.to_thread(self._read_sync, key)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read table {key}: {e}")
        logger.debug("table_read", table=key, rows=len(table.rows))
        return table

    async def write_table(self, name: str, table: Table) -> None:
        """Clear the worksheet and upload the full table."""
        key = validate_table_name(name)
        try:
            await asyncio.to_thread(self._write_sync, key, table)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write table {key}: {e}")
        logger.debug("table_written", table=key, rows=len(table.rows))
