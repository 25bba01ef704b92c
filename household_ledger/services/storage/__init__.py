"""
Storage Services Package

Provides the whole-table storage port and its implementations
(in-memory, CSV directory, Google Sheets).
"""

from household_ledger.services.storage.interface import (
    ConnectionError,
    StorageError,
    Table,
    TableNotFoundError,
    TableStorageInterface,
    validate_table_name,
)
from household_ledger.services.storage.memory import InMemoryTableStorage
from household_ledger.services.storage.csv_files import CsvDirectoryTableStorage
from household_ledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsTableStorage,
)

__all__ = [
    # Interface
    "Table",
    "TableStorageInterface",
    "validate_table_name",
    # Exceptions
    "ConnectionError",
    "StorageError",
    "TableNotFoundError",
    # Implementations
    "CsvDirectoryTableStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTableStorage",
    "InMemoryTableStorage",
]
