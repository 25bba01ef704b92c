"""Services package."""

from household_ledger.services.storage import (
    ConnectionError,
    CsvDirectoryTableStorage,
    InMemoryTableStorage,
    StorageError,
    Table,
    TableNotFoundError,
    TableStorageInterface,
)

__all__ = [
    "ConnectionError",
    "CsvDirectoryTableStorage",
    "InMemoryTableStorage",
    "StorageError",
    "Table",
    "TableNotFoundError",
    "TableStorageInterface",
]
