"""Services package."""

from lifeline.services.storage import (
    ConnectionError,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    JsonFileLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    SQLiteLedgerStorage,
    StorageError,
)

__all__ = [
    "ConnectionError",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "JsonFileLedgerStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "SQLiteLedgerStorage",
    "StorageError",
]
