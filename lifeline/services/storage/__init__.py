"""
Storage Services Package

Provides the abstract ledger storage interface and its implementations:
SQLite (default), a JSON document store, and Google Sheets.
"""

from lifeline.services.storage.interface import (
    ConnectionError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    default_account,
    default_settings,
)
from lifeline.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
)
from lifeline.services.storage.json_store import JsonFileLedgerStorage
from lifeline.services.storage.sqlite import SQLiteLedgerStorage

__all__ = [
    # Interface
    "LedgerStorageInterface",
    "default_account",
    "default_settings",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "JsonFileLedgerStorage",
    "SQLiteLedgerStorage",
]
