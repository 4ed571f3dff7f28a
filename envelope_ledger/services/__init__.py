"""Services package."""

from envelope_ledger.services.storage import (
    ActivityStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsActivityStorage,
    GoogleSheetsClient,
    InMemoryActivityStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    SqlActivityStorage,
    SqlLedgerStorage,
    StorageError,
)

__all__ = [
    "ActivityStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsActivityStorage",
    "GoogleSheetsClient",
    "InMemoryActivityStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "SqlActivityStorage",
    "SqlLedgerStorage",
    "StorageError",
]
