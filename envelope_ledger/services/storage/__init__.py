"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The ledger lives in SQL (or memory for tests); the activity feed can be
mirrored to Google Sheets.
"""

from envelope_ledger.services.storage.interface import (
    ActivityStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from envelope_ledger.services.storage.memory import (
    InMemoryActivityStorage,
    InMemoryLedgerStorage,
)
from envelope_ledger.services.storage.sql import (
    SqlActivityStorage,
    SqlLedgerStorage,
)
from envelope_ledger.services.storage.google_sheets import (
    GoogleSheetsActivityStorage,
    GoogleSheetsClient,
)

__all__ = [
    # Interfaces
    "ActivityStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsActivityStorage",
    "GoogleSheetsClient",
    "InMemoryActivityStorage",
    "InMemoryLedgerStorage",
    "SqlActivityStorage",
    "SqlLedgerStorage",
]
