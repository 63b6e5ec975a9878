"""
Storage Services Package

Provides the abstract repository interfaces and concrete implementations.
In-memory, JSON file and Google Sheets backends are interchangeable.

The Google Sheets backend is imported lazily so the ledger works without
Google credentials or the gspread stack being configured.
"""

from gull.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerRepository,
    StorageError,
)
from gull.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerRepository,
)
from gull.services.storage.json_file import JsonFileLedgerRepository

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerRepository",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryLedgerRepository",
    "JsonFileLedgerRepository",
]
