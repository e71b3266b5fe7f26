"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the persistent backend; the in-memory backend serves tests
and demos. Both honour the same atomicity and constraint rules.
"""

from vittas.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    ReferentialIntegrityError,
    StorageError,
    SubscriptionStorageInterface,
)
from vittas.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryStorage,
)
from vittas.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsSubscriptionStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "SubscriptionStorageInterface",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "ReferentialIntegrityError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "GoogleSheetsSubscriptionStorage",
]
