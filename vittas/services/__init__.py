"""Services package."""

from vittas.services.storage import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsSubscriptionStorage,
    InMemoryAuditStorage,
    InMemoryStorage,
    LedgerStorageInterface,
    NotFoundError,
    ReferentialIntegrityError,
    StorageError,
    SubscriptionStorageInterface,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "GoogleSheetsSubscriptionStorage",
    "InMemoryAuditStorage",
    "InMemoryStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "ReferentialIntegrityError",
    "StorageError",
    "SubscriptionStorageInterface",
]
