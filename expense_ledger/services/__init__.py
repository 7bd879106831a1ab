"""Services package."""

from expense_ledger.services.storage import (
    AuditStorageInterface,
    CategoryStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    InMemoryAuditStorage,
    InMemoryCategoryStorage,
    InMemoryExpenseStorage,
    InMemorySplitStorage,
    JsonFileSplitStorage,
    NotFoundError,
    ParticipantInUseError,
    ParticipantStorageInterface,
    SplitGroupStorageInterface,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "CategoryStorageInterface",
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "ExpenseStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryCategoryStorage",
    "InMemoryExpenseStorage",
    "InMemorySplitStorage",
    "JsonFileSplitStorage",
    "NotFoundError",
    "ParticipantInUseError",
    "ParticipantStorageInterface",
    "SplitGroupStorageInterface",
    "StorageError",
]
