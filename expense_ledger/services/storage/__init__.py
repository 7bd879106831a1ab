"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Expenses can live in memory or Google Sheets; split data lives in memory
or in a local JSON file.
"""

from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    CategoryStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    ParticipantInUseError,
    ParticipantStorageInterface,
    SplitGroupStorageInterface,
    StorageError,
)
from expense_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryCategoryStorage,
    InMemoryExpenseStorage,
    InMemorySplitStorage,
)
from expense_ledger.services.storage.local_file import JsonFileSplitStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "CategoryStorageInterface",
    "ExpenseStorageInterface",
    "ParticipantStorageInterface",
    "SplitGroupStorageInterface",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "ParticipantInUseError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryCategoryStorage",
    "InMemoryExpenseStorage",
    "InMemorySplitStorage",
    # Local file implementation
    "JsonFileSplitStorage",
]
