"""
Abstract Storage Interface

DESIGN DECISION: The engines never talk to storage. Flows load snapshots
through these interfaces, hand them to the engines and write results
back. This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep split data local (a JSON file) while expenses live in a shared store

The interface is intentionally simple - we're not building a full ORM.
Storage errors are raised to the caller unchanged; nothing here retries
on the caller's behalf.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.expense import Category, Expense
from expense_ledger.models.split import Participant, SplitExpense, SplitGroup


class ExpenseStorageInterface(ABC):
    """
    Abstract interface for expense storage.

    Implementations must enforce uniqueness of (anchor_id, expense_date)
    for generated occurrences.
    """

    @abstractmethod
    async def create(self, expense: Expense) -> Expense:
        """
        Store a new expense.

        Returns:
            The stored expense

        Raises:
            DuplicateError: If the id exists, or an occurrence for the same
                            anchor and date is already stored
            StorageError: If the write fails
        """
        pass

    async def create_many(self, expenses: list[Expense]) -> list[Expense]:
        """
        Store several expenses, in order.

        Stops at the first failure; expenses before it stay stored.
        """
        return [await self.create(expense) for expense in expenses]

    @abstractmethod
    async def get_by_id(self, expense_id: UUID) -> Optional[Expense]:
        """Retrieve an expense by id, or None."""
        pass

    @abstractmethod
    async def delete(self, expense_id: UUID) -> bool:
        """
        Delete an expense by id.

        Returns:
            True if something was deleted
        """
        pass

    @abstractmethod
    async def list_by_filter(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category: Optional[str] = None,
        search_text: Optional[str] = None,
        limit: Optional[int] = 1000,
        offset: int = 0,
    ) -> list[Expense]:
        """
        List expenses with optional filters, newest first.

        Args:
            date_from: Expenses on or after this date
            date_to: Expenses on or before this date
            category: Exact category match
            search_text: Case-insensitive substring of the description
            limit: Maximum number of results, or None for all of them
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def list_recurring(self) -> list[Expense]:
        """All recurring anchors, newest first."""
        pass

    @abstractmethod
    async def list_occurrences(self, anchor_id: UUID) -> list[Expense]:
        """All stored occurrences generated from one anchor, oldest first."""
        pass


class CategoryStorageInterface(ABC):
    """Abstract interface for expense categories."""

    @abstractmethod
    async def list_categories(self) -> list[Category]:
        pass

    @abstractmethod
    async def get_category(self, category_id: str) -> Optional[Category]:
        pass

    @abstractmethod
    async def save_category(self, category: Category) -> Category:
        """Insert or replace a category."""
        pass

    @abstractmethod
    async def delete_category(self, category_id: str) -> bool:
        pass


class ParticipantStorageInterface(ABC):
    """
    Abstract interface for the participant roster.

    A participant referenced by any split expense cannot be removed.
    """

    @abstractmethod
    async def list_participants(self) -> list[Participant]:
        """The roster, in the order participants were added."""
        pass

    @abstractmethod
    async def get_participant(self, participant_id: str) -> Optional[Participant]:
        pass

    @abstractmethod
    async def add_participant(self, participant: Participant) -> Participant:
        """
        Raises:
            DuplicateError: If the id is already on the roster
        """
        pass

    @abstractmethod
    async def remove_participant(self, participant_id: str) -> bool:
        """
        Remove a participant.

        Returns:
            True if removed, False if unknown

        Raises:
            ParticipantInUseError: If any split expense references them
        """
        pass


class SplitGroupStorageInterface(ABC):
    """Abstract interface for split groups and their expenses."""

    @abstractmethod
    async def list_groups(self) -> list[SplitGroup]:
        pass

    @abstractmethod
    async def get_group(self, group_id: str) -> Optional[SplitGroup]:
        pass

    @abstractmethod
    async def save_group(self, group: SplitGroup) -> SplitGroup:
        """Insert or replace a group."""
        pass

    @abstractmethod
    async def delete_group(self, group_id: str) -> bool:
        pass

    @abstractmethod
    async def add_expense(self, group_id: str, expense: SplitExpense) -> SplitExpense:
        """
        Append an expense to a group.

        Raises:
            NotFoundError: If the group doesn't exist
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events for one correlation id, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """All events for one entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConflictError(StorageError):
    """A write would break a storage constraint."""
    pass


class DuplicateError(ConflictError):
    """Attempted to insert a duplicate entity."""
    pass


class ParticipantInUseError(ConflictError):
    """Participant is still referenced by split expenses."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


def matches_filter(
    expense: Expense,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    category: Optional[str] = None,
    search_text: Optional[str] = None,
) -> bool:
    """Shared filter semantics for implementations that filter in Python."""
    if date_from and expense.expense_date < date_from:
        return False
    if date_to and expense.expense_date > date_to:
        return False
    if category and expense.category != category:
        return False
    if search_text and search_text.lower() not in expense.description.lower():
        return False
    return True
