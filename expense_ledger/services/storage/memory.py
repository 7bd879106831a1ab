"""
In-Memory Storage Implementation

Keeps everything in process memory. Used by the test-suite and as the
default backend when no shared store is configured.

Writes that check a constraint and then insert are done under an
asyncio.Lock, so two concurrent generation runs cannot both insert the
same (anchor_id, expense_date) occurrence.
"""

import asyncio
from datetime import date
from typing import Optional
from uuid import UUID

from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.expense import Category, Expense
from expense_ledger.models.split import Participant, SplitExpense, SplitGroup
from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    CategoryStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    ParticipantInUseError,
    ParticipantStorageInterface,
    SplitGroupStorageInterface,
    matches_filter,
)


class InMemoryExpenseStorage(ExpenseStorageInterface):
    """Expense storage backed by a dict."""

    def __init__(self, expenses: Optional[list[Expense]] = None):
        self._expenses: dict[UUID, Expense] = {}
        self._occurrence_keys: set[tuple[UUID, date]] = set()
        self._lock = asyncio.Lock()
        for expense in expenses or []:
            self._insert(expense)

    def _insert(self, expense: Expense) -> Expense:
        if expense.id in self._expenses:
            raise DuplicateError(f"Expense already exists: {expense.id}")
        if expense.anchor_id is not None:
            key = (expense.anchor_id, expense.expense_date)
            if key in self._occurrence_keys:
                raise DuplicateError(
                    f"Occurrence of {expense.anchor_id} on "
                    f"{expense.expense_date.isoformat()} already exists"
                )
            self._occurrence_keys.add(key)
        self._expenses[expense.id] = expense
        return expense

    async def create(self, expense: Expense) -> Expense:
        async with self._lock:
            return self._insert(expense)

    async def get_by_id(self, expense_id: UUID) -> Optional[Expense]:
        return self._expenses.get(expense_id)

    async def delete(self, expense_id: UUID) -> bool:
        async with self._lock:
            expense = self._expenses.pop(expense_id, None)
            if expense is None:
                return False
            if expense.anchor_id is not None:
                self._occurrence_keys.discard((expense.anchor_id, expense.expense_date))
            return True

    async def list_by_filter(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category: Optional[str] = None,
        search_text: Optional[str] = None,
        limit: Optional[int] = 1000,
        offset: int = 0,
    ) -> list[Expense]:
        expenses = [
            e for e in self._expenses.values()
            if matches_filter(e, date_from, date_to, category, search_text)
        ]
        expenses.sort(key=lambda e: e.expense_date, reverse=True)
        if limit is None:
            return expenses[offset:]
        return expenses[offset:offset + limit]

    async def list_recurring(self) -> list[Expense]:
        recurring = [e for e in self._expenses.values() if e.is_recurring]
        recurring.sort(key=lambda e: e.expense_date, reverse=True)
        return recurring

    async def list_occurrences(self, anchor_id: UUID) -> list[Expense]:
        occurrences = [e for e in self._expenses.values() if e.anchor_id == anchor_id]
        occurrences.sort(key=lambda e: e.expense_date)
        return occurrences


class InMemoryCategoryStorage(CategoryStorageInterface):

    def __init__(self, categories: Optional[list[Category]] = None):
        self._categories: dict[str, Category] = {c.id: c for c in categories or []}

    async def list_categories(self) -> list[Category]:
        return sorted(self._categories.values(), key=lambda c: c.name.lower())

    async def get_category(self, category_id: str) -> Optional[Category]:
        return self._categories.get(category_id)

    async def save_category(self, category: Category) -> Category:
        self._categories[category.id] = category
        return category

    async def delete_category(self, category_id: str) -> bool:
        return self._categories.pop(category_id, None) is not None


class InMemorySplitStorage(ParticipantStorageInterface, SplitGroupStorageInterface):
    """Participants and split groups held together, as they are used together."""

    def __init__(
        self,
        participants: Optional[list[Participant]] = None,
        groups: Optional[list[SplitGroup]] = None,
    ):
        self._participants: dict[str, Participant] = {p.id: p for p in participants or []}
        self._groups: dict[str, SplitGroup] = {g.id: g for g in groups or []}
        self._lock = asyncio.Lock()

    # Participants

    async def list_participants(self) -> list[Participant]:
        return list(self._participants.values())

    async def get_participant(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(participant_id)

    async def add_participant(self, participant: Participant) -> Participant:
        async with self._lock:
            if participant.id in self._participants:
                raise DuplicateError(f"Participant already exists: {participant.id}")
            self._participants[participant.id] = participant
            return participant

    async def remove_participant(self, participant_id: str) -> bool:
        async with self._lock:
            if participant_id not in self._participants:
                return False
            for group in self._groups.values():
                if participant_id in group.participant_ids():
                    raise ParticipantInUseError(
                        f"Participant {participant_id} is referenced by group {group.id}"
                    )
            del self._participants[participant_id]
            return True

    # Groups

    async def list_groups(self) -> list[SplitGroup]:
        return sorted(self._groups.values(), key=lambda g: g.group_date, reverse=True)

    async def get_group(self, group_id: str) -> Optional[SplitGroup]:
        return self._groups.get(group_id)

    async def save_group(self, group: SplitGroup) -> SplitGroup:
        self._groups[group.id] = group
        return group

    async def delete_group(self, group_id: str) -> bool:
        return self._groups.pop(group_id, None) is not None

    async def add_expense(self, group_id: str, expense: SplitExpense) -> SplitExpense:
        async with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                raise NotFoundError(f"Split group not found: {group_id}")
            expense = expense.model_copy(update={"group_id": group_id})
            group.expenses.append(expense)
            return expense


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
