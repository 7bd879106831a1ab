"""
Local JSON File Storage for Split Data

The participant roster and split groups are personal, device-local data.
They live in a single JSON document rather than in the shared expense
store.

TRADEOFFS:
- The whole document is rewritten on every change (fine for a roster
  and a handful of groups)
- Concurrent processes are not coordinated; concurrent tasks in one
  process are serialised with an asyncio.Lock
"""

import asyncio
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from expense_ledger.models.split import Participant, SplitData, SplitExpense, SplitGroup
from expense_ledger.services.storage.interface import (
    DuplicateError,
    NotFoundError,
    ParticipantInUseError,
    ParticipantStorageInterface,
    SplitGroupStorageInterface,
    StorageError,
)


class JsonFileSplitStorage(ParticipantStorageInterface, SplitGroupStorageInterface):
    """
    Participants and split groups persisted to one JSON file.

    A missing file is an empty ledger. An unreadable or invalid file is a
    StorageError - we never silently start over on top of a user's data.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> SplitData:
        if not self._path.exists():
            return SplitData()
        try:
            return SplitData.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise StorageError(f"Failed to load split data from {self._path}: {e}")

    def _save(self, data: SplitData) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(data.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StorageError(f"Failed to save split data to {self._path}: {e}")

    async def clear(self) -> None:
        """Remove all split data."""
        async with self._lock:
            try:
                self._path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to clear split data: {e}")

    # Participants

    async def list_participants(self) -> list[Participant]:
        return self._load().participants

    async def get_participant(self, participant_id: str) -> Optional[Participant]:
        for participant in self._load().participants:
            if participant.id == participant_id:
                return participant
        return None

    async def add_participant(self, participant: Participant) -> Participant:
        async with self._lock:
            data = self._load()
            if any(p.id == participant.id for p in data.participants):
                raise DuplicateError(f"Participant already exists: {participant.id}")
            data.participants.append(participant)
            self._save(data)
            return participant

    async def remove_participant(self, participant_id: str) -> bool:
        async with self._lock:
            data = self._load()
            remaining = [p for p in data.participants if p.id != participant_id]
            if len(remaining) == len(data.participants):
                return False
            for group in data.groups:
                if participant_id in group.participant_ids():
                    raise ParticipantInUseError(
                        f"Participant {participant_id} is referenced by group {group.id}"
                    )
            data.participants = remaining
            self._save(data)
            return True

    # Groups

    async def list_groups(self) -> list[SplitGroup]:
        return sorted(self._load().groups, key=lambda g: g.group_date, reverse=True)

    async def get_group(self, group_id: str) -> Optional[SplitGroup]:
        for group in self._load().groups:
            if group.id == group_id:
                return group
        return None

    async def save_group(self, group: SplitGroup) -> SplitGroup:
        async with self._lock:
            data = self._load()
            data.groups = [g for g in data.groups if g.id != group.id]
            data.groups.append(group)
            self._save(data)
            return group

    async def delete_group(self, group_id: str) -> bool:
        async with self._lock:
            data = self._load()
            remaining = [g for g in data.groups if g.id != group_id]
            if len(remaining) == len(data.groups):
                return False
            data.groups = remaining
            self._save(data)
            return True

    async def add_expense(self, group_id: str, expense: SplitExpense) -> SplitExpense:
        async with self._lock:
            data = self._load()
            for group in data.groups:
                if group.id == group_id:
                    expense = expense.model_copy(update={"group_id": group_id})
                    group.expenses.append(expense)
                    self._save(data)
                    return expense
            raise NotFoundError(f"Split group not found: {group_id}")
