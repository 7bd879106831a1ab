"""
Tests for storage implementations.

Google Sheets is exercised against an in-process fake worksheet; no
network calls are made.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from tenacity import wait_none

from expense_ledger.models.audit import AuditEventBuilder
from expense_ledger.models.expense import Category, Expense, RecurrencePattern
from expense_ledger.models.split import Participant, SplitExpense, SplitGroup
from expense_ledger.services.storage import (
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryCategoryStorage,
    InMemoryExpenseStorage,
    InMemorySplitStorage,
    JsonFileSplitStorage,
    NotFoundError,
    ParticipantInUseError,
    StorageError,
)
from expense_ledger.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    CATEGORY_COLUMNS,
    EXPENSE_COLUMNS,
    GoogleSheetsAuditStorage,
    GoogleSheetsCategoryStorage,
    GoogleSheetsExpenseStorage,
)


def anchor_expense(day: date = date(2024, 1, 31)) -> Expense:
    return Expense(
        amount=Decimal("899"),
        description="Rent",
        category="housing",
        expense_date=day,
        is_recurring=True,
        recurrence_pattern=RecurrencePattern.MONTHLY,
    )


class FakeWorksheet:
    """Minimal stand-in for gspread.Worksheet."""

    def __init__(self, header: list[str]):
        self.rows = [list(header)]

    def get_all_values(self) -> list[list[str]]:
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def delete_rows(self, index: int):
        del self.rows[index - 1]

    def update_cell(self, row: int, col: int, value):
        self.rows[row - 1][col - 1] = str(value)


class TimeoutAfterAppendWorksheet(FakeWorksheet):
    """Writes the first appended row, then fails as if the response was lost."""

    def __init__(self, header: list[str]):
        super().__init__(header)
        self.append_calls = 0

    def append_row(self, values, value_input_option=None):
        self.append_calls += 1
        super().append_row(values, value_input_option)
        if self.append_calls == 1:
            raise RuntimeError("read timed out")


class FakeSheetsClient:
    """Hands out fake worksheets in place of GoogleSheetsClient."""

    def __init__(self):
        self.expenses = FakeWorksheet(EXPENSE_COLUMNS)
        self.categories = FakeWorksheet(CATEGORY_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_expenses_sheet(self):
        return self.expenses

    def get_categories_sheet(self):
        return self.categories

    def get_audit_sheet(self):
        return self.audit


class TestInMemoryExpenseStorage:
    """Tests for InMemoryExpenseStorage."""

    @pytest.mark.asyncio
    async def test_create_and_get(self):
        """Test storing and reading back an expense."""
        storage = InMemoryExpenseStorage()
        expense = anchor_expense()
        await storage.create(expense)
        assert await storage.get_by_id(expense.id) == expense
        assert await storage.get_by_id(uuid4()) is None

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self):
        """Test that the same expense can't be stored twice."""
        storage = InMemoryExpenseStorage()
        expense = anchor_expense()
        await storage.create(expense)
        with pytest.raises(DuplicateError):
            await storage.create(expense)

    @pytest.mark.asyncio
    async def test_duplicate_occurrence_rejected(self):
        """Test (anchor_id, expense_date) uniqueness."""
        storage = InMemoryExpenseStorage()
        anchor = anchor_expense()
        await storage.create(anchor.spawn_occurrence(date(2024, 2, 29)))
        with pytest.raises(DuplicateError):
            await storage.create(anchor.spawn_occurrence(date(2024, 2, 29)))

    @pytest.mark.asyncio
    async def test_concurrent_occurrence_inserts(self):
        """Test that only one of several concurrent identical inserts wins."""
        storage = InMemoryExpenseStorage()
        anchor = anchor_expense()
        results = await asyncio.gather(
            *(storage.create(anchor.spawn_occurrence(date(2024, 2, 29))) for _ in range(5)),
            return_exceptions=True,
        )
        stored = [r for r in results if isinstance(r, Expense)]
        duplicates = [r for r in results if isinstance(r, DuplicateError)]
        assert len(stored) == 1
        assert len(duplicates) == 4

    @pytest.mark.asyncio
    async def test_delete_frees_occurrence_slot(self):
        """Test that a deleted occurrence can be generated again."""
        storage = InMemoryExpenseStorage()
        anchor = anchor_expense()
        occurrence = await storage.create(anchor.spawn_occurrence(date(2024, 2, 29)))
        assert await storage.delete(occurrence.id) is True
        assert await storage.delete(occurrence.id) is False
        await storage.create(anchor.spawn_occurrence(date(2024, 2, 29)))

    @pytest.mark.asyncio
    async def test_list_by_filter(self):
        """Test date, category, text filters and paging."""
        storage = InMemoryExpenseStorage([
            Expense(amount=Decimal("1"), description="Coffee", category="food",
                    expense_date=date(2024, 3, 1)),
            Expense(amount=Decimal("2"), description="Train", category="travel",
                    expense_date=date(2024, 3, 5)),
            Expense(amount=Decimal("3"), description="Coffee beans", category="food",
                    expense_date=date(2024, 4, 1)),
        ])

        march = await storage.list_by_filter(date_from=date(2024, 3, 1), date_to=date(2024, 3, 31))
        assert [e.amount for e in march] == [Decimal("2"), Decimal("1")]

        food = await storage.list_by_filter(category="food")
        assert [e.amount for e in food] == [Decimal("3"), Decimal("1")]

        coffee = await storage.list_by_filter(search_text="COFFEE")
        assert len(coffee) == 2

        page = await storage.list_by_filter(limit=1, offset=1)
        assert [e.amount for e in page] == [Decimal("2")]

        rest = await storage.list_by_filter(limit=None, offset=1)
        assert [e.amount for e in rest] == [Decimal("2"), Decimal("1")]

    @pytest.mark.asyncio
    async def test_list_recurring_and_occurrences(self):
        """Test listing anchors and an anchor's occurrences oldest first."""
        storage = InMemoryExpenseStorage()
        anchor = await storage.create(anchor_expense())
        await storage.create(anchor.spawn_occurrence(date(2024, 3, 31)))
        await storage.create(anchor.spawn_occurrence(date(2024, 2, 29)))

        assert [e.id for e in await storage.list_recurring()] == [anchor.id]
        occurrences = await storage.list_occurrences(anchor.id)
        assert [o.expense_date for o in occurrences] == [date(2024, 2, 29), date(2024, 3, 31)]

    @pytest.mark.asyncio
    async def test_create_many_stops_at_first_failure(self):
        """Test that create_many keeps what was stored before a failure."""
        storage = InMemoryExpenseStorage()
        anchor = anchor_expense()
        first = anchor.spawn_occurrence(date(2024, 2, 29))
        with pytest.raises(DuplicateError):
            await storage.create_many([first, first, anchor.spawn_occurrence(date(2024, 3, 31))])
        assert len(await storage.list_occurrences(anchor.id)) == 1


class TestInMemoryOtherStorage:
    """Tests for the in-memory category, split and audit stores."""

    @pytest.mark.asyncio
    async def test_categories(self):
        """Test category CRUD and name ordering."""
        storage = InMemoryCategoryStorage()
        food = await storage.save_category(Category(name="food"))
        await storage.save_category(Category(name="Bills"))
        assert [c.name for c in await storage.list_categories()] == ["Bills", "food"]
        assert await storage.get_category(food.id) == food
        assert await storage.delete_category(food.id) is True
        assert await storage.delete_category(food.id) is False

    @pytest.mark.asyncio
    async def test_participant_in_use(self):
        """Test that a referenced participant can't be removed."""
        storage = InMemorySplitStorage(
            participants=[Participant(id="a", name="Alice"), Participant(id="b", name="Bob")],
        )
        group = await storage.save_group(SplitGroup(name="Trip"))
        await storage.add_expense(
            group.id,
            SplitExpense(amount=Decimal("10"), paid_by="a", split_among=["a"]),
        )

        with pytest.raises(ParticipantInUseError):
            await storage.remove_participant("a")
        assert await storage.remove_participant("b") is True
        assert await storage.remove_participant("b") is False

    @pytest.mark.asyncio
    async def test_add_expense_to_missing_group(self):
        """Test that adding to an unknown group fails."""
        storage = InMemorySplitStorage()
        with pytest.raises(NotFoundError):
            await storage.add_expense(
                "missing",
                SplitExpense(amount=Decimal("10"), paid_by="a", split_among=["a"]),
            )

    @pytest.mark.asyncio
    async def test_audit_queries(self):
        """Test audit lookups by correlation id and entity."""
        storage = InMemoryAuditStorage()
        correlation_id = uuid4()
        anchor_id = uuid4()
        await storage.append_event(AuditEventBuilder.occurrence_generated(
            occurrence_id=uuid4(),
            anchor_id=anchor_id,
            occurrence_date=date(2024, 2, 29),
            correlation_id=correlation_id,
        ))
        await storage.append_event(AuditEventBuilder.participant_added("a", "Alice"))

        assert len(await storage.get_events_by_correlation_id(correlation_id)) == 1
        assert len(await storage.get_events_by_entity("participant", "a")) == 1
        assert len(await storage.get_recent_events(limit=1)) == 1


class TestJsonFileSplitStorage:
    """Tests for JsonFileSplitStorage."""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        """Test that a fresh path has no data."""
        storage = JsonFileSplitStorage(tmp_path / "split.json")
        assert await storage.list_participants() == []
        assert await storage.list_groups() == []

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        """Test that a second instance reads what the first wrote."""
        path = tmp_path / "split.json"
        storage = JsonFileSplitStorage(path)
        await storage.add_participant(Participant(id="a", name="Alice"))
        await storage.add_participant(Participant(id="b", name="Bob"))
        group = await storage.save_group(SplitGroup(name="Dinner", group_date=date(2024, 5, 1)))
        stored = await storage.add_expense(
            group.id,
            SplitExpense(amount=Decimal("42.10"), paid_by="a", split_among=["a", "b"]),
        )
        assert stored.group_id == group.id

        reopened = JsonFileSplitStorage(path)
        assert [p.name for p in await reopened.list_participants()] == ["Alice", "Bob"]
        loaded = await reopened.get_group(group.id)
        assert loaded.name == "Dinner"
        assert loaded.expenses[0].amount == Decimal("42.10")
        assert loaded.expenses[0].group_id == group.id
        assert not path.with_suffix(".json.tmp").exists()

    @pytest.mark.asyncio
    async def test_duplicate_participant(self, tmp_path):
        """Test participant id uniqueness."""
        storage = JsonFileSplitStorage(tmp_path / "split.json")
        await storage.add_participant(Participant(id="a", name="Alice"))
        with pytest.raises(DuplicateError):
            await storage.add_participant(Participant(id="a", name="Again"))

    @pytest.mark.asyncio
    async def test_participant_in_use(self, tmp_path):
        """Test that a referenced participant can't be removed."""
        storage = JsonFileSplitStorage(tmp_path / "split.json")
        await storage.add_participant(Participant(id="a", name="Alice"))
        group = await storage.save_group(SplitGroup(name="Trip"))
        await storage.add_expense(
            group.id,
            SplitExpense(amount=Decimal("5"), paid_by="a", split_among=["a"]),
        )
        with pytest.raises(ParticipantInUseError):
            await storage.remove_participant("a")

        assert await storage.delete_group(group.id) is True
        assert await storage.remove_participant("a") is True

    @pytest.mark.asyncio
    async def test_groups_newest_first(self, tmp_path):
        """Test group ordering."""
        storage = JsonFileSplitStorage(tmp_path / "split.json")
        await storage.save_group(SplitGroup(name="Old", group_date=date(2024, 1, 1)))
        await storage.save_group(SplitGroup(name="New", group_date=date(2024, 6, 1)))
        assert [g.name for g in await storage.list_groups()] == ["New", "Old"]

    @pytest.mark.asyncio
    async def test_add_expense_to_missing_group(self, tmp_path):
        """Test that adding to an unknown group fails."""
        storage = JsonFileSplitStorage(tmp_path / "split.json")
        with pytest.raises(NotFoundError):
            await storage.add_expense(
                "missing",
                SplitExpense(amount=Decimal("10"), paid_by="a", split_among=["a"]),
            )

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, tmp_path):
        """Test that an unreadable file is an error, not an empty ledger."""
        path = tmp_path / "split.json"
        path.write_text("{not json", encoding="utf-8")
        storage = JsonFileSplitStorage(path)
        with pytest.raises(StorageError):
            await storage.list_participants()

    @pytest.mark.asyncio
    async def test_clear(self, tmp_path):
        """Test removing all split data."""
        path = tmp_path / "split.json"
        storage = JsonFileSplitStorage(path)
        await storage.add_participant(Participant(id="a", name="Alice"))
        await storage.clear()
        assert not path.exists()
        assert await storage.list_participants() == []


class TestGoogleSheetsStorage:
    """Tests for the Google Sheets stores against a fake worksheet."""

    @pytest.mark.asyncio
    async def test_expense_row_round_trip(self):
        """Test that a stored expense reads back intact."""
        client = FakeSheetsClient()
        storage = GoogleSheetsExpenseStorage(client)
        anchor = anchor_expense()
        occurrence = anchor.spawn_occurrence(date(2024, 2, 29))

        await storage.create(anchor)
        await storage.create(occurrence)

        assert len(client.expenses.rows) == 3
        assert await storage.get_by_id(anchor.id) == anchor
        loaded = await storage.get_by_id(occurrence.id)
        assert loaded.anchor_id == anchor.id
        assert loaded.amount == Decimal("899")
        assert [e.id for e in await storage.list_recurring()] == [anchor.id]
        assert [e.id for e in await storage.list_occurrences(anchor.id)] == [occurrence.id]

    @pytest.mark.asyncio
    async def test_duplicate_occurrence_rejected(self):
        """Test (anchor_id, expense_date) uniqueness on append."""
        client = FakeSheetsClient()
        storage = GoogleSheetsExpenseStorage(client)
        anchor = anchor_expense()
        await storage.create(anchor.spawn_occurrence(date(2024, 2, 29)))

        with pytest.raises(DuplicateError):
            await storage.create(anchor.spawn_occurrence(date(2024, 2, 29)))
        assert len(client.expenses.rows) == 2

    @pytest.mark.asyncio
    async def test_retry_after_lost_append_response(self, monkeypatch):
        """Test that a retried append finds its own row and succeeds once."""
        monkeypatch.setattr(GoogleSheetsExpenseStorage.create.retry, "wait", wait_none())
        client = FakeSheetsClient()
        client.expenses = TimeoutAfterAppendWorksheet(EXPENSE_COLUMNS)
        storage = GoogleSheetsExpenseStorage(client)
        occurrence = anchor_expense().spawn_occurrence(date(2024, 2, 29))

        stored = await storage.create(occurrence)

        assert stored == occurrence
        assert client.expenses.append_calls == 1
        assert len(client.expenses.rows) == 2

    @pytest.mark.asyncio
    async def test_same_id_with_other_content_rejected(self):
        """Test that an id reused for a different expense is still a duplicate."""
        client = FakeSheetsClient()
        storage = GoogleSheetsExpenseStorage(client)
        expense = await storage.create(anchor_expense())

        with pytest.raises(DuplicateError):
            await storage.create(expense.model_copy(update={"amount": Decimal("900")}))
        assert len(client.expenses.rows) == 2

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self):
        """Test that rows that don't parse are ignored when listing."""
        client = FakeSheetsClient()
        storage = GoogleSheetsExpenseStorage(client)
        await storage.create(anchor_expense())
        client.expenses.rows.append(["not-a-uuid", "", "2024-01-01", "1"])
        client.expenses.rows.append([str(uuid4()), "2024-01-01T00:00:00", "2024-01-01", "abc"])
        client.expenses.rows.append([])

        assert len(await storage.list_by_filter()) == 1

    @pytest.mark.asyncio
    async def test_delete(self):
        """Test deleting an expense row."""
        client = FakeSheetsClient()
        storage = GoogleSheetsExpenseStorage(client)
        expense = await storage.create(anchor_expense())
        assert await storage.delete(expense.id) is True
        assert await storage.delete(expense.id) is False
        assert client.expenses.rows == [EXPENSE_COLUMNS]

    @pytest.mark.asyncio
    async def test_category_save_updates_in_place(self):
        """Test that saving an existing category rewrites its row."""
        client = FakeSheetsClient()
        storage = GoogleSheetsCategoryStorage(client)
        category = await storage.save_category(Category(name="Food", budget_limit=Decimal("200")))
        await storage.save_category(category.model_copy(update={"budget_limit": Decimal("250")}))

        assert len(client.categories.rows) == 2
        loaded = await storage.get_category(category.id)
        assert loaded.budget_limit == Decimal("250")

    @pytest.mark.asyncio
    async def test_audit_append_and_query(self):
        """Test audit rows and lookups."""
        client = FakeSheetsClient()
        storage = GoogleSheetsAuditStorage(client)
        correlation_id = uuid4()
        event = AuditEventBuilder.recurrence_run_completed(
            anchors_processed=1,
            created=2,
            skipped=0,
            correlation_id=correlation_id,
        )

        assert await storage.append_event(event) is True
        events = await storage.get_events_by_correlation_id(correlation_id)
        assert len(events) == 1
        assert events[0].event_id == event.event_id
        assert events[0].details == event.details


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
