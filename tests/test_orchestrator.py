"""
Flow tests for the orchestrator.

All flows run against in-memory storage.
"""

import asyncio
import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from expense_ledger.audit import AuditLogger
from expense_ledger.config.settings import LedgerSettings, Settings
from expense_ledger.engines.settlement import UnknownParticipantError
from expense_ledger.models.audit import AuditEventType
from expense_ledger.models.expense import Expense, RecurrencePattern
from expense_ledger.models.split import SplitExpense
from expense_ledger.orchestrator import (
    RecurringExpenseFlow,
    SettlementFlow,
    create_app_components,
)
from expense_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryExpenseStorage,
    InMemorySplitStorage,
    JsonFileSplitStorage,
    NotFoundError,
    ParticipantInUseError,
    StorageError,
)


class StaleSnapshotStorage(InMemoryExpenseStorage):
    """Reports no stored occurrences, like a run that read before another wrote."""

    async def list_occurrences(self, anchor_id):
        return []


class FailingCreateStorage(InMemoryExpenseStorage):
    """Fails every insert."""

    async def create(self, expense):
        raise StorageError("quota exceeded")


def rent_anchor() -> Expense:
    return Expense(
        amount=Decimal("899"),
        description="Rent",
        category="housing",
        expense_date=date(2024, 1, 31),
        is_recurring=True,
        recurrence_pattern=RecurrencePattern.MONTHLY,
    )


def recurring_flow(storage, audit_storage=None) -> RecurringExpenseFlow:
    audit_logger = AuditLogger(audit_storage) if audit_storage is not None else None
    return RecurringExpenseFlow(
        expense_storage=storage,
        audit_logger=audit_logger,
        settings=LedgerSettings(),
    )


class TestRecurringExpenseFlow:
    """Tests for RecurringExpenseFlow."""

    @pytest.mark.asyncio
    async def test_generate_due_backfills(self):
        """Test that a Jan 31 rent anchor gets three occurrences by Apr 30."""
        storage = InMemoryExpenseStorage()
        flow = recurring_flow(storage)
        anchor = await flow.add_expense(rent_anchor())

        summary = await flow.generate_due(now=date(2024, 4, 30))

        assert summary.count == 3
        assert summary.anchors_processed == 1
        assert summary.skipped_dates == []
        occurrences = await storage.list_occurrences(anchor.id)
        assert [o.expense_date for o in occurrences] == [
            date(2024, 2, 29),
            date(2024, 3, 31),
            date(2024, 4, 30),
        ]
        assert all(o.amount == Decimal("899") for o in occurrences)

    @pytest.mark.asyncio
    async def test_generate_due_is_idempotent(self):
        """Test that a second run creates nothing."""
        storage = InMemoryExpenseStorage()
        flow = recurring_flow(storage)
        await flow.add_expense(rent_anchor())

        first = await flow.generate_due(now=date(2024, 4, 15))
        second = await flow.generate_due(now=date(2024, 4, 15))

        assert first.count == 2
        assert second.count == 0
        assert second.message == "Generated 0 recurring expense(s)"
        assert len(await storage.list_by_filter()) == 3

    @pytest.mark.asyncio
    async def test_later_run_only_adds_new_dates(self):
        """Test that moving now forward only adds the newly due dates."""
        storage = InMemoryExpenseStorage()
        flow = recurring_flow(storage)
        await flow.add_expense(rent_anchor())

        await flow.generate_due(now=date(2024, 3, 1))
        later = await flow.generate_due(now=date(2024, 5, 31))

        assert [o.expense_date for o in later.created] == [
            date(2024, 3, 31),
            date(2024, 4, 30),
            date(2024, 5, 31),
        ]

    @pytest.mark.asyncio
    async def test_concurrent_runs_create_each_date_once(self):
        """Test concurrent runs over the same anchors."""
        storage = InMemoryExpenseStorage()
        flow = recurring_flow(storage)
        anchor = await flow.add_expense(rent_anchor())

        summaries = await asyncio.gather(
            flow.generate_due(now=date(2024, 4, 30)),
            flow.generate_due(now=date(2024, 4, 30)),
            flow.generate_due(now=date(2024, 4, 30)),
        )

        assert sum(s.count for s in summaries) == 3
        assert len(await storage.list_occurrences(anchor.id)) == 3

    @pytest.mark.asyncio
    async def test_duplicate_insert_recorded_as_skipped(self):
        """Test that a date stored by another run is skipped and audited."""
        storage = StaleSnapshotStorage()
        audit_storage = InMemoryAuditStorage()
        flow = recurring_flow(storage, audit_storage)
        await flow.add_expense(rent_anchor())

        await flow.generate_due(now=date(2024, 4, 15))
        correlation_id = uuid4()
        second = await flow.generate_due(now=date(2024, 4, 15), correlation_id=correlation_id)

        assert second.count == 0
        assert second.skipped_dates == [date(2024, 2, 29), date(2024, 3, 31)]
        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events].count(AuditEventType.OCCURRENCE_SKIPPED) == 2

    @pytest.mark.asyncio
    async def test_generation_is_audited(self):
        """Test that each occurrence and the run itself are audited."""
        storage = InMemoryExpenseStorage()
        audit_storage = InMemoryAuditStorage()
        flow = recurring_flow(storage, audit_storage)
        anchor = await flow.add_expense(rent_anchor())

        correlation_id = uuid4()
        await flow.generate_due(now=date(2024, 4, 30), correlation_id=correlation_id)

        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        types = [e.event_type for e in events]
        assert types.count(AuditEventType.OCCURRENCE_GENERATED) == 3
        assert types.count(AuditEventType.RECURRENCE_RUN_COMPLETED) == 1
        generated = [e for e in events if e.event_type == AuditEventType.OCCURRENCE_GENERATED]
        assert all(e.details["anchor_id"] == str(anchor.id) for e in generated)

        created = await audit_storage.get_events_by_entity("expense", str(anchor.id))
        assert created[0].event_type == AuditEventType.EXPENSE_CREATED

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self):
        """Test that an insert failure is audited and re-raised."""
        storage = FailingCreateStorage([rent_anchor()])
        audit_storage = InMemoryAuditStorage()
        flow = recurring_flow(storage, audit_storage)

        with pytest.raises(StorageError, match="quota exceeded"):
            await flow.generate_due(now=date(2024, 4, 30))

        events = await audit_storage.get_recent_events()
        assert any(e.event_type == AuditEventType.STORAGE_ERROR for e in events)

    @pytest.mark.asyncio
    async def test_one_off_expenses_generate_nothing(self):
        """Test that non-recurring expenses are left alone."""
        storage = InMemoryExpenseStorage()
        flow = recurring_flow(storage)
        await flow.add_expense(Expense(amount=Decimal("4"), expense_date=date(2024, 1, 1)))

        summary = await flow.generate_due(now=date(2024, 12, 31))

        assert summary.count == 0
        assert summary.anchors_processed == 0

    @pytest.mark.asyncio
    async def test_upcoming_uses_default_horizon(self):
        """Test upcoming occurrences with the configured horizon."""
        now = date(2024, 6, 20)
        weekly = Expense(
            amount=Decimal("15"),
            description="Cleaner",
            expense_date=now - timedelta(days=10),
            is_recurring=True,
            recurrence_pattern=RecurrencePattern.WEEKLY,
        )
        insurance = Expense(
            amount=Decimal("120"),
            description="Insurance",
            expense_date=date(2024, 5, 25),
            is_recurring=True,
            recurrence_pattern=RecurrencePattern.MONTHLY,
        )
        flow = recurring_flow(InMemoryExpenseStorage([weekly, insurance]))

        default_horizon = await flow.upcoming(now=now)
        short_horizon = await flow.upcoming(horizon_days=7, now=now)

        assert [u.days_until for u in default_horizon] == [4, 5]
        assert [u.expense.id for u in short_horizon] == [weekly.id, insurance.id]
        assert [u.expense.id for u in await flow.upcoming(horizon_days=4, now=now)] == [weekly.id]


class TestSettlementFlow:
    """Tests for SettlementFlow."""

    async def _flow_with_roster(self, audit_storage=None):
        storage = InMemorySplitStorage()
        flow = SettlementFlow(
            participant_storage=storage,
            group_storage=storage,
            audit_logger=AuditLogger(audit_storage) if audit_storage is not None else None,
            settings=LedgerSettings(),
        )
        alice = await flow.add_participant("Alice")
        bob = await flow.add_participant("Bob")
        carol = await flow.add_participant("Carol")
        return flow, alice, bob, carol

    @pytest.mark.asyncio
    async def test_settle_group(self):
        """Test the single-payer dinner settles to two transfers."""
        audit_storage = InMemoryAuditStorage()
        flow, alice, bob, carol = await self._flow_with_roster(audit_storage)
        group = await flow.create_group("Dinner", date(2024, 5, 1))
        await flow.add_expense(group.id, SplitExpense(
            description="Dinner",
            amount=Decimal("90"),
            paid_by=alice.id,
            split_among=[alice.id, bob.id, carol.id],
        ))

        report = await flow.settle_group(group.id)

        assert report.group_id == group.id
        assert report.describe([alice, bob, carol]) == [
            "Bob pays Alice 30.00",
            "Carol pays Alice 30.00",
        ]
        assert [b.net_amount for b in report.balances] == [
            Decimal("60"), Decimal("-30"), Decimal("-30"),
        ]
        events = await audit_storage.get_events_by_entity("group", group.id)
        types = {e.event_type for e in events}
        assert AuditEventType.SPLIT_EXPENSE_ADDED in types
        assert AuditEventType.SETTLEMENT_COMPUTED in types

    @pytest.mark.asyncio
    async def test_settle_all_nets_across_groups(self):
        """Test that debts in opposite directions across groups cancel."""
        flow, alice, bob, _ = await self._flow_with_roster()
        lunch = await flow.create_group("Lunch")
        taxi = await flow.create_group("Taxi")
        await flow.add_expense(lunch.id, SplitExpense(
            amount=Decimal("50"), paid_by=alice.id, split_among=[alice.id, bob.id],
        ))
        await flow.add_expense(taxi.id, SplitExpense(
            amount=Decimal("50"), paid_by=bob.id, split_among=[alice.id, bob.id],
        ))

        assert len((await flow.settle_group(lunch.id)).transfers) == 1
        overall = await flow.settle_all()
        assert overall.group_id is None
        assert overall.is_settled is True

    @pytest.mark.asyncio
    async def test_add_expense_unknown_participant(self):
        """Test that an expense naming someone off the roster is rejected."""
        flow, alice, _, _ = await self._flow_with_roster()
        group = await flow.create_group("Trip")
        with pytest.raises(UnknownParticipantError):
            await flow.add_expense(group.id, SplitExpense(
                amount=Decimal("10"), paid_by=alice.id, split_among=[alice.id, "stranger"],
            ))
        assert (await flow.settle_group(group.id)).transfers == []

    @pytest.mark.asyncio
    async def test_settle_missing_group(self):
        """Test settling a group that doesn't exist."""
        flow, _, _, _ = await self._flow_with_roster()
        with pytest.raises(NotFoundError):
            await flow.settle_group("missing")

    @pytest.mark.asyncio
    async def test_remove_participant(self):
        """Test removing free and referenced participants."""
        flow, alice, bob, carol = await self._flow_with_roster()
        group = await flow.create_group("Trip")
        await flow.add_expense(group.id, SplitExpense(
            amount=Decimal("10"), paid_by=alice.id, split_among=[bob.id],
        ))

        with pytest.raises(ParticipantInUseError):
            await flow.remove_participant(alice.id)
        assert await flow.remove_participant(carol.id) is True
        assert await flow.remove_participant(carol.id) is False

    def test_epsilon_from_settings(self):
        """Test that the settlement tolerance comes from settings."""
        storage = InMemorySplitStorage()
        flow = SettlementFlow(
            storage,
            storage,
            settings=LedgerSettings(settlement_epsilon=Decimal("0.05")),
        )
        assert flow.epsilon == Decimal("0.05")


class TestAppComponents:
    """Tests for create_app_components."""

    def test_unconfigured_sheets_falls_back_to_memory(self, monkeypatch, tmp_path):
        """Test the in-memory fallback when Google Sheets isn't configured."""
        monkeypatch.setenv("STORAGE_BACKEND", "google_sheets")
        monkeypatch.setenv("SPLIT_DATA_PATH", str(tmp_path / "split.json"))
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        recurring, settlement, reports = create_app_components(Settings())

        assert isinstance(recurring._storage, InMemoryExpenseStorage)
        assert isinstance(settlement._participants, JsonFileSplitStorage)
        assert settlement._participants.path == tmp_path / "split.json"
        assert reports is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
