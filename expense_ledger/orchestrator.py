"""
Main Orchestrator for Expense Ledger

This module ties storage, engines and audit logging together and
defines the end-to-end flows for:
1. Recurring expenses (load anchors -> project -> persist occurrences)
2. Settlement (load roster + group -> balances -> transfers)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Engines only ever see in-memory snapshots
- Storage errors are audited and re-raised, never swallowed or retried
- Every write is audited

Occurrence generation is idempotent. Dates already stored for an anchor
are skipped by the engine, and a DuplicateError from a concurrent run
that stored the same date first is recorded as skipped.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.config import get_settings
from expense_ledger.config.settings import LedgerSettings, Settings
from expense_ledger.engines.recurrence import (
    generate_due_occurrences,
    upcoming_within,
)
from expense_ledger.engines.settlement import (
    UnknownParticipantError,
    compute_balances,
    compute_settlements,
)
from expense_ledger.models.expense import (
    Expense,
    GenerationSummary,
    UpcomingOccurrence,
)
from expense_ledger.models.split import (
    Participant,
    SettlementReport,
    SplitExpense,
    SplitGroup,
)
from expense_ledger.reports import ReportBuilder
from expense_ledger.services.storage import (
    AuditStorageInterface,
    CategoryStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    InMemoryAuditStorage,
    InMemoryCategoryStorage,
    InMemoryExpenseStorage,
    JsonFileSplitStorage,
    NotFoundError,
    ParticipantStorageInterface,
    SplitGroupStorageInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


class RecurringExpenseFlow:
    """
    Orchestrates recurring expenses.

    Flow (generate_due):
    1. Load recurring anchors
    2. For each anchor, load the occurrence dates already stored
    3. Project the missing due occurrences (pure engine call)
    4. Persist each one; a concurrent duplicate is skipped, not an error

    The anchor records themselves are never modified.
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = expense_storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().ledger

    async def _storage_failed(
        self,
        operation: str,
        error: StorageError,
        correlation_id: Optional[UUID],
    ) -> None:
        logger.error("storage_failed", operation=operation, error=str(error))
        if self._audit_logger:
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(error),
                correlation_id=correlation_id,
            )

    async def add_expense(
        self,
        expense: Expense,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """Store a new expense (one-off or recurring anchor)."""
        try:
            stored = await self._storage.create(expense)
        except StorageError as e:
            await self._storage_failed("create_expense", e, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_expense_created(
                expense_id=stored.id,
                amount=str(stored.amount),
                correlation_id=correlation_id,
            )
        return stored

    async def generate_due(
        self,
        now: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> GenerationSummary:
        """
        Backfill every due occurrence of every recurring expense.

        Safe to run repeatedly and concurrently: the second run over the
        same data creates nothing.

        Raises:
            StorageError: Any storage failure other than a duplicate insert
        """
        now = now or date.today()
        correlation_id = correlation_id or create_correlation_id()

        try:
            anchors = await self._storage.list_recurring()
        except StorageError as e:
            await self._storage_failed("list_recurring", e, correlation_id)
            raise

        summary = GenerationSummary(anchors_processed=len(anchors))

        for anchor in anchors:
            try:
                stored = await self._storage.list_occurrences(anchor.id)
            except StorageError as e:
                await self._storage_failed("list_occurrences", e, correlation_id)
                raise

            due = generate_due_occurrences(
                anchor,
                now,
                known_dates={o.expense_date for o in stored},
            )

            for occurrence in due:
                try:
                    created = await self._storage.create(occurrence)
                except DuplicateError:
                    summary.skipped_dates.append(occurrence.expense_date)
                    if self._audit_logger:
                        await self._audit_logger.log_occurrence_skipped(
                            anchor_id=anchor.id,
                            occurrence_date=occurrence.expense_date,
                            correlation_id=correlation_id,
                        )
                    continue
                except StorageError as e:
                    await self._storage_failed("create_occurrence", e, correlation_id)
                    raise

                summary.created.append(created)
                if self._audit_logger:
                    await self._audit_logger.log_occurrence_generated(
                        occurrence_id=created.id,
                        anchor_id=anchor.id,
                        occurrence_date=created.expense_date,
                        correlation_id=correlation_id,
                    )

        logger.info(
            "recurrence_run_completed",
            anchors=summary.anchors_processed,
            created=summary.count,
            skipped=len(summary.skipped_dates),
        )
        if self._audit_logger:
            await self._audit_logger.log_recurrence_run(
                anchors_processed=summary.anchors_processed,
                created=summary.count,
                skipped=len(summary.skipped_dates),
                correlation_id=correlation_id,
            )
        return summary

    async def upcoming(
        self,
        horizon_days: Optional[int] = None,
        now: Optional[date] = None,
    ) -> list[UpcomingOccurrence]:
        """Recurring expenses coming up within the horizon, soonest first."""
        if horizon_days is None:
            horizon_days = self._settings.upcoming_horizon_days
        now = now or date.today()

        try:
            anchors = await self._storage.list_recurring()
        except StorageError as e:
            await self._storage_failed("list_recurring", e, None)
            raise

        return upcoming_within(anchors, horizon_days, now)


class SettlementFlow:
    """
    Orchestrates shared expenses and settling up.

    The roster is shared by all groups. Groups are settled one at a time
    or all together.
    """

    def __init__(
        self,
        participant_storage: ParticipantStorageInterface,
        group_storage: SplitGroupStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._participants = participant_storage
        self._groups = group_storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().ledger

    @property
    def epsilon(self) -> Decimal:
        return self._settings.settlement_epsilon

    async def add_participant(self, name: str) -> Participant:
        participant = await self._participants.add_participant(Participant(name=name))
        if self._audit_logger:
            await self._audit_logger.log_participant_added(
                participant_id=participant.id,
                name=participant.name,
            )
        return participant

    async def remove_participant(self, participant_id: str) -> bool:
        """
        Remove a participant nobody's expenses refer to.

        Raises:
            ParticipantInUseError: If a split expense still references them
        """
        removed = await self._participants.remove_participant(participant_id)
        if removed and self._audit_logger:
            await self._audit_logger.log_participant_removed(participant_id=participant_id)
        return removed

    async def create_group(self, name: str, group_date: Optional[date] = None) -> SplitGroup:
        group = SplitGroup(name=name, group_date=group_date or date.today())
        return await self._groups.save_group(group)

    async def add_expense(self, group_id: str, expense: SplitExpense) -> SplitExpense:
        """
        Add a split expense to a group.

        Raises:
            UnknownParticipantError: Payer or a member is not on the roster
            NotFoundError: If the group doesn't exist
        """
        roster = {p.id for p in await self._participants.list_participants()}
        unknown = [pid for pid in (expense.paid_by, *expense.split_among) if pid not in roster]
        if unknown:
            raise UnknownParticipantError(f"Unknown participant(s): {', '.join(unknown)}")

        stored = await self._groups.add_expense(group_id, expense)
        if self._audit_logger:
            await self._audit_logger.log_split_expense_added(
                group_id=group_id,
                expense_id=stored.id,
                amount=str(stored.amount),
            )
        return stored

    async def _report(
        self,
        group_id: Optional[str],
        expenses: list[SplitExpense],
    ) -> SettlementReport:
        participants = await self._participants.list_participants()
        report = SettlementReport(
            group_id=group_id,
            balances=compute_balances(expenses, participants),
            transfers=compute_settlements(expenses, participants, self.epsilon),
        )
        logger.info(
            "settlement_computed",
            group_id=group_id,
            expenses=len(expenses),
            transfers=len(report.transfers),
        )
        if self._audit_logger:
            await self._audit_logger.log_settlement_computed(
                group_id=group_id,
                transfer_count=len(report.transfers),
            )
        return report

    async def settle_group(self, group_id: str) -> SettlementReport:
        """
        Settle one group.

        Raises:
            NotFoundError: If the group doesn't exist
            UnknownParticipantError: If an expense names someone off the roster
        """
        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Split group not found: {group_id}")
        return await self._report(group.id, group.expenses)

    async def settle_all(self) -> SettlementReport:
        """Settle every group at once, netting debts across groups."""
        expenses = [e for g in await self._groups.list_groups() for e in g.expenses]
        return await self._report(None, expenses)


def create_app_components(
    settings: Optional[Settings] = None,
) -> tuple[RecurringExpenseFlow, SettlementFlow, ReportBuilder]:
    """
    Factory function to create all application components.

    Storage is chosen by LedgerSettings.storage_backend. If Google Sheets
    is selected but not configured, we fall back to in-memory storage and
    say so in the log.

    Returns:
        (recurring_flow, settlement_flow, report_builder)
    """
    settings = settings or get_settings()
    ledger_settings = settings.ledger

    expense_storage: ExpenseStorageInterface
    category_storage: CategoryStorageInterface
    audit_storage: AuditStorageInterface

    expense_storage = InMemoryExpenseStorage()
    category_storage = InMemoryCategoryStorage()
    audit_storage = InMemoryAuditStorage()

    if ledger_settings.storage_backend == "google_sheets":
        try:
            from expense_ledger.services.storage.google_sheets import (
                GoogleSheetsAuditStorage,
                GoogleSheetsCategoryStorage,
                GoogleSheetsClient,
                GoogleSheetsExpenseStorage,
            )

            sheets_client = GoogleSheetsClient(settings.google_sheets)
            expense_storage = GoogleSheetsExpenseStorage(sheets_client)
            category_storage = GoogleSheetsCategoryStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", backend="google_sheets", error=str(e))

    audit_logger = AuditLogger(audit_storage)
    split_storage = JsonFileSplitStorage(ledger_settings.split_data_path)

    recurring_flow = RecurringExpenseFlow(
        expense_storage=expense_storage,
        audit_logger=audit_logger,
        settings=ledger_settings,
    )
    settlement_flow = SettlementFlow(
        participant_storage=split_storage,
        group_storage=split_storage,
        audit_logger=audit_logger,
        settings=ledger_settings,
    )
    report_builder = ReportBuilder(expense_storage, category_storage)

    return recurring_flow, settlement_flow, report_builder
