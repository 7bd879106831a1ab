"""
Google Sheets Expense Store

DESIGN DECISION: The shared ledger is a spreadsheet. The people sharing
it can read and correct rows by hand, and there is no server to run.

TRADEOFFS:
- Every read fetches the whole worksheet; a household ledger stays small
- No transactions or unique indexes. The id and (anchor_id, expense_date)
  checks scan the sheet and then append, and the two steps are not atomic.
  Two processes generating against the same spreadsheet at once can both
  append the same occurrence. Uniqueness holds only for runs in one process
  sharing one store, together with the generation flow skipping dates it
  already sees stored. Run one generator per spreadsheet.
- A stored row with the same id and content as a new expense is returned
  as that expense, so an append retried after a lost response succeeds
- Filtering happens here, over the fetched rows

Transient API failures are retried here, in the collaborator, with
tenacity. Constraint violations are never retried.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_ledger.config import get_settings
from expense_ledger.config.settings import GoogleSheetsSettings
from expense_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from expense_ledger.models.expense import Category, Expense, RecurrencePattern
from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    CategoryStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    StorageError,
    matches_filter,
)


# Column mappings for Expenses sheet
EXPENSE_COLUMNS = [
    "id",
    "created_at",
    "expense_date",
    "amount",
    "description",
    "category",
    "is_recurring",
    "recurrence_pattern",
    "anchor_id",
]

CATEGORY_COLUMNS = [
    "id",
    "name",
    "icon",
    "color",
    "budget_limit",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((ConflictError, NotFoundError)),
    reraise=True,
)


def _safe_getter(row: list):
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Authorised handle on the ledger spreadsheet.

    Handles authentication and creates missing worksheets with headers.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Authorise with the service account key. The handle is cached.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Open the ledger spreadsheet by key (cached)."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_expenses_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.expenses_sheet_name, EXPENSE_COLUMNS, 1000)

    def get_categories_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.categories_sheet_name, CATEGORY_COLUMNS, 100)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self._get_or_create(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


class GoogleSheetsExpenseStorage(ExpenseStorageInterface):
    """
    Google Sheets implementation of expense storage.

    One expense per row. Malformed rows are skipped when listing.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _expense_to_row(self, expense: Expense) -> list:
        """Convert an Expense to a spreadsheet row."""
        return [
            str(expense.id),
            expense.created_at.isoformat(),
            expense.expense_date.isoformat(),
            str(expense.amount),
            expense.description,
            expense.category or "",
            str(expense.is_recurring),
            expense.recurrence_pattern.value,
            str(expense.anchor_id) if expense.anchor_id else "",
        ]

    def _row_to_expense(self, row: list) -> Expense:
        """Convert a spreadsheet row to an Expense."""
        safe_get = _safe_getter(row)
        return Expense(
            id=UUID(safe_get(0)),
            created_at=datetime.fromisoformat(safe_get(1)),
            expense_date=date.fromisoformat(safe_get(2)),
            amount=Decimal(safe_get(3)),
            description=safe_get(4),
            category=safe_get(5) or None,
            is_recurring=safe_get(6).lower() == "true",
            recurrence_pattern=RecurrencePattern(safe_get(7, RecurrencePattern.NONE.value)),
            anchor_id=UUID(safe_get(8)) if safe_get(8) else None,
        )

    def _read_all(self) -> list[Expense]:
        sheet = self._client.get_expenses_sheet()
        expenses = []
        for row in sheet.get_all_values()[1:]:  # Skip header
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                expenses.append(self._row_to_expense(row))
            except (ValueError, ArithmeticError):
                continue  # Skip malformed rows
        return expenses

    @sheets_retry
    async def create(self, expense: Expense) -> Expense:
        """
        Append an expense after checking id and occurrence uniqueness.

        A row with the same id and the same content counts as this expense
        already stored: an append whose response was lost is retried, and
        the retry finds the row the first attempt wrote.
        """
        new_row = self._expense_to_row(expense)
        try:
            for existing in self._read_all():
                if existing.id == expense.id:
                    if self._expense_to_row(existing) == new_row:
                        return existing
                    raise DuplicateError(f"Expense already exists: {expense.id}")
                if (
                    expense.anchor_id is not None
                    and existing.anchor_id == expense.anchor_id
                    and existing.expense_date == expense.expense_date
                ):
                    raise DuplicateError(
                        f"Occurrence of {expense.anchor_id} on "
                        f"{expense.expense_date.isoformat()} already exists"
                    )
            sheet = self._client.get_expenses_sheet()
            sheet.append_row(new_row, value_input_option="RAW")
            return expense
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")

    @sheets_retry
    async def get_by_id(self, expense_id: UUID) -> Optional[Expense]:
        try:
            for expense in self._read_all():
                if expense.id == expense_id:
                    return expense
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")

    @sheets_retry
    async def delete(self, expense_id: UUID) -> bool:
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()

            for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
                if row and row[0] == str(expense_id):
                    sheet.delete_rows(idx)
                    return True

            return False
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete expense: {e}")

    @sheets_retry
    async def list_by_filter(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category: Optional[str] = None,
        search_text: Optional[str] = None,
        limit: Optional[int] = 1000,
        offset: int = 0,
    ) -> list[Expense]:
        try:
            expenses = [
                e for e in self._read_all()
                if matches_filter(e, date_from, date_to, category, search_text)
            ]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

        expenses.sort(key=lambda e: e.expense_date, reverse=True)
        if limit is None:
            return expenses[offset:]
        return expenses[offset:offset + limit]

    @sheets_retry
    async def list_recurring(self) -> list[Expense]:
        try:
            recurring = [e for e in self._read_all() if e.is_recurring]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list recurring expenses: {e}")
        recurring.sort(key=lambda e: e.expense_date, reverse=True)
        return recurring

    @sheets_retry
    async def list_occurrences(self, anchor_id: UUID) -> list[Expense]:
        try:
            occurrences = [e for e in self._read_all() if e.anchor_id == anchor_id]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list occurrences: {e}")
        occurrences.sort(key=lambda e: e.expense_date)
        return occurrences


class GoogleSheetsCategoryStorage(CategoryStorageInterface):
    """Categories as rows of their own worksheet."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _category_to_row(self, category: Category) -> list:
        return [
            category.id,
            category.name,
            category.icon or "",
            category.color or "",
            str(category.budget_limit) if category.budget_limit is not None else "",
        ]

    def _row_to_category(self, row: list) -> Category:
        safe_get = _safe_getter(row)
        return Category(
            id=safe_get(0),
            name=safe_get(1),
            icon=safe_get(2) or None,
            color=safe_get(3) or None,
            budget_limit=Decimal(safe_get(4)) if safe_get(4) else None,
        )

    @sheets_retry
    async def list_categories(self) -> list[Category]:
        try:
            sheet = self._client.get_categories_sheet()
            categories = []
            for row in sheet.get_all_values()[1:]:
                if not row or not row[0]:
                    continue
                try:
                    categories.append(self._row_to_category(row))
                except (ValueError, ArithmeticError):
                    continue
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list categories: {e}")
        return sorted(categories, key=lambda c: c.name.lower())

    async def get_category(self, category_id: str) -> Optional[Category]:
        for category in await self.list_categories():
            if category.id == category_id:
                return category
        return None

    @sheets_retry
    async def save_category(self, category: Category) -> Category:
        try:
            sheet = self._client.get_categories_sheet()
            all_rows = sheet.get_all_values()
            new_row = self._category_to_row(category)

            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == category.id:
                    for col_idx, value in enumerate(new_row, start=1):
                        sheet.update_cell(idx, col_idx, value)
                    return category

            sheet.append_row(new_row, value_input_option="RAW")
            return category
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save category: {e}")

    @sheets_retry
    async def delete_category(self, category_id: str) -> bool:
        try:
            sheet = self._client.get_categories_sheet()
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
                if row and row[0] == category_id:
                    sheet.delete_rows(idx)
                    return True
            return False
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete category: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Audit events as rows of their own worksheet. Rows are only ever appended.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Inverse of AuditEvent.to_sheets_row()."""
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _read_events(self, predicate) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0] or not predicate(row):
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    @sheets_retry
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = self._read_events(
            lambda row: len(row) > 6 and row[6] == str(correlation_id)
        )
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = self._read_events(
            lambda row: len(row) > 5 and row[4] == entity_type and row[5] == entity_id
        )
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._read_events(lambda row: True)
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
