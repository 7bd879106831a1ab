"""
Audit Models for Expense Ledger

Every action that changes stored data, and every settlement the system
reports, is recorded as an audit event. This gives:
1. Traceability of generated occurrences back to their anchors
2. Debugging information when storage misbehaves
3. A history users can inspect

DESIGN DECISION: Events are appended and never edited; a correction is a
new event.
"""

import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Expenses
    EXPENSE_CREATED = "expense_created"
    EXPENSE_DELETED = "expense_deleted"

    # Recurrence
    OCCURRENCE_GENERATED = "occurrence_generated"
    OCCURRENCE_SKIPPED = "occurrence_skipped"
    RECURRENCE_RUN_COMPLETED = "recurrence_run_completed"

    # Shared expenses
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"
    SPLIT_EXPENSE_ADDED = "split_expense_added"
    SETTLEMENT_COMPUTED = "settlement_computed"

    # System events
    STORAGE_ERROR = "storage_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """How loudly an event is logged."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Entity ids are stored as strings because split-side entities use
    opaque ids while stored expenses use UUIDs.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Event id"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC time the event was built"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'group', 'participant')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Id of that entity, as a string"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one generation run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="One-line summary shown to users"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="JSON-serialisable extras, e.g. amounts and dates"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="True when a person did this, False for scheduled runs"
    )

    def to_log_dict(self) -> dict:
        """Keyword arguments for a structlog call."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """One spreadsheet row, in the audit worksheet's column order."""
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Factories for the events the flows emit, so wording and details stay uniform.

    Usage:
        event = AuditEventBuilder.expense_created(expense_id, amount, correlation_id)
        event = AuditEventBuilder.settlement_computed(group_id, 3, correlation_id)
    """

    @staticmethod
    def expense_created(
        expense_id: UUID,
        amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"Expense created: {amount}",
            details={"amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def occurrence_generated(
        occurrence_id: UUID,
        anchor_id: UUID,
        occurrence_date: date,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_GENERATED,
            entity_type="expense",
            entity_id=str(occurrence_id),
            correlation_id=correlation_id,
            description=f"Recurring occurrence generated for {occurrence_date.isoformat()}",
            details={
                "anchor_id": str(anchor_id),
                "occurrence_date": occurrence_date.isoformat(),
            },
        )

    @staticmethod
    def occurrence_skipped(
        anchor_id: UUID,
        occurrence_date: date,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=str(anchor_id),
            correlation_id=correlation_id,
            description=f"Occurrence for {occurrence_date.isoformat()} already stored",
            details={"occurrence_date": occurrence_date.isoformat()},
        )

    @staticmethod
    def recurrence_run_completed(
        anchors_processed: int,
        created: int,
        skipped: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCE_RUN_COMPLETED,
            correlation_id=correlation_id,
            description=f"Recurrence run created {created} occurrence(s)",
            details={
                "anchors_processed": anchors_processed,
                "created": created,
                "skipped": skipped,
            },
        )

    @staticmethod
    def participant_added(
        participant_id: str,
        name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTICIPANT_ADDED,
            entity_type="participant",
            entity_id=participant_id,
            correlation_id=correlation_id,
            description=f"Participant added: {name}",
            is_user_action=True,
        )

    @staticmethod
    def participant_removed(
        participant_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTICIPANT_REMOVED,
            entity_type="participant",
            entity_id=participant_id,
            correlation_id=correlation_id,
            description="Participant removed",
            is_user_action=True,
        )

    @staticmethod
    def split_expense_added(
        group_id: str,
        expense_id: str,
        amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_EXPENSE_ADDED,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"Split expense added: {amount}",
            details={
                "expense_id": expense_id,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def settlement_computed(
        group_id: Optional[str],
        transfer_count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_COMPUTED,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"Settlement computed with {transfer_count} transfer(s)",
            details={"transfer_count": transfer_count},
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
