"""
Audit Logger

DESIGN DECISION: Every write and every reported settlement is logged.
This provides:
1. Traceability of generated occurrences back to their anchors
2. Debugging capability when storage misbehaves
3. A history users can inspect

The audit logger:
- Is async to match the storage interfaces
- Gracefully handles failures (a failed audit write doesn't fail the
  operation it describes)
- Supports correlation IDs to trace related events
"""

from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_ledger.models.audit import AuditEvent, AuditEventBuilder
from expense_ledger.services.storage import AuditStorageInterface


# JSON lines on the stdlib logging handlers
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Records ledger events.

    Every event goes to the structlog output; when an audit store is
    given, it is appended there as well so users can review history.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Emit one event.

        Returns False only when the audit store rejected the write; the
        failure is logged and never raised to the caller.
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_expense_created(
        self,
        expense_id: UUID,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_created(
            expense_id=expense_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_occurrence_generated(
        self,
        occurrence_id: UUID,
        anchor_id: UUID,
        occurrence_date: date,
        correlation_id: UUID,
    ) -> None:
        """Log a stored recurring occurrence."""
        await self.log(AuditEventBuilder.occurrence_generated(
            occurrence_id=occurrence_id,
            anchor_id=anchor_id,
            occurrence_date=occurrence_date,
            correlation_id=correlation_id,
        ))

    async def log_occurrence_skipped(
        self,
        anchor_id: UUID,
        occurrence_date: date,
        correlation_id: UUID,
    ) -> None:
        """Log an occurrence another run already stored."""
        await self.log(AuditEventBuilder.occurrence_skipped(
            anchor_id=anchor_id,
            occurrence_date=occurrence_date,
            correlation_id=correlation_id,
        ))

    async def log_recurrence_run(
        self,
        anchors_processed: int,
        created: int,
        skipped: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recurrence_run_completed(
            anchors_processed=anchors_processed,
            created=created,
            skipped=skipped,
            correlation_id=correlation_id,
        ))

    async def log_participant_added(
        self,
        participant_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.participant_added(
            participant_id=participant_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_participant_removed(
        self,
        participant_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.participant_removed(
            participant_id=participant_id,
            correlation_id=correlation_id,
        ))

    async def log_split_expense_added(
        self,
        group_id: str,
        expense_id: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.split_expense_added(
            group_id=group_id,
            expense_id=expense_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_settlement_computed(
        self,
        group_id: Optional[str],
        transfer_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.settlement_computed(
            group_id=group_id,
            transfer_count=transfer_count,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a storage failure that is about to be re-raised."""
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """New id shared by every event of one flow run."""
    return uuid4()
