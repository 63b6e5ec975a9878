"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every failure is logged.
This provides:
1. Complete traceability of entries and balance movements
2. Debugging capability when a paired mutation fails
3. Operators can see the history of a project beyond the undo stack

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a broken audit sink never breaks the ledger)
- Supports correlation IDs to trace all events of one command
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from gull.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from gull.services.storage import AuditStorageInterface


# Configure structlog for local logging
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
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when configured (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("gull.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_balance_change(
        self,
        user_id: str,
        kind: str,
        amount,
        balance,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a debit, credit or top-up."""
        await self.log(AuditEventBuilder.balance_changed(
            user_id=user_id,
            kind=kind,
            amount=amount,
            balance=balance,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        project_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a persistence failure."""
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            project_id=project_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new command (e.g., adding an entry).
    Pass it through all subsequent operations.
    """
    return uuid4()
