"""
Audit Models for the GULL Ledger

Every entry mutation, balance movement, undo/redo and failure is logged.
This provides:
1. Traceability of who spent what, and when
2. Debugging information when a paired mutation goes wrong
3. A way to reconstruct history beyond the in-memory undo stack

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each ledger operation has its own event type.
    """
    # Entries
    ENTRY_ADDED = "entry_added"
    ENTRIES_ADDED = "entries_added"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    ENTRIES_DELETED = "entries_deleted"
    DEDUCTIONS_APPLIED = "deductions_applied"

    # Validation
    VALIDATION_FAILED = "validation_failed"
    BULK_PARSE_FAILED = "bulk_parse_failed"

    # Balance
    BALANCE_DEBITED = "balance_debited"
    BALANCE_CREDITED = "balance_credited"
    BALANCE_TOPPED_UP = "balance_topped_up"
    INSUFFICIENT_BALANCE = "insufficient_balance"

    # History
    ACTION_UNDONE = "action_undone"
    ACTION_REDONE = "action_redone"

    # System events
    BALANCE_SYNC_FAILURE = "balance_sync_failure"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of the audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - who and where
    project_id: Optional[str] = None
    user_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'entry', 'balance', 'action')"
    )
    entity_id: Optional[str] = None

    # Correlation - all events of one command share an id
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": _jsonable(self.details),
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, project_id, user_id,
         entity_type, entity_id, correlation_id, description, details_json,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.project_id or "",
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(_jsonable(self.details)) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entry_added(project_id, user_id, entry, correlation_id)
        event = AuditEventBuilder.balance_debited(user_id, amount, balance, correlation_id)
    """

    @staticmethod
    def entry_added(
        project_id: str,
        user_id: str,
        entry_id: str,
        number: str,
        net: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_ADDED,
            project_id=project_id,
            user_id=user_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry added for {number}: PKR {net}",
            details={"number": number, "net": net},
            is_user_action=True,
        )

    @staticmethod
    def entries_added(
        project_id: str,
        user_id: str,
        numbers: list[str],
        total: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRIES_ADDED,
            project_id=project_id,
            user_id=user_id,
            entity_type="entry",
            correlation_id=correlation_id,
            description=f"{len(numbers)} entries added: PKR {total}",
            details={"numbers": numbers, "total": total},
            is_user_action=True,
        )

    @staticmethod
    def entry_updated(
        project_id: str,
        user_id: str,
        entry_id: str,
        number: str,
        delta: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_UPDATED,
            project_id=project_id,
            user_id=user_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry for {number} edited (net change PKR {delta})",
            details={"number": number, "delta": delta},
            is_user_action=True,
        )

    @staticmethod
    def entries_deleted(
        project_id: str,
        user_id: str,
        entry_ids: list[str],
        missing_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        single = len(entry_ids) == 1 and not missing_ids
        return AuditEvent(
            event_type=(
                AuditEventType.ENTRY_DELETED if single
                else AuditEventType.ENTRIES_DELETED
            ),
            severity=AuditSeverity.WARNING if missing_ids else AuditSeverity.INFO,
            project_id=project_id,
            user_id=user_id,
            entity_type="entry",
            entity_id=entry_ids[0] if single else None,
            correlation_id=correlation_id,
            description=(
                f"Deleted {len(entry_ids)} entries"
                + (f", {len(missing_ids)} not found" if missing_ids else "")
            ),
            details={"entry_ids": entry_ids, "missing_ids": missing_ids},
            is_user_action=True,
        )

    @staticmethod
    def deductions_applied(
        project_id: str,
        user_id: str,
        numbers: list[str],
        first_total: Decimal,
        second_total: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEDUCTIONS_APPLIED,
            project_id=project_id,
            user_id=user_id,
            entity_type="entry",
            correlation_id=correlation_id,
            description=f"Applied filter deductions to {len(numbers)} number(s)",
            details={
                "numbers": numbers,
                "first_total": first_total,
                "second_total": second_total,
            },
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        project_id: str,
        user_id: str,
        error_type: str,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            project_id=project_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Entry rejected: {error_type}",
            error_code=error_type,
            error_message=message,
        )

    @staticmethod
    def bulk_parse_failed(
        project_id: str,
        user_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BULK_PARSE_FAILED,
            severity=AuditSeverity.WARNING,
            project_id=project_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Bulk entry rejected with {len(issues)} unparseable line(s)",
            details={"issues": issues},
        )

    @staticmethod
    def balance_changed(
        user_id: str,
        kind: str,
        amount: Decimal,
        balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = {
            "debit": AuditEventType.BALANCE_DEBITED,
            "credit": AuditEventType.BALANCE_CREDITED,
            "top_up": AuditEventType.BALANCE_TOPPED_UP,
        }[kind]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="balance",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Balance {kind.replace('_', ' ')}: PKR {amount} (now PKR {balance})",
            details={"amount": amount, "balance": balance},
        )

    @staticmethod
    def insufficient_balance(
        project_id: str,
        user_id: str,
        required: Decimal,
        available: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSUFFICIENT_BALANCE,
            severity=AuditSeverity.WARNING,
            project_id=project_id,
            user_id=user_id,
            entity_type="balance",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Insufficient balance: needed PKR {required}, had PKR {available}",
            details={"required": required, "available": available},
            is_user_action=True,
        )

    @staticmethod
    def action_reverted(
        project_id: str,
        user_id: str,
        action_id: str,
        action_kind: str,
        redo: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACTION_REDONE if redo else AuditEventType.ACTION_UNDONE,
            project_id=project_id,
            user_id=user_id,
            entity_type="action",
            entity_id=action_id,
            correlation_id=correlation_id,
            description=f"{'Redo' if redo else 'Undo'}: {action_kind}",
            details={"action_kind": action_kind},
            is_user_action=True,
        )

    @staticmethod
    def balance_sync_failure(
        project_id: str,
        user_id: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_SYNC_FAILURE,
            severity=AuditSeverity.CRITICAL,
            project_id=project_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Entry store and balance could not be kept in sync",
            error_message=error_message,
            details=details or {},
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        project_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            project_id=project_id,
            correlation_id=correlation_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )
