"""
Data Models Package

This package contains all Pydantic models used by the GULL ledger.
All data flowing through the system must conform to these schemas.
"""

from gull.models.entry import (
    BalanceAccount,
    BalanceChange,
    BalanceChangeKind,
    BulkPreview,
    DeductionResult,
    Entry,
    EntryDraft,
    EntryKind,
    EntryPatch,
    Extremes,
    FilterCriterion,
    FilterOperator,
    NumberSummary,
    ParsedLine,
    ParseIssue,
    ProjectStatistics,
    ValidationIssue,
    ValidationResult,
    parse_entry_number,
)
from gull.models.history import (
    ActionKind,
    ActionRecord,
    PositionedEntry,
)
from gull.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Entry models
    "BalanceAccount",
    "BalanceChange",
    "BalanceChangeKind",
    "BulkPreview",
    "DeductionResult",
    "Entry",
    "EntryDraft",
    "EntryKind",
    "EntryPatch",
    "Extremes",
    "FilterCriterion",
    "FilterOperator",
    "NumberSummary",
    "ParsedLine",
    "ParseIssue",
    "ProjectStatistics",
    "ValidationIssue",
    "ValidationResult",
    "parse_entry_number",
    # History models
    "ActionKind",
    "ActionRecord",
    "PositionedEntry",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
