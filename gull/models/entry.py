"""
Core Data Models for the GULL Ledger

These models define the strict schemas for every record the ledger
touches. They are designed to:
1. Make invalid numbers unrepresentable (numbers come from parse_entry_number)
2. Keep amounts exact (Decimal, never float arithmetic)
3. Serialize to the persisted camelCase JSON record shape
4. Stay immutable once created (history keeps exact before/after copies)

DESIGN DECISION: Entries are frozen. Every change produces a new record
via model_copy, so an undo can put back the exact previous version.
"""

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)

from gull.exceptions import InvalidNumberFormat, ParseError


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntryKind(str, Enum):
    """
    Number categories.

    Akra numbers are two digits ("00"-"99"), Ring numbers three ("000"-"999").
    Leading zeros are significant: "05" and "5" are different strings and
    only the first is a valid Akra number.
    """
    AKRA = "akra"
    RING = "ring"

    @property
    def width(self) -> int:
        return 2 if self is EntryKind.AKRA else 3

    @property
    def max_value(self) -> int:
        return 10 ** self.width - 1


class FilterOperator(str, Enum):
    """Comparison operators accepted by filter criteria."""
    GTE = ">="
    GT = ">"
    LTE = "<="
    LT = "<"
    EQ = "=="


_DIGITS = re.compile(r"^\d+$")


def parse_entry_number(raw: Any, kind: EntryKind) -> str:
    """
    Validate a number string against its entry kind.

    This is the only way a number enters the ledger. The raw value is
    never stripped, padded or truncated: "5" is rejected for Akra rather
    than silently becoming "05".

    Raises:
        InvalidNumberFormat: if width or range don't match the kind
    """
    kind = EntryKind(kind)
    expected = f"{kind.width}-digit (0{'0' * (kind.width - 1)}-{kind.max_value})"
    if not isinstance(raw, str):
        raise InvalidNumberFormat(
            str(raw), kind.value,
            f"Number must be a {expected} string, got {type(raw).__name__}",
        )
    if len(raw) != kind.width or not _DIGITS.match(raw) or not raw.isascii():
        raise InvalidNumberFormat(
            raw, kind.value,
            f"Invalid number {raw!r}. Expected {expected} format",
        )
    if not 0 <= int(raw) <= kind.max_value:
        raise InvalidNumberFormat(raw, kind.value)
    return raw


# =============================================================================
# ENTRY MODELS
# =============================================================================

class Entry(BaseModel):
    """
    The atomic ledger record.

    Field aliases give the persisted record shape:
    {id, projectId, number, entryType, first, second, notes?,
     isFilterDeduction?, createdAt, updatedAt}
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(
        default_factory=lambda: uuid4().hex,
        min_length=1,
        description="Opaque unique identifier"
    )
    project_id: str = Field(
        ...,
        alias="projectId",
        min_length=1,
        description="Owning project"
    )
    number: str = Field(
        ...,
        description="Fixed-width numeral string"
    )
    entry_kind: EntryKind = Field(
        ...,
        alias="entryType",
        description="Akra or Ring"
    )
    first: Decimal = Field(
        default=Decimal("0"),
        description="FIRST amount in PKR (signed)"
    )
    second: Decimal = Field(
        default=Decimal("0"),
        description="SECOND amount in PKR (signed)"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=500,
    )
    is_deduction: bool = Field(
        default=False,
        alias="isFilterDeduction",
        description="Produced by the filter & deduction engine"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        alias="createdAt",
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        alias="updatedAt",
    )

    @model_validator(mode='after')
    def validate_number(self) -> 'Entry':
        """Number width/range must match the entry kind."""
        parse_entry_number(self.number, self.entry_kind)
        return self

    @field_serializer("first", "second", when_used="json")
    def serialize_amount(self, value: Decimal) -> int | float:
        """Amounts are JSON numbers; integral amounts stay integers."""
        if value == value.to_integral_value():
            return int(value)
        return float(value)

    @property
    def net(self) -> Decimal:
        """Total cost of the entry (FIRST + SECOND)."""
        return self.first + self.second

    def to_record(self) -> dict:
        """Convert to the persisted camelCase JSON record."""
        record = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not self.is_deduction:
            record.pop("isFilterDeduction", None)
        return record

    @classmethod
    def from_record(cls, record: dict) -> 'Entry':
        """Build an entry from a persisted record."""
        return cls.model_validate(record)


class EntryDraft(BaseModel):
    """
    Caller-facing payload for a new entry.

    Nothing here is trusted: the transaction store validates the number,
    the amounts and the empty-entry rule before anything is written.
    """
    model_config = ConfigDict(str_strip_whitespace=False)

    number: str
    entry_kind: EntryKind
    first: Decimal = Decimal("0")
    second: Decimal = Decimal("0")
    notes: Optional[str] = Field(default=None, max_length=500)
    is_deduction: bool = False

    @property
    def net(self) -> Decimal:
        return self.first + self.second


class EntryPatch(BaseModel):
    """
    Changes to an existing entry.

    There is deliberately no number or entry_kind field: both are
    immutable keys after creation.
    """
    model_config = ConfigDict(extra="forbid")

    first: Optional[Decimal] = None
    second: Optional[Decimal] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# =============================================================================
# DERIVED VIEWS (never persisted)
# =============================================================================

class NumberSummary(BaseModel):
    """Aggregate of all entries sharing (project, kind, number)."""

    number: str
    first_total: Decimal = Decimal("0")
    second_total: Decimal = Decimal("0")
    entry_count: int = 0
    entries: list[Entry] = Field(default_factory=list)

    @property
    def combined_total(self) -> Decimal:
        return self.first_total + self.second_total


class Extremes(BaseModel):
    """Numbers with the highest and lowest positive combined totals."""
    highest: Optional[str] = None
    lowest: Optional[str] = None


class ProjectStatistics(BaseModel):
    """Headline figures for a project dashboard."""
    total_entries: int = 0
    akra_entries: int = 0
    ring_entries: int = 0
    first_total: Decimal = Decimal("0")
    second_total: Decimal = Decimal("0")
    unique_numbers: int = 0


# =============================================================================
# FILTER MODELS
# =============================================================================

class FilterCriterion(BaseModel):
    """
    One side of a filter rule: operator + threshold, and an optional cap.

    The excess of a total over the cap becomes the deduction amount.
    A missing cap behaves like 0 (no deduction).
    """
    operator: FilterOperator = FilterOperator.GTE
    threshold: Decimal = Decimal("0")
    cap: Optional[Decimal] = None

    @property
    def effective_cap(self) -> Decimal:
        return self.cap if self.cap is not None else Decimal("0")


class DeductionResult(BaseModel):
    """Computed deduction for one number."""
    number: str
    first_total: Decimal = Decimal("0")
    second_total: Decimal = Decimal("0")
    first_adjustment: Decimal = Decimal("0")
    second_adjustment: Decimal = Decimal("0")

    @property
    def is_noop(self) -> bool:
        return self.first_adjustment <= 0 and self.second_adjustment <= 0


# =============================================================================
# BALANCE MODELS
# =============================================================================

class BalanceChangeKind(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"
    NONE = "none"


class BalanceAccount(BaseModel):
    """Spendable balance of one user."""
    user_id: str
    balance: Decimal = Decimal("0")
    privileged: bool = False


class BalanceChange(BaseModel):
    """What a paired balance mutation actually did (used to compensate)."""
    user_id: str
    kind: BalanceChangeKind = BalanceChangeKind.NONE
    amount: Decimal = Decimal("0")
    balance: Optional[Decimal] = Field(
        default=None,
        description="Balance after the change; None for privileged users"
    )


# =============================================================================
# BULK TEXT ENTRY MODELS
# =============================================================================

class ParsedLine(BaseModel):
    """A bulk text line that parsed cleanly."""
    line_number: int = Field(ge=1)
    number: str
    first: Decimal
    second: Decimal

    @property
    def net(self) -> Decimal:
        return self.first + self.second


class ParseIssue(BaseModel):
    """A bulk text line that could not be used."""
    line_number: int = Field(ge=1)
    raw: str
    message: str


class BulkPreview(BaseModel):
    """
    Result of parsing bulk text.

    CRITICAL: A preview is never committed automatically. The caller
    shows it to the operator and commits it explicitly.
    """
    entry_kind: EntryKind
    entries: list[ParsedLine] = Field(default_factory=list)
    issues: list[ParseIssue] = Field(default_factory=list)

    @property
    def total_cost(self) -> Decimal:
        return sum((line.net for line in self.entries), Decimal("0"))

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)

    def raise_for_issues(self) -> None:
        """Raise ParseError listing every invalid line."""
        if self.issues:
            raise ParseError(self.issues)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found on an entry draft."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'invalid_number_format', 'empty_entry')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (number format, amounts, empty entries)
    Stage 2: Semantic validation (suspicious but acceptable values)
    """

    number: str
    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
