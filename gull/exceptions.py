"""
Ledger Exceptions

Every failure the ledger core can report has its own exception type so the
caller can decide how to react:

- Validation errors are local and recoverable (re-prompt the operator).
- InsufficientBalance aborts the whole operation, bulk submissions included.
- NotFound is raised for single-entry operations; batch operations report
  missing ids instead.
- BalanceSyncFailure means a compensating action failed and the entry
  store and balance may disagree. It must never be swallowed.
- ParseError lists every bulk text line that could not be parsed.
"""

from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class LedgerValidationError(LedgerError):
    """An entry or amount was rejected before any mutation."""
    pass


class InvalidNumberFormat(LedgerValidationError):
    """Number string does not match the width/range of its entry kind."""

    def __init__(self, raw: str, kind: str, message: Optional[str] = None):
        self.raw = raw
        self.kind = kind
        super().__init__(
            message or f"Invalid number {raw!r} for {kind} entries"
        )


class EmptyEntry(LedgerValidationError):
    """Both FIRST and SECOND are zero on a user-authored entry."""

    def __init__(self, number: Optional[str] = None):
        self.number = number
        target = f" for {number}" if number else ""
        super().__init__(f"Enter at least one amount (FIRST or SECOND){target}")


class InvalidAmount(LedgerValidationError):
    """Amount is not acceptable (non-finite, disallowed sign, out of range)."""
    pass


class InsufficientBalance(LedgerError):
    """A debit would take a standard user's balance below zero."""

    def __init__(self, user_id: str, required: Decimal, available: Decimal):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance. You need PKR {required:,} "
            f"but only have PKR {available:,} (short by PKR {self.shortfall:,})"
        )

    @property
    def shortfall(self) -> Decimal:
        return self.required - self.available


class NotFound(LedgerError):
    """Referenced entry does not exist in the project."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Entry not found: {entry_id}")


class BalanceSyncFailure(LedgerError):
    """
    The paired balance mutation failed and could not be compensated.

    The store and the balance may now disagree. `cause` is the failure that
    triggered the compensation, `compensation_error` the one that broke it.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        compensation_error: Optional[BaseException] = None,
    ):
        self.cause = cause
        self.compensation_error = compensation_error
        super().__init__(message)


class ParseError(LedgerError):
    """One or more bulk text lines could not be parsed."""

    def __init__(self, issues: list):
        self.issues = list(issues)
        lines = "; ".join(issue.message for issue in self.issues)
        super().__init__(f"{len(self.issues)} line(s) could not be parsed: {lines}")
