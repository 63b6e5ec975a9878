"""
In-Memory Storage Implementation

Used by tests and by ephemeral sessions. Data lives only as long as the
repository object.

Failure injection: `fail_next(operation, count, after)` lets `after` calls
of `operation` ("save_entries", "save_balance", ...) through and makes the
`count` calls after them raise StorageError, so the engine's compensation
paths can be exercised.
"""

from collections import Counter
from decimal import Decimal
from typing import Optional
from uuid import UUID

from gull.models.audit import AuditEvent
from gull.models.entry import Entry
from gull.services.storage.interface import (
    AuditStorageInterface,
    LedgerRepository,
    StorageError,
)


class InMemoryLedgerRepository(LedgerRepository):
    """Dictionary-backed ledger repository."""

    def __init__(
        self,
        entries: Optional[dict[str, list[Entry]]] = None,
        balances: Optional[dict[str, Decimal]] = None,
    ):
        self._entries: dict[str, list[Entry]] = {
            project_id: list(items) for project_id, items in (entries or {}).items()
        }
        self._balances: dict[str, Decimal] = dict(balances or {})
        self._failures: dict[str, tuple[int, int]] = {}
        self.calls: Counter = Counter()

    def fail_next(self, operation: str, count: int = 1, after: int = 0) -> None:
        """Make `count` calls of `operation` fail once `after` calls have passed."""
        self._failures[operation] = (after, count)

    def _check(self, operation: str) -> None:
        self.calls[operation] += 1
        after, count = self._failures.get(operation, (0, 0))
        if after > 0:
            self._failures[operation] = (after - 1, count)
        elif count > 0:
            self._failures[operation] = (0, count - 1)
            raise StorageError(f"Injected failure in {operation}")

    async def load_entries(self, project_id: str) -> list[Entry]:
        self._check("load_entries")
        return list(self._entries.get(project_id, []))

    async def save_entries(self, project_id: str, entries: list[Entry]) -> None:
        self._check("save_entries")
        self._entries[project_id] = list(entries)

    async def load_balance(self, user_id: str) -> Optional[Decimal]:
        self._check("load_balance")
        return self._balances.get(user_id)

    async def save_balance(self, user_id: str, balance: Decimal) -> None:
        self._check("save_balance")
        self._balances[user_id] = balance


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed audit log."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self.events if e.correlation_id == correlation_id]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self.events))[:limit]
