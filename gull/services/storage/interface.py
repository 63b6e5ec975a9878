"""
Abstract Storage Interface

DESIGN DECISION: The ledger core never references a concrete storage
technology. It depends only on these interfaces, which allows us to:
1. Keep entries on the local device (JSON files) or in Google Sheets
2. Use in-memory storage for testing
3. Add caching layers transparently
4. Keep ledger logic decoupled from storage implementation

The entry interface is full-replace: the core always computes the new
complete list of entries for a project and hands it back. There is no
partial-patch wire format.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from gull.models.audit import AuditEvent
from gull.models.entry import Entry


class LedgerRepository(ABC):
    """
    Abstract interface for entry and balance persistence.

    Any storage implementation (JSON files, Google Sheets, a database)
    must implement these methods.
    """

    @abstractmethod
    async def load_entries(self, project_id: str) -> list[Entry]:
        """
        Load every entry of a project.

        Args:
            project_id: The owning project

        Returns:
            Entries in creation order (empty list for a new project)

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def save_entries(self, project_id: str, entries: list[Entry]) -> None:
        """
        Replace the stored entries of a project.

        Args:
            project_id: The owning project
            entries: The complete new list, in creation order

        Raises:
            StorageError: If save fails (the previous list must survive)
        """
        pass

    @abstractmethod
    async def load_balance(self, user_id: str) -> Optional[Decimal]:
        """
        Load a user's balance.

        Returns:
            The stored balance, or None if the user has never had one
        """
        pass

    @abstractmethod
    async def save_balance(self, user_id: str, balance: Decimal) -> None:
        """
        Store a user's balance.

        Raises:
            StorageError: If save fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events of one command.

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
