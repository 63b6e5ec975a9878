"""
Transaction Store

The source of truth for a project's entries. The store keeps the current
list in memory and hands the complete new list to the repository on every
mutation (full replace). The in-memory list is only swapped after the
repository accepted the new one, so a failed save leaves the store exactly
as it was and surfaces as StorageError.

Besides the operator-facing operations (add, update, remove) the store
offers exact-record operations (insert, replace, restore) that undo/redo
uses to put back precisely the records that were there before.
"""

from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from gull.exceptions import LedgerError, NotFound
from gull.models.entry import Entry, EntryDraft, EntryKind, EntryPatch
from gull.models.history import PositionedEntry
from gull.services.storage import LedgerRepository
from gull.validation import EntryValidator


class BatchRemoval(BaseModel):
    """Outcome of a best-effort batch removal."""
    removed: list[PositionedEntry] = Field(default_factory=list)
    missing_ids: list[str] = Field(default_factory=list)

    @property
    def entries(self) -> list[Entry]:
        return [item.entry for item in self.removed]


class TransactionStore:
    """Append/update/remove operations over one project's entries."""

    def __init__(
        self,
        repository: LedgerRepository,
        project_id: str,
        validator: Optional[EntryValidator] = None,
    ):
        self._repository = repository
        self._project_id = project_id
        self._validator = validator or EntryValidator()
        self._entries: Optional[list[Entry]] = None

    @property
    def project_id(self) -> str:
        return self._project_id

    async def load(self, force: bool = False) -> list[Entry]:
        """Load entries from the repository (once, unless forced)."""
        if self._entries is None or force:
            self._entries = list(await self._repository.load_entries(self._project_id))
        return self._entries

    async def _commit(self, entries: list[Entry]) -> None:
        await self._repository.save_entries(self._project_id, entries)
        self._entries = entries

    def build(self, draft: EntryDraft, now: Optional[datetime] = None) -> Entry:
        """Validate a draft and turn it into a new entry, without saving it."""
        now = now or datetime.utcnow()
        self._validator.ensure_valid(draft)
        return Entry(
            project_id=self._project_id,
            number=draft.number,
            entry_kind=draft.entry_kind,
            first=draft.first,
            second=draft.second,
            notes=draft.notes,
            is_deduction=draft.is_deduction,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _index(entries: list[Entry], entry_id: str) -> int:
        for idx, entry in enumerate(entries):
            if entry.id == entry_id:
                return idx
        raise NotFound(entry_id)

    # -------------------------------------------------------------------------
    # Operator-facing operations
    # -------------------------------------------------------------------------

    async def add(self, draft: EntryDraft) -> Entry:
        """
        Validate and append a new entry.

        Raises:
            InvalidNumberFormat, EmptyEntry, InvalidAmount: before any write
            StorageError: if the repository rejects the new list
        """
        entries = await self.load()
        entry = self.build(draft, datetime.utcnow())
        await self._commit(entries + [entry])
        return entry

    async def add_many(self, drafts: Iterable[EntryDraft]) -> list[Entry]:
        """Validate every draft, then append them all in one save."""
        entries = await self.load()
        now = datetime.utcnow()
        new_entries = [self.build(draft, now) for draft in drafts]
        if new_entries:
            await self._commit(entries + new_entries)
        return new_entries

    async def update(self, entry_id: str, patch: EntryPatch) -> Entry:
        """
        Merge a patch into an entry and refresh updated_at.

        Number and entry kind never change.
        """
        _, updated = await self.prepare_update(entry_id, patch)
        return await self.replace(updated)

    async def prepare_update(self, entry_id: str, patch: EntryPatch) -> tuple[Entry, Entry]:
        """
        Validate a patch against the current record without saving.

        Returns: (current, updated)
        """
        entries = await self.load()
        current = entries[self._index(entries, entry_id)]
        changes = patch.changes()

        merged = EntryDraft(
            number=current.number,
            entry_kind=current.entry_kind,
            first=changes.get("first", current.first),
            second=changes.get("second", current.second),
            notes=changes.get("notes", current.notes),
            is_deduction=current.is_deduction,
        )
        self._validator.ensure_valid(merged)

        updated = current.model_copy(update={
            "first": merged.first,
            "second": merged.second,
            "notes": merged.notes,
            "updated_at": datetime.utcnow(),
        })
        return current, updated

    async def remove(self, entry_id: str) -> Entry:
        """Remove an entry and return the removed record."""
        entries = await self.load()
        idx = self._index(entries, entry_id)
        removed = entries[idx]
        await self._commit(entries[:idx] + entries[idx + 1:])
        return removed

    async def remove_many(self, entry_ids: Iterable[str]) -> BatchRemoval:
        """
        Best-effort batch removal.

        Ids that don't exist are reported in missing_ids; every other id is
        removed in a single save.
        """
        located = await self.locate(entry_ids)
        if located.removed:
            await self.discard(e.id for e in located.entries)
        return located

    async def locate(self, entry_ids: Iterable[str]) -> BatchRemoval:
        """Find entries and their positions without removing anything."""
        entries = await self.load()
        positions = {entry.id: idx for idx, entry in enumerate(entries)}

        found: list[PositionedEntry] = []
        missing: list[str] = []
        for entry_id in dict.fromkeys(entry_ids):
            if entry_id in positions:
                idx = positions[entry_id]
                found.append(PositionedEntry(position=idx, entry=entries[idx]))
            else:
                missing.append(entry_id)

        found.sort(key=lambda item: item.position)
        return BatchRemoval(removed=found, missing_ids=missing)

    async def list_by_project(self) -> list[Entry]:
        """All entries in creation order."""
        return list(await self.load())

    async def get(self, entry_id: str) -> Entry:
        entries = await self.load()
        return entries[self._index(entries, entry_id)]

    async def by_kind(self, kind: EntryKind) -> list[Entry]:
        return [e for e in await self.load() if e.entry_kind == kind]

    async def by_number(self, number: str, kind: EntryKind) -> list[Entry]:
        return [
            e for e in await self.load()
            if e.number == number and e.entry_kind == kind
        ]

    # -------------------------------------------------------------------------
    # Exact-record operations (undo/redo)
    # -------------------------------------------------------------------------

    async def position_of(self, entry_id: str) -> int:
        return self._index(await self.load(), entry_id)

    async def insert(self, entry: Entry, position: Optional[int] = None) -> Entry:
        """Put an exact record back, at `position` or at the end."""
        await self.restore([PositionedEntry(
            position=len(await self.load()) if position is None else position,
            entry=entry,
        )])
        return entry

    async def insert_many(self, entries: Iterable[Entry]) -> list[Entry]:
        """Append exact records in order, in one save."""
        current = await self.load()
        new_entries = list(entries)
        self._reject_duplicates(current, new_entries)
        if new_entries:
            await self._commit(current + new_entries)
        return new_entries

    async def restore(self, items: Iterable[PositionedEntry]) -> list[Entry]:
        """
        Re-insert removed records at their original positions.

        Positions refer to the list as it was before the removal, so
        inserting in ascending position order rebuilds it exactly.
        """
        current = await self.load()
        ordered = sorted(items, key=lambda item: item.position)
        self._reject_duplicates(current, [item.entry for item in ordered])

        new_entries = list(current)
        for item in ordered:
            new_entries.insert(min(item.position, len(new_entries)), item.entry)
        if ordered:
            await self._commit(new_entries)
        return [item.entry for item in ordered]

    async def replace(self, entry: Entry) -> Entry:
        """Swap the record with the same id for this exact version."""
        return (await self.replace_many([entry]))[0]

    async def replace_many(self, entries: Iterable[Entry]) -> list[Entry]:
        current = await self.load()
        new_entries = list(current)
        replaced = []
        for entry in entries:
            new_entries[self._index(new_entries, entry.id)] = entry
            replaced.append(entry)
        if replaced:
            await self._commit(new_entries)
        return replaced

    async def discard(self, entry_ids: Iterable[str]) -> list[Entry]:
        """
        Strict removal of exact records.

        Unlike remove_many, a missing id is an error: undo/redo must remove
        exactly what the history recorded.
        """
        current = await self.load()
        ids = list(dict.fromkeys(entry_ids))
        for entry_id in ids:
            self._index(current, entry_id)
        drop = set(ids)
        removed = [e for e in current if e.id in drop]
        if removed:
            await self._commit([e for e in current if e.id not in drop])
        return removed

    @staticmethod
    def _reject_duplicates(current: list[Entry], incoming: list[Entry]) -> None:
        existing = {e.id for e in current}
        seen = set()
        for entry in incoming:
            if entry.id in existing or entry.id in seen:
                raise LedgerError(f"Entry already exists: {entry.id}")
            seen.add(entry.id)
