"""
Ledger Engine

This module ties the ledger components together and defines every
operator-facing command of a project:

1. Entry commands (add, bulk add, edit, delete, filter deductions)
2. Views (summaries, extremes, statistics, number search, filter preview)
3. History (undo, redo)
4. Balance (current account, admin top-up)

DESIGN DECISION: The engine enforces the boundaries:
- Every entry mutation with a non-zero net is paired with exactly one
  balance mutation, all-or-nothing from the caller's point of view
- Every committed command goes through the action history
- Every mutation and every failure is audited

Pairing follows one saga rule for every command, deletions included:
- Cost (positive net): debit first, then write. If the write fails the
  debit is credited back.
- Refund (negative net): write first, then credit. If the credit fails the
  write is taken back.
If a compensation itself fails, BalanceSyncFailure is raised; otherwise
the original error propagates and nothing has changed.
"""

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, Iterable, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError

from gull.audit import AuditLogger, create_correlation_id
from gull.config import LedgerSettings, Settings, get_settings
from gull.exceptions import (
    BalanceSyncFailure,
    InsufficientBalance,
    InvalidAmount,
    InvalidNumberFormat,
    LedgerValidationError,
    ParseError,
)
from gull.ledger import (
    ActionHistory,
    BalanceLedger,
    BatchRemoval,
    TransactionStore,
    all_possible_numbers,
    build_deductions,
    evaluate,
    extremes,
    filter_numbers,
    parse_bulk_text,
    project_statistics,
    split_numbers,
    summarize,
    summary_for,
)
from gull.models import (
    ActionKind,
    ActionRecord,
    AuditEvent,
    AuditEventBuilder,
    BalanceAccount,
    BulkPreview,
    DeductionResult,
    Entry,
    EntryDraft,
    EntryKind,
    EntryPatch,
    Extremes,
    FilterCriterion,
    NumberSummary,
    PositionedEntry,
    ProjectStatistics,
)
from gull.services.storage import (
    InMemoryLedgerRepository,
    JsonFileLedgerRepository,
    LedgerRepository,
    StorageError,
)
from gull.validation import EntryValidator


logger = structlog.get_logger("gull.engine")

Amount = Union[Decimal, int, float, str]


def _to_amount(value: Amount) -> Decimal:
    """Exact Decimal for a caller-supplied amount."""
    try:
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Amount must be a valid number, got {value!r}") from None
    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be a valid number, got {value!r}")
    return amount


_AMOUNT_FIELDS = ("first", "second")


def _build_input(model: type[BaseModel], **fields) -> BaseModel:
    """
    Build a caller-facing input model, mapping pydantic errors onto the
    ledger's validation errors.

    Raises:
        InvalidAmount: an amount field was rejected
        InvalidNumberFormat: the number of a draft was rejected
        LedgerValidationError: any other field was rejected
    """
    for field in _AMOUNT_FIELDS:
        if fields.get(field) is not None:
            fields[field] = _to_amount(fields[field])
    try:
        return model(**fields)
    except ValidationError as e:
        error = e.errors()[0]
        field = str(error["loc"][0]) if error["loc"] else model.__name__
        message = f"{field}: {error['msg']}"
        if field in _AMOUNT_FIELDS:
            raise InvalidAmount(message) from None
        if field == "number" and model is EntryDraft:
            kind = fields.get("entry_kind")
            raise InvalidNumberFormat(
                str(fields["number"]), getattr(kind, "value", str(kind)), message
            ) from None
        raise LedgerValidationError(message) from None


class LedgerEngine:
    """
    Commands and views over one project, on behalf of one user.

    Commands are serialised with an asyncio.Lock: one logical writer per
    project.
    """

    def __init__(
        self,
        project_id: str,
        user_id: str,
        repository: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        balance_ledger: Optional[BalanceLedger] = None,
        validator: Optional[EntryValidator] = None,
        privileged_users: Optional[Iterable[str]] = None,
    ):
        self._project_id = project_id
        self._user_id = user_id
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger or AuditLogger()
        self._store = TransactionStore(
            repository,
            project_id,
            validator or EntryValidator(self._settings),
        )
        self._balance = balance_ledger or BalanceLedger(
            repository,
            privileged_users=privileged_users,
            settings=self._settings,
            audit_logger=self._audit_logger,
        )
        self._history = ActionHistory(project_id)
        self._lock = asyncio.Lock()

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def store(self) -> TransactionStore:
        return self._store

    # -------------------------------------------------------------------------
    # Audit helpers
    # -------------------------------------------------------------------------

    async def _log(self, event: AuditEvent) -> None:
        await self._audit_logger.log(event)

    @asynccontextmanager
    async def _audited(self, operation: str, correlation_id: UUID):
        """Audit failures of a command, then let them propagate."""
        try:
            yield
        except LedgerValidationError as e:
            await self._log(AuditEventBuilder.validation_failed(
                project_id=self._project_id,
                user_id=self._user_id,
                error_type=type(e).__name__,
                message=str(e),
                correlation_id=correlation_id,
            ))
            raise
        except InsufficientBalance as e:
            await self._log(AuditEventBuilder.insufficient_balance(
                project_id=self._project_id,
                user_id=self._user_id,
                required=e.required,
                available=e.available,
                correlation_id=correlation_id,
            ))
            raise
        except BalanceSyncFailure as e:
            logger.critical("balance_sync_failure", operation=operation, error=str(e))
            await self._log(AuditEventBuilder.balance_sync_failure(
                project_id=self._project_id,
                user_id=self._user_id,
                error_message=str(e),
                details={
                    "operation": operation,
                    "cause": repr(e.cause),
                    "compensation_error": repr(e.compensation_error),
                },
                correlation_id=correlation_id,
            ))
            raise
        except StorageError as e:
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(e),
                project_id=self._project_id,
                correlation_id=correlation_id,
            )
            raise

    # -------------------------------------------------------------------------
    # Saga: entry write paired with its balance effect
    # -------------------------------------------------------------------------

    def _effect(self, items: Iterable[Union[Entry, EntryDraft]]) -> Decimal:
        """Balance effect of creating `items` (positive = cost)."""
        total = Decimal("0")
        for item in items:
            if item.is_deduction and not self._settings.deductions_affect_balance:
                continue
            total += item.net
        return total

    async def _paired(
        self,
        net: Decimal,
        write: Callable[[], Awaitable[object]],
        rollback: Callable[[], Awaitable[object]],
        correlation_id: UUID,
    ) -> None:
        """
        Run `write` together with the balance effect `net`.

        Raises:
            InsufficientBalance: before anything was written
            StorageError: the write (or credit) failed and was compensated
            BalanceSyncFailure: the compensation failed as well
        """
        if net > 0:
            change = await self._balance.apply_net(self._user_id, net, correlation_id)
            try:
                await write()
            except Exception as cause:
                try:
                    await self._balance.revert(change, correlation_id)
                except Exception as compensation_error:
                    raise BalanceSyncFailure(
                        f"Entry write failed and PKR {net:,} could not be "
                        f"credited back to {self._user_id}",
                        cause=cause,
                        compensation_error=compensation_error,
                    ) from compensation_error
                raise
            return

        await write()
        try:
            await self._balance.apply_net(self._user_id, net, correlation_id)
        except Exception as cause:
            try:
                await rollback()
            except Exception as compensation_error:
                raise BalanceSyncFailure(
                    f"Credit of PKR {-net:,} to {self._user_id} failed and the "
                    "entry change could not be taken back",
                    cause=cause,
                    compensation_error=compensation_error,
                ) from compensation_error
            raise

    async def _positions(self, entries: list[Entry]) -> list[PositionedEntry]:
        return [
            PositionedEntry(position=await self._store.position_of(e.id), entry=e)
            for e in entries
        ]

    async def _insert(self, entries: list[Entry], correlation_id: UUID) -> None:
        ids = [e.id for e in entries]
        await self._paired(
            self._effect(entries),
            lambda: self._store.insert_many(entries),
            lambda: self._store.discard(ids),
            correlation_id,
        )

    async def _remove(self, entries: list[Entry], correlation_id: UUID) -> None:
        positioned = await self._positions(entries)
        await self._paired(
            -self._effect(entries),
            lambda: self._store.discard(e.id for e in entries),
            lambda: self._store.restore(positioned),
            correlation_id,
        )

    async def _restore(self, positioned: list[PositionedEntry], correlation_id: UUID) -> None:
        entries = [item.entry for item in positioned]
        await self._paired(
            self._effect(entries),
            lambda: self._store.restore(positioned),
            lambda: self._store.discard(e.id for e in entries),
            correlation_id,
        )

    async def _replace(self, new: Entry, old: Entry, correlation_id: UUID) -> None:
        await self._paired(
            self._effect([new]) - self._effect([old]),
            lambda: self._store.replace(new),
            lambda: self._store.replace(old),
            correlation_id,
        )

    # -------------------------------------------------------------------------
    # Entry commands
    # -------------------------------------------------------------------------

    async def _record_insert(
        self,
        kind: ActionKind,
        entries: list[Entry],
        description: str,
        correlation_id: UUID,
    ) -> ActionRecord:
        return await self._history.record(
            kind=kind,
            forward=lambda: self._insert(entries, correlation_id),
            inverse=lambda: self._remove(entries, correlation_id),
            affected_numbers=[e.number for e in entries],
            description=description,
            forward_data=entries,
        )

    async def add_entry(
        self,
        number: str,
        kind: Union[EntryKind, str],
        first: Amount = 0,
        second: Amount = 0,
        notes: Optional[str] = None,
    ) -> Entry:
        """
        Add one entry and debit (or credit) its net.

        Raises:
            InvalidNumberFormat, EmptyEntry, InvalidAmount: nothing written
            InsufficientBalance: nothing written
        """
        correlation_id = create_correlation_id()
        async with self._lock, self._audited("add_entry", correlation_id):
            entry = self._store.build(_build_input(
                EntryDraft,
                number=number,
                entry_kind=kind,
                first=first,
                second=second,
                notes=notes,
            ))
            await self._record_insert(
                ActionKind.ADD, [entry],
                f"Added {entry.number} (PKR {entry.net})",
                correlation_id,
            )

        await self._log(AuditEventBuilder.entry_added(
            project_id=self._project_id,
            user_id=self._user_id,
            entry_id=entry.id,
            number=entry.number,
            net=entry.net,
            correlation_id=correlation_id,
        ))
        return entry

    async def _add_drafts(
        self,
        drafts: list[EntryDraft],
        kind: ActionKind,
        operation: str,
        correlation_id: UUID,
    ) -> list[Entry]:
        async with self._lock, self._audited(operation, correlation_id):
            entries = [self._store.build(draft) for draft in drafts]
            if not entries:
                return []
            total = self._effect(entries)
            description = (
                f"Filter deductions on {len(entries)} number(s)"
                if kind == ActionKind.FILTER_DEDUCTION
                else f"Added {len(entries)} entries (PKR {total})"
            )
            await self._record_insert(kind, entries, description, correlation_id)
        return entries

    async def add_entries(
        self,
        numbers: Union[str, Iterable[str]],
        kind: Union[EntryKind, str],
        first: Amount = 0,
        second: Amount = 0,
        notes: Optional[str] = None,
    ) -> list[Entry]:
        """
        Add the same amounts to several numbers as one action.

        `numbers` may be a list or a "01, 02 03" string. The total cost is
        debited once; if it can't be covered nothing is added.
        """
        if isinstance(numbers, str):
            numbers = split_numbers(numbers)
        correlation_id = create_correlation_id()
        async with self._audited("add_entries", correlation_id):
            drafts = [
                _build_input(
                    EntryDraft,
                    number=number,
                    entry_kind=kind,
                    first=first,
                    second=second,
                    notes=notes,
                )
                for number in numbers
            ]
        entries = await self._add_drafts(
            drafts, ActionKind.BATCH_ADD, "add_entries", correlation_id
        )
        if entries:
            await self._log(AuditEventBuilder.entries_added(
                project_id=self._project_id,
                user_id=self._user_id,
                numbers=[e.number for e in entries],
                total=self._effect(entries),
                correlation_id=correlation_id,
            ))
        return entries

    async def edit_entry(
        self,
        entry_id: str,
        patch: Optional[EntryPatch] = None,
        **changes,
    ) -> Entry:
        """
        Change the amounts or notes of an entry.

        Only the net difference is debited or credited.

        Raises:
            NotFound, EmptyEntry, InvalidAmount, InsufficientBalance
        """
        correlation_id = create_correlation_id()
        async with self._lock, self._audited("edit_entry", correlation_id):
            patch = patch or _build_input(EntryPatch, **changes)
            old, new = await self._store.prepare_update(entry_id, patch)
            position = await self._store.position_of(entry_id)
            await self._history.record(
                kind=ActionKind.EDIT,
                forward=lambda: self._replace(new, old, correlation_id),
                inverse=lambda: self._replace(old, new, correlation_id),
                affected_numbers=[new.number],
                description=f"Edited {new.number}",
                forward_data=[new],
                inverse_data=[PositionedEntry(position=position, entry=old)],
            )

        await self._log(AuditEventBuilder.entry_updated(
            project_id=self._project_id,
            user_id=self._user_id,
            entry_id=new.id,
            number=new.number,
            delta=new.net - old.net,
            correlation_id=correlation_id,
        ))
        return new

    async def _delete(
        self,
        located: BatchRemoval,
        kind: ActionKind,
        correlation_id: UUID,
    ) -> None:
        entries = located.entries
        await self._history.record(
            kind=kind,
            forward=lambda: self._remove(entries, correlation_id),
            inverse=lambda: self._restore(located.removed, correlation_id),
            affected_numbers=[e.number for e in entries],
            description=(
                f"Deleted {entries[0].number}" if len(entries) == 1
                else f"Deleted {len(entries)} entries"
            ),
            inverse_data=located.removed,
        )

    async def delete_entry(self, entry_id: str) -> Entry:
        """
        Delete one entry and reverse its balance effect.

        Raises:
            NotFound: no entry with this id
            InsufficientBalance: the entry was a refund that can't be re-debited
        """
        correlation_id = create_correlation_id()
        async with self._lock, self._audited("delete_entry", correlation_id):
            entry = await self._store.get(entry_id)
            located = await self._store.locate([entry.id])
            await self._delete(located, ActionKind.DELETE, correlation_id)

        await self._log(AuditEventBuilder.entries_deleted(
            project_id=self._project_id,
            user_id=self._user_id,
            entry_ids=[entry.id],
            missing_ids=[],
            correlation_id=correlation_id,
        ))
        return entry

    async def delete_entries(self, entry_ids: Iterable[str]) -> BatchRemoval:
        """
        Delete several entries as one action.

        Missing ids don't fail the batch; they are reported in the result.
        """
        correlation_id = create_correlation_id()
        async with self._lock, self._audited("delete_entries", correlation_id):
            located = await self._store.locate(entry_ids)
            if located.removed:
                await self._delete(located, ActionKind.BATCH_DELETE, correlation_id)

        await self._log(AuditEventBuilder.entries_deleted(
            project_id=self._project_id,
            user_id=self._user_id,
            entry_ids=[e.id for e in located.entries],
            missing_ids=located.missing_ids,
            correlation_id=correlation_id,
        ))
        return located

    async def delete_numbers(
        self,
        numbers: Union[str, Iterable[str]],
        kind: Union[EntryKind, str],
    ) -> BatchRemoval:
        """Delete every entry of the given numbers as one action."""
        if isinstance(numbers, str):
            numbers = split_numbers(numbers)
        wanted = set(numbers)
        kind = EntryKind(kind)
        entries = await self._store.by_kind(kind)
        return await self.delete_entries(e.id for e in entries if e.number in wanted)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    async def entries(self) -> list[Entry]:
        return await self._store.list_by_project()

    async def summarize(self, kind: Union[EntryKind, str]) -> dict[str, NumberSummary]:
        return summarize(await self._store.list_by_project(), EntryKind(kind))

    async def extremes(self, kind: Union[EntryKind, str]) -> Extremes:
        return extremes(await self.summarize(kind))

    async def statistics(self) -> ProjectStatistics:
        return project_statistics(await self._store.list_by_project())

    async def entries_for_number(
        self,
        number: str,
        kind: Union[EntryKind, str],
    ) -> NumberSummary:
        return summary_for(await self._store.list_by_project(), number, EntryKind(kind))

    async def search_numbers(
        self,
        query: str,
        kind: Union[EntryKind, str],
        with_entries_only: bool = False,
    ) -> list[str]:
        """Numbers of `kind` matching a search query."""
        kind = EntryKind(kind)
        if with_entries_only:
            candidates = sorted(await self.summarize(kind))
        else:
            candidates = all_possible_numbers(kind)
        return filter_numbers(candidates, query)

    async def evaluate_filter(
        self,
        kind: Union[EntryKind, str],
        first: Optional[FilterCriterion] = None,
        second: Optional[FilterCriterion] = None,
    ) -> list[DeductionResult]:
        """Preview deductions against current totals. Nothing is written."""
        return evaluate(await self.summarize(kind), first, second)

    async def apply_deductions(
        self,
        results: list[DeductionResult],
        kind: Union[EntryKind, str],
        first: Optional[FilterCriterion] = None,
        second: Optional[FilterCriterion] = None,
    ) -> list[Entry]:
        """Write the deductions of `results` as one filterDeduction action."""
        correlation_id = create_correlation_id()
        drafts = build_deductions(results, EntryKind(kind), first, second)
        entries = await self._add_drafts(
            drafts, ActionKind.FILTER_DEDUCTION, "apply_deductions", correlation_id
        )
        if entries:
            await self._log(AuditEventBuilder.deductions_applied(
                project_id=self._project_id,
                user_id=self._user_id,
                numbers=[e.number for e in entries],
                first_total=sum((e.first for e in entries), Decimal("0")),
                second_total=sum((e.second for e in entries), Decimal("0")),
                correlation_id=correlation_id,
            ))
        return entries

    # -------------------------------------------------------------------------
    # Bulk text entry
    # -------------------------------------------------------------------------

    async def preview_bulk_text(self, text: str, kind: Union[EntryKind, str]) -> BulkPreview:
        """Parse bulk text for review. Nothing is written."""
        preview = parse_bulk_text(text, EntryKind(kind))
        if preview.has_issues:
            await self._log(AuditEventBuilder.bulk_parse_failed(
                project_id=self._project_id,
                user_id=self._user_id,
                issues=[issue.model_dump() for issue in preview.issues],
            ))
        return preview

    async def commit_preview(
        self,
        preview: BulkPreview,
        notes: Optional[str] = None,
        skip_invalid: bool = False,
    ) -> list[Entry]:
        """
        Commit the valid lines of a reviewed preview as one action.

        Raises:
            ParseError: the preview has issues and skip_invalid is False
        """
        if not skip_invalid:
            try:
                preview.raise_for_issues()
            except ParseError:
                logger.warning("bulk_commit_rejected", issues=len(preview.issues))
                raise

        correlation_id = create_correlation_id()
        async with self._audited("commit_preview", correlation_id):
            drafts = [
                _build_input(
                    EntryDraft,
                    number=line.number,
                    entry_kind=preview.entry_kind,
                    first=line.first,
                    second=line.second,
                    notes=notes,
                )
                for line in preview.entries
            ]
        entries = await self._add_drafts(
            drafts, ActionKind.BATCH_ADD, "commit_preview", correlation_id
        )
        if entries:
            await self._log(AuditEventBuilder.entries_added(
                project_id=self._project_id,
                user_id=self._user_id,
                numbers=[e.number for e in entries],
                total=self._effect(entries),
                correlation_id=correlation_id,
            ))
        return entries

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    @property
    def history(self) -> list[ActionRecord]:
        """Applied actions, oldest first."""
        return self._history.records

    async def _revert(self, redo: bool) -> Optional[ActionRecord]:
        correlation_id = create_correlation_id()
        operation = "redo" if redo else "undo"
        async with self._lock, self._audited(operation, correlation_id):
            record = await (self._history.redo() if redo else self._history.undo())
        if record is not None:
            await self._log(AuditEventBuilder.action_reverted(
                project_id=self._project_id,
                user_id=self._user_id,
                action_id=record.id,
                action_kind=record.kind.value,
                redo=redo,
                correlation_id=correlation_id,
            ))
        return record

    async def undo(self) -> Optional[ActionRecord]:
        """Take back the last action, balance included. None if there is none."""
        return await self._revert(redo=False)

    async def redo(self) -> Optional[ActionRecord]:
        """Re-apply the last undone action. None if there is none."""
        return await self._revert(redo=True)

    # -------------------------------------------------------------------------
    # Balance
    # -------------------------------------------------------------------------

    async def balance(self) -> BalanceAccount:
        return await self._balance.account(self._user_id)

    async def top_up(self, amount: Amount, user_id: Optional[str] = None) -> Decimal:
        """Admin top-up; defaults to the engine's own user."""
        correlation_id = create_correlation_id()
        async with self._audited("top_up", correlation_id):
            return await self._balance.top_up(
                user_id or self._user_id,
                _to_amount(amount),
                correlation_id,
            )


def create_repository(settings: Optional[Settings] = None) -> LedgerRepository:
    """Build the configured ledger repository."""
    settings = settings or get_settings()
    backend = settings.storage.backend

    if backend == "json":
        return JsonFileLedgerRepository(settings.storage.data_dir)
    if backend == "sheets":
        from gull.services.storage.google_sheets import (
            GoogleSheetsClient,
            GoogleSheetsLedgerRepository,
        )
        return GoogleSheetsLedgerRepository(GoogleSheetsClient())
    return InMemoryLedgerRepository()


def create_audit_logger(settings: Optional[Settings] = None) -> AuditLogger:
    """
    Audit logger for the configured backend.

    With the sheets backend, events are also persisted to the audit
    worksheet. If that can't be set up, logging stays local.
    """
    settings = settings or get_settings()
    if settings.storage.backend != "sheets":
        return AuditLogger()

    try:
        from gull.services.storage.google_sheets import (
            GoogleSheetsAuditStorage,
            GoogleSheetsClient,
        )
        return AuditLogger(GoogleSheetsAuditStorage(GoogleSheetsClient()))
    except Exception as e:
        logger.warning("audit_storage_not_configured", error=str(e))
        return AuditLogger()


def create_ledger_engine(
    project_id: str,
    user_id: str,
    repository: Optional[LedgerRepository] = None,
    audit_logger: Optional[AuditLogger] = None,
    settings: Optional[Settings] = None,
    privileged_users: Optional[Iterable[str]] = None,
) -> LedgerEngine:
    """
    Factory function to create a ledger engine for one project and user.

    Args:
        repository: Storage to use. Built from settings when omitted.
        audit_logger: Audit sink. Built from settings when omitted.
        privileged_users: Overrides the configured privileged user ids.
    """
    settings = settings or get_settings()
    return LedgerEngine(
        project_id=project_id,
        user_id=user_id,
        repository=repository or create_repository(settings),
        audit_logger=audit_logger or create_audit_logger(settings),
        settings=settings.ledger,
        privileged_users=privileged_users,
    )
