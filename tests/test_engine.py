"""
Integration tests for the ledger engine against the in-memory repository.
"""

from decimal import Decimal

import pytest

from gull.config import Settings
from gull.exceptions import (
    BalanceSyncFailure,
    EmptyEntry,
    InsufficientBalance,
    InvalidAmount,
    InvalidNumberFormat,
    LedgerValidationError,
    NotFound,
    ParseError,
)
from gull.models.audit import AuditEventType, AuditSeverity
from gull.models.entry import EntryKind, FilterCriterion, FilterOperator
from gull.models.history import ActionKind
from gull.orchestrator import LedgerEngine, create_ledger_engine
from gull.services.storage import InMemoryLedgerRepository, StorageError


AKRA = EntryKind.AKRA


async def balance_of(engine: LedgerEngine) -> Decimal:
    return (await engine.balance()).balance


async def snapshot(engine: LedgerEngine):
    return await engine.entries(), await balance_of(engine)


class TestAddEntry:
    """Tests for single entry creation."""

    @pytest.mark.asyncio
    async def test_insufficient_balance_adds_nothing(self, engine):
        """Test 1000 balance: 600+500 fails, 300+200 succeeds leaving 500."""
        with pytest.raises(InsufficientBalance) as exc_info:
            await engine.add_entry("07", AKRA, first=600, second=500)
        assert exc_info.value.shortfall == Decimal("100")
        assert await engine.entries() == []
        assert await balance_of(engine) == Decimal("1000")

        entry = await engine.add_entry("07", AKRA, first=300, second=200)

        assert entry.net == Decimal("500")
        assert await balance_of(engine) == Decimal("500")

    @pytest.mark.asyncio
    async def test_aggregation_scenario(self, engine):
        """Test that two entries on 07 summarise to 300 / 50 / 2."""
        await engine.add_entry("07", AKRA, first=100, second=50)
        await engine.add_entry("07", AKRA, first=200, second=0)

        summary = (await engine.summarize(AKRA))["07"]

        assert summary.first_total == Decimal("300")
        assert summary.second_total == Decimal("50")
        assert summary.entry_count == 2

    @pytest.mark.asyncio
    async def test_number_format(self, engine):
        """Test that "5" fails and "05" succeeds for Akra."""
        with pytest.raises(InvalidNumberFormat):
            await engine.add_entry("5", AKRA, first=10)
        entry = await engine.add_entry("05", AKRA, first=10)
        assert entry.number == "05"
        assert [e.number for e in await engine.entries()] == ["05"]

    @pytest.mark.asyncio
    async def test_empty_entry(self, engine):
        """Test that an entry must move at least one amount."""
        with pytest.raises(EmptyEntry):
            await engine.add_entry("07", AKRA)
        assert not engine.can_undo

    @pytest.mark.asyncio
    async def test_privileged_user_has_unlimited_balance(self, admin_engine):
        """Test that admins can spend without a balance."""
        await admin_engine.add_entry("07", AKRA, first=50000, second=50000)
        account = await admin_engine.balance()
        assert account.privileged
        assert account.balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_negative_correction_credits(self, engine):
        """Test that a negative manual entry refunds the balance."""
        await engine.add_entry("07", AKRA, first=-100, notes="correction")
        assert await balance_of(engine) == Decimal("1100")

    @pytest.mark.asyncio
    async def test_float_amounts_are_exact(self, engine):
        """Test that float input becomes an exact Decimal."""
        entry = await engine.add_entry("07", AKRA, first=0.1, second=0.2)
        assert entry.net == Decimal("0.3")


class TestBatchCommands:
    """Tests for multi-number commands."""

    @pytest.mark.asyncio
    async def test_add_entries_one_action(self, engine):
        """Test that a multi-number add is one batchAdd action."""
        entries = await engine.add_entries("01, 02 03", AKRA, first=100, second=50)

        assert [e.number for e in entries] == ["01", "02", "03"]
        assert await balance_of(engine) == Decimal("550")
        assert [r.kind for r in engine.history] == [ActionKind.BATCH_ADD]

    @pytest.mark.asyncio
    async def test_add_entries_all_or_nothing(self, engine):
        """Test that an unaffordable batch adds no entry at all."""
        with pytest.raises(InsufficientBalance):
            await engine.add_entries(["01", "02", "03"], AKRA, first=400)
        assert await engine.entries() == []
        assert await balance_of(engine) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_add_entries_rejects_any_invalid_number(self, engine):
        """Test that one bad number blocks the batch."""
        with pytest.raises(InvalidNumberFormat):
            await engine.add_entries(["01", "2"], AKRA, first=10)
        assert await engine.entries() == []

    @pytest.mark.asyncio
    async def test_delete_entries_reports_missing(self, engine, audit_storage):
        """Test that missing ids are reported, not raised."""
        a = await engine.add_entry("01", AKRA, first=100)
        b = await engine.add_entry("02", AKRA, first=200)

        result = await engine.delete_entries([a.id, "ghost"])

        assert result.entries == [a]
        assert result.missing_ids == ["ghost"]
        assert await engine.entries() == [b]
        assert await balance_of(engine) == Decimal("800")
        assert audit_storage.events[-1].severity == AuditSeverity.WARNING

    @pytest.mark.asyncio
    async def test_delete_numbers(self, engine):
        """Test deleting every entry of a number as one action."""
        await engine.add_entry("07", AKRA, first=100)
        await engine.add_entry("08", AKRA, first=100)
        await engine.add_entry("07", AKRA, first=100)

        result = await engine.delete_numbers("07", AKRA)

        assert len(result.entries) == 2
        assert [e.number for e in await engine.entries()] == ["08"]
        assert engine.history[-1].kind == ActionKind.BATCH_DELETE
        assert await balance_of(engine) == Decimal("900")


class TestEditAndDelete:
    """Tests for edits and single deletes."""

    @pytest.mark.asyncio
    async def test_edit_applies_delta_only(self, engine):
        """Test that editing debits only the net difference."""
        entry = await engine.add_entry("07", AKRA, first=100)
        updated = await engine.edit_entry(entry.id, first=Decimal("300"))

        assert updated.first == Decimal("300")
        assert await balance_of(engine) == Decimal("700")

        await engine.edit_entry(entry.id, first=Decimal("50"))
        assert await balance_of(engine) == Decimal("950")

    @pytest.mark.asyncio
    async def test_edit_missing_entry(self, engine):
        """Test NotFound on edit and delete."""
        with pytest.raises(NotFound):
            await engine.edit_entry("ghost", first=Decimal("1"))
        with pytest.raises(NotFound):
            await engine.delete_entry("ghost")

    @pytest.mark.asyncio
    async def test_edit_rejects_bad_amount(self, engine, audit_storage):
        """Test that an unparseable amount is an audited InvalidAmount."""
        entry = await engine.add_entry("07", AKRA, first=100)

        with pytest.raises(InvalidAmount):
            await engine.edit_entry(entry.id, first="abc")

        assert await engine.entries() == [entry]
        assert await balance_of(engine) == Decimal("900")
        assert audit_storage.events[-1].event_type == AuditEventType.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_edit_rejects_immutable_fields(self, engine):
        """Test that number and kind can't be patched."""
        entry = await engine.add_entry("07", AKRA, first=100)
        with pytest.raises(LedgerValidationError):
            await engine.edit_entry(entry.id, number="08")
        assert (await engine.store.get(entry.id)).number == "07"

    @pytest.mark.asyncio
    async def test_bad_input_fields_map_to_ledger_errors(self, engine):
        """Test over-long notes and non-string numbers on creation."""
        with pytest.raises(LedgerValidationError):
            await engine.add_entry("07", AKRA, first=1, notes="x" * 501)
        with pytest.raises(LedgerValidationError):
            await engine.add_entries(["07", "08"], AKRA, first=1, notes="x" * 501)
        with pytest.raises(InvalidNumberFormat):
            await engine.add_entry(7, AKRA, first=1)
        assert await engine.entries() == []
        assert await balance_of(engine) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_delete_refunds(self, engine):
        """Test that deleting an entry credits its net back."""
        entry = await engine.add_entry("07", AKRA, first=300, second=100)
        removed = await engine.delete_entry(entry.id)
        assert removed == entry
        assert await balance_of(engine) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_deleting_a_refund_needs_balance(self, engine):
        """Test that removing a credited entry re-debits first."""
        correction = await engine.add_entry("09", AKRA, first=-100)
        await engine.add_entry("07", AKRA, first=1100)
        assert await balance_of(engine) == Decimal("0")

        with pytest.raises(InsufficientBalance):
            await engine.delete_entry(correction.id)
        assert correction in await engine.entries()


class TestUndoRedo:
    """Tests for history through the engine."""

    @pytest.mark.asyncio
    async def test_round_trip(self, engine):
        """Test that undo then redo restores entries and balance exactly."""
        await engine.add_entry("01", AKRA, first=100)
        before = await snapshot(engine)
        entry = await engine.add_entry("02", AKRA, first=200, second=25)
        after = await snapshot(engine)

        record = await engine.undo()
        assert record.kind == ActionKind.ADD
        assert await snapshot(engine) == before

        await engine.redo()
        assert await snapshot(engine) == after
        assert (await engine.entries())[-1] == entry

    @pytest.mark.asyncio
    async def test_undo_delete_restores_position(self, engine):
        """Test that an undone delete comes back in place, unchanged."""
        entries = await engine.add_entries(["01", "02", "03"], AKRA, first=10)
        await engine.delete_entry(entries[1].id)

        await engine.undo()

        assert await engine.entries() == entries
        assert await balance_of(engine) == Decimal("970")

    @pytest.mark.asyncio
    async def test_undo_edit_restores_exact_record(self, engine):
        """Test that undoing an edit puts back the previous version."""
        entry = await engine.add_entry("07", AKRA, first=100)
        await engine.edit_entry(entry.id, first=Decimal("400"), notes="raised")

        await engine.undo()

        assert await engine.entries() == [entry]
        assert await balance_of(engine) == Decimal("900")

    @pytest.mark.asyncio
    async def test_new_action_truncates_redo(self, engine):
        """Test that redo is impossible after a new action."""
        await engine.add_entry("01", AKRA, first=10)
        await engine.add_entry("02", AKRA, first=10)
        await engine.undo()
        assert engine.can_redo

        await engine.add_entry("03", AKRA, first=10)

        assert not engine.can_redo
        assert await engine.redo() is None
        assert [e.number for e in await engine.entries()] == ["01", "03"]

    @pytest.mark.asyncio
    async def test_nothing_to_undo(self, engine):
        """Test undo on an empty history."""
        assert await engine.undo() is None
        assert not engine.can_undo

    @pytest.mark.asyncio
    async def test_balance_conservation(self, engine):
        """Test balance + sum of nets against the starting balance."""
        first = await engine.add_entry("01", AKRA, first=100, second=50)
        await engine.add_entries(["02", "03"], AKRA, first=50)
        await engine.edit_entry(first.id, first=Decimal("200"))
        entries = await engine.entries()
        await engine.delete_entry(entries[1].id)
        await engine.add_entry("04", AKRA, first=-20)
        results = await engine.evaluate_filter(
            AKRA, first=FilterCriterion(operator=FilterOperator.GTE, cap=Decimal("100"))
        )
        await engine.apply_deductions(results, AKRA)

        final = await snapshot(engine)
        total_net = sum(e.net for e in final[0])
        assert final[1] + total_net == Decimal("1000")
        assert final[1] == Decimal("820")

        while engine.can_undo:
            await engine.undo()
        assert await snapshot(engine) == ([], Decimal("1000"))

        while engine.can_redo:
            await engine.redo()
        assert await snapshot(engine) == final


class TestDeductions:
    """Tests for filter deductions through the engine."""

    @pytest.mark.asyncio
    async def test_apply_and_compound(self, engine, audit_storage):
        """Test that a deduction reduces totals, credits and is reversible."""
        await engine.add_entry("07", AKRA, first=500)
        criterion = FilterCriterion(
            operator=FilterOperator.GTE, threshold=Decimal("100"), cap=Decimal("200")
        )

        results = await engine.evaluate_filter(AKRA, first=criterion)
        assert [r.first_adjustment for r in results] == [Decimal("300")]
        assert await engine.evaluate_filter(AKRA, first=criterion) == results

        deductions = await engine.apply_deductions(results, AKRA, first=criterion)

        assert deductions[0].is_deduction
        assert deductions[0].first == Decimal("-300")
        assert (await engine.summarize(AKRA))["07"].first_total == Decimal("200")
        assert await balance_of(engine) == Decimal("800")
        assert engine.history[-1].kind == ActionKind.FILTER_DEDUCTION
        assert await engine.evaluate_filter(AKRA, first=criterion) == []
        assert any(
            e.event_type == AuditEventType.DEDUCTIONS_APPLIED for e in audit_storage.events
        )

        await engine.undo()
        assert (await engine.summarize(AKRA))["07"].first_total == Decimal("500")
        assert await balance_of(engine) == Decimal("500")

    @pytest.mark.asyncio
    async def test_no_results_is_noop(self, engine):
        """Test that applying nothing records nothing."""
        assert await engine.apply_deductions([], AKRA) == []
        assert not engine.can_undo

    @pytest.mark.asyncio
    async def test_deductions_without_balance_effect(self, repository, audit_logger, ledger_settings):
        """Test the setting that keeps deductions away from balances."""
        settings = ledger_settings.model_copy(update={"deductions_affect_balance": False})
        engine = LedgerEngine("project-1", "user-1", repository, audit_logger, settings)
        await engine.add_entry("07", AKRA, first=500)
        results = await engine.evaluate_filter(
            AKRA, first=FilterCriterion(cap=Decimal("100"))
        )

        await engine.apply_deductions(results, AKRA)

        assert await balance_of(engine) == Decimal("500")
        await engine.undo()
        assert await balance_of(engine) == Decimal("500")


class TestBulkText:
    """Tests for previewing and committing bulk text."""

    TEXT = "07 100 50\n\n5 10 10\n08:20:30\n123 1 1\n"

    @pytest.mark.asyncio
    async def test_preview_commits_nothing(self, engine, audit_storage):
        """Test that parsing bulk text never writes."""
        preview = await engine.preview_bulk_text(self.TEXT, AKRA)

        assert [line.number for line in preview.entries] == ["07", "08"]
        assert [issue.line_number for issue in preview.issues] == [2, 4]
        assert preview.total_cost == Decimal("200")
        assert await engine.entries() == []
        assert audit_storage.events[-1].event_type == AuditEventType.BULK_PARSE_FAILED

    @pytest.mark.asyncio
    async def test_commit_requires_clean_preview(self, engine):
        """Test ParseError unless invalid lines are skipped explicitly."""
        preview = await engine.preview_bulk_text(self.TEXT, AKRA)
        with pytest.raises(ParseError):
            await engine.commit_preview(preview)
        assert await engine.entries() == []

        entries = await engine.commit_preview(preview, skip_invalid=True)

        assert [e.number for e in entries] == ["07", "08"]
        assert await balance_of(engine) == Decimal("800")
        assert engine.history[-1].kind == ActionKind.BATCH_ADD

        await engine.undo()
        assert await engine.entries() == []


class TestSaga:
    """Tests for the paired entry/balance mutation."""

    @pytest.mark.asyncio
    async def test_failed_write_is_credited_back(self, engine, repository, audit_storage):
        """Test that a failed save after a debit refunds the debit."""
        repository.fail_next("save_entries")

        with pytest.raises(StorageError):
            await engine.add_entry("07", AKRA, first=100)

        assert await engine.entries() == []
        assert await balance_of(engine) == Decimal("1000")
        assert not engine.can_undo
        assert any(e.event_type == AuditEventType.STORAGE_ERROR for e in audit_storage.events)

    @pytest.mark.asyncio
    async def test_failed_credit_takes_write_back(self, engine, repository):
        """Test that a failed credit removes the written refund entry."""
        repository.fail_next("save_balance")

        with pytest.raises(StorageError):
            await engine.add_entry("07", AKRA, first=-100)

        assert await engine.entries() == []
        assert await balance_of(engine) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_failed_compensation_raises_sync_failure(self, engine, repository, audit_storage):
        """Test BalanceSyncFailure when the refund of a debit fails too."""
        repository.fail_next("save_entries")
        repository.fail_next("save_balance", after=1)

        with pytest.raises(BalanceSyncFailure) as exc_info:
            await engine.add_entry("07", AKRA, first=100)

        assert isinstance(exc_info.value.cause, StorageError)
        assert isinstance(exc_info.value.compensation_error, StorageError)
        sync_events = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.BALANCE_SYNC_FAILURE
        ]
        assert len(sync_events) == 1
        assert sync_events[0].severity == AuditSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_failed_undo_can_be_retried(self, engine, repository):
        """Test that a failed undo leaves the cursor and balance alone."""
        await engine.add_entry("07", AKRA, first=100)
        repository.fail_next("save_entries")

        with pytest.raises(StorageError):
            await engine.undo()
        assert engine.can_undo
        assert await balance_of(engine) == Decimal("900")

        await engine.undo()
        assert await engine.entries() == []
        assert await balance_of(engine) == Decimal("1000")


class TestAuditTrail:
    """Tests for audit events emitted by the engine."""

    @pytest.mark.asyncio
    async def test_add_shares_correlation_id(self, engine, audit_storage):
        """Test that the debit and the entry event share a correlation id."""
        await engine.add_entry("07", AKRA, first=100)

        debit, added = audit_storage.events[-2:]
        assert debit.event_type == AuditEventType.BALANCE_DEBITED
        assert added.event_type == AuditEventType.ENTRY_ADDED
        assert debit.correlation_id == added.correlation_id

    @pytest.mark.asyncio
    async def test_failures_are_audited_as_warnings(self, engine, audit_storage):
        """Test audit of validation and balance failures."""
        with pytest.raises(InvalidNumberFormat):
            await engine.add_entry("5", AKRA, first=1)
        with pytest.raises(InsufficientBalance):
            await engine.add_entry("05", AKRA, first=5000)

        types = [e.event_type for e in audit_storage.events]
        assert types == [
            AuditEventType.VALIDATION_FAILED,
            AuditEventType.INSUFFICIENT_BALANCE,
        ]
        assert all(e.severity == AuditSeverity.WARNING for e in audit_storage.events)

    @pytest.mark.asyncio
    async def test_undo_is_audited(self, engine, audit_storage):
        """Test undo and redo events."""
        await engine.add_entry("07", AKRA, first=100)
        await engine.undo()
        await engine.redo()
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.ACTION_UNDONE in types
        assert types[-1] == AuditEventType.ACTION_REDONE


class TestViews:
    """Tests for read-only views."""

    @pytest.mark.asyncio
    async def test_extremes_and_statistics(self, engine):
        """Test extremes and statistics through the engine."""
        await engine.add_entry("01", AKRA, first=100)
        await engine.add_entry("02", AKRA, first=300)
        await engine.add_entry("123", EntryKind.RING, second=50)

        result = await engine.extremes(AKRA)
        assert (result.highest, result.lowest) == ("02", "01")

        stats = await engine.statistics()
        assert stats.total_entries == 3
        assert stats.ring_entries == 1

    @pytest.mark.asyncio
    async def test_search_numbers(self, engine):
        """Test pattern search over the grid and over used numbers."""
        await engine.add_entry("91", AKRA, first=10)

        assert len(await engine.search_numbers("starts:9", AKRA)) == 10
        assert await engine.search_numbers("9*", AKRA, with_entries_only=True) == ["91"]

    @pytest.mark.asyncio
    async def test_entries_for_number(self, engine):
        """Test the per-number view."""
        await engine.add_entry("07", AKRA, first=10)
        summary = await engine.entries_for_number("07", AKRA)
        assert summary.entry_count == 1
        assert (await engine.entries_for_number("08", AKRA)).entry_count == 0

    @pytest.mark.asyncio
    async def test_top_up(self, engine):
        """Test admin top-up through the engine."""
        assert await engine.top_up(500) == Decimal("1500")


class TestFactory:
    """Tests for create_ledger_engine."""

    def test_uses_given_repository(self):
        """Test that an explicit repository is used as is."""
        repository = InMemoryLedgerRepository()
        engine = create_ledger_engine(
            "project-9",
            "user-9",
            repository=repository,
            settings=Settings(),
            privileged_users=["user-9"],
        )
        assert engine.project_id == "project-9"
        assert engine.user_id == "user-9"
