"""
Tests for the action history.
"""

import pytest

from gull.ledger.history import ActionHistory
from gull.models.history import ActionKind


class Tally:
    """Tiny reversible state for driving the history."""

    def __init__(self):
        self.value = 0
        self.fail = False

    def step(self, delta):
        async def run():
            if self.fail:
                raise RuntimeError("step failed")
            self.value += delta
        return run


async def record(history, tally, delta):
    return await history.record(
        ActionKind.ADD,
        forward=tally.step(delta),
        inverse=tally.step(-delta),
        affected_numbers=["07"],
        description=f"add {delta}",
    )


class TestActionHistory:
    """Tests for linear undo/redo."""

    @pytest.mark.asyncio
    async def test_record_runs_forward(self):
        """Test that recording executes and advances the cursor."""
        history, tally = ActionHistory("p"), Tally()
        action = await record(history, tally, 5)

        assert tally.value == 5
        assert history.cursor == 0
        assert history.records == [action]
        assert action.project_id == "p"
        assert history.can_undo and not history.can_redo

    @pytest.mark.asyncio
    async def test_failed_forward_records_nothing(self):
        """Test that a failing forward leaves history unchanged."""
        history, tally = ActionHistory("p"), Tally()
        await record(history, tally, 5)
        tally.fail = True

        with pytest.raises(RuntimeError):
            await record(history, tally, 7)

        assert history.cursor == 0
        assert len(history.all_records) == 1

    @pytest.mark.asyncio
    async def test_undo_redo_round_trip(self):
        """Test that undo then redo restores the state."""
        history, tally = ActionHistory("p"), Tally()
        await record(history, tally, 5)
        await record(history, tally, 3)

        await history.undo()
        assert tally.value == 5
        await history.undo()
        assert tally.value == 0
        assert await history.undo() is None

        await history.redo()
        await history.redo()
        assert tally.value == 8
        assert await history.redo() is None

    @pytest.mark.asyncio
    async def test_new_action_truncates_redo(self):
        """Test that redo is impossible after a new action."""
        history, tally = ActionHistory("p"), Tally()
        await record(history, tally, 1)
        await record(history, tally, 2)
        await history.undo()

        latest = await record(history, tally, 10)

        assert not history.can_redo
        assert [r.description for r in history.all_records] == ["add 1", "add 10"]
        assert history.records[-1] == latest
        assert tally.value == 11

    @pytest.mark.asyncio
    async def test_failed_undo_keeps_cursor(self):
        """Test that a failing inverse doesn't move the cursor."""
        history, tally = ActionHistory("p"), Tally()
        await record(history, tally, 4)
        tally.fail = True

        with pytest.raises(RuntimeError):
            await history.undo()
        assert history.cursor == 0

        tally.fail = False
        await history.undo()
        assert history.cursor == -1
        assert tally.value == 0

    @pytest.mark.asyncio
    async def test_clear(self):
        """Test clearing the history."""
        history, tally = ActionHistory("p"), Tally()
        await record(history, tally, 4)
        history.clear()
        assert history.cursor == -1
        assert history.all_records == []
        assert not history.can_undo
