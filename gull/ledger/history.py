"""
Action History (Undo/Redo)

One linear history per project: a list of committed actions and a cursor
pointing at the last applied one (-1 when nothing is applied).

Every action is a pair of async callables. `forward` performs the command
and `inverse` takes it back exactly. The history never inspects what they
do; the engine builds them from exact before/after records so an undo puts
back the same ids, timestamps and positions.

Rules:
- record() runs forward first and only records when it succeeded.
- A new action drops every record after the cursor (no redo after a new
  action).
- undo()/redo() move the cursor only when the callable succeeded, so a
  failed undo can simply be retried.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from gull.models.entry import Entry
from gull.models.history import ActionKind, ActionRecord, PositionedEntry


Operation = Callable[[], Awaitable[object]]


@dataclass
class _Command:
    record: ActionRecord
    forward: Operation
    inverse: Operation


class ActionHistory:
    """Linear undo/redo stack for one project."""

    def __init__(self, project_id: str):
        self._project_id = project_id
        self._commands: list[_Command] = []
        self._cursor = -1

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def can_undo(self) -> bool:
        return self._cursor >= 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._commands) - 1

    @property
    def records(self) -> list[ActionRecord]:
        """Applied actions, oldest first."""
        return [cmd.record for cmd in self._commands[: self._cursor + 1]]

    @property
    def all_records(self) -> list[ActionRecord]:
        """Applied and undone actions, oldest first."""
        return [cmd.record for cmd in self._commands]

    async def record(
        self,
        kind: ActionKind,
        forward: Operation,
        inverse: Operation,
        affected_numbers: Iterable[str] = (),
        description: str = "",
        forward_data: Optional[list[Entry]] = None,
        inverse_data: Optional[list[PositionedEntry]] = None,
    ) -> ActionRecord:
        """
        Execute `forward` and record it as a new action.

        If `forward` raises, the exception propagates and the history is
        left untouched.
        """
        await forward()

        record = ActionRecord(
            kind=kind,
            description=description,
            affected_numbers=list(dict.fromkeys(affected_numbers)),
            forward_data=forward_data or [],
            inverse_data=inverse_data or [],
            project_id=self._project_id,
        )
        del self._commands[self._cursor + 1:]
        self._commands.append(_Command(record=record, forward=forward, inverse=inverse))
        self._cursor += 1
        return record

    async def undo(self) -> Optional[ActionRecord]:
        """Take back the action at the cursor. None when there is nothing to undo."""
        if not self.can_undo:
            return None
        command = self._commands[self._cursor]
        await command.inverse()
        self._cursor -= 1
        return command.record

    async def redo(self) -> Optional[ActionRecord]:
        """Re-apply the next undone action. None when there is nothing to redo."""
        if not self.can_redo:
            return None
        command = self._commands[self._cursor + 1]
        await command.forward()
        self._cursor += 1
        return command.record

    def clear(self) -> None:
        self._commands.clear()
        self._cursor = -1
