"""
Action History Models

An ActionRecord is the undo/redo unit. It carries enough data to describe
exactly what a committed mutation changed:

- forward_data: the entries as they are after the action
- inverse_data: the entries as they were before the action, each with the
  store position it occupied (so an undone delete goes back where it was)
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from gull.models.entry import Entry


class ActionKind(str, Enum):
    """Kinds of mutation recorded in history."""
    ADD = "add"
    BATCH_ADD = "batchAdd"
    EDIT = "edit"
    DELETE = "delete"
    BATCH_DELETE = "batchDelete"
    FILTER_DEDUCTION = "filterDeduction"


class PositionedEntry(BaseModel):
    """An entry together with its index in the project's entry list."""
    position: int = Field(ge=0)
    entry: Entry


class ActionRecord(BaseModel):
    """A committed, reversible mutation."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    kind: ActionKind
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    description: str = Field(default="", max_length=500)
    affected_numbers: list[str] = Field(default_factory=list)
    forward_data: list[Entry] = Field(default_factory=list)
    inverse_data: list[PositionedEntry] = Field(default_factory=list)
    project_id: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Compact representation for structured logging."""
        return {
            "action_id": self.id,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "description": self.description,
            "affected_numbers": self.affected_numbers,
            "entry_count": max(len(self.forward_data), len(self.inverse_data)),
        }
