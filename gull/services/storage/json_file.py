"""
JSON File Storage Implementation

Local device storage: one JSON file per project holding the list of
persisted entry records, and one balances file mapping user id to balance.

Layout under data_dir:
    entries/<project id>.json   [ {id, projectId, number, entryType, ...}, ... ]
    balances.json               { "<user id>": 1000, ... }

Files are written to a temporary file and moved into place, so a failed
write never leaves a half-written project behind.
"""

import json
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

from tenacity import retry, stop_after_attempt, wait_exponential

from gull.config import get_settings
from gull.models.entry import Entry
from gull.services.storage.interface import LedgerRepository, StorageError


def _decimal_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JsonFileLedgerRepository(LedgerRepository):
    """File-per-project JSON repository."""

    def __init__(self, data_dir: Optional[str] = None):
        self._root = Path(data_dir or get_settings().storage.data_dir)

    def _project_path(self, project_id: str) -> Path:
        return self._root / "entries" / f"{quote(project_id, safe='')}.json"

    @property
    def _balances_path(self) -> Path:
        return self._root / "balances.json"

    def _read(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh, parse_float=Decimal)

    def _write(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, default=_decimal_default)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def load_entries(self, project_id: str) -> list[Entry]:
        try:
            records = self._read(self._project_path(project_id), [])
            return [Entry.from_record(record) for record in records]
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to load entries for {project_id}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_entries(self, project_id: str, entries: list[Entry]) -> None:
        try:
            self._write(
                self._project_path(project_id),
                [entry.to_record() for entry in entries],
            )
        except OSError as e:
            raise StorageError(f"Failed to save entries for {project_id}: {e}")

    async def load_balance(self, user_id: str) -> Optional[Decimal]:
        try:
            balances = self._read(self._balances_path, {})
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to load balances: {e}")
        value = balances.get(user_id)
        return Decimal(str(value)) if value is not None else None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_balance(self, user_id: str, balance: Decimal) -> None:
        try:
            balances = self._read(self._balances_path, {})
            balances[user_id] = balance
            self._write(self._balances_path, balances)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to save balance for {user_id}: {e}")
