"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a shared storage backend because:
1. Operators can view project entries directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data
- No transactions (the ledger engine compensates with careful ordering)
- Limited query capabilities (we filter in Python)

Numbers are written with value_input_option="RAW" so "07" stays "07"
instead of being turned into the number 7 by Sheets.
"""

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

import gspread
from gspread.utils import rowcol_to_a1
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from gull.config import get_settings
from gull.models.audit import AuditEvent, AuditEventType, AuditSeverity
from gull.models.entry import Entry
from gull.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerRepository,
    StorageError,
)


# Column mappings for Entries sheet (same keys as the JSON record)
ENTRY_COLUMNS = [
    "id",
    "projectId",
    "number",
    "entryType",
    "first",
    "second",
    "notes",
    "isFilterDeduction",
    "createdAt",
    "updatedAt",
]

BALANCE_COLUMNS = ["userId", "balance"]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "project_id",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Establish connection using service account credentials."""
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _worksheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_entries_sheet(self) -> gspread.Worksheet:
        return self._worksheet(self._settings.entries_sheet_name, ENTRY_COLUMNS, 5000)

    def get_balances_sheet(self) -> gspread.Worksheet:
        return self._worksheet(self._settings.balances_sheet_name, BALANCE_COLUMNS, 500)

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self._worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


def entry_to_row(entry: Entry) -> list:
    """Convert an Entry to a spreadsheet row (all cells as strings)."""
    return [
        entry.id,
        entry.project_id,
        entry.number,
        entry.entry_kind.value,
        str(entry.first),
        str(entry.second),
        entry.notes or "",
        "TRUE" if entry.is_deduction else "",
        entry.created_at.isoformat(),
        entry.updated_at.isoformat(),
    ]


def row_to_entry(row: list) -> Entry:
    """Convert a spreadsheet row back to an Entry."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default

    try:
        first = Decimal(safe_get(4, "0"))
        second = Decimal(safe_get(5, "0"))
    except InvalidOperation as e:
        raise StorageError(f"Malformed amount in row {row!r}: {e}")

    return Entry(
        id=safe_get(0),
        project_id=safe_get(1),
        number=safe_get(2),
        entry_kind=safe_get(3),
        first=first,
        second=second,
        notes=safe_get(6) or None,
        is_deduction=safe_get(7).upper() == "TRUE",
        created_at=datetime.fromisoformat(safe_get(8)),
        updated_at=datetime.fromisoformat(safe_get(9)),
    )


class GoogleSheetsLedgerRepository(LedgerRepository):
    """
    Google Sheets implementation of the ledger repository.

    All projects share one Entries worksheet; saving a project rewrites the
    sheet with the other projects' rows untouched and this project's rows
    replaced.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    async def load_entries(self, project_id: str) -> list[Entry]:
        try:
            sheet = self._client.get_entries_sheet()
            rows = sheet.get_all_values()[1:]  # Skip header
            return [
                row_to_entry(row)
                for row in rows
                if len(row) > 1 and row[0] and row[1] == project_id
            ]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to load entries: {e}")

    async def save_entries(self, project_id: str, entries: list[Entry]) -> None:
        """
        Replace this project's rows.

        The sheet is read once and the new contents built before anything is
        written, so a retried write can never rebuild from a half-written
        sheet. Rows are overwritten in place and only the stale tail is
        cleared; the sheet is never emptied.
        """
        try:
            sheet = self._client.get_entries_sheet()
            rows = sheet.get_all_values()
        except Exception as e:
            raise StorageError(f"Failed to load entries: {e}")

        kept = [row for row in rows[1:] if len(row) > 1 and row[0] and row[1] != project_id]
        new_rows = [ENTRY_COLUMNS] + kept + [entry_to_row(entry) for entry in entries]
        await self._write_rows(sheet, new_rows, previous_height=len(rows))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _write_rows(self, sheet, new_rows: list[list], previous_height: int) -> None:
        try:
            sheet.update(range_name="A1", values=new_rows, value_input_option="RAW")
            if previous_height > len(new_rows):
                last_cell = rowcol_to_a1(previous_height, len(ENTRY_COLUMNS))
                sheet.batch_clear([f"A{len(new_rows) + 1}:{last_cell}"])
        except Exception as e:
            raise StorageError(f"Failed to save entries: {e}")

    async def load_balance(self, user_id: str) -> Optional[Decimal]:
        try:
            sheet = self._client.get_balances_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == user_id:
                    return Decimal(row[1]) if len(row) > 1 and row[1] else None
            return None
        except Exception as e:
            raise StorageError(f"Failed to load balance: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_balance(self, user_id: str, balance: Decimal) -> None:
        try:
            sheet = self._client.get_balances_sheet()
            all_rows = sheet.get_all_values()
            for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
                if row and row[0] == user_id:
                    sheet.update(
                        range_name=f"B{idx}",
                        values=[[str(balance)]],
                        value_input_option="RAW",
                    )
                    return
            sheet.append_row([user_id, str(balance)], value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to save balance: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Append-only: we never modify or delete audit rows.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        def safe_get(index: int) -> str:
            try:
                return row[index]
            except IndexError:
                return ""

        details_json = safe_get(10)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            project_id=safe_get(4) or None,
            user_id=safe_get(5) or None,
            entity_type=safe_get(6) or None,
            entity_id=safe_get(7) or None,
            correlation_id=UUID(safe_get(8)) if safe_get(8) else None,
            description=safe_get(9),
            details=json.loads(details_json) if details_json else {},
            error_message=safe_get(11) or None,
            is_user_action=safe_get(12) == "True",
        )

    def _all_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, KeyError):
                continue  # Skip malformed rows
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to append audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to read audit log: {e}")
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        try:
            events = self._all_events()
        except Exception as e:
            raise StorageError(f"Failed to read audit log: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
