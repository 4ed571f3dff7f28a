"""
Google Sheets Activity Mirror

DESIGN DECISION: Household members can follow the activity feed in a shared
spreadsheet without any extra tooling:
1. Non-technical users read it directly in Sheets
2. No extra database for a side-effect log
3. The sheet doubles as an export the household already knows how to use

TRADEOFFS:
- Only the activity log goes here. The ledger itself needs guarded
  updates that Sheets cannot give us.
- Reads filter in Python over the whole sheet (fine for a household feed)
- gspread is synchronous; calls run in a worker thread
"""

import asyncio
import json
from datetime import datetime
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from envelope_ledger.config import GoogleSheetsSettings, get_settings
from envelope_ledger.models.activity import ActivityAction, ActivityEntry
from envelope_ledger.services.storage.interface import (
    ActivityStorageInterface,
    ConnectionError,
    StorageError,
)


logger = structlog.get_logger("envelope_ledger.storage.sheets")

ACTIVITY_COLUMNS = [
    "id",
    "created_at",
    "household_id",
    "user_id",
    "action",
    "entity_type",
    "entity_id",
    "details_json",
]

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


class GoogleSheetsClient:
    """
    Authenticated handle on the activity spreadsheet.

    Connecting is retried; the spreadsheet and worksheet are looked up once
    and cached.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Authenticate with the service account credentials."""
        if self._client is None:
            try:
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=SCOPES,
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
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_activity_sheet(self) -> gspread.Worksheet:
        """Get or create the activity worksheet."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(self._settings.activity_sheet_name)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=self._settings.activity_sheet_name,
                rows=5000,
                cols=len(ACTIVITY_COLUMNS),
            )
            sheet.append_row(ACTIVITY_COLUMNS)
        return sheet


class GoogleSheetsActivityStorage(ActivityStorageInterface):
    """
    Google Sheets implementation of the activity log.

    Entries are append-only, one row per entry.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _row_to_entry(row: list) -> ActivityEntry:
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return ActivityEntry(
            id=UUID(safe_get(0)),
            created_at=datetime.fromisoformat(safe_get(1)),
            household_id=UUID(safe_get(2)) if safe_get(2) else None,
            user_id=UUID(safe_get(3)) if safe_get(3) else None,
            action=ActivityAction(safe_get(4)),
            entity_type=safe_get(5),
            entity_id=UUID(safe_get(6)) if safe_get(6) else None,
            details=json.loads(safe_get(7)) if safe_get(7) else {},
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _append_row(self, row: list) -> None:
        sheet = self._client.get_activity_sheet()
        sheet.append_row(row, value_input_option="RAW")

    async def append_activity(self, entry: ActivityEntry) -> bool:
        try:
            await asyncio.to_thread(self._append_row, entry.to_sheets_row())
            return True
        except Exception as e:
            # The activity log must never break a ledger operation
            logger.warning(
                "activity_sheet_write_failed",
                activity_id=str(entry.id),
                error=str(e),
            )
            return False

    async def list_activity(self, household_id: UUID, limit: int = 100) -> list[ActivityEntry]:
        try:
            sheet = await asyncio.to_thread(self._client.get_activity_sheet)
            all_rows = (await asyncio.to_thread(sheet.get_all_values))[1:]
        except Exception as e:
            raise StorageError(f"Failed to read activity sheet: {e}")

        entries = []
        for row in all_rows:
            if not row or len(row) < 3 or row[2] != str(household_id):
                continue
            try:
                entries.append(self._row_to_entry(row))
            except (ValueError, IndexError):
                continue  # hand-edited rows

        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit]
