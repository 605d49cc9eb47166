"""
Google Sheets Document Store

DESIGN DECISION: Google Sheets is the shared backend because:
1. The household can look at the raw data directly in Sheets
2. No database to run
3. Built-in backup and sharing through Google

LAYOUT: One worksheet ("AppData"). Each top-level ledger field is stored as
JSON in one or more rows:

    field | part | value (JSON chunk) | updated_at

Large fields are split into chunks because a single cell holds at most
50,000 characters.

TRADEOFFS:
- No real-time push; changes are picked up by polling
- Every merge rewrites the sheet, so the last writer wins
- Writes made while the API is unreachable are queued in memory and
  flushed on the next successful read or write
"""

import asyncio
import json
import threading
from datetime import datetime, timezone
from typing import Any, Optional

import gspread
import structlog
from google.auth.exceptions import TransportError
from google.oauth2.service_account import Credentials
from requests.exceptions import RequestException
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finledger.config import GoogleSheetsSettings, get_settings
from finledger.services.storage.interface import (
    DocumentCallback,
    DocumentStoreInterface,
    ErrorCallback,
    RemoteUnavailableError,
    StorageError,
    StoreNotConfiguredError,
    Unsubscribe,
    WriteOutcome,
)


DATA_COLUMNS = ["field", "part", "value", "updated_at"]

# Stay under the 50,000 character cell limit
CHUNK_SIZE = 45_000

_TRANSIENT_STATUS = {429, 500, 502, 503, 504}
_CONFIG_STATUS = {401, 403, 404}


def translate_error(error: Exception) -> StorageError:
    """Map gspread / transport failures onto the storage error hierarchy."""
    if isinstance(error, StorageError):
        return error
    if isinstance(error, gspread.exceptions.APIError):
        status = getattr(error.response, "status_code", None)
        if status in _TRANSIENT_STATUS:
            return RemoteUnavailableError(f"Google Sheets unavailable ({status}): {error}")
        if status in _CONFIG_STATUS:
            return StoreNotConfiguredError(f"Google Sheets rejected the request ({status}): {error}")
        return StorageError(f"Google Sheets error: {error}")
    if isinstance(error, (RequestException, TransportError, OSError)):
        return RemoteUnavailableError(f"Cannot reach Google Sheets: {error}")
    return StorageError(f"Unexpected storage failure: {error}")


def encode_document(
    document: dict[str, Any],
    updated_at: Optional[datetime] = None,
) -> list[list[str]]:
    """Document -> sheet rows (header included)."""
    stamp = (updated_at or datetime.now(timezone.utc)).isoformat()
    rows = [list(DATA_COLUMNS)]
    for field in sorted(document):
        text = json.dumps(document[field], separators=(",", ":"), ensure_ascii=False)
        chunks = [text[i:i + CHUNK_SIZE] for i in range(0, len(text), CHUNK_SIZE)] or [""]
        for part, chunk in enumerate(chunks):
            rows.append([field, str(part), chunk, stamp])
    return rows


def decode_document(rows: list[list[str]]) -> Optional[dict[str, Any]]:
    """Sheet rows -> document. Returns None for an empty sheet."""
    parts: dict[str, list[tuple[int, str]]] = {}
    for row in rows[1:]:
        if not row or not row[0]:
            continue
        padded = list(row) + [""] * (len(DATA_COLUMNS) - len(row))
        field, part, value = padded[0], padded[1], padded[2]
        try:
            index = int(part)
        except ValueError:
            index = 0
        parts.setdefault(field, []).append((index, value))

    if not parts:
        return None

    document = {}
    for field, chunks in parts.items():
        text = "".join(value for _, value in sorted(chunks))
        try:
            document[field] = json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageError(f"Stored field '{field}' is not valid JSON: {e}")
    return document


class GoogleSheetsClient:
    """Thin gspread session: authorization plus locating (or creating) the data worksheet."""

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RemoteUnavailableError),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Authorize once with the service account key and reuse the client."""
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
                raise StoreNotConfiguredError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except ValueError as e:
                raise StoreNotConfiguredError(f"Invalid Google credentials: {e}")
            except Exception as e:
                raise translate_error(e)

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Open the ledger spreadsheet by id, once."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise StoreNotConfiguredError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
            except Exception as e:
                raise translate_error(e)
        return self._spreadsheet

    def get_data_sheet(self) -> gspread.Worksheet:
        """Get or create the ledger data worksheet."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(self._settings.data_sheet_name)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=self._settings.data_sheet_name,
                rows=100,
                cols=len(DATA_COLUMNS),
            )
            sheet.append_row(DATA_COLUMNS)
        except Exception as e:
            raise translate_error(e)
        return sheet


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the ledger document store.

    gspread is synchronous, so every API call runs in a worker thread.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._poll_interval = poll_interval or self._client.settings.poll_interval_seconds
        self._pending: dict[str, Any] = {}
        # merge() runs on the loop, flushes run in worker threads
        self._pending_lock = threading.Lock()
        self._logger = structlog.get_logger("finledger.storage.sheets")

    @property
    def is_remote(self) -> bool:
        return True

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._pending)

    # ------------------------------------------------------------------
    # Synchronous sheet access (runs in worker threads)
    # ------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(RemoteUnavailableError),
        reraise=True,
    )
    def _read_rows(self) -> list[list[str]]:
        try:
            return self._client.get_data_sheet().get_all_values()
        except Exception as e:
            raise translate_error(e)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(RemoteUnavailableError),
        reraise=True,
    )
    def _write_rows(self, rows: list[list[str]], previous_count: int) -> None:
        try:
            sheet = self._client.get_data_sheet()
            if len(rows) > sheet.row_count:
                sheet.add_rows(len(rows) - sheet.row_count)
            sheet.update(range_name=f"A1:D{len(rows)}", values=rows)
            if previous_count > len(rows):
                sheet.batch_clear([f"A{len(rows) + 1}:D{previous_count}"])
        except Exception as e:
            raise translate_error(e)

    def _merge_sync(self, partial: dict[str, Any]) -> dict[str, Any]:
        rows = self._read_rows()
        document = decode_document(rows) or {}
        document.update(partial)
        self._write_rows(encode_document(document), previous_count=len(rows))
        return document

    def _take_pending(self) -> dict[str, Any]:
        with self._pending_lock:
            return dict(self._pending)

    def _discard_written(self, written: dict[str, Any]) -> None:
        """Drop queued fields that were written, unless re-queued since."""
        with self._pending_lock:
            for field, value in written.items():
                if field in self._pending and self._pending[field] is value:
                    del self._pending[field]

    def _read_sync(self) -> Optional[dict[str, Any]]:
        pending = self._take_pending()
        if pending:
            document = self._merge_sync(pending)
            self._discard_written(pending)
            self._logger.info("pending_writes_flushed", fields=sorted(pending))
            return document
        return decode_document(self._read_rows())

    # ------------------------------------------------------------------
    # DocumentStoreInterface
    # ------------------------------------------------------------------

    async def read(self) -> Optional[dict[str, Any]]:
        return await asyncio.to_thread(self._read_sync)

    async def merge(self, partial: dict[str, Any]) -> WriteOutcome:
        combined = {**self._take_pending(), **partial}
        try:
            await asyncio.to_thread(self._merge_sync, combined)
        except RemoteUnavailableError as e:
            with self._pending_lock:
                self._pending.update(partial)
            self._logger.warning(
                "write_queued_offline",
                fields=sorted(partial),
                error=str(e),
            )
            return WriteOutcome.QUEUED
        self._discard_written(combined)
        return WriteOutcome.COMMITTED

    def subscribe(
        self,
        on_data: DocumentCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """Poll the sheet; requires a running event loop."""
        task = asyncio.get_running_loop().create_task(self._poll(on_data, on_error))
        return task.cancel

    async def _poll(self, on_data: DocumentCallback, on_error: ErrorCallback) -> None:
        last: Any = object()
        while True:
            try:
                document = await self.read()
            except StorageError as e:
                self._logger.warning("poll_failed", error=str(e))
                on_error(e)
            else:
                if document != last:
                    last = document
                    on_data(document)
            await asyncio.sleep(self._poll_interval)
