"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a durable backend because:
1. Owners can look at their ledger directly in a spreadsheet
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal ledger)
- No multi-row transactions. We get atomic batches by staging the
  whole batch locally and writing every touched worksheet back in a
  single values_batch_update request: one API call either lands
  completely or fails completely.
- Limited query capabilities (we filter in Python)

Each record kind has its own worksheet with a header row and one row
per record. Values are written RAW so they read back byte-identical.
"""

import json
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from ledger_engine.config import GoogleSheetsSettings, get_settings
from ledger_engine.errors import ConnectionError, StorageError
from ledger_engine.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger_engine.models.records import RecordKind
from ledger_engine.services.storage.documents import (
    Collection,
    DocumentLedgerStore,
)
from ledger_engine.services.storage.interface import AuditStorageInterface


# Column layout per record kind. The first column is the record key.
LEDGER_COLUMNS: dict[RecordKind, list[str]] = {
    RecordKind.TRANSACTION: [
        "id",
        "owner_id",
        "type",
        "amount",
        "category",
        "description",
        "date",
        "is_paid",
        "series_id",
        "installment_label",
    ],
    RecordKind.CARD_EXPENSE: [
        "id",
        "card_id",
        "description",
        "amount",
        "category",
        "date",
        "is_billed",
        "billing_cycle",
        "series_id",
        "installment_label",
    ],
    RecordKind.CREDIT_CARD: [
        "id",
        "owner_id",
        "name",
        "limit",
        "closing_day",
        "due_day",
    ],
    RecordKind.CATEGORY_SET: [
        "owner_id",
        "income",
        "expense",
    ],
}

# Columns holding JSON-encoded lists
JSON_COLUMNS = {"income", "expense"}

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "owner_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

logger = structlog.get_logger(__name__)


def document_to_row(kind: RecordKind, document: dict) -> list[str]:
    """Flatten a document into the worksheet's column order."""
    row = []
    for column in LEDGER_COLUMNS[kind]:
        value = document.get(column)
        if value is None:
            row.append("")
        elif column in JSON_COLUMNS:
            row.append(json.dumps(value, ensure_ascii=False))
        elif isinstance(value, bool):
            row.append("true" if value else "false")
        else:
            row.append(str(value))
    return row


def row_to_document(kind: RecordKind, row: list[str]) -> dict:
    """
    Rebuild a document from a worksheet row.

    Blank cells become absent fields, so optional fields fall back to
    their defaults and required ones fail validation on read.
    """
    document = {}
    for index, column in enumerate(LEDGER_COLUMNS[kind]):
        cell = row[index] if index < len(row) else ""
        if cell == "":
            continue
        if column in JSON_COLUMNS:
            try:
                document[column] = json.loads(cell)
            except json.JSONDecodeError:
                # Leave the raw text; validation rejects it on read
                document[column] = cell
        else:
            document[column] = cell
    return document


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
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
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
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

    def sheet_name(self, kind: RecordKind) -> str:
        return {
            RecordKind.TRANSACTION: self._settings.transactions_sheet_name,
            RecordKind.CARD_EXPENSE: self._settings.card_expenses_sheet_name,
            RecordKind.CREDIT_CARD: self._settings.credit_cards_sheet_name,
            RecordKind.CATEGORY_SET: self._settings.categories_sheet_name,
        }[kind]

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_ledger_sheet(self, kind: RecordKind) -> gspread.Worksheet:
        """Get or create the worksheet of one record kind."""
        return self._get_or_create(self.sheet_name(kind), LEDGER_COLUMNS[kind], 1000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            5000,  # More rows for audit log
        )


class GoogleSheetsLedgerStore(DocumentLedgerStore):
    """
    Google Sheets implementation of the ledger store.

    Reads fetch whole worksheets; a batch rewrites every worksheet it
    touches in one request.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        super().__init__()
        self._client = client or GoogleSheetsClient()
        # Data rows last read per kind, used to blank out rows a batch removes
        self._row_counts: dict[RecordKind, int] = {}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _load(self, kind: RecordKind) -> Collection:
        try:
            sheet = self._client.get_ledger_sheet(kind)
            rows = sheet.get_all_values()[1:]  # Skip header
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {kind.value} sheet: {e}")

        self._row_counts[kind] = len(rows)
        collection: Collection = {}
        for row in rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            collection[row[0]] = row_to_document(kind, row)
        return collection

    async def _commit(self, staged: dict[RecordKind, Collection]) -> None:
        data = []
        for kind, collection in staged.items():
            sheet = self._client.get_ledger_sheet(kind)
            columns = LEDGER_COLUMNS[kind]
            values = [columns] + [
                document_to_row(kind, document) for document in collection.values()
            ]
            # Blank out rows left over from a longer previous version
            leftover = self._row_counts.get(kind, 0) + 1 - len(values)
            values.extend([[""] * len(columns)] * max(leftover, 0))

            if sheet.row_count < len(values):
                sheet.add_rows(len(values) - sheet.row_count)

            data.append({"range": f"'{sheet.title}'!A1", "values": values})

        self._write(data)
        for kind, collection in staged.items():
            self._row_counts[kind] = len(collection)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _write(self, data: list[dict]) -> None:
        """Single request covering every touched worksheet."""
        spreadsheet = self._client.get_spreadsheet()
        spreadsheet.values_batch_update({
            "valueInputOption": "RAW",
            "data": data,
        })


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            owner_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    def _read_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, json.JSONDecodeError) as e:
                logger.warning("skipping_invalid_audit_row", event_id=row[0], error=str(e))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._read_events()
                if e.correlation_id == correlation_id
            ]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._read_events()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
