"""Google Sheets backend for the ledger store."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal
from functools import lru_cache
from threading import Lock
from typing import Any, Dict, Iterable, Iterator, List, Mapping

import gspread
from gspread.utils import rowcol_to_a1

from .domain_ledger import TABLE_HEADERS
from .exceptions import LedgerStoreError
from .helpers import get_setting
from .store import ROW_NUMBER, LedgerStore, is_blank_row

logger = logging.getLogger(__name__)

VALUE_INPUT_OPTION = "USER_ENTERED"


def _service_account_path() -> str:
    sa_file = get_setting("GOOGLE_SERVICE_ACCOUNT_FILE")
    if not sa_file:
        raise RuntimeError("GOOGLE_SERVICE_ACCOUNT_FILE is not configured.")
    return str(sa_file)


@lru_cache(maxsize=None)
def _get_client(sa_path: str) -> gspread.Client:
    return gspread.service_account(filename=sa_path)


def _open_spreadsheet(client: gspread.Client, sheet_id: str) -> gspread.Spreadsheet:
    if sheet_id.startswith("http"):
        return client.open_by_url(sheet_id)
    return client.open_by_key(sheet_id)


def _coerce_value(value: object) -> object:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    return value


@contextmanager
def _translate_errors(action: str, table: str) -> Iterator[None]:
    try:
        yield
    except gspread.exceptions.GSpreadException as exc:
        raise LedgerStoreError(f"{action} on {table} failed: {exc}") from exc


class WorksheetMissing(LedgerStoreError):
    pass


class GoogleSheetsLedgerStore(LedgerStore):
    """One worksheet per table inside a single spreadsheet."""

    def __init__(self, spreadsheet: gspread.Spreadsheet):
        self.spreadsheet = spreadsheet
        self._lock = Lock()
        self._worksheets: Dict[str, gspread.Worksheet] = {}
        self._header_cache: Dict[str, List[str]] = {}

    @classmethod
    def from_settings(cls) -> "GoogleSheetsLedgerStore":
        sheet_id = get_setting("LEDGER_SPREADSHEET_ID")
        if not sheet_id:
            raise RuntimeError("LEDGER_SPREADSHEET_ID is not configured.")
        client = _get_client(_service_account_path())
        with _translate_errors("open", str(sheet_id)):
            return cls(_open_spreadsheet(client, str(sheet_id)))

    def _worksheet(self, table: str) -> gspread.Worksheet:
        with self._lock:
            worksheet = self._worksheets.get(table)
        if worksheet is not None:
            return worksheet
        try:
            worksheet = self.spreadsheet.worksheet(table)
        except gspread.WorksheetNotFound as exc:
            raise WorksheetMissing(f"Worksheet {table!r} does not exist; run init_ledger_sheets") from exc
        except gspread.exceptions.GSpreadException as exc:
            raise LedgerStoreError(f"open worksheet {table} failed: {exc}") from exc
        with self._lock:
            self._worksheets[table] = worksheet
        return worksheet

    def _headers(self, table: str) -> List[str]:
        with self._lock:
            cached = self._header_cache.get(table)
        if cached:
            return cached
        with _translate_errors("read headers", table):
            headers = [str(value).strip() for value in self._worksheet(table).row_values(1)]
        if not any(headers):
            headers = list(TABLE_HEADERS.get(table, []))
        with self._lock:
            self._header_cache[table] = headers
        return headers

    def _values(self, table: str, row: Mapping[str, Any]) -> List[object]:
        return [_coerce_value(row.get(header)) for header in self._headers(table)]

    def _row_range(self, table: str, row_number: int) -> str:
        width = max(len(self._headers(table)), 1)
        return f"{rowcol_to_a1(row_number, 1)}:{rowcol_to_a1(row_number, width)}"

    def read_all(self, table: str) -> List[Dict[str, Any]]:
        with _translate_errors("read", table):
            values = self._worksheet(table).get_all_values()
        if not values:
            return []
        headers = [str(value).strip() for value in values[0]]
        with self._lock:
            self._header_cache[table] = headers
        rows: List[Dict[str, Any]] = []
        for offset, raw in enumerate(values[1:], start=2):
            if is_blank_row(raw):
                continue
            row: Dict[str, Any] = {}
            for index, header in enumerate(headers):
                if header:
                    row[header] = raw[index] if index < len(raw) else ""
            row[ROW_NUMBER] = offset
            rows.append(row)
        return rows

    def append_rows(self, table: str, rows: Iterable[Mapping[str, Any]]) -> None:
        payload = [self._values(table, row) for row in rows]
        if not payload:
            return
        with _translate_errors("append", table):
            self._worksheet(table).append_rows(payload, value_input_option=VALUE_INPUT_OPTION)

    def overwrite_row(self, table: str, row_number: int, row: Mapping[str, Any]) -> None:
        with _translate_errors("update", table):
            self._worksheet(table).update(
                range_name=self._row_range(table, row_number),
                values=[self._values(table, row)],
                value_input_option=VALUE_INPUT_OPTION,
            )

    def clear_row(self, table: str, row_number: int) -> None:
        with _translate_errors("clear row", table):
            self._worksheet(table).batch_clear([self._row_range(table, row_number)])

    def clear_table(self, table: str) -> None:
        worksheet = self._worksheet(table)
        width = max(len(self._headers(table)), 1)
        last_row = max(worksheet.row_count, 2)
        with _translate_errors("clear", table):
            worksheet.batch_clear([f"A2:{rowcol_to_a1(last_row, width)}"])

    def replace_table(self, table: str, headers: List[str], rows: Iterable[Mapping[str, Any]]) -> None:
        self.ensure_table(table, headers)
        worksheet = self._worksheet(table)
        values = [list(headers)] + [[_coerce_value(row.get(h)) for h in headers] for row in rows]
        with _translate_errors("replace", table):
            worksheet.clear()
            worksheet.update(range_name="A1", values=values, value_input_option=VALUE_INPUT_OPTION)
        with self._lock:
            self._header_cache[table] = list(headers)

    def ensure_table(self, table: str, headers: List[str]) -> bool:
        try:
            worksheet = self._worksheet(table)
        except WorksheetMissing:
            with _translate_errors("create", table):
                worksheet = self.spreadsheet.add_worksheet(title=table, rows=1000, cols=max(len(headers), 10))
                worksheet.update(range_name="A1", values=[list(headers)])
            with self._lock:
                self._worksheets[table] = worksheet
                self._header_cache[table] = list(headers)
            logger.info("Created worksheet %s", table)
            return True
        with _translate_errors("read headers", table):
            current = worksheet.row_values(1)
        if any(str(value).strip() for value in current):
            return False
        with _translate_errors("write headers", table):
            worksheet.update(range_name="A1", values=[list(headers)])
        with self._lock:
            self._header_cache[table] = list(headers)
        return True
