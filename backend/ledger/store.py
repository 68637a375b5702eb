"""Ledger Store Adapter: row-level access to the ledger tables.

Rows are plain dicts keyed by column header. Rows returned by ``read_all``
also carry ``__row_number``, the 1-based sheet row (the header is row 1).
Clearing a row blanks it in place, so row numbers of the remaining rows
never shift; blank rows are skipped on read.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .domain_ledger import CONFIG, DEFAULT_CONFIG, TABLE_HEADERS
from .exceptions import LedgerStoreError
from .helpers import clean_cell

logger = logging.getLogger(__name__)

ROW_NUMBER = "__row_number"


def cell_text(value: Any) -> str:
    """Render a value the way the sheet shows it back on read."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f")
    return str(value)


def is_blank_row(values: Iterable[Any]) -> bool:
    return all(clean_cell(value) == "" for value in values)


class LedgerStore:
    """Interface every backend implements; shared helpers live here."""

    def read_all(self, table: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def append_rows(self, table: str, rows: Iterable[Mapping[str, Any]]) -> None:
        raise NotImplementedError

    def overwrite_row(self, table: str, row_number: int, row: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def clear_row(self, table: str, row_number: int) -> None:
        raise NotImplementedError

    def clear_table(self, table: str) -> None:
        raise NotImplementedError

    def replace_table(self, table: str, headers: List[str], rows: Iterable[Mapping[str, Any]]) -> None:
        raise NotImplementedError

    def ensure_table(self, table: str, headers: List[str]) -> bool:
        """Create the table or its header row when missing; True if created."""
        raise NotImplementedError

    def append_row(self, table: str, row: Mapping[str, Any]) -> None:
        self.append_rows(table, [row])

    def find_row(self, table: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        wanted = clean_cell(value)
        if not wanted:
            return None
        for row in self.read_all(table):
            if clean_cell(row.get(column)) == wanted:
                return row
        return None

    def get_config(self) -> Dict[str, str]:
        config: Dict[str, str] = {}
        for row in self.read_all(CONFIG):
            key = clean_cell(row.get("Setting"))
            if key:
                config[key] = clean_cell(row.get("Value"))
        return config

    def set_config(self, key: str, value: Any) -> None:
        row = self.find_row(CONFIG, "Setting", key)
        payload = {"Setting": key, "Value": value}
        if row:
            self.overwrite_row(CONFIG, row[ROW_NUMBER], payload)
        else:
            self.append_row(CONFIG, payload)

    def ensure_tables(self) -> Dict[str, Any]:
        """Create missing tables and seed missing default config keys."""
        created = [table for table, headers in TABLE_HEADERS.items() if self.ensure_table(table, headers)]
        existing = self.get_config()
        seeded = []
        for key, value in DEFAULT_CONFIG:
            if key not in existing:
                self.append_row(CONFIG, {"Setting": key, "Value": value})
                seeded.append(key)
        if created or seeded:
            logger.info("Initialised ledger tables %s and config keys %s", created, seeded)
        return {"created_tables": created, "seeded_config": seeded}


class InMemoryLedgerStore(LedgerStore):
    """Process-local store with the same row semantics as the spreadsheet.

    Cells are kept as text, as the Sheets API returns them, so every read
    goes through the same lenient parsing as production.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._headers: Dict[str, List[str]] = {}
        self._rows: Dict[str, List[Optional[Dict[str, str]]]] = {}

    def _table(self, table: str) -> List[Optional[Dict[str, str]]]:
        if table not in self._rows:
            headers = TABLE_HEADERS.get(table)
            if headers is None:
                raise LedgerStoreError(f"Unknown table {table!r}")
            self._headers[table] = list(headers)
            self._rows[table] = []
        return self._rows[table]

    def _render(self, table: str, row: Mapping[str, Any]) -> Dict[str, str]:
        return {header: cell_text(row.get(header)) for header in self._headers[table]}

    def read_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._table(table)
            result = []
            for index, row in enumerate(rows):
                if row is None or is_blank_row(row.values()):
                    continue
                item: Dict[str, Any] = dict(row)
                item[ROW_NUMBER] = index + 2
                result.append(item)
            return result

    def append_rows(self, table: str, rows: Iterable[Mapping[str, Any]]) -> None:
        with self._lock:
            target = self._table(table)
            for row in rows:
                target.append(self._render(table, row))

    def overwrite_row(self, table: str, row_number: int, row: Mapping[str, Any]) -> None:
        with self._lock:
            target = self._table(table)
            index = row_number - 2
            if index < 0 or index >= len(target):
                raise LedgerStoreError(f"Row {row_number} is outside {table}")
            target[index] = self._render(table, row)

    def clear_row(self, table: str, row_number: int) -> None:
        with self._lock:
            target = self._table(table)
            index = row_number - 2
            if 0 <= index < len(target):
                target[index] = None

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._table(table).clear()

    def replace_table(self, table: str, headers: List[str], rows: Iterable[Mapping[str, Any]]) -> None:
        with self._lock:
            self._headers[table] = list(headers)
            self._rows[table] = [self._render(table, row) for row in rows]

    def ensure_table(self, table: str, headers: List[str]) -> bool:
        with self._lock:
            if table in self._rows:
                return False
            self._headers[table] = list(headers)
            self._rows[table] = []
            return True

    def headers(self, table: str) -> List[str]:
        with self._lock:
            self._table(table)
            return list(self._headers[table])
