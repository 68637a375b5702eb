"""Wiring of the ledger components around a single store."""

from __future__ import annotations

import logging
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Optional

from django.core.exceptions import ImproperlyConfigured

from .action_log import ActionLog
from .finance_summary import FinancialAggregator
from .helpers import best_effort, get_setting, local_now
from .notifications import WhatsAppNotifier
from .overdue import OverdueDetector
from .sheets_store import GoogleSheetsLedgerStore
from .store import InMemoryLedgerStore, LedgerStore
from .student_accounts import StudentAccountManager
from .teachers import TeacherPayroll
from .transactions import TransactionRecorder

logger = logging.getLogger(__name__)

_memory_store: Optional[InMemoryLedgerStore] = None
_memory_guard = Lock()


def memory_store() -> InMemoryLedgerStore:
    global _memory_store
    with _memory_guard:
        if _memory_store is None:
            _memory_store = InMemoryLedgerStore()
            _memory_store.ensure_tables()
        return _memory_store


def reset_memory_store() -> None:
    global _memory_store
    with _memory_guard:
        _memory_store = None


def get_store() -> LedgerStore:
    backend = str(get_setting("LEDGER_STORE_BACKEND", "sheets")).strip().lower()
    if backend == "memory":
        return memory_store()
    if backend == "sheets":
        return GoogleSheetsLedgerStore.from_settings()
    raise ImproperlyConfigured(f"Unknown LEDGER_STORE_BACKEND {backend!r}; use 'sheets' or 'memory'.")


class Ledger:
    """All ledger components sharing one store, clock and action log.

    Student mutations and undo refresh every derived view; transactions,
    deposits and payroll only touch the analytics sheet.
    """

    def __init__(self, store: LedgerStore, notifier: Any = None, clock: Callable[[], datetime] = local_now):
        self.store = store
        self.clock = clock
        self.action_log = ActionLog(store, clock=clock, on_revert=self.refresh_derived_views)
        self.students = StudentAccountManager(store, self.action_log, clock=clock, on_change=self.refresh_derived_views)
        self.transactions = TransactionRecorder(store, self.action_log, clock=clock, on_change=self.refresh_analytics)
        self.teachers = TeacherPayroll(store, self.action_log, clock=clock, on_change=self.refresh_analytics)
        self.finance = FinancialAggregator(store, clock=clock)
        self.overdue = OverdueDetector(store, notifier, clock=clock)

    def refresh_analytics(self) -> None:
        best_effort("analytics refresh", self.finance.refresh_analytics)

    def refresh_derived_views(self) -> None:
        result = best_effort("overdue check", self.overdue.check_overdue_payments)
        entries = result["overdue"] if result else []
        best_effort("analytics refresh", self.finance.refresh_analytics, len(entries) if result else None)
        best_effort("grade sheet sync", self.students.sync_grade_sheets, entries)


def get_ledger(notifier: Any = None) -> Ledger:
    if notifier is None:
        notifier = WhatsAppNotifier.from_settings()
    return Ledger(get_store(), notifier=notifier)
