"""Income/expense transactions and cash<->bank movements."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from .action_log import ActionLog, ActionType, RowUndo
from .domain_ledger import (
    BANK_DEPOSITS,
    CASH_METHOD,
    MIRROR_TAG,
    PAYMENTS,
    TEACHER_PAYMENT_SUBJECT,
    TRANSACTIONS,
    BankMovement,
    PaymentRecord,
    TransactionRecord,
    classify_transaction_type,
)
from .exceptions import ValidationError
from .helpers import (
    ZERO,
    best_effort,
    clean_cell,
    format_timestamp,
    generate_id,
    local_now,
    parse_date_cell,
    parse_datetime_cell,
    require_amount,
)
from .store import ROW_NUMBER, LedgerStore

logger = logging.getLogger(__name__)

DUPLICATE_AMOUNT_TOLERANCE = Decimal("0.01")
DUPLICATE_WINDOW = timedelta(hours=24)
DEFAULT_WITHDRAWAL_NOTE = "Withdrawal to cash"


def normalize_transaction_type(raw: Any) -> str:
    kind = classify_transaction_type(raw)
    if kind is None:
        raise ValidationError(f"Unrecognised transaction type {clean_cell(raw)!r}; use income or expense", field="type")
    return kind


def _in_range(value: str, start: Optional[date], end: Optional[date]) -> bool:
    if start is None and end is None:
        return True
    day = parse_date_cell(value)
    if day is None:
        return False
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


class TransactionRecorder:
    def __init__(
        self,
        store: LedgerStore,
        action_log: ActionLog,
        *,
        clock: Callable[[], datetime] = local_now,
        on_change: Optional[Callable[[], Any]] = None,
    ):
        self.store = store
        self.action_log = action_log
        self.clock = clock
        self.on_change = on_change

    def _changed(self) -> None:
        if self.on_change is not None:
            best_effort("refresh derived views", self.on_change)

    def _append_logged(self, action_type: ActionType, table: str, id_column: str, row_id: str, row: Dict[str, Any], performed_by: str) -> None:
        entry = self.action_log.log_action(action_type, row_id, RowUndo(table, id_column, row_id), performed_by)
        try:
            self.store.append_row(table, row)
        except Exception:
            best_effort("discard action", self.action_log.discard, entry)
            raise

    def record_transaction(
        self,
        type: Any,
        amount: Any,
        subject: str = "",
        payer_receiver_name: str = "",
        payment_method: str = CASH_METHOD,
        notes: str = "",
        processed_by: str = "System",
    ) -> TransactionRecord:
        kind = normalize_transaction_type(type)
        value = require_amount(amount)
        if clean_cell(subject).lower() == TEACHER_PAYMENT_SUBJECT.lower():
            raise ValidationError("Teacher payments are recorded through the teacher payroll", field="subject")
        now = self.clock()
        record = TransactionRecord(
            transaction_id=generate_id("TXN", now),
            date=format_timestamp(now),
            type=kind,
            amount=value,
            subject=clean_cell(subject),
            payer_receiver_name=clean_cell(payer_receiver_name),
            payment_method=clean_cell(payment_method) or CASH_METHOD,
            notes=notes or "",
            processed_by=processed_by,
        )
        self._append_logged(
            ActionType.TRANSACTION, TRANSACTIONS, "Transaction_ID", record.transaction_id, record.to_row(), processed_by
        )
        logger.info("Recorded %s %s of %s (%s)", kind, record.transaction_id, value, record.payment_method)
        self._changed()
        return record

    def _record_movement(self, action_type: ActionType, amount: Decimal, bank_name: str, performed_by: str, notes: str) -> BankMovement:
        if notes.startswith(MIRROR_TAG):
            raise ValidationError(f"Notes may not start with {MIRROR_TAG!r}", field="notes")
        now = self.clock()
        movement = BankMovement(
            deposit_id=generate_id("DEP", now),
            date=format_timestamp(now),
            amount=amount,
            bank_name=clean_cell(bank_name),
            deposited_by=performed_by,
            notes=notes,
        )
        self._append_logged(action_type, BANK_DEPOSITS, "Deposit_ID", movement.deposit_id, movement.to_row(), performed_by)
        self._changed()
        return movement

    def record_bank_deposit(self, amount: Any, bank_name: str = "", deposited_by: str = "System", notes: str = "") -> BankMovement:
        """Move cash into the bank."""
        value = require_amount(amount)
        movement = self._record_movement(ActionType.BANK_DEPOSIT, value, bank_name, deposited_by, notes or "")
        logger.info("Bank deposit %s of %s", movement.deposit_id, value)
        return movement

    def record_bank_withdrawal(self, amount: Any, bank_name: str = "", withdrawn_by: str = "System", notes: str = "") -> BankMovement:
        """Move money out of the bank into cash; stored as a negative movement."""
        value = require_amount(amount)
        movement = self._record_movement(
            ActionType.BANK_WITHDRAWAL, -abs(value), bank_name, withdrawn_by, notes or DEFAULT_WITHDRAWAL_NOTE
        )
        logger.info("Bank withdrawal %s of %s", movement.deposit_id, value)
        return movement

    def list_transactions(self, start: Optional[date] = None, end: Optional[date] = None, type: Any = None) -> List[TransactionRecord]:
        kind = normalize_transaction_type(type) if type else None
        records = []
        for row in self.store.read_all(TRANSACTIONS):
            record = TransactionRecord.from_row(row)
            if kind is not None and record.kind != kind:
                continue
            if _in_range(record.date, start, end):
                records.append(record)
        return records

    def list_bank_movements(self, start: Optional[date] = None, end: Optional[date] = None, include_mirrors: bool = True) -> List[BankMovement]:
        movements = []
        for row in self.store.read_all(BANK_DEPOSITS):
            movement = BankMovement.from_row(row)
            if movement.is_mirror and not include_mirrors:
                continue
            if _in_range(movement.date, start, end):
                movements.append(movement)
        return movements

    def cleanup_duplicate_bank_deposits(self) -> Dict[str, Any]:
        """Clear mirrored deposits that duplicate a non-cash student payment."""
        payments = [PaymentRecord.from_row(row) for row in self.store.read_all(PAYMENTS)]
        removed: List[BankMovement] = []
        total = ZERO
        for row in self.store.read_all(BANK_DEPOSITS):
            movement = BankMovement.from_row(row)
            if not movement.is_mirror:
                continue
            deposited_at = parse_datetime_cell(movement.date)
            if deposited_at is None:
                continue
            student_id = movement.mirrored_student_id
            for payment in payments:
                if payment.is_cash or payment.student_id != student_id:
                    continue
                if abs(payment.amount_paid - movement.amount) >= DUPLICATE_AMOUNT_TOLERANCE:
                    continue
                paid_at = parse_datetime_cell(payment.payment_date)
                if paid_at is None or abs(paid_at - deposited_at) > DUPLICATE_WINDOW:
                    continue
                self.store.clear_row(BANK_DEPOSITS, row[ROW_NUMBER])
                removed.append(movement)
                total += movement.amount
                break
        if removed:
            logger.info("Removed %s duplicate bank deposits totalling %s", len(removed), total)
        return {
            "removed": len(removed),
            "total_amount": total,
            "deposit_ids": [movement.deposit_id for movement in removed],
        }
