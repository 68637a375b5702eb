"""Action Log & Undo Engine.

Every mutating operation appends one entry to ``Actions_Log`` before (or
together with) its primary write. The entry's ``Details`` column holds the
typed payload needed to invert the action. Reverting an action applies the
inverse and clears the entry, so an entry is consumed at most once.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from .domain_ledger import (
    ACTIONS,
    BANK_DEPOSITS,
    PAYMENTS,
    STUDENTS,
    TEACHERS,
    TRANSACTIONS,
    ActionLogEntry,
    BankMovement,
    PaymentRecord,
    StudentAccount,
    TeacherAccount,
    TransactionRecord,
)
from .exceptions import UndoFailure, ValidationError
from .helpers import ZERO, best_effort, clean_cell, format_timestamp, local_now, parse_amount, parse_datetime_cell
from .store import ROW_NUMBER, LedgerStore

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    FEE_UPDATE = "update_fees"
    DISCOUNT = "apply_discount"
    PAYMENT = "student_payment"
    TRANSACTION = "transaction"
    BANK_DEPOSIT = "bank_deposit"
    BANK_WITHDRAWAL = "bank_withdrawal"
    TEACHER_PAYMENT = "teacher_payment"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


@dataclasses.dataclass
class StudentSnapshot:
    """Financial pre-image of a student row."""

    student_id: str
    total_fees: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    total_paid: Decimal
    status: str
    last_payment_date: str

    @classmethod
    def from_account(cls, account: StudentAccount) -> "StudentSnapshot":
        return cls(
            student_id=account.student_id,
            total_fees=account.total_fees,
            discount_percent=account.discount_percent,
            discount_amount=account.discount_amount,
            total_paid=account.total_paid,
            status=account.derived_status,
            last_payment_date=account.last_payment_date,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StudentSnapshot":
        return cls(
            student_id=clean_cell(data["student_id"]),
            total_fees=parse_amount(data.get("total_fees")),
            discount_percent=parse_amount(data.get("discount_percent")),
            discount_amount=parse_amount(data.get("discount_amount")),
            total_paid=parse_amount(data.get("total_paid")),
            status=clean_cell(data.get("status")),
            last_payment_date=clean_cell(data.get("last_payment_date")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(dataclasses.asdict(self))

    def restore_fees(self, account: StudentAccount) -> None:
        account.total_fees = self.total_fees
        account.discount_percent = self.discount_percent
        account.discount_amount = self.discount_amount

@dataclasses.dataclass
class PaymentUndo:
    payment_id: str
    student_id: str
    amount: Decimal
    before: Optional[StudentSnapshot] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentUndo":
        before = data.get("before")
        return cls(
            payment_id=clean_cell(data["payment_id"]),
            student_id=clean_cell(data.get("student_id")),
            amount=parse_amount(data.get("amount")),
            before=StudentSnapshot.from_dict(before) if before else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "student_id": self.student_id,
            "amount": str(self.amount),
            "before": self.before.to_dict() if self.before else None,
        }


@dataclasses.dataclass
class RowUndo:
    """Identifies a single appended row to be cleared on undo."""

    table: str
    id_column: str
    row_id: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RowUndo":
        return cls(
            table=clean_cell(data["table"]),
            id_column=clean_cell(data["id_column"]),
            row_id=clean_cell(data["row_id"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclasses.dataclass
class TeacherPaymentUndo:
    transaction_id: str
    teacher_id: str
    amount: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TeacherPaymentUndo":
        return cls(
            transaction_id=clean_cell(data["transaction_id"]),
            teacher_id=clean_cell(data.get("teacher_id")),
            amount=parse_amount(data.get("amount")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(dataclasses.asdict(self))


PAYLOAD_TYPES = {
    ActionType.FEE_UPDATE: StudentSnapshot,
    ActionType.DISCOUNT: StudentSnapshot,
    ActionType.PAYMENT: PaymentUndo,
    ActionType.TRANSACTION: RowUndo,
    ActionType.BANK_DEPOSIT: RowUndo,
    ActionType.BANK_WITHDRAWAL: RowUndo,
    ActionType.TEACHER_PAYMENT: TeacherPaymentUndo,
}

_REVERT_HANDLERS = {
    ActionType.FEE_UPDATE: "_revert_fee_change",
    ActionType.DISCOUNT: "_revert_fee_change",
    ActionType.PAYMENT: "_revert_payment",
    ActionType.TRANSACTION: "_revert_row",
    ActionType.BANK_DEPOSIT: "_revert_row",
    ActionType.BANK_WITHDRAWAL: "_revert_row",
    ActionType.TEACHER_PAYMENT: "_revert_teacher_payment",
}

_uncovered = set(ActionType) - set(_REVERT_HANDLERS) | set(ActionType) - set(PAYLOAD_TYPES)
if _uncovered:
    raise RuntimeError(f"Action types without undo support: {sorted(t.value for t in _uncovered)}")


class ActionLog:
    def __init__(
        self,
        store: LedgerStore,
        *,
        clock: Callable[[], datetime] = local_now,
        on_revert: Optional[Callable[[], Any]] = None,
    ):
        self.store = store
        self.clock = clock
        self.on_revert = on_revert

    def log_action(self, action_type: ActionType, reference_id: str, payload: Any, performed_by: str = "System") -> ActionLogEntry:
        if not isinstance(payload, PAYLOAD_TYPES[action_type]):
            raise ValidationError(f"{action_type.value} expects a {PAYLOAD_TYPES[action_type].__name__} payload")
        entry = ActionLogEntry(
            action_id=str(uuid.uuid4()),
            timestamp=format_timestamp(self.clock()),
            action_type=action_type.value,
            reference_id=reference_id,
            performed_by=performed_by or "System",
            details=payload.to_dict(),
        )
        self.store.append_row(ACTIONS, entry.to_row())
        logger.debug("Logged %s for %s as %s", action_type.value, reference_id, entry.action_id)
        return entry

    def discard(self, entry: ActionLogEntry) -> None:
        """Drop an entry whose primary write did not happen."""
        row = self.store.find_row(ACTIONS, "Action_ID", entry.action_id)
        if row:
            self.store.clear_row(ACTIONS, row[ROW_NUMBER])

    def list_actions(self) -> List[ActionLogEntry]:
        """Entries newest first."""
        entries = [ActionLogEntry.from_row(row) for row in self.store.read_all(ACTIONS)]
        return list(reversed([entry for entry in entries if entry.action_id]))

    def get_action(self, action_id: str) -> Optional[ActionLogEntry]:
        row = self.store.find_row(ACTIONS, "Action_ID", action_id)
        return ActionLogEntry.from_row(row) if row else None

    def revert_action_by_id(self, action_id: str, *, refresh: bool = True) -> bool:
        """Apply the inverse of one action; False if nothing was reverted."""
        entry = self.get_action(action_id)
        if entry is None:
            return False
        try:
            action_type = ActionType(entry.action_type)
        except ValueError:
            logger.warning("Clearing action %s with unrecognised type %r", action_id, entry.action_type)
            self._clear_entry(entry)
            return False
        try:
            try:
                payload = PAYLOAD_TYPES[action_type].from_dict(entry.details)
            except (KeyError, TypeError) as exc:
                raise UndoFailure(action_id, f"malformed details ({exc})")
            getattr(self, _REVERT_HANDLERS[action_type])(entry, payload)
        except UndoFailure as exc:
            logger.warning("%s; clearing the log entry", exc)
            self._clear_entry(entry)
            return False
        self._clear_entry(entry)
        logger.info("Reverted %s %s (%s)", action_type.value, entry.reference_id, action_id)
        if refresh and self.on_revert is not None:
            best_effort("refresh after undo", self.on_revert)
        return True

    def revert_last_actions(self, count: int = 1) -> Dict[str, Any]:
        if count < 1:
            raise ValidationError("count must be at least 1", field="count")
        entries = self.list_actions()[:count]
        reverted = 0
        failed: List[str] = []
        for entry in entries:
            try:
                ok = self.revert_action_by_id(entry.action_id, refresh=False)
            except Exception:
                logger.exception("Undo of %s (%s) failed", entry.action_id, entry.action_type)
                ok = False
            if ok:
                reverted += 1
            else:
                failed.append(entry.action_id)
        if reverted and self.on_revert is not None:
            best_effort("refresh after undo", self.on_revert)
        return {"attempted": len(entries), "reverted": reverted, "failed": failed}

    def _clear_entry(self, entry: ActionLogEntry) -> None:
        if entry.row_number:
            self.store.clear_row(ACTIONS, entry.row_number)

    def _load_student(self, entry: ActionLogEntry, student_id: str) -> StudentAccount:
        row = self.store.find_row(STUDENTS, "Student_ID", student_id)
        if row is None:
            raise UndoFailure(entry.action_id, f"student {student_id} no longer exists")
        return StudentAccount.from_row(row)

    def _revert_fee_change(self, entry: ActionLogEntry, payload: StudentSnapshot) -> None:
        account = self._load_student(entry, payload.student_id)
        payload.restore_fees(account)
        self.store.overwrite_row(STUDENTS, account.row_number, account.to_row())

    def _revert_payment(self, entry: ActionLogEntry, payload: PaymentUndo) -> None:
        row = self.store.find_row(PAYMENTS, "Payment_ID", payload.payment_id)
        if row is None:
            raise UndoFailure(entry.action_id, f"payment {payload.payment_id} no longer exists")
        self.store.clear_row(PAYMENTS, row[ROW_NUMBER])
        for deposit_row in self.store.read_all(BANK_DEPOSITS):
            if BankMovement.from_row(deposit_row).mirrored_payment_id == payload.payment_id:
                self.store.clear_row(BANK_DEPOSITS, deposit_row[ROW_NUMBER])
        payment = PaymentRecord.from_row(row)
        student_id = payload.student_id or payment.student_id
        student_row = self.store.find_row(STUDENTS, "Student_ID", student_id)
        if student_row is None:
            logger.warning("Payment %s reverted but student %s is gone", payload.payment_id, student_id)
            return
        account = StudentAccount.from_row(student_row)
        account.total_paid = account.total_paid - (payload.amount or payment.amount_paid)
        account.last_payment_date = self._latest_payment_date(student_id, payload.before)
        self.store.overwrite_row(STUDENTS, account.row_number, account.to_row())

    def _latest_payment_date(self, student_id: str, before: Optional[StudentSnapshot]) -> str:
        """Date of the newest payment still logged for the student."""
        latest = None
        for payment_row in self.store.read_all(PAYMENTS):
            payment = PaymentRecord.from_row(payment_row)
            when = parse_datetime_cell(payment.payment_date)
            if payment.student_id == student_id and when is not None and (latest is None or when > latest[0]):
                latest = (when, payment.payment_date)
        if latest is not None:
            return latest[1]
        return before.last_payment_date if before else ""

    def _revert_row(self, entry: ActionLogEntry, payload: RowUndo) -> None:
        row = self.store.find_row(payload.table, payload.id_column, payload.row_id)
        if row is None:
            raise UndoFailure(entry.action_id, f"{payload.table} row {payload.row_id} no longer exists")
        self.store.clear_row(payload.table, row[ROW_NUMBER])

    def _revert_teacher_payment(self, entry: ActionLogEntry, payload: TeacherPaymentUndo) -> None:
        row = self.store.find_row(TRANSACTIONS, "Transaction_ID", payload.transaction_id)
        if row is None:
            raise UndoFailure(entry.action_id, f"transaction {payload.transaction_id} no longer exists")
        self.store.clear_row(TRANSACTIONS, row[ROW_NUMBER])
        teacher_row = self.store.find_row(TEACHERS, "Teacher_ID", payload.teacher_id)
        if teacher_row is None:
            logger.warning("Teacher payment %s reverted but teacher %s is gone", payload.transaction_id, payload.teacher_id)
            return
        teacher = TeacherAccount.from_row(teacher_row)
        teacher.total_paid = teacher.total_paid - (payload.amount or TransactionRecord.from_row(row).amount)
        self.store.overwrite_row(TEACHERS, teacher.row_number, teacher.to_row())
