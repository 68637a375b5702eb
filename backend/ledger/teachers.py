"""Teacher payroll accounts.

A teacher payment updates the ``Teachers`` row and appends an expense
transaction with subject ``Teacher Payment``. The transaction moves cash or
bank balances; profit counts payroll through the teacher ledger only.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .action_log import ActionLog, ActionType, TeacherPaymentUndo
from .domain_ledger import (
    CASH_METHOD,
    EXPENSE,
    TEACHER_PAYMENT_SUBJECT,
    TEACHERS,
    TRANSACTIONS,
    TeacherAccount,
    TransactionRecord,
)
from .exceptions import NotFound, ValidationError
from .helpers import (
    ZERO,
    best_effort,
    clean_cell,
    format_timestamp,
    generate_id,
    local_now,
    parse_amount,
    require_amount,
)
from .store import ROW_NUMBER, LedgerStore

logger = logging.getLogger(__name__)

_EDITABLE = ("name", "subject", "number_of_classes", "fee_per_student", "total_amount")


class TeacherPayroll:
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

    def list_teachers(self) -> List[TeacherAccount]:
        teachers = [TeacherAccount.from_row(row) for row in self.store.read_all(TEACHERS)]
        return [teacher for teacher in teachers if teacher.teacher_id]

    def get_teacher(self, identifier: Any) -> TeacherAccount:
        wanted = clean_cell(identifier)
        if not wanted:
            raise ValidationError("teacher identifier is required", field="teacher_id")
        teachers = self.list_teachers()
        for teacher in teachers:
            if teacher.teacher_id == wanted:
                return teacher
        for teacher in teachers:
            if teacher.name.lower() == wanted.lower():
                return teacher
        raise NotFound("Teacher", wanted)

    def add_teacher(
        self,
        name: str,
        subject: str = "",
        number_of_classes: int = 0,
        total_amount: Any = None,
        fee_per_student: Any = None,
    ) -> TeacherAccount:
        name = clean_cell(name)
        if not name:
            raise ValidationError("name is required", field="name")
        classes = int(parse_amount(number_of_classes))
        fee = require_amount(fee_per_student, "fee_per_student", allow_zero=True) if fee_per_student not in (None, "") else None
        if fee is not None:
            total = fee * classes
        else:
            total = require_amount(total_amount if total_amount not in (None, "") else 0, "total_amount", allow_zero=True)
        now = self.clock()
        teacher = TeacherAccount(
            teacher_id=generate_id("TCH", now),
            name=name,
            subject=clean_cell(subject),
            number_of_classes=classes,
            fee_per_student=fee if fee is not None else ZERO,
            total_amount=total,
            created_at=format_timestamp(now),
        )
        self.store.append_row(TEACHERS, teacher.to_row())
        logger.info("Added teacher %s (%s) owed %s", teacher.teacher_id, name, total)
        return teacher

    def update_teacher(self, teacher_id: Any, **changes: Any) -> TeacherAccount:
        unknown = set(changes) - set(_EDITABLE)
        if unknown:
            raise ValidationError(f"Cannot update {sorted(unknown)}")
        teacher = self.get_teacher(teacher_id)
        if "name" in changes:
            teacher.name = clean_cell(changes["name"]) or teacher.name
        if "subject" in changes:
            teacher.subject = clean_cell(changes["subject"])
        if "number_of_classes" in changes:
            teacher.number_of_classes = int(parse_amount(changes["number_of_classes"]))
        if "fee_per_student" in changes:
            teacher.fee_per_student = require_amount(changes["fee_per_student"], "fee_per_student", allow_zero=True)
        if "total_amount" in changes:
            teacher.total_amount = require_amount(changes["total_amount"], "total_amount", allow_zero=True)
        elif teacher.fee_per_student > 0:
            teacher.total_amount = teacher.fee_per_student * teacher.number_of_classes
        self.store.overwrite_row(TEACHERS, teacher.row_number, teacher.to_row())
        self._changed()
        return teacher

    def delete_teacher(self, teacher_id: Any) -> None:
        teacher = self.get_teacher(teacher_id)
        if teacher.total_paid > 0:
            raise ValidationError(
                f"Teacher {teacher.teacher_id} has been paid {teacher.total_paid}; undo the payments before deleting",
                field="teacher_id",
            )
        self.store.clear_row(TEACHERS, teacher.row_number)
        logger.info("Deleted teacher %s", teacher.teacher_id)
        self._changed()

    def pay_teacher(
        self,
        teacher_id: Any,
        amount: Any,
        payment_method: str = CASH_METHOD,
        processed_by: str = "System",
        notes: str = "",
    ) -> Dict[str, Any]:
        value = require_amount(amount)
        teacher = self.get_teacher(teacher_id)
        if value > teacher.remaining_balance:
            logger.warning("Paying %s to %s exceeds the %s still owed", value, teacher.teacher_id, teacher.remaining_balance)
        now = self.clock()
        record = TransactionRecord(
            transaction_id=generate_id("TXN", now),
            date=format_timestamp(now),
            type=EXPENSE,
            amount=value,
            subject=TEACHER_PAYMENT_SUBJECT,
            payer_receiver_name=teacher.name,
            payment_method=clean_cell(payment_method) or CASH_METHOD,
            notes=notes or f"Payment to {teacher.name}",
            processed_by=processed_by,
        )
        teacher.total_paid = teacher.total_paid + value
        entry = self.action_log.log_action(
            ActionType.TEACHER_PAYMENT,
            teacher.teacher_id,
            TeacherPaymentUndo(record.transaction_id, teacher.teacher_id, value),
            processed_by,
        )
        try:
            self.store.append_row(TRANSACTIONS, record.to_row())
        except Exception:
            best_effort("discard teacher payment action", self.action_log.discard, entry)
            raise
        try:
            self.store.overwrite_row(TEACHERS, teacher.row_number, teacher.to_row())
        except Exception:
            best_effort("remove teacher payment transaction", self._remove_transaction, record.transaction_id)
            best_effort("discard teacher payment action", self.action_log.discard, entry)
            raise
        logger.info("Paid %s to teacher %s (%s)", value, teacher.teacher_id, record.transaction_id)
        self._changed()
        return {"teacher": teacher, "transaction": record}

    def _remove_transaction(self, transaction_id: str) -> None:
        row = self.store.find_row(TRANSACTIONS, "Transaction_ID", transaction_id)
        if row:
            self.store.clear_row(TRANSACTIONS, row[ROW_NUMBER])

    def _changed(self) -> None:
        if self.on_change is not None:
            best_effort("refresh derived views", self.on_change)
