"""Student Account Manager.

Owns the ``Master_Students`` rows and the ``Payments_Log``. Each mutation
logs its pre-image to the action log, writes the authoritative rows and then
asks for a best-effort refresh of the derived views (overdue table,
analytics, grade sheets).
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from decimal import ROUND_CEILING, Decimal
from threading import Lock, RLock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .action_log import ActionLog, ActionType, PaymentUndo, StudentSnapshot
from .domain_ledger import (
    BANK_DEPOSITS,
    GRADE_HEADERS,
    OVERDUE,
    PAYMENTS,
    STUDENTS,
    TRANSACTIONS,
    BankMovement,
    OverdueEntry,
    PaymentRecord,
    StudentAccount,
    discount_for,
    grade_table,
    mirror_note,
)
from .exceptions import Conflict, NotFound, ValidationError
from .helpers import (
    best_effort,
    clean_cell,
    format_date,
    format_timestamp,
    generate_id,
    local_now,
    parse_amount,
    parse_date_cell,
    require_amount,
    setting_bool,
    setting_int,
)
from .store import ROW_NUMBER, LedgerStore

logger = logging.getLogger(__name__)

_LOCKS: Dict[str, RLock] = {}
_LOCKS_GUARD = Lock()


def _student_lock(student_id: str) -> RLock:
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(student_id, RLock())


DEFAULT_INSTALLMENTS = 3


def installment_count(config: Mapping[str, str]) -> int:
    raw = clean_cell(config.get("Number_of_Installments"))
    if not raw:
        return DEFAULT_INSTALLMENTS
    try:
        count = int(parse_amount(raw))
    except (ValueError, ArithmeticError):
        count = 0
    return count if count > 0 else 1


def installment_number_for(total_paid: Decimal, net_amount: Decimal, count: int) -> int:
    """Installment a cumulative paid amount falls into, clamped to 1..count."""
    count = max(count, 1)
    if net_amount <= 0:
        return count
    per_installment = net_amount / count
    number = int((total_paid / per_installment).to_integral_value(rounding=ROUND_CEILING))
    return min(max(number, 1), count)


def _validate_percent(value: Any) -> Decimal:
    percent = require_amount(value, "discount_percent", allow_zero=True)
    if percent > 100:
        raise ValidationError("discount_percent must be between 0 and 100", field="discount_percent")
    return percent


def _validate_fees(value: Any, field: str = "total_fees") -> Decimal:
    fees = require_amount(value, field, allow_zero=True)
    ceiling = setting_int("LEDGER_MAX_TOTAL_FEES", 1000000)
    if fees > ceiling:
        raise ValidationError(f"{field} must be between 0 and {ceiling}", field=field)
    return fees


class StudentAccountManager:
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

    def list_students(self) -> List[StudentAccount]:
        accounts = [StudentAccount.from_row(row) for row in self.store.read_all(STUDENTS)]
        return [account for account in accounts if account.student_id]

    def get_student(self, identifier: Any) -> StudentAccount:
        """Find a student by exact ID, then by name (case-insensitive)."""
        wanted = clean_cell(identifier)
        if not wanted:
            raise ValidationError("student identifier is required", field="student_id")
        students = self.list_students()
        for account in students:
            if account.student_id == wanted:
                return account
        lowered = wanted.lower()
        for account in students:
            if account.name.lower() == lowered:
                return account
        for account in students:
            if lowered in account.name.lower():
                return account
        raise NotFound("Student", wanted)

    def _load(self, student_id: str) -> StudentAccount:
        row = self.store.find_row(STUDENTS, "Student_ID", student_id)
        if row is None:
            raise NotFound("Student", student_id)
        return StudentAccount.from_row(row)

    def _write_student(self, account: StudentAccount, original: StudentAccount) -> None:
        row = self.store.find_row(STUDENTS, "Student_ID", original.student_id)
        if row is None:
            raise NotFound("Student", original.student_id)
        current = StudentAccount.from_row(row)
        changed = (
            current.row_number != original.row_number
            or current.total_paid != original.total_paid
            or current.total_fees != original.total_fees
            or current.discount_percent != original.discount_percent
        )
        if changed:
            raise Conflict(f"Student {original.student_id} changed while being updated; retry the operation")
        self.store.overwrite_row(STUDENTS, original.row_number, account.to_row())

    def _changed(self) -> None:
        if self.on_change is not None:
            best_effort("refresh derived views", self.on_change)

    def apply_discount(self, student_id: Any, discount_percent: Any, *, performed_by: str = "System", refresh: bool = True) -> StudentAccount:
        percent = _validate_percent(discount_percent)
        resolved = self.get_student(student_id).student_id
        with _student_lock(resolved):
            account = self._load(resolved)
            original = dataclasses.replace(account)
            account.discount_percent = percent
            account.discount_amount = discount_for(account.total_fees, percent)
            entry = self.action_log.log_action(
                ActionType.DISCOUNT, resolved, StudentSnapshot.from_account(original), performed_by
            )
            try:
                self._write_student(account, original)
            except Exception:
                best_effort("discard discount action", self.action_log.discard, entry)
                raise
        logger.info("Applied %s%% discount to %s (net %s)", percent, resolved, account.net_amount)
        if refresh:
            self._changed()
        return account

    def record_payment(
        self,
        student_id: Any,
        amount_paid: Any,
        payment_method: Any,
        discount_percent: Any = None,
        processed_by: str = "System",
        notes: str = "",
    ) -> Dict[str, Any]:
        amount = require_amount(amount_paid, "amount_paid")
        method = clean_cell(payment_method)
        if not method:
            raise ValidationError("payment_method is required", field="payment_method")
        account = self.get_student(student_id)
        if discount_percent not in (None, "") and _validate_percent(discount_percent) != account.discount_percent:
            self.apply_discount(account.student_id, discount_percent, performed_by=processed_by, refresh=False)

        resolved = account.student_id
        with _student_lock(resolved):
            account = self._load(resolved)
            original = dataclasses.replace(account)
            if amount > account.remaining_balance:
                logger.warning("Overpayment for %s: %s paid against %s remaining", resolved, amount, account.remaining_balance)
            now = self.clock()
            account.total_paid = account.total_paid + amount
            account.last_payment_date = format_timestamp(now)
            payment = PaymentRecord(
                payment_id=generate_id("PAY", now),
                student_id=resolved,
                student_name=account.name,
                payment_date=format_timestamp(now),
                amount_paid=amount,
                payment_method=method,
                discount_applied=account.discount_percent,
                net_amount=account.net_amount,
                remaining_balance=account.remaining_balance,
                installment_number=installment_number_for(
                    account.total_paid, account.net_amount, installment_count(self.store.get_config())
                ),
                processed_by=processed_by,
                notes=notes or "",
            )
            entry = self.action_log.log_action(
                ActionType.PAYMENT,
                resolved,
                PaymentUndo(payment.payment_id, resolved, amount, StudentSnapshot.from_account(original)),
                processed_by,
            )
            try:
                self.store.append_row(PAYMENTS, payment.to_row())
            except Exception:
                best_effort("discard payment action", self.action_log.discard, entry)
                raise
            try:
                self._write_student(account, original)
            except Exception:
                logger.error("Student update failed after payment %s; rolling back the payment row", payment.payment_id)
                best_effort("remove payment row", self._remove_payment, payment.payment_id)
                best_effort("discard payment action", self.action_log.discard, entry)
                raise

        mirrored = False
        if not payment.is_cash and setting_bool("LEDGER_MIRROR_NON_CASH_PAYMENTS", True):
            mirrored = best_effort("mirror bank deposit", self._mirror_deposit, payment, now) is not None
        logger.info("Recorded payment %s of %s for %s via %s", payment.payment_id, amount, resolved, method)
        self._changed()
        return {"payment": payment, "student": account, "mirrored": mirrored}

    def _remove_payment(self, payment_id: str) -> None:
        row = self.store.find_row(PAYMENTS, "Payment_ID", payment_id)
        if row:
            self.store.clear_row(PAYMENTS, row[ROW_NUMBER])

    def _mirror_deposit(self, payment: PaymentRecord, when: datetime) -> BankMovement:
        movement = BankMovement(
            deposit_id=generate_id("DEP", when),
            date=format_timestamp(when),
            amount=payment.amount_paid,
            bank_name=payment.payment_method,
            deposited_by=payment.processed_by,
            notes=mirror_note(payment.student_id, payment.payment_id),
        )
        self.store.append_row(BANK_DEPOSITS, movement.to_row())
        return movement

    def update_total_fees(self, student_id: Any, new_total_fees: Any, *, updated_by: str = "System") -> StudentAccount:
        fees = _validate_fees(new_total_fees)
        resolved = self.get_student(student_id).student_id
        with _student_lock(resolved):
            account = self._load(resolved)
            original = dataclasses.replace(account)
            account.total_fees = fees
            if account.discount_percent > 0:
                account.discount_amount = discount_for(fees, account.discount_percent)
            entry = self.action_log.log_action(
                ActionType.FEE_UPDATE, resolved, StudentSnapshot.from_account(original), updated_by
            )
            try:
                self._write_student(account, original)
            except Exception:
                best_effort("discard fee action", self.action_log.discard, entry)
                raise
        logger.info("Total fees for %s changed from %s to %s", resolved, original.total_fees, fees)
        self._changed()
        return account

    def normalize_all(self) -> Dict[str, Any]:
        """Rewrite derived columns of every student row from its base figures."""
        examined = 0
        drifted: List[str] = []
        for row in self.store.read_all(STUDENTS):
            account = StudentAccount.from_row(row)
            if not account.student_id:
                continue
            examined += 1
            if account.discount_percent > 0:
                account.discount_amount = discount_for(account.total_fees, account.discount_percent)
            fresh = account.to_row()
            stale = any(
                parse_amount(row.get(column)) != parse_amount(fresh[column])
                for column in ("Discount_Amount", "Net_Amount", "Remaining_Balance")
            ) or clean_cell(row.get("Status")) != fresh["Status"]
            if stale:
                self.store.overwrite_row(STUDENTS, account.row_number, fresh)
                drifted.append(account.student_id)
        if drifted:
            logger.warning("Normalised %s of %s student rows: %s", len(drifted), examined, drifted)
            self._changed()
        return {"examined": examined, "updated": len(drifted), "student_ids": drifted}

    def enroll_students(self, records: Iterable[Mapping[str, Any]], *, performed_by: str = "System") -> Dict[str, int]:
        """Create accounts, or refresh fees of an existing name+grade match."""
        now = self.clock()
        existing = {(account.name.lower(), account.year): account for account in self.list_students()}
        updates: List[StudentAccount] = []
        additions: List[StudentAccount] = []
        skipped = 0
        for record in records:
            name = clean_cell(record.get("name"))
            if not name:
                skipped += 1
                continue
            year = clean_cell(record.get("year"))
            fees = _validate_fees(record.get("total_fees") or 0)
            percent = _validate_percent(record.get("discount_percent") or 0)
            subjects = int(parse_amount(record.get("number_of_subjects")))
            phone = clean_cell(record.get("phone_number"))
            match = existing.get((name.lower(), year))
            if match is not None:
                match.total_fees = fees
                match.number_of_subjects = subjects or match.number_of_subjects
                match.phone_number = phone or match.phone_number
                if percent > 0:
                    match.discount_percent = percent
                if match.discount_percent > 0:
                    match.discount_amount = discount_for(fees, match.discount_percent)
                if match.row_number is not None and match not in updates:
                    updates.append(match)
                continue
            account = StudentAccount(
                student_id=f"STU{now:%y}{uuid.uuid4().hex[:6].upper()}",
                name=name,
                year=year,
                number_of_subjects=subjects,
                total_fees=fees,
                discount_percent=percent,
                discount_amount=discount_for(fees, percent),
                total_paid=parse_amount(record.get("total_paid")),
                phone_number=phone,
                enrollment_date=format_date(parse_date_cell(record.get("enrollment_date")) or now.date()),
            )
            existing[(name.lower(), year)] = account
            additions.append(account)

        for account in updates:
            self.store.overwrite_row(STUDENTS, account.row_number, account.to_row())
        if additions:
            self.store.append_rows(STUDENTS, [account.to_row() for account in additions])
        logger.info(
            "Enrollment by %s: %s added, %s updated, %s skipped", performed_by, len(additions), len(updates), skipped
        )
        if additions or updates:
            self._changed()
        return {"added": len(additions), "updated": len(updates), "skipped": skipped}

    def sync_grade_sheets(self, overdue_entries: Iterable[OverdueEntry] = ()) -> List[str]:
        """Rewrite one ``Grade_<n>`` sheet per grade from the master rows."""
        overdue = {entry.student_id: entry for entry in overdue_entries}
        grades: Dict[str, List[StudentAccount]] = defaultdict(list)
        for account in self.list_students():
            if account.year:
                grades[account.year].append(account)
        written = []
        for year in sorted(grades):
            rows = []
            for account in grades[year]:
                entry = overdue.get(account.student_id)
                rows.append({
                    "Student_ID": account.student_id,
                    "Name": account.name,
                    "Net_Amount": account.net_amount,
                    "Total_Paid": account.total_paid,
                    "Remaining_Balance": account.remaining_balance,
                    "Phone_Number": account.phone_number,
                    "Enrollment_Date": account.enrollment_date,
                    "Days_Overdue": entry.days_overdue if entry else "",
                    "Due_Date": entry.due_date if entry else "",
                })
            table = grade_table(year)
            self.store.replace_table(table, GRADE_HEADERS, rows)
            written.append(table)
        return written

    def clear_all_data(self) -> List[str]:
        """Admin wipe of every operational table; config and logs stay."""
        tables = [STUDENTS, PAYMENTS, TRANSACTIONS, BANK_DEPOSITS, OVERDUE]
        for table in tables:
            self.store.clear_table(table)
        logger.warning("Cleared ledger tables %s", tables)
        return tables
