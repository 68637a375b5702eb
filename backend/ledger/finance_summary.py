"""Financial Aggregator.

Builds the cash/bank/profit summary from the five authoritative tables.
``compute_financial_summary`` is a pure function over already-parsed
records; ``FinancialAggregator`` reads the tables (in parallel) and writes
the ``Analytics`` sheet.

Reconciliation: Payment Records are the single source of student money.
Cash payments land in cash, every other method lands in the bank directly.
Bank rows tagged ``Auto: student payment`` mirror those non-cash payments
and are skipped, so a payment is never counted twice. All other bank rows
are transfers: positive moves cash to the bank, negative moves it back.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from .domain_ledger import (
    ANALYTICS,
    BANK_DEPOSITS,
    INCOME,
    OVERDUE,
    PAYMENTS,
    STATUS_ACTIVE,
    STUDENTS,
    TEACHERS,
    TRANSACTIONS,
    BankMovement,
    PaymentRecord,
    StudentAccount,
    TeacherAccount,
    TransactionRecord,
)
from .helpers import (
    CENT,
    ZERO,
    format_timestamp,
    local_now,
    parse_datetime_cell,
    setting_bool,
    setting_int,
)
from .store import LedgerStore

logger = logging.getLogger(__name__)

BUCKET_FIELDS = ("income", "expenses", "fees_collected", "deposits")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _empty_bucket() -> Dict[str, Decimal]:
    return {name: ZERO for name in BUCKET_FIELDS}


def _render_bucket(bucket: Dict[str, Decimal]) -> Dict[str, Decimal]:
    rendered = {name: _money(bucket[name]) for name in BUCKET_FIELDS}
    rendered["net"] = _money(bucket["income"] + bucket["fees_collected"] - bucket["expenses"])
    return rendered


def collection_rate(collected: Decimal, expected: Decimal) -> str:
    if expected <= 0:
        return "0%"
    return f"{_money(collected / expected * 100)}%"


def compute_financial_summary(
    *,
    students: Iterable[StudentAccount],
    transactions: Iterable[TransactionRecord],
    movements: Iterable[BankMovement],
    payments: Iterable[PaymentRecord],
    teachers: Iterable[TeacherAccount],
    now: datetime,
    daily_days: int = 30,
    recent_limit: int = 20,
) -> Dict[str, Any]:
    students = [student for student in students if student.student_id]
    transactions = [record for record in transactions if record.transaction_id]
    movements = [movement for movement in movements if movement.deposit_id]
    payments = [payment for payment in payments if payment.payment_id]
    teachers = [teacher for teacher in teachers if teacher.teacher_id]

    monthly: Dict[str, Dict[str, Decimal]] = defaultdict(_empty_bucket)
    daily: Dict[str, Dict[str, Decimal]] = defaultdict(_empty_bucket)
    unknown = _empty_bucket()
    recent: List[Dict[str, Any]] = []

    def bucket(date_text: str, name: str, amount: Decimal) -> Optional[datetime]:
        when = parse_datetime_cell(date_text)
        if when is None:
            unknown[name] += amount
            return None
        monthly[when.strftime("%Y-%m")][name] += amount
        daily[when.strftime("%Y-%m-%d")][name] += amount
        return when

    cash_from_payments = bank_from_payments = ZERO
    for payment in payments:
        if payment.is_cash:
            cash_from_payments += payment.amount_paid
        else:
            bank_from_payments += payment.amount_paid
        when = bucket(payment.payment_date, "fees_collected", payment.amount_paid)
        recent.append({
            "kind": "payment",
            "id": payment.payment_id,
            "date": payment.payment_date,
            "amount": _money(payment.amount_paid),
            "method": payment.payment_method,
            "description": f"{payment.student_name} ({payment.student_id})",
            "_when": when,
        })

    cash_income = bank_income = cash_expense = bank_expense = ZERO
    other_income = other_expenses = payroll_paid_out = ZERO
    unclassified = 0
    for record in transactions:
        kind = record.kind
        if kind is None:
            unclassified += 1
            continue
        if kind == INCOME:
            other_income += record.amount
            if record.is_cash:
                cash_income += record.amount
            else:
                bank_income += record.amount
            when = bucket(record.date, "income", record.amount)
        else:
            if record.is_payroll:
                payroll_paid_out += record.amount
            else:
                other_expenses += record.amount
            if record.is_cash:
                cash_expense += record.amount
            else:
                bank_expense += record.amount
            when = bucket(record.date, "expenses", record.amount)
        recent.append({
            "kind": "transaction",
            "id": record.transaction_id,
            "date": record.date,
            "amount": _money(record.amount),
            "method": record.payment_method,
            "description": f"{kind}: {record.subject or record.payer_receiver_name}".strip(),
            "_when": when,
        })
    if unclassified:
        logger.warning("Ignored %s transactions with an unrecognised type", unclassified)

    deposits_into_bank = withdrawals_from_bank = ZERO
    mirrors = 0
    for movement in movements:
        if movement.is_mirror:
            mirrors += 1
            continue
        if movement.amount >= 0:
            deposits_into_bank += movement.amount
        else:
            withdrawals_from_bank += -movement.amount
        when = bucket(movement.date, "deposits", movement.amount)
        recent.append({
            "kind": "deposit",
            "id": movement.deposit_id,
            "date": movement.date,
            "amount": _money(movement.amount),
            "method": movement.bank_name,
            "description": movement.notes,
            "_when": when,
        })

    cash_in_hand = cash_from_payments + cash_income - cash_expense - deposits_into_bank + withdrawals_from_bank
    in_bank = bank_from_payments + bank_income - bank_expense + deposits_into_bank - withdrawals_from_bank
    if cash_in_hand < 0:
        logger.warning("Cash in hand is negative (%s); check for unrecorded cash income", _money(cash_in_hand))

    expected = sum((student.net_amount for student in students), ZERO)
    collected = sum((student.total_paid for student in students), ZERO)
    outstanding = sum((student.remaining_balance for student in students), ZERO)
    active = sum(1 for student in students if student.derived_status == STATUS_ACTIVE)

    teacher_paid = sum((teacher.total_paid for teacher in teachers), ZERO)
    teacher_outstanding = sum((teacher.remaining_balance for teacher in teachers), ZERO)

    student_payments = cash_from_payments + bank_from_payments
    total_income = student_payments + other_income
    total_expenses = other_expenses + teacher_paid

    recent.sort(key=lambda item: item["_when"] or datetime.min, reverse=True)
    for item in recent:
        del item["_when"]

    day_keys = sorted(daily)[-daily_days:] if daily_days > 0 else []

    return {
        "cash": {
            "total_cash_in_hand": _money(cash_in_hand),
            "display_cash_in_hand": _money(max(cash_in_hand, ZERO)),
            "description": "Cash student payments and cash income, minus cash expenses and net deposits to the bank",
        },
        "bank": {
            "total_in_bank": _money(in_bank),
            "description": "Non-cash student payments and bank income, minus bank expenses, plus net deposits from cash",
        },
        "balance": {"total_balance": _money(cash_in_hand + in_bank)},
        "breakdown": {
            "cash_from_student_payments": _money(cash_from_payments),
            "bank_from_student_payments": _money(bank_from_payments),
            "cash_income": _money(cash_income),
            "bank_income": _money(bank_income),
            "cash_expenses": _money(cash_expense),
            "bank_expenses": _money(bank_expense),
            "deposits_into_bank": _money(deposits_into_bank),
            "withdrawals_from_bank": _money(withdrawals_from_bank),
            "mirrored_deposits_skipped": mirrors,
        },
        "students": {
            "total_students": len(students),
            "active_students": active,
            "total_fees_expected": _money(expected),
            "total_fees_collected": _money(collected),
            "total_outstanding": _money(outstanding),
            "collection_rate": collection_rate(collected, expected),
        },
        "teachers": {
            "total_teachers": len(teachers),
            "total_payments": _money(teacher_paid),
            "total_outstanding": _money(teacher_outstanding),
        },
        "transactions": {
            "student_payments": _money(student_payments),
            "other_income": _money(other_income),
            "other_expenses": _money(other_expenses),
            "teacher_payments": _money(teacher_paid),
            "payroll_paid_out": _money(payroll_paid_out),
            "total_income": _money(total_income),
            "total_expenses": _money(total_expenses),
            "net_profit": _money(total_income - total_expenses),
        },
        "monthly": [dict(month=key, **_render_bucket(monthly[key])) for key in sorted(monthly)],
        "daily": [dict(day=key, **_render_bucket(daily[key])) for key in day_keys],
        "unknown_period": _render_bucket(unknown),
        "recent": recent[:recent_limit] if recent_limit > 0 else [],
        "generated_at": format_timestamp(now),
    }


class FinancialAggregator:
    SOURCE_TABLES = (STUDENTS, TRANSACTIONS, BANK_DEPOSITS, PAYMENTS, TEACHERS)

    def __init__(self, store: LedgerStore, *, clock: Callable[[], datetime] = local_now):
        self.store = store
        self.clock = clock

    def _read_tables(self) -> Dict[str, List[Dict[str, Any]]]:
        if not setting_bool("LEDGER_PARALLEL_READS", True):
            return {table: self.store.read_all(table) for table in self.SOURCE_TABLES}
        with ThreadPoolExecutor(max_workers=len(self.SOURCE_TABLES)) as pool:
            futures = {table: pool.submit(self.store.read_all, table) for table in self.SOURCE_TABLES}
            return {table: future.result() for table, future in futures.items()}

    def get_financial_summary(self) -> Dict[str, Any]:
        rows = self._read_tables()
        return compute_financial_summary(
            students=[StudentAccount.from_row(row) for row in rows[STUDENTS]],
            transactions=[TransactionRecord.from_row(row) for row in rows[TRANSACTIONS]],
            movements=[BankMovement.from_row(row) for row in rows[BANK_DEPOSITS]],
            payments=[PaymentRecord.from_row(row) for row in rows[PAYMENTS]],
            teachers=[TeacherAccount.from_row(row) for row in rows[TEACHERS]],
            now=self.clock(),
            daily_days=setting_int("LEDGER_DAILY_SERIES_DAYS", 30),
            recent_limit=setting_int("LEDGER_RECENT_ACTIVITY_LIMIT", 20),
        )

    def write_analytics(self, summary: Dict[str, Any], overdue_count: int = 0) -> int:
        """Replace the Analytics sheet with metric, monthly and recent blocks."""
        stamp = summary["generated_at"]
        students = summary["students"]
        totals = summary["transactions"]
        metrics = [
            ("Total Cash In Hand", summary["cash"]["total_cash_in_hand"], summary["cash"]["description"]),
            ("Total In Bank", summary["bank"]["total_in_bank"], summary["bank"]["description"]),
            ("Total Balance", summary["balance"]["total_balance"], "Cash plus bank"),
            ("Total Students", students["total_students"], f"{students['active_students']} active"),
            ("Total Fees Expected", students["total_fees_expected"], "Sum of net amounts"),
            ("Total Fees Collected", students["total_fees_collected"], "Sum of amounts paid"),
            ("Total Outstanding", students["total_outstanding"], "Sum of remaining balances"),
            ("Collection Rate", students["collection_rate"], "Collected / expected"),
            ("Total Income", totals["total_income"], "Student payments plus other income"),
            ("Total Expenses", totals["total_expenses"], "Other expenses plus teacher payroll"),
            ("Net Profit", totals["net_profit"], "Income minus expenses"),
            ("Teacher Payments", summary["teachers"]["total_payments"], f"{summary['teachers']['total_teachers']} teachers"),
            ("Overdue Students", overdue_count, "From the last overdue check"),
        ]
        rows = [{"Metric": name, "Value": value, "Details": details, "Last_Updated": stamp} for name, value, details in metrics]
        rows.append({"Metric": "--"})
        rows.append({"Metric": "Monthly", "Details": "income / expenses / fees collected / deposits"})
        for month in summary["monthly"]:
            rows.append({
                "Metric": month["month"],
                "Value": month["net"],
                "Details": f"{month['income']} / {month['expenses']} / {month['fees_collected']} / {month['deposits']}",
                "Last_Updated": stamp,
            })
        rows.append({"Metric": "--"})
        rows.append({"Metric": "Recent Activity", "Details": "date / description"})
        for item in summary["recent"]:
            rows.append({
                "Metric": item["kind"],
                "Value": item["amount"],
                "Details": f"{item['date']} / {item['description']}",
                "Last_Updated": stamp,
            })
        self.store.clear_table(ANALYTICS)
        self.store.append_rows(ANALYTICS, rows)
        return len(rows)

    def refresh_analytics(self, overdue_count: Optional[int] = None) -> Dict[str, Any]:
        summary = self.get_financial_summary()
        if overdue_count is None:
            overdue_count = len(self.store.read_all(OVERDUE))
        self.write_analytics(summary, overdue_count)
        return summary
