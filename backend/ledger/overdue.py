"""Overdue Detector and installment schedule.

Each student's net amount is split evenly across the configured number of
installments. A student is overdue on installment ``i`` when the due date
has passed and the cumulative amount paid is strictly below ``i`` equal
shares; only the first missed installment is reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .domain_ledger import (
    OVERDUE,
    STATUS_ACTIVE,
    STUDENTS,
    OverdueEntry,
    StudentAccount,
)
from .exceptions import ValidationError
from .helpers import (
    ZERO,
    clean_cell,
    format_date,
    format_timestamp,
    get_setting,
    local_now,
    parse_amount,
    parse_date_cell,
    to_money,
)
from .store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class Installment:
    number: int
    due_date: date


@dataclass
class InstallmentSchedule:
    count: int = 0
    installments: List[Installment] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: Mapping[str, str]) -> "InstallmentSchedule":
        try:
            count = int(parse_amount(config.get("Number_of_Installments")))
        except (ValueError, ArithmeticError):
            count = 0
        installments = []
        for number in range(1, max(count, 0) + 1):
            due = parse_date_cell(config.get(f"Installment_{number}_Date"))
            if due is not None:
                installments.append(Installment(number, due))
        return cls(count=max(count, 0), installments=installments)

    def __bool__(self) -> bool:
        return self.count > 0 and bool(self.installments)

    def share(self, account: StudentAccount) -> Decimal:
        return account.net_amount / self.count


def _pending_installment(account: StudentAccount, schedule: InstallmentSchedule, installment: Installment) -> Optional[Decimal]:
    """Amount still due for ``installment``, or None when it is covered."""
    expected = schedule.share(account) * installment.number
    if account.total_paid < expected:
        return min(expected - account.total_paid, account.remaining_balance)
    return None


def _owes(account: StudentAccount) -> bool:
    return account.derived_status == STATUS_ACTIVE and account.remaining_balance > 0


def find_overdue(
    accounts: Iterable[StudentAccount],
    schedule: InstallmentSchedule,
    today: date,
    stamp: str = "",
) -> List[OverdueEntry]:
    if not schedule:
        return []
    entries = []
    for account in accounts:
        if not account.student_id or not _owes(account):
            continue
        for installment in schedule.installments:
            if today <= installment.due_date:
                continue
            amount_due = _pending_installment(account, schedule, installment)
            if amount_due is None:
                continue
            entries.append(OverdueEntry(
                student_id=account.student_id,
                student_name=account.name,
                year=account.year,
                phone_number=account.phone_number,
                net_amount=account.net_amount,
                total_paid=account.total_paid,
                remaining_balance=account.remaining_balance,
                amount_due=to_money(amount_due),
                installment_number=installment.number,
                due_date=format_date(installment.due_date),
                days_overdue=(today - installment.due_date).days,
                last_updated=stamp,
            ))
            break
    return entries


def build_reminder_message(account: StudentAccount, installment: Installment, days_until: int, amount_due: Decimal) -> str:
    school = get_setting("SCHOOL_NAME", "RAJAC Language School")
    currency = get_setting("LEDGER_CURRENCY", "EGP")
    return (
        f"Dear Parent of {account.name},\n\n"
        f"This is a friendly reminder from {school} that *Installment {installment.number}* "
        f"is due on *{format_date(installment.due_date)}* ({days_until} days remaining).\n\n"
        f"Amount Due: *{to_money(amount_due)} {currency}*\n\n"
        "Thank you."
    )


class OverdueDetector:
    def __init__(self, store: LedgerStore, notifier: Any = None, *, clock: Callable[[], datetime] = local_now):
        self.store = store
        self.notifier = notifier
        self.clock = clock

    def load_schedule(self, config: Optional[Mapping[str, str]] = None) -> InstallmentSchedule:
        return InstallmentSchedule.from_config(config if config is not None else self.store.get_config())

    def _students(self) -> List[StudentAccount]:
        return [StudentAccount.from_row(row) for row in self.store.read_all(STUDENTS)]

    def check_overdue_payments(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Recompute and rewrite the ``Overdue_Payments`` table."""
        now = self.clock()
        today = today or now.date()
        schedule = self.load_schedule()
        entries = find_overdue(self._students(), schedule, today, format_timestamp(now))
        self.store.clear_table(OVERDUE)
        if entries:
            self.store.append_rows(OVERDUE, [entry.to_row() for entry in entries])
        if not schedule:
            logger.info("No installment schedule configured; overdue table cleared")
        else:
            logger.info("Overdue check on %s found %s students", today, len(entries))
        return {"checked_at": format_timestamp(now), "count": len(entries), "overdue": entries}

    def get_overdue_students(self) -> List[OverdueEntry]:
        entries = [OverdueEntry.from_row(row) for row in self.store.read_all(OVERDUE)]
        return [entry for entry in entries if entry.student_id]

    def get_upcoming_due_dates(self, today: Optional[date] = None) -> List[Dict[str, Any]]:
        today = today or self.clock().date()
        return [
            {
                "number": installment.number,
                "date": format_date(installment.due_date),
                "days_until": (installment.due_date - today).days,
                "is_past": installment.due_date < today,
            }
            for installment in self.load_schedule().installments
        ]

    def update_installment_dates(self, dates: Sequence[Any]) -> InstallmentSchedule:
        """Replace the schedule with ``dates`` (in installment order)."""
        parsed = []
        for index, value in enumerate(dates, start=1):
            due = value if isinstance(value, date) else parse_date_cell(value)
            if due is None:
                raise ValidationError(f"Installment {index} date {value!r} is not a valid date", field="dates")
            parsed.append(due)
        if not parsed:
            raise ValidationError("At least one installment date is required", field="dates")
        if any(later <= earlier for earlier, later in zip(parsed, parsed[1:])):
            raise ValidationError("Installment dates must be strictly increasing", field="dates")
        config = self.store.get_config()
        previous = InstallmentSchedule.from_config(config).count
        for number, due in enumerate(parsed, start=1):
            self.store.set_config(f"Installment_{number}_Date", format_date(due))
        for number in range(len(parsed) + 1, max(previous, 4) + 1):
            if config.get(f"Installment_{number}_Date"):
                self.store.set_config(f"Installment_{number}_Date", "")
        self.store.set_config("Number_of_Installments", str(len(parsed)))
        logger.info("Installment schedule set to %s", [format_date(due) for due in parsed])
        return self.load_schedule()

    def send_payment_reminders(self, days_before_due: Optional[int] = None, today: Optional[date] = None) -> Dict[str, Any]:
        """Notify students with an unpaid installment due within the window."""
        config = self.store.get_config()
        result: Dict[str, Any] = {"enabled": False, "sent": 0, "failed": [], "skipped": 0}
        if clean_cell(config.get("WhatsApp_Notifications_Enabled")).lower() != "true":
            logger.info("WhatsApp notifications are disabled; no reminders sent")
            return result
        if self.notifier is None:
            logger.warning("No notifier configured; no reminders sent")
            return result
        result["enabled"] = True
        if days_before_due is None:
            try:
                days_before_due = int(parse_amount(config.get("Notification_Days_Before_Due") or 7))
            except (ValueError, ArithmeticError):
                days_before_due = 7
        today = today or self.clock().date()
        schedule = self.load_schedule(config)
        if not schedule:
            return result
        for account in self._students():
            if not account.student_id or not _owes(account):
                continue
            for installment in schedule.installments:
                days_until = (installment.due_date - today).days
                if not 0 < days_until <= days_before_due:
                    continue
                amount_due = _pending_installment(account, schedule, installment)
                if amount_due is None or amount_due <= ZERO:
                    continue
                if not account.phone_number:
                    result["skipped"] += 1
                    break
                message = build_reminder_message(account, installment, days_until, amount_due)
                try:
                    ok, reason = self.notifier.send_message(account.phone_number, message)
                except Exception as exc:
                    ok, reason = False, str(exc)
                if ok:
                    result["sent"] += 1
                else:
                    logger.warning("Reminder to %s failed: %s", account.student_id, reason)
                    result["failed"].append({"student_id": account.student_id, "reason": reason})
                break
        logger.info("Payment reminders: %s sent, %s failed", result["sent"], len(result["failed"]))
        return result
