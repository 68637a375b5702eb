from datetime import datetime, timedelta
from decimal import Decimal

from ledger.domain_ledger import STUDENTS, StudentAccount
from ledger.services import Ledger
from ledger.store import InMemoryLedgerStore


class FixedClock:
    def __init__(self, when):
        self.now = when

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send_message(self, recipient, text):
        if recipient in self.fail_for:
            return False, "HTTP 400: invalid recipient"
        self.sent.append((recipient, text))
        return True, None


def make_ledger(when=datetime(2025, 11, 1, 10, 0), notifier=None, store=None):
    store = store or InMemoryLedgerStore()
    store.ensure_tables()
    clock = FixedClock(when)
    return Ledger(store, notifier=notifier, clock=clock), store, clock


def add_student(
    store,
    student_id="STU250001",
    name="Mona Adel",
    year="10",
    total_fees="9000",
    discount_percent="0",
    discount_amount="0",
    total_paid="0",
    phone="01001234567",
    status="Active",
):
    account = StudentAccount(
        student_id=student_id,
        name=name,
        year=year,
        number_of_subjects=3,
        total_fees=Decimal(total_fees),
        discount_percent=Decimal(discount_percent),
        discount_amount=Decimal(discount_amount),
        total_paid=Decimal(total_paid),
        phone_number=phone,
        enrollment_date="2025-09-01",
        status=status,
    )
    store.append_row(STUDENTS, account.to_row())
    return account


def student_row(store, student_id):
    return store.find_row(STUDENTS, "Student_ID", student_id)
