"""Row records and column layout of the ledger spreadsheet.

Every table is a worksheet whose first row holds the headers below. Records
are built from the dict rows returned by the store (header -> cell text,
plus ``__row_number``) and turned back into dict rows for writing.

Student and teacher accounts keep only their base figures; net and
remaining amounts are computed properties so the cached sheet columns are
always rewritten from them.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from .helpers import ZERO, clean_cell, parse_amount, whole_units

STUDENTS = "Master_Students"
PAYMENTS = "Payments_Log"
TRANSACTIONS = "In_Out_Transactions"
BANK_DEPOSITS = "Bank_Deposits"
OVERDUE = "Overdue_Payments"
TEACHERS = "Teachers"
CONFIG = "Config"
ANALYTICS = "Analytics"
ACTIONS = "Actions_Log"

TABLE_HEADERS: Dict[str, List[str]] = {
    STUDENTS: [
        "Student_ID", "Name", "Year", "Number_of_Subjects", "Total_Fees",
        "Discount_Percent", "Discount_Amount", "Net_Amount", "Total_Paid",
        "Remaining_Balance", "Phone_Number", "Enrollment_Date", "Status",
        "Last_Payment_Date",
    ],
    PAYMENTS: [
        "Payment_ID", "Student_ID", "Student_Name", "Payment_Date",
        "Amount_Paid", "Payment_Method", "Discount_Applied", "Net_Amount",
        "Remaining_Balance", "Installment_Number", "Processed_By", "Notes",
    ],
    TRANSACTIONS: [
        "Transaction_ID", "Date", "Type", "Amount", "Subject",
        "Payer_Receiver_Name", "Payment_Method", "Notes", "Processed_By",
    ],
    BANK_DEPOSITS: ["Deposit_ID", "Date", "Amount", "Bank_Name", "Deposited_By", "Notes"],
    OVERDUE: [
        "Student_ID", "Student_Name", "Year", "Phone_Number", "Net_Amount",
        "Total_Paid", "Remaining_Balance", "Amount_Due", "Installment_Number",
        "Due_Date", "Days_Overdue", "Last_Updated",
    ],
    TEACHERS: [
        "Teacher_ID", "Name", "Subject", "Number_of_Classes", "Fee_Per_Student",
        "Total_Amount", "Total_Paid", "Remaining_Balance", "Created_At",
    ],
    CONFIG: ["Setting", "Value"],
    ANALYTICS: ["Metric", "Value", "Details", "Last_Updated"],
    ACTIONS: ["Action_ID", "Timestamp", "Action_Type", "Reference_ID", "Performed_By", "Details"],
}

GRADE_HEADERS = [
    "Student_ID", "Name", "Net_Amount", "Total_Paid", "Remaining_Balance",
    "Phone_Number", "Enrollment_Date", "Days_Overdue", "Due_Date",
]

DEFAULT_CONFIG = [
    ("Number_of_Installments", "3"),
    ("Installment_1_Date", "2025-10-15"),
    ("Installment_2_Date", "2025-12-15"),
    ("Installment_3_Date", "2026-02-15"),
    ("Installment_4_Date", ""),
    ("Current_Academic_Year", "2025-2026"),
    ("WhatsApp_Notifications_Enabled", "true"),
    ("Notification_Days_Before_Due", "7"),
]

STATUS_ACTIVE = "Active"
STATUS_PAID = "Paid"
STATUS_INACTIVE = "Inactive"

CASH_METHOD = "Cash"
TEACHER_PAYMENT_SUBJECT = "Teacher Payment"
MIRROR_TAG = "Auto: student payment"
_MIRROR_RE = re.compile(r"^Auto: student payment (\S+)(?: \((\S+)\))?")

INCOME = "income"
EXPENSE = "expense"


def grade_table(year: Any) -> str:
    return f"Grade_{clean_cell(year)}"


def is_cash_method(method: Any) -> bool:
    return clean_cell(method).lower() == CASH_METHOD.lower()


def classify_transaction_type(raw: Any) -> Optional[str]:
    """Map the free-text transaction type onto income/expense, or None."""
    text = clean_cell(raw).lower()
    if not text:
        return None
    if "expense" in text or text.startswith("out"):
        return EXPENSE
    if "income" in text or text.startswith("in"):
        return INCOME
    return None


def discount_for(total_fees: Decimal, discount_percent: Decimal) -> Decimal:
    return whole_units(total_fees * discount_percent / Decimal("100"))


def derive_status(remaining: Decimal, current: str = "") -> str:
    if remaining <= 0:
        return STATUS_PAID
    if clean_cell(current).lower() == STATUS_INACTIVE.lower():
        return STATUS_INACTIVE
    return STATUS_ACTIVE


def mirror_note(student_id: str, payment_id: str) -> str:
    return f"{MIRROR_TAG} {student_id} ({payment_id})"


def _int_cell(value: Any, default: int = 0) -> int:
    amount = parse_amount(value)
    try:
        return int(amount)
    except (ValueError, OverflowError):
        return default


@dataclass
class StudentAccount:
    student_id: str
    name: str
    year: str = ""
    number_of_subjects: int = 0
    total_fees: Decimal = ZERO
    discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total_paid: Decimal = ZERO
    phone_number: str = ""
    enrollment_date: str = ""
    status: str = STATUS_ACTIVE
    last_payment_date: str = ""
    row_number: Optional[int] = None

    @property
    def net_amount(self) -> Decimal:
        return self.total_fees - self.discount_amount

    @property
    def remaining_balance(self) -> Decimal:
        return self.net_amount - self.total_paid

    @property
    def derived_status(self) -> str:
        return derive_status(self.remaining_balance, self.status)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StudentAccount":
        return cls(
            student_id=clean_cell(row.get("Student_ID")),
            name=clean_cell(row.get("Name")),
            year=clean_cell(row.get("Year")),
            number_of_subjects=_int_cell(row.get("Number_of_Subjects")),
            total_fees=parse_amount(row.get("Total_Fees")),
            discount_percent=parse_amount(row.get("Discount_Percent")),
            discount_amount=parse_amount(row.get("Discount_Amount")),
            total_paid=parse_amount(row.get("Total_Paid")),
            phone_number=clean_cell(row.get("Phone_Number")),
            enrollment_date=clean_cell(row.get("Enrollment_Date")),
            status=clean_cell(row.get("Status")) or STATUS_ACTIVE,
            last_payment_date=clean_cell(row.get("Last_Payment_Date")),
            row_number=row.get("__row_number"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "Student_ID": self.student_id,
            "Name": self.name,
            "Year": self.year,
            "Number_of_Subjects": self.number_of_subjects,
            "Total_Fees": self.total_fees,
            "Discount_Percent": self.discount_percent,
            "Discount_Amount": self.discount_amount,
            "Net_Amount": self.net_amount,
            "Total_Paid": self.total_paid,
            "Remaining_Balance": self.remaining_balance,
            "Phone_Number": self.phone_number,
            "Enrollment_Date": self.enrollment_date,
            "Status": self.derived_status,
            "Last_Payment_Date": self.last_payment_date,
        }


@dataclass
class PaymentRecord:
    payment_id: str
    student_id: str
    student_name: str
    payment_date: str
    amount_paid: Decimal
    payment_method: str
    discount_applied: Decimal = ZERO
    net_amount: Decimal = ZERO
    remaining_balance: Decimal = ZERO
    installment_number: int = 1
    processed_by: str = ""
    notes: str = ""
    row_number: Optional[int] = None

    @property
    def is_cash(self) -> bool:
        return is_cash_method(self.payment_method)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PaymentRecord":
        return cls(
            payment_id=clean_cell(row.get("Payment_ID")),
            student_id=clean_cell(row.get("Student_ID")),
            student_name=clean_cell(row.get("Student_Name")),
            payment_date=clean_cell(row.get("Payment_Date")),
            amount_paid=parse_amount(row.get("Amount_Paid")),
            payment_method=clean_cell(row.get("Payment_Method")),
            discount_applied=parse_amount(row.get("Discount_Applied")),
            net_amount=parse_amount(row.get("Net_Amount")),
            remaining_balance=parse_amount(row.get("Remaining_Balance")),
            installment_number=_int_cell(row.get("Installment_Number"), 1),
            processed_by=clean_cell(row.get("Processed_By")),
            notes=clean_cell(row.get("Notes")),
            row_number=row.get("__row_number"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "Payment_ID": self.payment_id,
            "Student_ID": self.student_id,
            "Student_Name": self.student_name,
            "Payment_Date": self.payment_date,
            "Amount_Paid": self.amount_paid,
            "Payment_Method": self.payment_method,
            "Discount_Applied": self.discount_applied,
            "Net_Amount": self.net_amount,
            "Remaining_Balance": self.remaining_balance,
            "Installment_Number": self.installment_number,
            "Processed_By": self.processed_by,
            "Notes": self.notes,
        }


@dataclass
class TransactionRecord:
    transaction_id: str
    date: str
    type: str
    amount: Decimal
    subject: str = ""
    payer_receiver_name: str = ""
    payment_method: str = CASH_METHOD
    notes: str = ""
    processed_by: str = ""
    row_number: Optional[int] = None

    @property
    def kind(self) -> Optional[str]:
        return classify_transaction_type(self.type)

    @property
    def is_cash(self) -> bool:
        return is_cash_method(self.payment_method)

    @property
    def is_payroll(self) -> bool:
        return self.subject.strip().lower() == TEACHER_PAYMENT_SUBJECT.lower()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TransactionRecord":
        return cls(
            transaction_id=clean_cell(row.get("Transaction_ID")),
            date=clean_cell(row.get("Date")),
            type=clean_cell(row.get("Type")),
            amount=parse_amount(row.get("Amount")),
            subject=clean_cell(row.get("Subject")),
            payer_receiver_name=clean_cell(row.get("Payer_Receiver_Name")),
            payment_method=clean_cell(row.get("Payment_Method")),
            notes=clean_cell(row.get("Notes")),
            processed_by=clean_cell(row.get("Processed_By")),
            row_number=row.get("__row_number"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "Transaction_ID": self.transaction_id,
            "Date": self.date,
            "Type": self.type,
            "Amount": self.amount,
            "Subject": self.subject,
            "Payer_Receiver_Name": self.payer_receiver_name,
            "Payment_Method": self.payment_method,
            "Notes": self.notes,
            "Processed_By": self.processed_by,
        }


@dataclass
class BankMovement:
    deposit_id: str
    date: str
    amount: Decimal
    bank_name: str = ""
    deposited_by: str = ""
    notes: str = ""
    row_number: Optional[int] = None

    @property
    def is_mirror(self) -> bool:
        return self.notes.startswith(MIRROR_TAG)

    @property
    def mirrored_student_id(self) -> Optional[str]:
        match = _MIRROR_RE.match(self.notes)
        return match.group(1) if match else None

    @property
    def mirrored_payment_id(self) -> Optional[str]:
        match = _MIRROR_RE.match(self.notes)
        return match.group(2) if match else None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BankMovement":
        return cls(
            deposit_id=clean_cell(row.get("Deposit_ID")),
            date=clean_cell(row.get("Date")),
            amount=parse_amount(row.get("Amount")),
            bank_name=clean_cell(row.get("Bank_Name")),
            deposited_by=clean_cell(row.get("Deposited_By")),
            notes=clean_cell(row.get("Notes")),
            row_number=row.get("__row_number"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "Deposit_ID": self.deposit_id,
            "Date": self.date,
            "Amount": self.amount,
            "Bank_Name": self.bank_name,
            "Deposited_By": self.deposited_by,
            "Notes": self.notes,
        }


@dataclass
class TeacherAccount:
    teacher_id: str
    name: str
    subject: str = ""
    number_of_classes: int = 0
    fee_per_student: Decimal = ZERO
    total_amount: Decimal = ZERO
    total_paid: Decimal = ZERO
    created_at: str = ""
    row_number: Optional[int] = None

    @property
    def remaining_balance(self) -> Decimal:
        return self.total_amount - self.total_paid

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TeacherAccount":
        return cls(
            teacher_id=clean_cell(row.get("Teacher_ID")),
            name=clean_cell(row.get("Name")),
            subject=clean_cell(row.get("Subject")),
            number_of_classes=_int_cell(row.get("Number_of_Classes")),
            fee_per_student=parse_amount(row.get("Fee_Per_Student")),
            total_amount=parse_amount(row.get("Total_Amount")),
            total_paid=parse_amount(row.get("Total_Paid")),
            created_at=clean_cell(row.get("Created_At")),
            row_number=row.get("__row_number"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "Teacher_ID": self.teacher_id,
            "Name": self.name,
            "Subject": self.subject,
            "Number_of_Classes": self.number_of_classes,
            "Fee_Per_Student": self.fee_per_student,
            "Total_Amount": self.total_amount,
            "Total_Paid": self.total_paid,
            "Remaining_Balance": self.remaining_balance,
            "Created_At": self.created_at,
        }


@dataclass
class OverdueEntry:
    student_id: str
    student_name: str
    year: str
    phone_number: str
    net_amount: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    amount_due: Decimal
    installment_number: int
    due_date: str
    days_overdue: int
    last_updated: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OverdueEntry":
        return cls(
            student_id=clean_cell(row.get("Student_ID")),
            student_name=clean_cell(row.get("Student_Name")),
            year=clean_cell(row.get("Year")),
            phone_number=clean_cell(row.get("Phone_Number")),
            net_amount=parse_amount(row.get("Net_Amount")),
            total_paid=parse_amount(row.get("Total_Paid")),
            remaining_balance=parse_amount(row.get("Remaining_Balance")),
            amount_due=parse_amount(row.get("Amount_Due")),
            installment_number=_int_cell(row.get("Installment_Number"), 1),
            due_date=clean_cell(row.get("Due_Date")),
            days_overdue=_int_cell(row.get("Days_Overdue")),
            last_updated=clean_cell(row.get("Last_Updated")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "Student_ID": self.student_id,
            "Student_Name": self.student_name,
            "Year": self.year,
            "Phone_Number": self.phone_number,
            "Net_Amount": self.net_amount,
            "Total_Paid": self.total_paid,
            "Remaining_Balance": self.remaining_balance,
            "Amount_Due": self.amount_due,
            "Installment_Number": self.installment_number,
            "Due_Date": self.due_date,
            "Days_Overdue": self.days_overdue,
            "Last_Updated": self.last_updated,
        }


@dataclass
class ActionLogEntry:
    action_id: str
    timestamp: str
    action_type: str
    reference_id: str
    performed_by: str
    details: Dict[str, Any] = field(default_factory=dict)
    row_number: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ActionLogEntry":
        raw = clean_cell(row.get("Details"))
        try:
            details = json.loads(raw) if raw else {}
        except ValueError:
            details = {}
        if not isinstance(details, dict):
            details = {}
        return cls(
            action_id=clean_cell(row.get("Action_ID")),
            timestamp=clean_cell(row.get("Timestamp")),
            action_type=clean_cell(row.get("Action_Type")),
            reference_id=clean_cell(row.get("Reference_ID")),
            performed_by=clean_cell(row.get("Performed_By")),
            details=details,
            row_number=row.get("__row_number"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "Action_ID": self.action_id,
            "Timestamp": self.timestamp,
            "Action_Type": self.action_type,
            "Reference_ID": self.reference_id,
            "Performed_By": self.performed_by,
            "Details": json.dumps(self.details, sort_keys=True),
        }
