from datetime import datetime
from decimal import Decimal

import pytest

from ledger.domain_ledger import (
    EXPENSE,
    INCOME,
    BankMovement,
    StudentAccount,
    classify_transaction_type,
    derive_status,
    discount_for,
    mirror_note,
)
from ledger.exceptions import ValidationError
from ledger.helpers import (
    best_effort,
    normalize_phone,
    parse_amount,
    parse_date_cell,
    parse_datetime_cell,
    require_amount,
)


def test_parse_amount_is_lenient():
    assert parse_amount("1,250.50") == Decimal("1250.50")
    assert parse_amount(" 300 EGP ") == Decimal("300")
    assert parse_amount("") == Decimal("0")
    assert parse_amount(None) == Decimal("0")
    assert parse_amount("n/a") == Decimal("0")
    assert parse_amount(float("nan")) == Decimal("0")
    assert parse_amount(12.5) == Decimal("12.5")


def test_require_amount_rejects_non_positive_and_garbage():
    assert require_amount("1,500") == Decimal("1500")
    assert require_amount(0, allow_zero=True) == Decimal("0")
    for bad in ("0", "-5", "abc", "", None):
        with pytest.raises(ValidationError):
            require_amount(bad)


def test_parse_datetime_cell_handles_sheet_formats():
    assert parse_datetime_cell("2025-10-15 09:30:00") == datetime(2025, 10, 15, 9, 30)
    assert parse_date_cell("2025-10-15").isoformat() == "2025-10-15"
    # Excel serial for 2025-10-15
    assert parse_date_cell(45945).isoformat() == "2025-10-15"
    assert parse_date_cell("45945").isoformat() == "2025-10-15"
    assert parse_datetime_cell("not a date") is None
    assert parse_datetime_cell("") is None
    assert parse_datetime_cell(None) is None
    assert parse_datetime_cell("NaT") is None


def test_normalize_phone_adds_country_code():
    assert normalize_phone("01001234567", "20") == "201001234567"
    assert normalize_phone("+20 100 123 4567", "20") == "201001234567"
    assert normalize_phone("1001234567", "20") == "201001234567"
    assert normalize_phone("", "20") == ""


def test_best_effort_swallows_failures():
    def boom():
        raise RuntimeError("sheet quota exceeded")

    assert best_effort("analytics refresh", boom) is None
    assert best_effort("sum", lambda a, b: a + b, 2, 3) == 5


def test_classify_transaction_type():
    assert classify_transaction_type("Income") == INCOME
    assert classify_transaction_type("in") == INCOME
    assert classify_transaction_type("OUT") == EXPENSE
    assert classify_transaction_type("Office Expense") == EXPENSE
    assert classify_transaction_type("Teacher Payment") is None
    assert classify_transaction_type("") is None


def test_student_account_ignores_cached_columns():
    account = StudentAccount.from_row({
        "Student_ID": "STU1",
        "Name": "Karim",
        "Total_Fees": "10,000",
        "Discount_Amount": "1000",
        "Net_Amount": "123",
        "Total_Paid": "2000",
        "Remaining_Balance": "5",
        "Status": "Paid",
    })
    assert account.net_amount == Decimal("9000")
    assert account.remaining_balance == Decimal("7000")
    assert account.derived_status == "Active"
    assert account.to_row()["Status"] == "Active"


def test_discount_and_status_rules():
    assert discount_for(Decimal("9999"), Decimal("15")) == Decimal("1500")
    assert derive_status(Decimal("0"), "Active") == "Paid"
    assert derive_status(Decimal("-10"), "Inactive") == "Paid"
    assert derive_status(Decimal("10"), "Inactive") == "Inactive"
    assert derive_status(Decimal("10"), "Paid") == "Active"


def test_mirror_note_round_trips_identifiers():
    movement = BankMovement(
        deposit_id="DEP1",
        date="2025-11-01 10:00:00",
        amount=Decimal("3000"),
        notes=mirror_note("STU250001", "PAY20251101AB12CD"),
    )
    assert movement.is_mirror
    assert movement.mirrored_student_id == "STU250001"
    assert movement.mirrored_payment_id == "PAY20251101AB12CD"
    legacy = BankMovement(deposit_id="DEP2", date="", amount=Decimal("1"), notes="Auto: student payment STU9")
    assert legacy.mirrored_student_id == "STU9"
    assert legacy.mirrored_payment_id is None
