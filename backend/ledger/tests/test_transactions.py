from datetime import date
from decimal import Decimal

from django.test import SimpleTestCase

from ledger.domain_ledger import BANK_DEPOSITS, TRANSACTIONS, BankMovement, mirror_note
from ledger.exceptions import ValidationError
from ledger.transactions import normalize_transaction_type

from .factories import add_student, make_ledger


class TransactionRecorderTests(SimpleTestCase):
    def setUp(self):
        self.ledger, self.store, self.clock = make_ledger()

    def test_record_transaction_normalises_type(self):
        record = self.ledger.transactions.record_transaction("Income", 250, subject="Books", payer_receiver_name="Parent")

        self.assertEqual(record.type, "income")
        row = self.store.read_all(TRANSACTIONS)[0]
        self.assertEqual(row["Type"], "income")
        self.assertEqual(row["Payment_Method"], "Cash")
        self.assertEqual(self.ledger.action_log.list_actions()[0].action_type, "transaction")

    def test_unrecognised_type_and_bad_amount_are_rejected(self):
        with self.assertRaises(ValidationError):
            self.ledger.transactions.record_transaction("refund", 100)
        with self.assertRaises(ValidationError):
            self.ledger.transactions.record_transaction("expense", 0)
        self.assertEqual(self.store.read_all(TRANSACTIONS), [])

    def test_teacher_payment_subject_is_reserved_for_payroll(self):
        for subject in ("Teacher Payment", " teacher payment "):
            with self.assertRaises(ValidationError):
                self.ledger.transactions.record_transaction("expense", 500, subject=subject, payer_receiver_name="Mr X")
        self.assertEqual(self.store.read_all(TRANSACTIONS), [])
        summary = self.ledger.finance.get_financial_summary()
        self.assertEqual(summary["cash"]["total_cash_in_hand"], Decimal("0.00"))
        self.assertEqual(summary["transactions"]["total_expenses"], Decimal("0.00"))

    def test_withdrawal_is_stored_negative_with_default_note(self):
        movement = self.ledger.transactions.record_bank_withdrawal(400, bank_name="CIB")

        self.assertEqual(movement.amount, Decimal("-400"))
        row = self.store.read_all(BANK_DEPOSITS)[0]
        self.assertEqual(row["Amount"], "-400")
        self.assertEqual(row["Notes"], "Withdrawal to cash")
        self.assertEqual(self.ledger.action_log.list_actions()[0].action_type, "bank_withdrawal")

    def test_manual_deposit_cannot_use_the_automatic_tag(self):
        with self.assertRaises(ValidationError):
            self.ledger.transactions.record_bank_deposit(100, notes="Auto: student payment STU1")

    def test_withdraw_then_deposit_leaves_balances_unchanged(self):
        add_student(self.store)
        self.ledger.students.record_payment("STU250001", 5000, "Cash")
        self.ledger.students.record_payment("STU250001", 2000, "Visa")
        before = self.ledger.finance.get_financial_summary()

        self.ledger.transactions.record_bank_withdrawal(1500)
        middle = self.ledger.finance.get_financial_summary()
        self.ledger.transactions.record_bank_deposit(1500)
        after = self.ledger.finance.get_financial_summary()

        self.assertEqual(middle["cash"]["total_cash_in_hand"], Decimal("6500.00"))
        self.assertEqual(middle["bank"]["total_in_bank"], Decimal("500.00"))
        self.assertEqual(after["cash"], before["cash"])
        self.assertEqual(after["bank"], before["bank"])

    def test_list_filters_by_date_and_type(self):
        self.ledger.transactions.record_transaction("in", 100)
        self.clock.advance(days=10)
        self.ledger.transactions.record_transaction("out", 40)
        self.ledger.transactions.record_bank_deposit(60)

        self.assertEqual(len(self.ledger.transactions.list_transactions()), 2)
        self.assertEqual([r.amount for r in self.ledger.transactions.list_transactions(type="expense")], [Decimal("40")])
        recent = self.ledger.transactions.list_transactions(start=date(2025, 11, 5))
        self.assertEqual([r.type for r in recent], ["expense"])
        self.assertEqual(len(self.ledger.transactions.list_bank_movements(end=date(2025, 11, 5))), 0)


class DuplicateDepositCleanupTests(SimpleTestCase):
    def setUp(self):
        self.ledger, self.store, self.clock = make_ledger()
        add_student(self.store)

    def test_cleanup_removes_mirror_without_changing_bank_total(self):
        self.ledger.students.record_payment("STU250001", 3000, "Visa")
        before = self.ledger.finance.get_financial_summary()["bank"]["total_in_bank"]

        result = self.ledger.transactions.cleanup_duplicate_bank_deposits()

        self.assertEqual(result["removed"], 1)
        self.assertEqual(result["total_amount"], Decimal("3000"))
        self.assertEqual(self.store.read_all(BANK_DEPOSITS), [])
        self.assertEqual(self.ledger.finance.get_financial_summary()["bank"]["total_in_bank"], before)
        self.assertEqual(before, Decimal("3000.00"))
        self.assertEqual(self.ledger.transactions.cleanup_duplicate_bank_deposits()["removed"], 0)

    def test_cleanup_keeps_unmatched_rows(self):
        payment = self.ledger.students.record_payment("STU250001", 3000, "Visa")["payment"]
        self.store.clear_table(BANK_DEPOSITS)
        self.store.append_rows(BANK_DEPOSITS, [
            BankMovement("DEP1", "2025-11-04 10:00:00", Decimal("3000"), "Visa", "", mirror_note("STU250001", payment.payment_id)).to_row(),
            BankMovement("DEP2", "2025-11-01 11:00:00", Decimal("2999"), "Visa", "", mirror_note("STU250001", payment.payment_id)).to_row(),
            BankMovement("DEP3", "2025-11-01 11:00:00", Decimal("3000"), "Visa", "", mirror_note("STU250099", "PAYX")).to_row(),
            BankMovement("DEP4", "2025-11-01 11:00:00", Decimal("3000"), "CIB", "Omar", "Weekly deposit").to_row(),
        ])

        result = self.ledger.transactions.cleanup_duplicate_bank_deposits()

        self.assertEqual(result["removed"], 0)
        self.assertEqual(len(self.store.read_all(BANK_DEPOSITS)), 4)


def test_normalize_transaction_type_rejects_unknown():
    assert normalize_transaction_type("Other Income") == "income"
    assert normalize_transaction_type("outgoing") == "expense"
    try:
        normalize_transaction_type("misc")
    except ValidationError as exc:
        assert exc.field == "type"
    else:
        raise AssertionError("misc should not be accepted")
