from decimal import Decimal

from django.test import SimpleTestCase

from ledger.domain_ledger import TEACHERS, TRANSACTIONS
from ledger.exceptions import NotFound, ValidationError

from .factories import make_ledger


class TeacherPayrollTests(SimpleTestCase):
    def setUp(self):
        self.ledger, self.store, self.clock = make_ledger()
        self.teacher = self.ledger.teachers.add_teacher("Ahmed Fathy", subject="Math", number_of_classes=8, fee_per_student=250)

    def test_add_teacher_computes_total_from_fee(self):
        self.assertTrue(self.teacher.teacher_id.startswith("TCH20251101"))
        row = self.store.find_row(TEACHERS, "Teacher_ID", self.teacher.teacher_id)
        self.assertEqual(row["Total_Amount"], "2000")
        self.assertEqual(row["Remaining_Balance"], "2000")

    def test_add_teacher_requires_name(self):
        with self.assertRaises(ValidationError):
            self.ledger.teachers.add_teacher("  ")

    def test_pay_teacher_records_expense_and_updates_totals(self):
        result = self.ledger.teachers.pay_teacher("Ahmed Fathy", 500, processed_by="admin")

        self.assertEqual(result["teacher"].total_paid, Decimal("500"))
        self.assertEqual(result["teacher"].remaining_balance, Decimal("1500"))
        txn = self.store.read_all(TRANSACTIONS)[0]
        self.assertEqual(txn["Type"], "expense")
        self.assertEqual(txn["Subject"], "Teacher Payment")
        self.assertEqual(txn["Payer_Receiver_Name"], "Ahmed Fathy")
        self.assertEqual(self.ledger.action_log.list_actions()[0].action_type, "teacher_payment")

    def test_payroll_counted_once_in_summary(self):
        self.ledger.transactions.record_transaction("income", 1000)
        self.ledger.teachers.pay_teacher(self.teacher.teacher_id, 400)

        summary = self.ledger.finance.get_financial_summary()

        self.assertEqual(summary["cash"]["total_cash_in_hand"], Decimal("600.00"))
        totals = summary["transactions"]
        self.assertEqual(totals["other_expenses"], Decimal("0.00"))
        self.assertEqual(totals["teacher_payments"], Decimal("400.00"))
        self.assertEqual(totals["total_expenses"], Decimal("400.00"))
        self.assertEqual(summary["teachers"]["total_outstanding"], Decimal("1600.00"))

    def test_undo_teacher_payment(self):
        self.ledger.teachers.pay_teacher(self.teacher.teacher_id, 400)

        result = self.ledger.action_log.revert_last_actions(1)

        self.assertEqual(result["reverted"], 1)
        self.assertEqual(self.store.read_all(TRANSACTIONS), [])
        self.assertEqual(self.ledger.teachers.get_teacher(self.teacher.teacher_id).total_paid, Decimal("0"))

    def test_undoing_an_older_teacher_payment_keeps_later_ones(self):
        self.ledger.teachers.pay_teacher(self.teacher.teacher_id, 400)
        first = self.ledger.action_log.list_actions()[0]
        self.ledger.teachers.pay_teacher(self.teacher.teacher_id, 300)

        self.assertTrue(self.ledger.action_log.revert_action_by_id(first.action_id))

        self.assertEqual(self.ledger.teachers.get_teacher(self.teacher.teacher_id).total_paid, Decimal("300"))
        self.assertEqual([row["Amount"] for row in self.store.read_all(TRANSACTIONS)], ["300"])

    def test_paid_teacher_cannot_be_deleted(self):
        self.ledger.teachers.pay_teacher(self.teacher.teacher_id, 400)
        before = self.ledger.finance.get_financial_summary()["transactions"]["net_profit"]

        with self.assertRaises(ValidationError):
            self.ledger.teachers.delete_teacher(self.teacher.teacher_id)

        self.assertEqual(len(self.ledger.teachers.list_teachers()), 1)
        self.assertEqual(self.ledger.finance.get_financial_summary()["transactions"]["net_profit"], before)
        self.assertEqual(before, Decimal("-400.00"))

    def test_invalid_payment_amount(self):
        with self.assertRaises(ValidationError):
            self.ledger.teachers.pay_teacher(self.teacher.teacher_id, 0)
        self.assertEqual(self.store.read_all(TRANSACTIONS), [])

    def test_update_and_delete(self):
        updated = self.ledger.teachers.update_teacher(self.teacher.teacher_id, number_of_classes=10)
        self.assertEqual(updated.total_amount, Decimal("2500"))
        with self.assertRaises(ValidationError):
            self.ledger.teachers.update_teacher(self.teacher.teacher_id, total_paid=5)

        self.ledger.teachers.delete_teacher(self.teacher.teacher_id)

        self.assertEqual(self.ledger.teachers.list_teachers(), [])
        with self.assertRaises(NotFound):
            self.ledger.teachers.get_teacher(self.teacher.teacher_id)
