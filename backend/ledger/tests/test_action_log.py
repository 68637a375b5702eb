from decimal import Decimal

from django.test import SimpleTestCase

from ledger.action_log import (
    _REVERT_HANDLERS,
    PAYLOAD_TYPES,
    ActionLog,
    ActionType,
    PaymentUndo,
    RowUndo,
)
from ledger.domain_ledger import ACTIONS, BANK_DEPOSITS, PAYMENTS, TRANSACTIONS, ActionLogEntry
from ledger.exceptions import ValidationError

from .factories import add_student, make_ledger, student_row


class PaymentUndoTests(SimpleTestCase):
    def setUp(self):
        self.ledger, self.store, self.clock = make_ledger()
        add_student(self.store)

    def test_undo_payment_restores_student_and_removes_rows(self):
        before = student_row(self.store, "STU250001")
        self.ledger.students.record_payment("STU250001", 3000, "Visa")
        action = self.ledger.action_log.list_actions()[0]

        self.assertTrue(self.ledger.action_log.revert_action_by_id(action.action_id))

        after = student_row(self.store, "STU250001")
        for column in ("Total_Paid", "Remaining_Balance", "Status", "Last_Payment_Date"):
            self.assertEqual(after[column], before[column])
        self.assertEqual(self.store.read_all(PAYMENTS), [])
        self.assertEqual(self.store.read_all(BANK_DEPOSITS), [])
        self.assertEqual(self.store.read_all(ACTIONS), [])
        self.assertFalse(self.ledger.action_log.revert_action_by_id(action.action_id))

    def test_undoing_an_older_payment_keeps_later_ones(self):
        self.ledger.students.record_payment("STU250001", 1000, "Cash")
        first = self.ledger.action_log.list_actions()[0]
        self.clock.advance(days=1)
        self.ledger.students.record_payment("STU250001", 2000, "Cash")

        self.assertTrue(self.ledger.action_log.revert_action_by_id(first.action_id))

        row = student_row(self.store, "STU250001")
        self.assertEqual(row["Total_Paid"], "2000")
        self.assertEqual(row["Remaining_Balance"], "7000")
        self.assertEqual(row["Last_Payment_Date"], "2025-11-02 10:00:00")
        self.assertEqual([p["Amount_Paid"] for p in self.store.read_all(PAYMENTS)], ["2000"])
        summary = self.ledger.finance.get_financial_summary()
        self.assertEqual(summary["cash"]["total_cash_in_hand"], Decimal("2000.00"))
        self.assertEqual(summary["students"]["total_fees_collected"], Decimal("2000.00"))

    def test_revert_last_actions_newest_first(self):
        self.ledger.students.record_payment("STU250001", 1000, "Cash")
        self.clock.advance(minutes=5)
        self.ledger.students.apply_discount("STU250001", 10)
        self.clock.advance(minutes=5)
        self.ledger.transactions.record_transaction("income", 300)

        result = self.ledger.action_log.revert_last_actions(2)

        self.assertEqual(result, {"attempted": 2, "reverted": 2, "failed": []})
        self.assertEqual(self.store.read_all(TRANSACTIONS), [])
        row = student_row(self.store, "STU250001")
        self.assertEqual(row["Discount_Amount"], "0")
        self.assertEqual(row["Total_Paid"], "1000")
        remaining = self.ledger.action_log.list_actions()
        self.assertEqual([entry.action_type for entry in remaining], ["student_payment"])

    def test_count_must_be_positive(self):
        with self.assertRaises(ValidationError):
            self.ledger.action_log.revert_last_actions(0)

    def test_fee_update_undo_keeps_later_payments(self):
        self.ledger.students.update_total_fees("STU250001", 12000)
        fee_action = self.ledger.action_log.list_actions()[0]
        self.ledger.students.record_payment("STU250001", 2000, "Cash")

        self.assertTrue(self.ledger.action_log.revert_action_by_id(fee_action.action_id))

        row = student_row(self.store, "STU250001")
        self.assertEqual(row["Total_Fees"], "9000")
        self.assertEqual(row["Total_Paid"], "2000")
        self.assertEqual(row["Remaining_Balance"], "7000")


class UndoEdgeCaseTests(SimpleTestCase):
    def setUp(self):
        self.ledger, self.store, self.clock = make_ledger()
        self.log = self.ledger.action_log

    def _append_entry(self, action_type, details):
        entry = ActionLogEntry("a1", "2025-11-01 10:00:00", action_type, "REF", "System", details)
        self.store.append_row(ACTIONS, entry.to_row())
        return entry

    def test_unknown_action_type_is_cleared(self):
        self._append_entry("rename_student", {"student_id": "STU1"})

        self.assertFalse(self.log.revert_action_by_id("a1"))
        self.assertIsNone(self.log.get_action("a1"))

    def test_missing_target_row_fails_and_clears(self):
        self._append_entry("transaction", {"table": TRANSACTIONS, "id_column": "Transaction_ID", "row_id": "TXN404"})

        self.assertFalse(self.log.revert_action_by_id("a1"))
        self.assertEqual(self.store.read_all(ACTIONS), [])

    def test_malformed_details_fail_without_raising(self):
        self._append_entry("student_payment", {"amount": "100"})

        result = self.log.revert_last_actions(1)

        self.assertEqual(result["reverted"], 0)
        self.assertEqual(result["failed"], ["a1"])

    def test_unknown_action_id(self):
        self.assertFalse(self.log.revert_action_by_id("missing"))

    def test_payload_type_is_checked(self):
        with self.assertRaises(ValidationError):
            self.log.log_action(ActionType.PAYMENT, "STU1", RowUndo(TRANSACTIONS, "Transaction_ID", "TXN1"))
        entry = self.log.log_action(ActionType.PAYMENT, "STU1", PaymentUndo("PAY1", "STU1", Decimal("50")))
        self.assertEqual(self.log.get_action(entry.action_id).details["amount"], "50")

    def test_on_revert_failure_does_not_undo_the_revert(self):
        def broken_refresh():
            raise RuntimeError("analytics sheet locked")

        log = ActionLog(self.store, clock=self.clock, on_revert=broken_refresh)
        self.ledger.transactions.record_bank_deposit(200)
        action = log.list_actions()[0]

        self.assertTrue(log.revert_action_by_id(action.action_id))
        self.assertEqual(self.store.read_all(BANK_DEPOSITS), [])


def test_every_action_type_has_a_payload_and_handler():
    for action_type in ActionType:
        assert action_type in PAYLOAD_TYPES
        assert hasattr(ActionLog, _REVERT_HANDLERS[action_type])
