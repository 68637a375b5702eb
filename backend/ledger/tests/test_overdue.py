from datetime import date, datetime
from decimal import Decimal

from django.test import SimpleTestCase

from ledger.domain_ledger import OVERDUE
from ledger.exceptions import ValidationError
from ledger.overdue import InstallmentSchedule

from .factories import RecordingNotifier, add_student, make_ledger


class OverdueCheckTests(SimpleTestCase):
    def setUp(self):
        self.ledger, self.store, self.clock = make_ledger(when=datetime(2025, 11, 1, 8, 0))

    def test_first_missed_installment_is_reported(self):
        add_student(self.store, total_paid="2000")

        result = self.ledger.overdue.check_overdue_payments()

        self.assertEqual(result["count"], 1)
        entry = result["overdue"][0]
        self.assertEqual(entry.installment_number, 1)
        self.assertEqual(entry.amount_due, Decimal("1000.00"))
        self.assertEqual(entry.days_overdue, 17)
        self.assertEqual(entry.due_date, "2025-10-15")
        rows = self.store.read_all(OVERDUE)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["Amount_Due"], "1000")
        self.assertEqual(self.ledger.overdue.get_overdue_students()[0].student_id, "STU250001")

    def test_paying_exactly_the_share_is_not_overdue(self):
        add_student(self.store, total_paid="3000")
        self.assertEqual(self.ledger.overdue.check_overdue_payments()["count"], 0)

    def test_due_date_itself_is_not_overdue(self):
        add_student(self.store, total_paid="0")
        result = self.ledger.overdue.check_overdue_payments(today=date(2025, 10, 15))
        self.assertEqual(result["count"], 0)
        result = self.ledger.overdue.check_overdue_payments(today=date(2025, 10, 16))
        self.assertEqual(result["overdue"][0].days_overdue, 1)

    def test_later_installment_after_first_is_covered(self):
        add_student(self.store, total_paid="3000")
        result = self.ledger.overdue.check_overdue_payments(today=date(2025, 12, 20))
        entry = result["overdue"][0]
        self.assertEqual(entry.installment_number, 2)
        self.assertEqual(entry.amount_due, Decimal("3000.00"))
        self.assertEqual(entry.days_overdue, 5)

    def test_paid_and_inactive_students_are_skipped(self):
        add_student(self.store, student_id="STU1", total_paid="9000")
        add_student(self.store, student_id="STU2", status="Inactive")
        add_student(self.store, student_id="STU3", total_paid="100")
        result = self.ledger.overdue.check_overdue_payments()
        self.assertEqual([entry.student_id for entry in result["overdue"]], ["STU3"])

    def test_table_is_rewritten_on_each_check(self):
        add_student(self.store, total_paid="0")
        self.ledger.overdue.check_overdue_payments()
        self.ledger.students.record_payment("STU250001", 3000, "Cash")
        self.assertEqual(self.ledger.overdue.check_overdue_payments()["count"], 0)
        self.assertEqual(self.store.read_all(OVERDUE), [])

    def test_missing_schedule_yields_empty_result(self):
        add_student(self.store, total_paid="0")
        self.store.set_config("Number_of_Installments", "0")
        result = self.ledger.overdue.check_overdue_payments()
        self.assertEqual(result["count"], 0)
        self.assertFalse(self.ledger.overdue.load_schedule())


class InstallmentScheduleTests(SimpleTestCase):
    def setUp(self):
        self.ledger, self.store, self.clock = make_ledger(when=datetime(2025, 12, 1, 9, 0))

    def test_schedule_from_config_skips_blank_dates(self):
        schedule = InstallmentSchedule.from_config({
            "Number_of_Installments": "3",
            "Installment_1_Date": "2025-10-15",
            "Installment_2_Date": "",
            "Installment_3_Date": "2026-02-15",
        })
        self.assertEqual(schedule.count, 3)
        self.assertEqual([i.number for i in schedule.installments], [1, 3])

    def test_upcoming_due_dates(self):
        upcoming = self.ledger.overdue.get_upcoming_due_dates()
        self.assertEqual(
            upcoming[0],
            {"number": 1, "date": "2025-10-15", "days_until": -47, "is_past": True},
        )
        self.assertEqual(upcoming[1]["days_until"], 14)
        self.assertFalse(upcoming[1]["is_past"])

    def test_update_installment_dates(self):
        schedule = self.ledger.overdue.update_installment_dates(["2025-09-30", date(2026, 1, 31)])

        self.assertEqual(schedule.count, 2)
        config = self.store.get_config()
        self.assertEqual(config["Number_of_Installments"], "2")
        self.assertEqual(config["Installment_2_Date"], "2026-01-31")
        self.assertEqual(config["Installment_3_Date"], "")

    def test_update_installment_dates_validates_input(self):
        with self.assertRaises(ValidationError):
            self.ledger.overdue.update_installment_dates(["2025-09-30", "not a date"])
        with self.assertRaises(ValidationError):
            self.ledger.overdue.update_installment_dates(["2026-01-31", "2025-09-30"])
        with self.assertRaises(ValidationError):
            self.ledger.overdue.update_installment_dates([])


class PaymentReminderTests(SimpleTestCase):
    def setUp(self):
        self.notifier = RecordingNotifier(fail_for={"01000000001"})
        self.ledger, self.store, self.clock = make_ledger(when=datetime(2025, 12, 10, 9, 0), notifier=self.notifier)

    def test_reminder_sent_inside_window(self):
        add_student(self.store, total_paid="3000")

        result = self.ledger.overdue.send_payment_reminders()

        self.assertEqual(result["sent"], 1)
        recipient, text = self.notifier.sent[0]
        self.assertEqual(recipient, "01001234567")
        self.assertIn("Dear Parent of Mona Adel", text)
        self.assertIn("*Installment 2*", text)
        self.assertIn("*2025-12-15*", text)
        self.assertIn("(5 days remaining)", text)
        self.assertIn("3000.00 EGP", text)

    def test_window_and_covered_installments(self):
        add_student(self.store, total_paid="6000")
        self.assertEqual(self.ledger.overdue.send_payment_reminders()["sent"], 0)
        add_student(self.store, student_id="STU2", total_paid="3000")
        self.assertEqual(self.ledger.overdue.send_payment_reminders(days_before_due=3)["sent"], 0)

    def test_failures_are_counted_and_processing_continues(self):
        add_student(self.store, student_id="STU1", phone="01000000001", total_paid="3000")
        add_student(self.store, student_id="STU2", total_paid="3000")
        add_student(self.store, student_id="STU3", phone="", total_paid="3000")

        result = self.ledger.overdue.send_payment_reminders()

        self.assertEqual(result["sent"], 1)
        self.assertEqual([failure["student_id"] for failure in result["failed"]], ["STU1"])
        self.assertEqual(result["skipped"], 1)

    def test_disabled_notifications_send_nothing(self):
        add_student(self.store, total_paid="3000")
        self.store.set_config("WhatsApp_Notifications_Enabled", "false")

        result = self.ledger.overdue.send_payment_reminders()

        self.assertFalse(result["enabled"])
        self.assertEqual(self.notifier.sent, [])
