from django.core.management.base import BaseCommand, CommandError

from ledger.exceptions import LedgerError
from ledger.services import get_ledger


class Command(BaseCommand):
    help = 'Recompute the Overdue_Payments sheet from the installment schedule'

    def handle(self, *args, **options):
        try:
            result = get_ledger().overdue.check_overdue_payments()
        except (LedgerError, RuntimeError) as exc:
            raise CommandError(str(exc))
        for entry in result['overdue']:
            self.stdout.write(
                f'  {entry.student_id} {entry.student_name}: installment {entry.installment_number} '
                f'due {entry.due_date}, {entry.amount_due} owed, {entry.days_overdue} days late'
            )
        self.stdout.write(self.style.SUCCESS(f"Overdue students: {result['count']}"))
