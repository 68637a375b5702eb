from django.core.management.base import BaseCommand, CommandError

from ledger.exceptions import LedgerError
from ledger.services import get_ledger


class Command(BaseCommand):
    help = 'Send WhatsApp reminders for installments falling due soon'

    def add_arguments(self, parser):
        parser.add_argument('--days', type=int, default=None, help='Remind this many days before the due date (default: Config value)')

    def handle(self, *args, **options):
        try:
            result = get_ledger().overdue.send_payment_reminders(days_before_due=options['days'])
        except (LedgerError, RuntimeError) as exc:
            raise CommandError(str(exc))
        if not result['enabled']:
            self.stdout.write(self.style.WARNING('Reminders are disabled or no notifier is configured'))
            return
        for failure in result['failed']:
            self.stdout.write(self.style.WARNING(f"  {failure['student_id']}: {failure['reason']}"))
        self.stdout.write(self.style.SUCCESS(
            f"Sent {result['sent']} reminders, {len(result['failed'])} failed, {result['skipped']} without phone"
        ))
