from django.core.management.base import BaseCommand, CommandError

from ledger.exceptions import LedgerError
from ledger.services import get_ledger


class Command(BaseCommand):
    help = 'Remove automatic bank deposits that duplicate non-cash student payments'

    def handle(self, *args, **options):
        ledger = get_ledger()
        try:
            result = ledger.transactions.cleanup_duplicate_bank_deposits()
        except (LedgerError, RuntimeError) as exc:
            raise CommandError(str(exc))
        if result['removed']:
            ledger.refresh_analytics()
        self.stdout.write(self.style.SUCCESS(
            f"Removed {result['removed']} duplicate deposits totalling {result['total_amount']}"
        ))
