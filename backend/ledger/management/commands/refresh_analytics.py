import json

from django.core.management.base import BaseCommand, CommandError

from ledger.exceptions import LedgerError
from ledger.services import get_ledger


class Command(BaseCommand):
    help = 'Recompute the financial summary and rewrite the Analytics sheet'

    def add_arguments(self, parser):
        parser.add_argument('--json', action='store_true', help='Print the full summary as JSON')

    def handle(self, *args, **options):
        try:
            summary = get_ledger().finance.refresh_analytics()
        except (LedgerError, RuntimeError) as exc:
            raise CommandError(str(exc))
        if options['json']:
            self.stdout.write(json.dumps(summary, indent=2, default=str))
            return
        self.stdout.write(f"Cash in hand: {summary['cash']['total_cash_in_hand']}")
        self.stdout.write(f"In bank: {summary['bank']['total_in_bank']}")
        self.stdout.write(f"Net profit: {summary['transactions']['net_profit']}")
        self.stdout.write(f"Collection rate: {summary['students']['collection_rate']}")
        self.stdout.write(self.style.SUCCESS('Analytics updated'))
