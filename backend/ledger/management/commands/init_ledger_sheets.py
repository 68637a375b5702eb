from django.core.management.base import BaseCommand, CommandError

from ledger.exceptions import LedgerError
from ledger.services import get_store


class Command(BaseCommand):
    help = 'Create missing ledger worksheets and seed default Config keys'

    def handle(self, *args, **options):
        try:
            result = get_store().ensure_tables()
        except (LedgerError, RuntimeError) as exc:
            raise CommandError(str(exc))
        created = result['created_tables']
        seeded = result['seeded_config']
        self.stdout.write(f"Created tables: {', '.join(created) if created else 'none'}")
        self.stdout.write(f"Seeded config keys: {', '.join(seeded) if seeded else 'none'}")
        self.stdout.write(self.style.SUCCESS('Ledger spreadsheet is ready'))
