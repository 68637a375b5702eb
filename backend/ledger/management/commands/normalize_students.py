from django.core.management.base import BaseCommand, CommandError

from ledger.exceptions import LedgerError
from ledger.services import get_ledger


class Command(BaseCommand):
    help = 'Recompute discount, net, remaining and status columns for every student'

    def handle(self, *args, **options):
        try:
            result = get_ledger().students.normalize_all()
        except (LedgerError, RuntimeError) as exc:
            raise CommandError(str(exc))
        self.stdout.write(f"Examined {result['examined']} students")
        for student_id in result['student_ids']:
            self.stdout.write(f'  fixed {student_id}')
        self.stdout.write(self.style.SUCCESS(f"Done! Updated {result['updated']} rows"))
