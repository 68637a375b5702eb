from django.core.management.base import BaseCommand, CommandError

from ledger.exceptions import LedgerError
from ledger.services import get_ledger


class Command(BaseCommand):
    help = 'Revert the most recent logged actions, or one action by ID'

    def add_arguments(self, parser):
        parser.add_argument('--count', type=int, default=1, help='Number of most recent actions to revert')
        parser.add_argument('--action-id', default=None, help='Revert this action only')

    def handle(self, *args, **options):
        action_log = get_ledger().action_log
        try:
            if options['action_id']:
                if action_log.revert_action_by_id(options['action_id']):
                    self.stdout.write(self.style.SUCCESS(f"Reverted {options['action_id']}"))
                else:
                    self.stdout.write(self.style.WARNING(f"Nothing reverted for {options['action_id']}"))
                return
            result = action_log.revert_last_actions(options['count'])
        except (LedgerError, RuntimeError) as exc:
            raise CommandError(str(exc))
        for action_id in result['failed']:
            self.stdout.write(self.style.WARNING(f'  could not revert {action_id}'))
        self.stdout.write(self.style.SUCCESS(f"Reverted {result['reverted']} of {result['attempted']} actions"))
