"""
Delete a plexus's weaves, discovery runs and repo glossaries.

Usage:
    python manage.py flush_plexus_data my-plexus
    python manage.py flush_plexus_data my-plexus --cancel-wait 30
"""

from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import SymplokeException


class Command(BaseCommand):
    help = 'Delete weaves, discovery runs and repo glossaries of a plexus'

    def add_arguments(self, parser):
        parser.add_argument('plexus', type=str, help='Plexus id or slug')
        parser.add_argument(
            '--cancel-wait',
            type=float,
            default=0,
            help='Cancel an active run and wait up to N seconds before deleting'
        )
        parser.add_argument(
            '--yes',
            action='store_true',
            help='Do not ask for confirmation'
        )

    def handle(self, *args, **options):
        from apps.weaves.services import reset_plexus_data, resolve_plexus

        try:
            plexus = resolve_plexus(options['plexus'])
        except SymplokeException as e:
            raise CommandError(e.message)

        if not options['yes'] and options.get('interactive', True):
            answer = input(f"Delete all discovery data for '{plexus.name}'? [y/N] ")
            if answer.strip().lower() not in ('y', 'yes'):
                self.stdout.write(self.style.WARNING('Aborted'))
                return

        try:
            deleted = reset_plexus_data(plexus, cancel_wait=options['cancel_wait'])
        except SymplokeException as e:
            raise CommandError(e.message)

        self.stdout.write(self.style.SUCCESS(
            f"Deleted {deleted['weaves']} weaves, {deleted['discovery_runs']} runs "
            f"and {deleted['glossaries']} glossaries for {plexus.name}"
        ))
