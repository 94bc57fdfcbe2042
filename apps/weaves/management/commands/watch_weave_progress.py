"""
Follow live discovery progress for a plexus.

Usage:
    python manage.py watch_weave_progress my-plexus
    python manage.py watch_weave_progress my-plexus --until-done
"""

from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import SymplokeException


class Command(BaseCommand):
    help = 'Print progress snapshots published on the plexus channel'

    def add_arguments(self, parser):
        parser.add_argument('plexus', type=str, help='Plexus id or slug')
        parser.add_argument(
            '--until-done',
            action='store_true',
            help='Exit after the first terminal event'
        )

    def handle(self, *args, **options):
        from apps.weaves.publisher import TERMINAL_EVENTS, channel_name, subscribe_progress
        from apps.weaves.services import resolve_plexus

        try:
            plexus = resolve_plexus(options['plexus'])
        except SymplokeException as e:
            raise CommandError(e.message)

        self.stdout.write(self.style.NOTICE(f"Listening on {channel_name(plexus.id)} (Ctrl+C to stop)"))

        try:
            for event, snapshot in subscribe_progress(plexus.id):
                line = (
                    f"{event:<16} run={snapshot.run_id} "
                    f"{snapshot.repo_pairs_checked}/{snapshot.repo_pairs_total} "
                    f"({snapshot.progress_percent}%) weaves={snapshot.weaves_found}"
                )
                if event in TERMINAL_EVENTS:
                    self.stdout.write(self.style.SUCCESS(line))
                    if options['until_done']:
                        return
                else:
                    self.stdout.write(line)
        except KeyboardInterrupt:
            self.stdout.write('')
