"""
Re-enqueue discovery runs whose orchestrator has gone away.

Usage:
    python manage.py recover_weave_runs
    python manage.py recover_weave_runs --dry-run
"""

from django.core.management.base import BaseCommand


class Command(BaseCommand):
    help = 'Recover stuck discovery runs (expired or missing lease)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List stuck runs without touching them'
        )

    def handle(self, *args, **options):
        from apps.weaves.intake import find_stuck_runs, recover_stuck_runs

        if options['dry_run']:
            stuck = list(find_stuck_runs())
            self.stdout.write(self.style.NOTICE(f"{len(stuck)} stuck runs"))
            for run in stuck:
                self.stdout.write(
                    f"  {run.id} plexus={run.plexus_id} status={run.status} "
                    f"pairs={run.repo_pairs_checked}/{run.repo_pairs_total} "
                    f"recoveries={run.recovery_attempts}"
                )
            return

        summary = recover_stuck_runs()
        self.stdout.write(self.style.SUCCESS(
            f"Requeued {summary['requeued']} runs, failed {summary['failed']}"
        ))
