"""
Management command for running weave discovery from the CLI.

Usage:
    python manage.py run_weaves my-plexus
    python manage.py run_weaves my-plexus --fresh
    python manage.py run_weaves 3f0c...-uuid --sync
"""

from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import SymplokeException


class Command(BaseCommand):
    help = 'Submit (or run inline) a weave discovery run for a plexus'

    def add_arguments(self, parser):
        parser.add_argument(
            'plexus',
            type=str,
            help='Plexus id or slug'
        )
        parser.add_argument(
            '--fresh',
            action='store_true',
            help='Start from zero instead of continuing a failed or cancelled run'
        )
        parser.add_argument(
            '--sync',
            action='store_true',
            help='Run the orchestrator in this process instead of queuing a Celery task'
        )
        parser.add_argument(
            '--threshold',
            type=float,
            default=None,
            help='Override the weave score threshold for this run'
        )

    def handle(self, *args, **options):
        from apps.weaves.intake import acquire_lease, new_lease_owner, release_lease, submit_discovery
        from apps.weaves.orchestrator import DiscoveryOrchestrator
        from apps.weaves.services import resolve_plexus

        try:
            plexus = resolve_plexus(options['plexus'])
        except SymplokeException as e:
            raise CommandError(e.message)

        overrides = {}
        if options['threshold'] is not None:
            overrides['score_threshold'] = options['threshold']

        result = submit_discovery(
            plexus.id,
            triggered_by='manual',
            fresh=options['fresh'],
            enqueue=not options['sync'],
            config_overrides=overrides,
        )
        run = result.run

        self.stdout.write(self.style.NOTICE('=' * 60))
        self.stdout.write(self.style.NOTICE(f'Weave Discovery: {plexus.name}'))
        self.stdout.write(self.style.NOTICE('=' * 60))
        self.stdout.write(f"Run ID: {run.id}")
        self.stdout.write(f"Pairs: {run.repo_pairs_total}")

        if result.coalesced:
            self.stdout.write(self.style.WARNING(
                f"A run is already {run.status} for this plexus; not starting another"
            ))
            return
        if result.resumed:
            self.stdout.write(f"Resuming at pair {run.pair_cursor} (from run {run.resumed_from_id})")

        if not options['sync']:
            run.refresh_from_db()
            self.stdout.write(self.style.SUCCESS(f"Queued as task {run.task_id or '(not queued)'}"))
            if run.error_message:
                self.stdout.write(self.style.WARNING(run.error_message))
            return

        owner = new_lease_owner()
        if not acquire_lease(run, owner):
            raise CommandError(f"Run {run.id} is owned by another orchestrator")

        try:
            status = DiscoveryOrchestrator(run, lease_owner=owner).run()
        except Exception as e:
            raise CommandError(f'Discovery failed: {e}')
        finally:
            release_lease(run, owner)

        run.refresh_from_db()
        style = self.style.SUCCESS if status.value == 'completed' else self.style.WARNING
        self.stdout.write('')
        self.stdout.write(style(f"Status: {run.status}"))
        self.stdout.write(f"Pairs checked: {run.repo_pairs_checked}/{run.repo_pairs_total}")
        self.stdout.write(f"Pairs skipped: {run.pairs_skipped}")
        self.stdout.write(f"Weaves found: {run.weaves_found}")
        if run.error_message:
            self.stdout.write(self.style.WARNING(f"Error: {run.error_message}"))
