"""
Compare a single pair of repositories without persisting anything.

Usage:
    python manage.py weave_pair <repo-a-id> <repo-b-id>
    python manage.py weave_pair <repo-a-id> <repo-b-id> --comparator apps.weaves.comparators.GlossaryOverlapComparator
"""

import json

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = 'Run the configured comparator on one repo pair and print the candidates'

    def add_arguments(self, parser):
        parser.add_argument('repo_a', type=str, help='First repo id')
        parser.add_argument('repo_b', type=str, help='Second repo id')
        parser.add_argument(
            '--comparator',
            type=str,
            default=None,
            help='Dotted path of the comparator class (default: WEAVE_COMPARATOR)'
        )
        parser.add_argument(
            '--json',
            action='store_true',
            help='Print candidates as JSON'
        )

    def handle(self, *args, **options):
        from apps.plexus.models import Repo
        from apps.weaves.comparators import Candidate, get_comparator
        from apps.weaves.enumerator import canonical_pair

        try:
            found = [
                str(pk) for pk in
                Repo.objects.filter(id__in=[options["repo_a"], options["repo_b"]]).values_list("id", flat=True)
            ]
        except DjangoValidationError as e:
            raise CommandError(f"Invalid repo id: {e}")
        if len(found) != 2:
            raise CommandError('Both repos must exist and be distinct')

        source_id, target_id = canonical_pair(*found)
        comparator = get_comparator(options['comparator'])
        comparator.prepare([source_id, target_id])

        try:
            candidates = [Candidate.coerce(c) for c in (comparator.compare(source_id, target_id) or [])]
        except Exception as e:
            raise CommandError(f'Comparator failed: {e}')

        threshold = settings.WEAVE_SCORE_THRESHOLD
        if options['json']:
            self.stdout.write(json.dumps([
                {**c.__dict__, 'type': str(c.type), 'kept': c.score >= threshold}
                for c in candidates
            ], indent=2, default=str))
            return

        self.stdout.write(self.style.NOTICE(f"{source_id} <-> {target_id}"))
        if not candidates:
            self.stdout.write(self.style.WARNING('No candidates'))
            return
        for c in sorted(candidates, key=lambda c: c.score, reverse=True):
            marker = self.style.SUCCESS('keep') if c.score >= threshold else self.style.WARNING('drop')
            self.stdout.write(f"  [{marker}] {c.type} {c.score:.3f} {c.title}")
