"""
Durable stores behind the discovery orchestrator.

ProgressStore owns a run's counters and pair cursor; WeaveStore owns weave
inserts. A pair's outcome (its weaves, the +1 on the checked counter and the
cursor advance) is written in one transaction, so a crash either keeps all
of it or none of it and resuming never counts a pair twice.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from apps.core import metrics
from apps.weaves.enumerator import RepoPair, canonical_pair
from apps.weaves.exceptions import LeaseLostError, StoreWriteError
from apps.weaves.models import DiscoveryRun, DiscoveryRunEvent, Weave

logger = logging.getLogger(__name__)


def record_event(run, event_type, message, severity='info', pair_index=None, details=None):
    """Append an entry to a run's event log."""
    return DiscoveryRunEvent.objects.create(
        run_id=run.id if isinstance(run, DiscoveryRun) else run,
        event_type=event_type,
        severity=severity,
        message=message,
        pair_index=pair_index,
        details=details or {},
    )


def advance_cursor(cursor: int, ahead: Iterable[int], index: int) -> Tuple[int, List[int]]:
    """
    Mark `index` processed and return the new (cursor, ahead) pair.

    The cursor is the length of the contiguous processed prefix; indices
    processed out of order wait in `ahead` until the gap below them closes.
    """
    pending = set(ahead)
    pending.add(index)
    while cursor in pending:
        pending.discard(cursor)
        cursor += 1
    return cursor, sorted(pending)


@dataclass
class PairOutcome:
    index: int
    applied: bool
    weaves_created: int = 0
    skipped: bool = False


class WeaveStore:
    """
    Insert-if-absent access to the weaves of one plexus.

    A (pair, type) already stored by an earlier run of the plexus is left as
    is and not counted again.
    """

    def __init__(self, run):
        self.run = run

    def insert(self, source_id, target_id, candidate) -> Tuple[Optional[Weave], bool]:
        source_id, target_id = canonical_pair(source_id, target_id)
        weave, created = Weave.objects.get_or_create(
            plexus_id=self.run.plexus_id,
            source_repo_id=source_id,
            target_repo_id=target_id,
            type=str(candidate.type),
            defaults={
                'discovery_run_id': self.run.id,
                'score': candidate.score,
                'title': (candidate.title or '')[:300],
                'description': candidate.description or '',
                'metadata': candidate.metadata or {},
            },
        )
        return weave, created


class ProgressStore:
    """
    Counter and cursor persistence for one discovery run.

    The in-memory `cursor`, `ahead` and counters mirror the row after every
    successful write; the orchestrator is the only writer while it holds
    the lease.
    """

    def __init__(self, run, config, lease_owner: str = ''):
        self.run = run
        self.config = config
        self.lease_owner = lease_owner
        self.weaves = WeaveStore(run)
        self.reload()

    def reload(self):
        self.run.refresh_from_db()
        self.cursor = self.run.pair_cursor
        self.ahead = list(self.run.pairs_ahead or [])
        self.checked = self.run.repo_pairs_checked
        self.total = self.run.repo_pairs_total
        self.weaves_found = self.run.weaves_found
        self.pairs_skipped = self.run.pairs_skipped

    def is_done(self, index: int) -> bool:
        return index < self.cursor or index in self.ahead

    @property
    def finished(self) -> bool:
        return self.checked >= self.total

    def cancel_requested(self) -> bool:
        return DiscoveryRun.objects.filter(
            id=self.run.id, cancel_requested_at__isnull=False
        ).exists()

    def apply_pair_result(self, pair: RepoPair, candidates, skipped: bool = False) -> PairOutcome:
        """
        Persist one pair's outcome, retrying transient database errors.

        Raises:
            StoreWriteError: the write kept failing after the configured attempts
            LeaseLostError: the run is no longer owned by this orchestrator
        """
        attempts = self.config.store_max_attempts
        last_error = None

        for attempt in range(attempts):
            try:
                return self._apply(pair, candidates, skipped)
            except DatabaseError as exc:
                last_error = exc
                logger.warning(
                    f"Store write failed for run {self.run.id} pair {pair.index} "
                    f"(attempt {attempt + 1}/{attempts}): {exc}",
                    extra={'run_id': str(self.run.id), 'pair_index': pair.index},
                )
                if attempt < attempts - 1:
                    self._note_retry(pair, attempt, exc)
                    delay = self.config.store_backoff * (2 ** attempt)
                    if delay > 0:
                        time.sleep(delay + random.uniform(0, self.config.store_backoff))

        raise StoreWriteError(
            f"Could not persist pair {pair.index} after {attempts} attempts: {last_error}",
            pair_index=pair.index,
        )

    def _note_retry(self, pair, attempt, exc):
        try:
            record_event(
                self.run, 'store_retry',
                f"Retrying write for pair {pair.index}: {exc}",
                severity='warning', pair_index=pair.index,
                details={'attempt': attempt + 1},
            )
        except DatabaseError:
            logger.debug(f"Could not record store_retry event for run {self.run.id}")

    def _apply(self, pair, candidates, skipped):
        threshold = self.config.score_threshold

        with transaction.atomic():
            row = (
                DiscoveryRun.objects.select_for_update()
                .only('id', 'status', 'lease_owner', 'pair_cursor', 'pairs_ahead')
                .get(id=self.run.id)
            )
            if row.status != DiscoveryRun.STATUS_RUNNING:
                raise LeaseLostError(f"Run {self.run.id} is {row.status}")
            if self.lease_owner and row.lease_owner != self.lease_owner:
                raise LeaseLostError(f"Run {self.run.id} is owned by {row.lease_owner or 'nobody'}")

            if pair.index < row.pair_cursor or pair.index in (row.pairs_ahead or []):
                logger.debug(f"Pair {pair.index} of run {self.run.id} already processed")
                return PairOutcome(index=pair.index, applied=False)

            created_types = []
            for candidate in candidates:
                if candidate.score < threshold:
                    continue
                _, created = self.weaves.insert(pair.source_id, pair.target_id, candidate)
                if created:
                    created_types.append(str(candidate.type))

            cursor, ahead = advance_cursor(row.pair_cursor, row.pairs_ahead or [], pair.index)
            updated = DiscoveryRun.objects.filter(
                id=self.run.id,
                repo_pairs_checked__lt=F('repo_pairs_total'),
            ).update(
                repo_pairs_checked=F('repo_pairs_checked') + 1,
                weaves_found=F('weaves_found') + len(created_types),
                pairs_skipped=F('pairs_skipped') + (1 if skipped else 0),
                pair_cursor=cursor,
                pairs_ahead=ahead,
                updated_at=timezone.now(),
            )
            if not updated:
                raise StoreWriteError(
                    f"Run {self.run.id} already has every pair checked",
                    pair_index=pair.index,
                )

        self.cursor, self.ahead = cursor, ahead
        self.checked += 1
        self.weaves_found += len(created_types)
        if skipped:
            self.pairs_skipped += 1

        metrics.increment_pairs_checked('skipped' if skipped else 'ok')
        for weave_type in created_types:
            metrics.increment_weaves_found(weave_type)

        return PairOutcome(
            index=pair.index,
            applied=True,
            weaves_created=len(created_types),
            skipped=skipped,
        )
