"""
Tests for the progress and weave stores.

Tests cover:
- Atomic per-pair writes and counter accounting
- Idempotent re-application of a pair
- Lease and status guards
- Weave uniqueness per (plexus, pair, type)
"""

from unittest.mock import patch

import pytest
from django.db import OperationalError

from apps.weaves.comparators import Candidate
from apps.weaves.config import DiscoveryConfig
from apps.weaves.enumerator import enumerate_pairs, pair_at
from apps.weaves.exceptions import LeaseLostError, StoreWriteError
from apps.weaves.intake import submit_discovery
from apps.weaves.models import DiscoveryRun, Weave, WeaveType
from apps.weaves.state_machine import RunStatus, transition_run
from apps.weaves.stores import ProgressStore, WeaveStore, record_event


@pytest.fixture
def running_run(plexus):
    run = submit_discovery(plexus.id, enqueue=False).run
    transition_run(run, RunStatus.RUNNING)
    return run


@pytest.fixture
def store(running_run):
    return ProgressStore(running_run, DiscoveryConfig.from_settings(score_threshold=0.5))


def candidate(score=0.9, weave_type=WeaveType.SHARED_DEPENDENCY):
    return Candidate(type=weave_type, score=score, title='Both depend on libfoo')


# ============================================================================
# ProgressStore
# ============================================================================

@pytest.mark.django_db
class TestProgressStore:

    def test_apply_updates_row_and_memory(self, running_run, store):
        pair = pair_at(running_run.repo_ids, 0)

        outcome = store.apply_pair_result(pair, [candidate()])

        running_run.refresh_from_db()
        assert outcome.applied is True
        assert outcome.weaves_created == 1
        assert running_run.repo_pairs_checked == 1
        assert running_run.weaves_found == 1
        assert running_run.pair_cursor == 1
        assert (store.checked, store.cursor, store.weaves_found) == (1, 1, 1)

    def test_reapplying_pair_is_a_noop(self, running_run, store):
        pair = pair_at(running_run.repo_ids, 0)
        store.apply_pair_result(pair, [candidate()])

        outcome = store.apply_pair_result(pair, [candidate()])

        running_run.refresh_from_db()
        assert outcome.applied is False
        assert running_run.repo_pairs_checked == 1
        assert running_run.weaves_found == 1
        assert Weave.objects.filter(discovery_run=running_run).count() == 1

    def test_out_of_order_pairs(self, running_run, store):
        pairs = list(enumerate_pairs(running_run.repo_ids))

        store.apply_pair_result(pairs[2], [])
        running_run.refresh_from_db()
        assert running_run.pair_cursor == 0
        assert running_run.pairs_ahead == [2]
        assert store.is_done(2)
        assert not store.is_done(0)

        store.apply_pair_result(pairs[0], [])
        store.apply_pair_result(pairs[1], [])
        running_run.refresh_from_db()
        assert running_run.pair_cursor == 3
        assert running_run.pairs_ahead == []
        assert store.finished

    def test_below_threshold_not_stored(self, running_run, store):
        pair = pair_at(running_run.repo_ids, 0)
        outcome = store.apply_pair_result(pair, [candidate(score=0.2)])

        assert outcome.applied is True
        assert outcome.weaves_created == 0
        assert not Weave.objects.filter(discovery_run=running_run).exists()

    def test_skipped_pair_counted(self, running_run, store):
        pair = pair_at(running_run.repo_ids, 1)
        store.apply_pair_result(pair, [], skipped=True)

        running_run.refresh_from_db()
        assert running_run.pairs_skipped == 1
        assert running_run.repo_pairs_checked == 1

    def test_checked_never_exceeds_total(self, running_run, store):
        DiscoveryRun.objects.filter(id=running_run.id).update(repo_pairs_checked=3)
        pair = pair_at(running_run.repo_ids, 0)

        with pytest.raises(StoreWriteError):
            store.apply_pair_result(pair, [candidate()])

        running_run.refresh_from_db()
        assert running_run.repo_pairs_checked == 3
        assert not Weave.objects.filter(discovery_run=running_run).exists()

    def test_not_running_raises_lease_lost(self, running_run, store):
        transition_run(running_run, RunStatus.CANCELLED)
        with pytest.raises(LeaseLostError):
            store.apply_pair_result(pair_at(running_run.repo_ids, 0), [])

    def test_foreign_lease_owner_raises(self, running_run):
        DiscoveryRun.objects.filter(id=running_run.id).update(lease_owner='host-b:2:bbbb')
        store = ProgressStore(running_run, DiscoveryConfig.from_settings(), lease_owner='host-a:1:aaaa')
        with pytest.raises(LeaseLostError):
            store.apply_pair_result(pair_at(running_run.repo_ids, 0), [])

    def test_database_errors_retried_then_raised(self, running_run):
        config = DiscoveryConfig.from_settings(store_max_attempts=3, store_backoff=0)
        store = ProgressStore(running_run, config)

        with patch.object(ProgressStore, '_apply', side_effect=OperationalError('locked')) as mocked:
            with pytest.raises(StoreWriteError):
                store.apply_pair_result(pair_at(running_run.repo_ids, 0), [])

        assert mocked.call_count == 3
        assert running_run.events.filter(event_type='store_retry').count() == 2

    def test_cancel_requested(self, running_run, store):
        assert store.cancel_requested() is False
        DiscoveryRun.objects.filter(id=running_run.id).update(cancel_requested_at='2026-01-01T00:00:00Z')
        assert store.cancel_requested() is True


# ============================================================================
# WeaveStore
# ============================================================================

@pytest.mark.django_db
class TestWeaveStore:

    def test_insert_is_canonical_and_idempotent(self, running_run):
        weaves = WeaveStore(running_run)
        low, high = sorted(running_run.repo_ids)[:2]

        weave, created = weaves.insert(high, low, candidate())
        again, created_again = weaves.insert(low, high, candidate(score=0.99))

        assert created is True
        assert created_again is False
        assert again.id == weave.id
        assert str(weave.source_repo_id) == low
        assert weave.score == pytest.approx(0.9)

    def test_distinct_types_are_distinct_weaves(self, running_run):
        weaves = WeaveStore(running_run)
        low, high = sorted(running_run.repo_ids)[:2]

        weaves.insert(low, high, candidate(weave_type=WeaveType.SHARED_DEPENDENCY))
        weaves.insert(low, high, candidate(weave_type=WeaveType.GLOSSARY_ALIGNMENT))

        assert Weave.objects.filter(discovery_run=running_run).count() == 2

    def test_pair_type_found_by_earlier_run_is_not_inserted(self, plexus, running_run):
        low, high = sorted(running_run.repo_ids)[:2]
        first, _ = WeaveStore(running_run).insert(low, high, candidate())
        transition_run(running_run, RunStatus.CANCELLED)
        later = submit_discovery(plexus.id, fresh=True, enqueue=False).run

        weave, created = WeaveStore(later).insert(high, low, candidate(score=0.95))

        assert created is False
        assert weave.id == first.id
        assert weave.discovery_run_id == running_run.id
        assert Weave.objects.filter(plexus=plexus).count() == 1


@pytest.mark.django_db
class TestRecordEvent:

    def test_accepts_run_or_id(self, running_run):
        record_event(running_run, 'start', 'go')
        record_event(running_run.id, 'complete', 'done', details={'weaves_found': 0})

        events = running_run.events.all()
        assert events.count() == 2
        assert events.get(event_type='complete').details == {'weaves_found': 0}
