"""
Tests for discovery job intake.

Tests cover:
- Submission and repo snapshotting
- Coalescing and one-active-run-per-plexus
- Continuation runs after failure or cancellation
- Broker failures on enqueue
- Orchestrator leases
- Stuck-run recovery and the intake heartbeat
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.core.cache import cache
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import NotFoundError
from apps.weaves.intake import (
    acquire_lease,
    enqueue_run,
    find_stuck_runs,
    last_heartbeat_age,
    new_lease_owner,
    record_heartbeat,
    recover_stuck_runs,
    release_lease,
    renew_lease,
    submit_discovery,
)
from apps.weaves.models import DiscoveryRun


@pytest.fixture
def pending_run(plexus):
    return submit_discovery(plexus.id, enqueue=False).run


# ============================================================================
# Submission
# ============================================================================

@pytest.mark.django_db
class TestSubmission:
    """Creating discovery runs."""

    def test_creates_pending_run_with_snapshot(self, plexus, repo_ids):
        result = submit_discovery(plexus.id, triggered_by='manual', enqueue=False)

        run = result.run
        assert result.created is True
        assert result.coalesced is False
        assert run.status == DiscoveryRun.STATUS_PENDING
        assert run.repo_ids == repo_ids
        assert run.repo_pairs_total == 3
        assert run.repo_pairs_checked == 0
        assert run.triggered_by == 'manual'
        assert run.config['score_threshold'] == 0.5

    def test_config_overrides_are_stored(self, plexus):
        run = submit_discovery(plexus.id, enqueue=False, config_overrides={'score_threshold': 0.8}).run
        assert run.config['score_threshold'] == 0.8

    def test_unknown_plexus(self, db):
        import uuid
        with pytest.raises(NotFoundError):
            submit_discovery(uuid.uuid4(), enqueue=False)

    def test_enqueue_runs_task_eagerly(self, plexus):
        result = submit_discovery(plexus.id)

        run = DiscoveryRun.objects.get(id=result.run.id)
        assert run.status == DiscoveryRun.STATUS_COMPLETED
        assert run.repo_pairs_checked == 3
        assert run.task_id
        assert run.lease_owner == ''


@pytest.mark.django_db
class TestCoalescing:
    """At most one active run per plexus."""

    def test_second_submission_coalesces(self, plexus, pending_run):
        result = submit_discovery(plexus.id, enqueue=False)

        assert result.created is False
        assert result.coalesced is True
        assert result.run.id == pending_run.id
        assert DiscoveryRun.objects.filter(plexus=plexus).count() == 1

    def test_coalesces_into_running_run(self, plexus, pending_run):
        DiscoveryRun.objects.filter(id=pending_run.id).update(status=DiscoveryRun.STATUS_RUNNING)

        result = submit_discovery(plexus.id, fresh=True, enqueue=False)

        assert result.coalesced is True
        assert result.run.id == pending_run.id

    def test_database_rejects_second_active_run(self, plexus, pending_run):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                DiscoveryRun.objects.create(plexus=plexus, status=DiscoveryRun.STATUS_RUNNING)

    def test_other_plexus_is_independent(self, make_plexus, plexus, pending_run):
        other = make_plexus(2)
        result = submit_discovery(other.id, enqueue=False)
        assert result.created is True
        assert result.run.id != pending_run.id


@pytest.mark.django_db
class TestContinuation:
    """Runs that pick up where a failed or cancelled run stopped."""

    def _stop(self, run, status):
        DiscoveryRun.objects.filter(id=run.id).update(
            status=status,
            repo_pairs_checked=2,
            pair_cursor=1,
            pairs_ahead=[2],
            weaves_found=1,
            pairs_skipped=1,
            completed_at=timezone.now(),
        )

    @pytest.mark.parametrize('status', [DiscoveryRun.STATUS_FAILED, DiscoveryRun.STATUS_CANCELLED])
    def test_continues_unfinished_run(self, plexus, pending_run, status):
        self._stop(pending_run, status)

        result = submit_discovery(plexus.id, enqueue=False)

        run = result.run
        assert result.created is True
        assert result.resumed is True
        assert run.resumed_from_id == pending_run.id
        assert run.pair_cursor == 1
        assert run.pairs_ahead == [2]
        assert run.repo_pairs_checked == 2
        assert run.weaves_found == 1
        assert run.pairs_skipped == 1
        assert run.repo_ids == pending_run.repo_ids

    def test_fresh_starts_over(self, plexus, pending_run):
        self._stop(pending_run, DiscoveryRun.STATUS_FAILED)

        result = submit_discovery(plexus.id, fresh=True, enqueue=False)

        assert result.resumed is False
        assert result.run.resumed_from_id is None
        assert result.run.pair_cursor == 0
        assert result.run.repo_pairs_checked == 0

    def test_after_completed_run_starts_over(self, plexus, pending_run):
        DiscoveryRun.objects.filter(id=pending_run.id).update(
            status=DiscoveryRun.STATUS_COMPLETED, repo_pairs_checked=3, pair_cursor=3,
        )

        result = submit_discovery(plexus.id, enqueue=False)

        assert result.resumed is False
        assert result.run.repo_pairs_checked == 0

    def test_previous_run_is_not_modified(self, plexus, pending_run):
        self._stop(pending_run, DiscoveryRun.STATUS_CANCELLED)
        before = DiscoveryRun.objects.get(id=pending_run.id)

        submit_discovery(plexus.id, enqueue=False)

        after = DiscoveryRun.objects.get(id=pending_run.id)
        assert after.status == before.status
        assert after.repo_pairs_checked == before.repo_pairs_checked
        assert after.updated_at == before.updated_at


@pytest.mark.django_db
class TestEnqueue:
    """Handing runs to Celery."""

    def test_broker_failure_leaves_run_pending(self, pending_run):
        with patch('apps.weaves.tasks.run_weave_discovery.apply_async', side_effect=ConnectionError('broker down')):
            queued = enqueue_run(pending_run)

        pending_run.refresh_from_db()
        assert queued is False
        assert pending_run.status == DiscoveryRun.STATUS_PENDING
        assert pending_run.error_message.startswith('Task queuing failed')
        assert pending_run.task_id

    def test_task_id_set_before_dispatch(self, pending_run):
        with patch('apps.weaves.tasks.run_weave_discovery.apply_async') as apply_async:
            assert enqueue_run(pending_run) is True

        kwargs = apply_async.call_args.kwargs
        pending_run.refresh_from_db()
        assert kwargs['task_id'] == pending_run.task_id
        assert kwargs['args'] == [str(pending_run.id)]


# ============================================================================
# Leases
# ============================================================================

@pytest.mark.django_db
class TestLeases:
    """Orchestrator ownership."""

    def test_only_one_owner(self, pending_run):
        assert acquire_lease(pending_run, 'host-a:1:aaaa') is True
        assert acquire_lease(pending_run, 'host-b:2:bbbb') is False
        assert acquire_lease(pending_run, 'host-a:1:aaaa') is True

    def test_expired_lease_can_be_taken(self, pending_run):
        acquire_lease(pending_run, 'host-a:1:aaaa')
        DiscoveryRun.objects.filter(id=pending_run.id).update(
            lease_expires_at=timezone.now() - timedelta(seconds=1)
        )
        assert acquire_lease(pending_run, 'host-b:2:bbbb') is True

    def test_renew_requires_ownership(self, pending_run):
        acquire_lease(pending_run, 'host-a:1:aaaa')
        assert renew_lease(pending_run, 'host-a:1:aaaa') is True
        assert renew_lease(pending_run, 'host-b:2:bbbb') is False

    def test_release(self, pending_run):
        acquire_lease(pending_run, 'host-a:1:aaaa')
        release_lease(pending_run, 'host-b:2:bbbb')
        pending_run.refresh_from_db()
        assert pending_run.lease_owner == 'host-a:1:aaaa'

        release_lease(pending_run, 'host-a:1:aaaa')
        pending_run.refresh_from_db()
        assert pending_run.lease_owner == ''
        assert pending_run.lease_expires_at is None

    def test_terminal_run_cannot_be_leased(self, pending_run):
        DiscoveryRun.objects.filter(id=pending_run.id).update(status=DiscoveryRun.STATUS_COMPLETED)
        assert acquire_lease(pending_run, 'host-a:1:aaaa') is False

    def test_owner_ids_are_unique(self):
        assert new_lease_owner() != new_lease_owner()


# ============================================================================
# Recovery
# ============================================================================

@pytest.mark.django_db
class TestRecovery:
    """Re-enqueueing runs whose orchestrator went away."""

    def _expire(self, run, **fields):
        DiscoveryRun.objects.filter(id=run.id).update(
            status=DiscoveryRun.STATUS_RUNNING,
            lease_owner='dead-host:1:0000',
            lease_expires_at=timezone.now() - timedelta(minutes=1),
            **fields,
        )

    def test_fresh_pending_run_is_not_stuck(self, pending_run):
        assert list(find_stuck_runs()) == []

    def test_idle_pending_run_is_stuck(self, pending_run):
        DiscoveryRun.objects.filter(id=pending_run.id).update(
            updated_at=timezone.now() - timedelta(hours=1)
        )
        assert [r.id for r in find_stuck_runs()] == [pending_run.id]

    def test_expired_lease_is_requeued(self, pending_run):
        self._expire(pending_run)

        summary = recover_stuck_runs(enqueue=False)

        pending_run.refresh_from_db()
        assert summary == {'requeued': 1, 'failed': 0}
        assert pending_run.status == DiscoveryRun.STATUS_RUNNING
        assert pending_run.recovery_attempts == 1
        assert pending_run.lease_owner == ''
        assert pending_run.events.filter(event_type='recovered').exists()

    def test_requeued_run_resumes_to_completion(self, pending_run):
        self._expire(pending_run)

        recover_stuck_runs()

        pending_run.refresh_from_db()
        assert pending_run.status == DiscoveryRun.STATUS_COMPLETED
        assert pending_run.repo_pairs_checked == pending_run.repo_pairs_total

    def test_exhausted_attempts_fail_run(self, pending_run, settings):
        settings.WEAVE_MAX_RECOVERY_ATTEMPTS = 2
        self._expire(pending_run, recovery_attempts=2)

        summary = recover_stuck_runs(enqueue=False)

        pending_run.refresh_from_db()
        assert summary == {'requeued': 0, 'failed': 1}
        assert pending_run.status == DiscoveryRun.STATUS_FAILED
        assert pending_run.error_code == 'RECOVERY_EXHAUSTED'
        assert pending_run.completed_at is not None

    def test_live_lease_is_left_alone(self, pending_run):
        acquire_lease(pending_run, 'host-a:1:aaaa')
        assert recover_stuck_runs(enqueue=False) == {'requeued': 0, 'failed': 0}


class TestHeartbeat:
    """Intake liveness beacon."""

    def setup_method(self):
        cache.clear()

    def test_no_heartbeat(self):
        assert last_heartbeat_age() is None

    def test_recent_heartbeat(self):
        record_heartbeat()
        age = last_heartbeat_age()
        assert age is not None
        assert age < 5
