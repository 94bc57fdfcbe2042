"""
Tests for weave discovery services (cancellation, reset, listing).
"""

import pytest

from apps.core.exceptions import NotFoundError, ValidationError
from apps.plexus.models import RepoGlossary
from apps.weaves.exceptions import DiscoveryRunInProgress
from apps.weaves.intake import submit_discovery
from apps.weaves.models import DiscoveryRun, Weave, WeaveType
from apps.weaves.services import (
    filter_weaves,
    get_run,
    request_cancel,
    reset_plexus_data,
    resolve_plexus,
)


def add_weave(plexus, run, score=0.7, weave_type=WeaveType.SIMILAR_DOMAIN):
    source, target = sorted(plexus.repos.all(), key=lambda r: str(r.id))[:2]
    return Weave.objects.create(
        plexus=plexus, discovery_run=run, source_repo=source, target_repo=target,
        type=weave_type, score=score,
    )


# ============================================================================
# Lookups
# ============================================================================

@pytest.mark.django_db
class TestLookups:

    def test_resolve_by_slug_or_id(self, plexus):
        assert resolve_plexus(plexus.slug) == plexus
        assert resolve_plexus(str(plexus.id)) == plexus

    def test_resolve_unknown(self, db):
        with pytest.raises(NotFoundError):
            resolve_plexus('no-such-plexus')

    def test_get_run_with_bad_id(self, db):
        with pytest.raises(NotFoundError):
            get_run('not-a-uuid')


# ============================================================================
# Cancellation
# ============================================================================

@pytest.mark.django_db
class TestRequestCancel:

    def test_pending_run_cancelled_at_once(self, plexus):
        run = submit_discovery(plexus.id, enqueue=False).run

        run = request_cancel(run)

        assert run.status == DiscoveryRun.STATUS_CANCELLED
        assert run.cancel_requested_at is not None
        assert run.completed_at is not None
        assert run.events.filter(event_type='cancel').exists()

    def test_running_run_only_flagged(self, plexus):
        run = submit_discovery(plexus.id, enqueue=False).run
        DiscoveryRun.objects.filter(id=run.id).update(status=DiscoveryRun.STATUS_RUNNING)

        run = request_cancel(run)

        assert run.status == DiscoveryRun.STATUS_RUNNING
        assert run.cancel_requested_at is not None
        assert run.events.filter(event_type='cancel_requested').exists()

    def test_terminal_run_unchanged(self, plexus):
        run = submit_discovery(plexus.id).run
        run = request_cancel(run)
        assert run.status == DiscoveryRun.STATUS_COMPLETED
        assert run.cancel_requested_at is None


# ============================================================================
# Reset
# ============================================================================

@pytest.mark.django_db
class TestResetPlexusData:

    def test_deletes_only_this_plexus(self, make_plexus):
        first = make_plexus(3)
        second = make_plexus(2)
        run_a = submit_discovery(first.id).run
        run_b = submit_discovery(second.id).run
        add_weave(first, run_a)
        add_weave(second, run_b)
        RepoGlossary.objects.create(repo=first.repos.first(), terms={'cursor': ''})
        RepoGlossary.objects.create(repo=second.repos.first(), terms={'cursor': ''})

        summary = reset_plexus_data(first)

        assert summary == {'weaves': 1, 'discovery_runs': 1, 'glossaries': 1}
        assert not DiscoveryRun.objects.filter(plexus=first).exists()
        assert DiscoveryRun.objects.filter(plexus=second).count() == 1
        assert Weave.objects.filter(plexus=second).count() == 1
        assert RepoGlossary.objects.count() == 1
        assert first.repos.count() == 3

    def test_refuses_while_active(self, plexus):
        run = submit_discovery(plexus.id, enqueue=False).run

        with pytest.raises(DiscoveryRunInProgress) as exc_info:
            reset_plexus_data(plexus)

        assert exc_info.value.error_details['run_id'] == str(run.id)
        assert DiscoveryRun.objects.filter(id=run.id, status='pending').exists()

    def test_running_run_that_does_not_stop(self, plexus):
        run = submit_discovery(plexus.id, enqueue=False).run
        DiscoveryRun.objects.filter(id=run.id).update(status=DiscoveryRun.STATUS_RUNNING)

        with pytest.raises(DiscoveryRunInProgress):
            reset_plexus_data(plexus, cancel_wait=0.1)

        run.refresh_from_db()
        assert run.cancel_requested_at is not None

    def test_empty_plexus(self, plexus):
        assert reset_plexus_data(plexus) == {'weaves': 0, 'discovery_runs': 0, 'glossaries': 0}


# ============================================================================
# Listing
# ============================================================================

@pytest.mark.django_db
class TestFilterWeaves:

    def test_run_filter_includes_lineage(self, plexus):
        first = submit_discovery(plexus.id, enqueue=False).run
        add_weave(plexus, first, weave_type=WeaveType.SIMILAR_DOMAIN)
        DiscoveryRun.objects.filter(id=first.id).update(
            status=DiscoveryRun.STATUS_CANCELLED, repo_pairs_checked=1, pair_cursor=1,
        )
        second = submit_discovery(plexus.id, enqueue=False).run
        add_weave(plexus, second, weave_type=WeaveType.SHARED_DEPENDENCY)

        assert second.resumed_from_id == first.id
        assert filter_weaves(plexus, run_id=second.id).count() == 2
        assert filter_weaves(plexus, run_id=first.id).count() == 1

    def test_run_of_other_plexus(self, make_plexus):
        first = make_plexus(2)
        second = make_plexus(2)
        run = submit_discovery(second.id, enqueue=False).run

        with pytest.raises(NotFoundError):
            filter_weaves(first, run_id=run.id)

    def test_type_and_score(self, plexus):
        run = submit_discovery(plexus.id, enqueue=False).run
        add_weave(plexus, run, score=0.9, weave_type=WeaveType.SIMILAR_DOMAIN)
        add_weave(plexus, run, score=0.5, weave_type=WeaveType.GLOSSARY_ALIGNMENT)

        assert filter_weaves(plexus, weave_type='glossary_alignment').count() == 1
        assert filter_weaves(plexus, min_score='0.8').count() == 1
        with pytest.raises(ValidationError):
            filter_weaves(plexus, weave_type='rivalry')
