"""
Weave discovery services: cancellation, data reset and read helpers used by
the API and management commands.
"""

import logging
import time
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import NotFoundError, ValidationError
from apps.plexus.models import Plexus, RepoGlossary
from apps.weaves.exceptions import DiscoveryRunInProgress
from apps.weaves.models import DiscoveryRun, Weave, WeaveType
from apps.weaves.publisher import ProgressSnapshot, get_publisher
from apps.weaves.state_machine import RunStatus, TransitionError, transition_run
from apps.weaves.stores import record_event

logger = logging.getLogger(__name__)


def get_plexus(plexus_id) -> Plexus:
    try:
        return Plexus.objects.get(id=plexus_id)
    except (Plexus.DoesNotExist, ValueError, DjangoValidationError):
        raise NotFoundError(f"Plexus {plexus_id} not found")


def resolve_plexus(identifier) -> Plexus:
    """Look a plexus up by id or slug."""
    plexus = Plexus.objects.filter(slug=str(identifier)).first()
    if plexus is not None:
        return plexus
    return get_plexus(identifier)


def get_run(run_id) -> DiscoveryRun:
    try:
        return DiscoveryRun.objects.select_related('plexus').get(id=run_id)
    except (DiscoveryRun.DoesNotExist, ValueError, DjangoValidationError):
        raise NotFoundError(f"Discovery run {run_id} not found")


def latest_run(plexus) -> Optional[DiscoveryRun]:
    return plexus.discovery_runs.order_by('-created_at').first()


def active_run(plexus) -> Optional[DiscoveryRun]:
    return (
        plexus.discovery_runs.filter(status__in=DiscoveryRun.ACTIVE_STATUSES)
        .order_by('-created_at')
        .first()
    )


# =============================================================================
# Cancellation
# =============================================================================

def request_cancel(run: DiscoveryRun, reason: str = 'Cancelled by request') -> DiscoveryRun:
    """
    Ask a run to stop.

    A PENDING run has no orchestrator yet and is cancelled directly. A RUNNING
    run gets `cancel_requested_at` set; its orchestrator stops dispatching,
    drains in-flight pairs and marks it CANCELLED. Terminal runs are returned
    unchanged.
    """
    run.refresh_from_db()
    if run.is_terminal:
        return run

    now = timezone.now()
    DiscoveryRun.objects.filter(id=run.id, cancel_requested_at__isnull=True).update(
        cancel_requested_at=now, updated_at=now
    )
    run.refresh_from_db()

    if run.status == DiscoveryRun.STATUS_PENDING:
        try:
            transition_run(run, RunStatus.CANCELLED, error_message=reason)
        except TransitionError:
            # Picked up by an orchestrator in the meantime; it will see the flag
            run.refresh_from_db()
            return run
        record_event(run, 'cancel', reason)
        get_publisher().publish_terminal(
            run.plexus_id, ProgressSnapshot.from_run(run), RunStatus.CANCELLED.publish_event
        )
    else:
        record_event(run, 'cancel_requested', reason)

    logger.info(f"Cancellation requested for discovery run {run.id} ({run.status})")
    return run


def wait_for_idle(plexus, timeout: float, poll_interval: float = 0.5) -> Optional[DiscoveryRun]:
    """Wait up to `timeout` seconds for the plexus to have no active run."""
    deadline = time.monotonic() + timeout
    run = active_run(plexus)
    while run is not None and time.monotonic() < deadline:
        time.sleep(poll_interval)
        run = active_run(plexus)
    return run


# =============================================================================
# Data reset
# =============================================================================

def reset_plexus_data(plexus, cancel_wait: float = 0) -> dict:
    """
    Delete a plexus's weaves, discovery runs (with their events) and repo
    glossaries.

    Refused while a run is active. With `cancel_wait` > 0 the active run is
    cancelled first and the reset proceeds if it stops within that many
    seconds.

    Raises:
        DiscoveryRunInProgress: a run is still active
    """
    run = active_run(plexus)
    if run is not None:
        if cancel_wait <= 0:
            raise DiscoveryRunInProgress(run)
        request_cancel(run, reason='Cancelled for data reset')
        run = wait_for_idle(plexus, cancel_wait)
        if run is not None:
            raise DiscoveryRunInProgress(
                run, message=f"Run {run.id} did not stop within {cancel_wait}s"
            )

    with transaction.atomic():
        if active_run(plexus) is not None:
            raise DiscoveryRunInProgress(active_run(plexus))
        weaves_deleted, _ = Weave.objects.filter(plexus=plexus).delete()
        glossaries_deleted, _ = RepoGlossary.objects.filter(repo__plexus=plexus).delete()
        runs_qs = DiscoveryRun.objects.filter(plexus=plexus)
        runs_deleted = runs_qs.count()
        runs_qs.delete()

    summary = {
        'weaves': weaves_deleted,
        'discovery_runs': runs_deleted,
        'glossaries': glossaries_deleted,
    }
    logger.info(f"Reset data for plexus {plexus.id}: {summary}", extra={'plexus_id': str(plexus.id)})
    return summary


# =============================================================================
# Listing
# =============================================================================

def filter_weaves(plexus, run_id=None, weave_type=None, min_score=None):
    """
    Weaves of a plexus, optionally narrowed.

    `run_id` selects the weaves found by that run and every run it continues,
    so a resumed run lists everything its lineage discovered.
    """
    queryset = Weave.objects.filter(plexus=plexus).select_related('source_repo', 'target_repo')

    if run_id:
        run = get_run(run_id)
        if run.plexus_id != plexus.id:
            raise NotFoundError(f"Discovery run {run_id} not found for this plexus")
        queryset = queryset.filter(discovery_run_id__in=run.lineage_ids())

    if weave_type:
        if weave_type not in WeaveType.values:
            raise ValidationError(f"Unknown weave type: {weave_type}", field='type')
        queryset = queryset.filter(type=weave_type)

    if min_score not in (None, ''):
        try:
            min_score = float(min_score)
        except (TypeError, ValueError):
            raise ValidationError("min_score must be a number", field='min_score')
        queryset = queryset.filter(score__gte=min_score)

    return queryset.order_by('-score', 'created_at')
