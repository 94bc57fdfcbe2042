"""
Job intake for weave discovery.

Submission, orchestrator leases and stuck-run recovery. Intake only creates
and hands out runs; the orchestrator does the work once it holds the lease.
"""

import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.core.cache import cache
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from apps.core import metrics
from apps.core.exceptions import ErrorCode, NotFoundError
from apps.core.middleware import celery_request_id_headers
from apps.plexus.models import Plexus
from apps.weaves.config import DiscoveryConfig
from apps.weaves.enumerator import canonical_repo_ids, pair_count
from apps.weaves.models import DiscoveryRun
from apps.weaves.state_machine import RunStatus, TransitionError, transition_run
from apps.weaves.stores import record_event

logger = logging.getLogger(__name__)

HEARTBEAT_CACHE_KEY = 'weaves:intake:heartbeat'


@dataclass
class SubmissionResult:
    run: DiscoveryRun
    created: bool
    coalesced: bool = False
    resumed: bool = False


def new_lease_owner() -> str:
    """Identity of this orchestrator instance."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


# =============================================================================
# Submission
# =============================================================================

def submit_discovery(
    plexus_id,
    triggered_by: str = 'api',
    fresh: bool = False,
    enqueue: bool = True,
    config_overrides: Optional[dict] = None,
) -> SubmissionResult:
    """
    Submit a discovery run for a plexus.

    At most one run per plexus is PENDING or RUNNING: a submission while one
    is active returns that run with `coalesced=True`. After a FAILED or
    CANCELLED run that still had pairs left, the new run continues from the
    persisted offset unless `fresh` is set.
    """
    with transaction.atomic():
        try:
            plexus = Plexus.objects.select_for_update().get(id=plexus_id)
        except Plexus.DoesNotExist:
            raise NotFoundError(f"Plexus {plexus_id} not found")

        active = _active_run(plexus)
        if active is not None:
            return _coalesced(active, triggered_by)

        previous = plexus.discovery_runs.order_by('-created_at').first()
        config = DiscoveryConfig.from_settings(**(config_overrides or {}))
        resume = (
            not fresh
            and previous is not None
            and previous.status in (DiscoveryRun.STATUS_FAILED, DiscoveryRun.STATUS_CANCELLED)
            and not previous.is_finished
        )

        if resume:
            fields = {
                'repo_ids': previous.repo_ids,
                'repo_pairs_total': previous.repo_pairs_total,
                'repo_pairs_checked': previous.repo_pairs_checked,
                'weaves_found': previous.weaves_found,
                'pairs_skipped': previous.pairs_skipped,
                'pair_cursor': previous.pair_cursor,
                'pairs_ahead': previous.pairs_ahead,
                'resumed_from': previous,
                'config': {**(previous.config or {}), **(config_overrides or {})},
            }
        else:
            repo_ids = canonical_repo_ids(plexus.repo_ids())
            fields = {
                'repo_ids': repo_ids,
                'repo_pairs_total': pair_count(len(repo_ids)),
                'config': config.to_dict(),
            }

        try:
            with transaction.atomic():
                run = DiscoveryRun.objects.create(
                    plexus=plexus,
                    status=DiscoveryRun.STATUS_PENDING,
                    triggered_by=triggered_by,
                    **fields,
                )
        except IntegrityError:
            # Lost a race with another submission on a backend without row locks
            active = _active_run(plexus)
            if active is None:
                raise
            return _coalesced(active, triggered_by)

    metrics.increment_runs_started(trigger=triggered_by)
    logger.info(
        f"Created discovery run {run.id} for plexus {plexus.id} "
        f"({run.repo_pairs_total} pairs, resumed={resume})",
        extra={'run_id': str(run.id), 'plexus_id': str(plexus.id), 'triggered_by': triggered_by},
    )

    if enqueue:
        enqueue_run(run)

    return SubmissionResult(run=run, created=True, resumed=resume)


def _active_run(plexus):
    return (
        DiscoveryRun.objects.filter(plexus=plexus, status__in=DiscoveryRun.ACTIVE_STATUSES)
        .order_by('-created_at')
        .first()
    )


def _coalesced(run, triggered_by):
    metrics.increment_runs_coalesced()
    logger.info(
        f"Coalesced {triggered_by} submission into active run {run.id}",
        extra={'run_id': str(run.id), 'plexus_id': str(run.plexus_id)},
    )
    return SubmissionResult(run=run, created=False, coalesced=True)


def enqueue_run(run) -> bool:
    """
    Queue the orchestrator task for a run.

    If the broker is unavailable the run stays PENDING with the error noted;
    stuck-run recovery picks it up later.
    """
    from apps.weaves.tasks import run_weave_discovery

    task_id = str(uuid.uuid4())
    DiscoveryRun.objects.filter(id=run.id).update(task_id=task_id, updated_at=timezone.now())
    run.task_id = task_id

    try:
        run_weave_discovery.apply_async(
            args=[str(run.id)],
            task_id=task_id,
            headers=celery_request_id_headers(),
        )
    except Exception as e:
        logger.warning(f"Could not queue discovery run {run.id} (broker unavailable?): {e}")
        DiscoveryRun.objects.filter(id=run.id, status=DiscoveryRun.STATUS_PENDING).update(
            error_message=f"Task queuing failed: {e}",
            updated_at=timezone.now(),
        )
        return False

    run.refresh_from_db()
    return True


# =============================================================================
# Leases
# =============================================================================

def acquire_lease(run, owner: str, ttl: Optional[int] = None) -> bool:
    """Take ownership of an active run if nobody holds a live lease on it."""
    ttl = ttl or settings.WEAVE_LEASE_TTL
    now = timezone.now()
    taken = DiscoveryRun.objects.filter(
        id=run.id,
        status__in=DiscoveryRun.ACTIVE_STATUSES,
    ).filter(
        Q(lease_owner='') | Q(lease_owner=owner)
        | Q(lease_expires_at__isnull=True) | Q(lease_expires_at__lt=now)
    ).update(
        lease_owner=owner,
        lease_expires_at=now + timedelta(seconds=ttl),
        updated_at=now,
    )
    if taken:
        run.lease_owner = owner
        run.lease_expires_at = now + timedelta(seconds=ttl)
    return bool(taken)


def renew_lease(run, owner: str, ttl: Optional[int] = None) -> bool:
    ttl = ttl or settings.WEAVE_LEASE_TTL
    now = timezone.now()
    renewed = DiscoveryRun.objects.filter(
        id=run.id,
        lease_owner=owner,
        status__in=DiscoveryRun.ACTIVE_STATUSES,
    ).update(lease_expires_at=now + timedelta(seconds=ttl), updated_at=now)
    return bool(renewed)


def release_lease(run, owner: str) -> None:
    """Drop the lease if still held by `owner`. Terminal runs are left alone."""
    DiscoveryRun.objects.filter(
        id=run.id,
        lease_owner=owner,
        status__in=DiscoveryRun.ACTIVE_STATUSES,
    ).update(lease_owner='', lease_expires_at=None, updated_at=timezone.now())


# =============================================================================
# Recovery
# =============================================================================

def find_stuck_runs(now=None):
    """
    Active runs nobody is working on.

    A run is stuck when its lease has expired, or when it has no lease and
    has not been touched for a full lease period.
    """
    now = now or timezone.now()
    idle_cutoff = now - timedelta(seconds=settings.WEAVE_LEASE_TTL)
    return DiscoveryRun.objects.filter(
        status__in=DiscoveryRun.ACTIVE_STATUSES,
    ).filter(
        Q(lease_expires_at__lt=now)
        | Q(lease_expires_at__isnull=True, updated_at__lt=idle_cutoff)
    ).order_by('created_at')


def recover_stuck_runs(now=None, enqueue: bool = True) -> dict:
    """
    Re-enqueue stuck runs so they resume from their persisted offset.

    Runs that already used up WEAVE_MAX_RECOVERY_ATTEMPTS are marked FAILED,
    so every accepted run eventually terminates.
    """
    from apps.weaves.publisher import ProgressSnapshot, get_publisher

    max_attempts = settings.WEAVE_MAX_RECOVERY_ATTEMPTS
    summary = {'requeued': 0, 'failed': 0}

    for run in find_stuck_runs(now):
        if run.recovery_attempts >= max_attempts:
            try:
                transition_run(
                    run, RunStatus.FAILED,
                    error_code=ErrorCode.RECOVERY_EXHAUSTED,
                    error_message=f"Gave up after {run.recovery_attempts} recovery attempts",
                )
            except TransitionError:
                continue
            record_event(run, 'fail', run.error_message, severity='error')
            metrics.increment_runs_recovered('exhausted')
            metrics.increment_runs_completed(RunStatus.FAILED.value)
            get_publisher().publish_terminal(
                run.plexus_id, ProgressSnapshot.from_run(run), RunStatus.FAILED.publish_event
            )
            summary['failed'] += 1
            continue

        claimed = DiscoveryRun.objects.filter(
            id=run.id,
            status=run.status,
            recovery_attempts=run.recovery_attempts,
        ).update(
            recovery_attempts=F('recovery_attempts') + 1,
            lease_owner='',
            lease_expires_at=None,
            updated_at=timezone.now(),
        )
        if not claimed:
            continue

        run.refresh_from_db()
        record_event(
            run, 'recovered',
            f"Re-enqueued stuck run at pair {run.pair_cursor}/{run.repo_pairs_total}",
            severity='warning',
            details={'attempt': run.recovery_attempts},
        )
        metrics.increment_runs_recovered('requeued')
        logger.warning(
            f"Recovering discovery run {run.id} (attempt {run.recovery_attempts})",
            extra={'run_id': str(run.id), 'plexus_id': str(run.plexus_id)},
        )
        if enqueue:
            enqueue_run(run)
        summary['requeued'] += 1

    return summary


# =============================================================================
# Heartbeat
# =============================================================================

def record_heartbeat() -> None:
    cache.set(HEARTBEAT_CACHE_KEY, time.time(), timeout=None)


def last_heartbeat_age() -> Optional[float]:
    """Seconds since the intake loop last beat, or None if it never has."""
    beat = cache.get(HEARTBEAT_CACHE_KEY)
    if beat is None:
        return None
    return max(0.0, time.time() - float(beat))
