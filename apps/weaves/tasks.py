"""
Celery tasks for weave discovery.

run_weave_discovery owns one run end to end: lease → orchestrate → release.
Transient failures are retried with the policy below; when retries run out
the run is marked FAILED so it never stays active forever.
"""

from celery import shared_task
from django.db import DatabaseError, InterfaceError, OperationalError
import logging
import random

from apps.core.exceptions import ErrorCode

logger = logging.getLogger(__name__)


RETRY_POLICIES = {
    ErrorCode.DATABASE_ERROR.value: {'max_attempts': 5, 'backoff': 30, 'jitter': 15},
    ErrorCode.NETWORK_ERROR.value: {'max_attempts': 5, 'backoff': 30, 'jitter': 15},
    ErrorCode.SERVICE_UNAVAILABLE.value: {'max_attempts': 4, 'backoff': 60, 'jitter': 30},
    ErrorCode.TASK_ERROR.value: {'max_attempts': 3, 'backoff': 60, 'jitter': 30},
}

NON_RETRIABLE_ERRORS = {
    ErrorCode.NOT_FOUND.value,
    ErrorCode.INVALID_TRANSITION.value,
    ErrorCode.INTEGRITY_ERROR.value,
}

DEFAULT_RETRY_POLICY = {'max_attempts': 3, 'backoff': 60, 'jitter': 30}


def _classify_error(exc):
    """
    Classify an exception into a normalized error code.

    Returns tuple of (error_code, error_message).
    """
    from django.db import IntegrityError
    from apps.weaves.state_machine import TransitionError
    from apps.weaves.models import DiscoveryRun

    exc_type = type(exc).__name__
    exc_msg = str(exc)

    if isinstance(exc, DiscoveryRun.DoesNotExist):
        return ErrorCode.NOT_FOUND.value, exc_msg
    if isinstance(exc, TransitionError):
        return ErrorCode.INVALID_TRANSITION.value, exc_msg
    if isinstance(exc, IntegrityError):
        return ErrorCode.INTEGRITY_ERROR.value, exc_msg
    if isinstance(exc, (OperationalError, InterfaceError, DatabaseError)):
        return ErrorCode.DATABASE_ERROR.value, exc_msg
    if exc_type in ('ConnectionError', 'TimeoutError', 'ConnectionRefusedError', 'ConnectionResetError'):
        return ErrorCode.NETWORK_ERROR.value, exc_msg
    if 'redis' in exc_type.lower() or 'broker' in exc_msg.lower():
        return ErrorCode.SERVICE_UNAVAILABLE.value, exc_msg

    return ErrorCode.TASK_ERROR.value, exc_msg


def _get_retry_decision(error_code, retries, task_max_retries):
    """
    Determine retry allowance and delay based on error code.

    Args:
        error_code: normalized error code
        retries: current retry count from Celery (0-based)
        task_max_retries: The max_retries value set on the task.

    Returns:
        tuple of (should_retry: bool, max_attempts: int, countdown_seconds: int | None)
    """
    policy = RETRY_POLICIES.get(error_code, DEFAULT_RETRY_POLICY)
    max_attempts = policy['max_attempts']
    current_attempt = retries + 1

    if error_code in NON_RETRIABLE_ERRORS or current_attempt >= max_attempts or retries >= task_max_retries:
        return False, max_attempts, None

    MAX_BACKOFF_SECONDS = 1800
    backoff = min(policy['backoff'] * (2 ** retries), MAX_BACKOFF_SECONDS)
    jitter = random.uniform(0, policy.get('jitter', 0))
    countdown = int(backoff + jitter)
    return True, max_attempts, countdown


@shared_task(bind=True, max_retries=5, acks_late=True)
def run_weave_discovery(self, run_id, request_id=None):
    """
    Execute a discovery run.

    Args:
        run_id: UUID of the DiscoveryRun
        request_id: Optional request ID for log correlation

    Returns:
        dict with the run's final counters
    """
    from apps.weaves.intake import acquire_lease, new_lease_owner, release_lease
    from apps.weaves.models import DiscoveryRun
    from apps.weaves.orchestrator import DiscoveryOrchestrator
    from apps.weaves.state_machine import RunStatus, TransitionError, transition_run
    from apps.weaves.stores import record_event

    log_extra = {'run_id': str(run_id), 'task_id': self.request.id}
    if request_id:
        log_extra['request_id'] = request_id

    try:
        run = DiscoveryRun.objects.select_related('plexus').get(id=run_id)
    except DiscoveryRun.DoesNotExist:
        logger.error(f"Discovery run {run_id} not found", extra=log_extra)
        return {'success': False, 'error': 'not_found'}

    log_extra['plexus_id'] = str(run.plexus_id)

    if run.is_terminal:
        logger.info(f"Discovery run {run_id} already {run.status}, nothing to do", extra=log_extra)
        return _result(run)

    owner = new_lease_owner()
    if not acquire_lease(run, owner):
        logger.info(f"Discovery run {run_id} is owned by {run.lease_owner}, skipping", extra=log_extra)
        return {'success': False, 'error': 'leased', 'run_id': str(run_id)}

    logger.info(f"Starting discovery run {run_id} as {owner}", extra=log_extra)

    try:
        status = DiscoveryOrchestrator(run, lease_owner=owner).run()
    except TransitionError as exc:
        # Someone else finished or cancelled the run while we were starting
        logger.info(f"Discovery run {run_id} changed state underneath us: {exc}", extra=log_extra)
        run.refresh_from_db()
        return _result(run)
    except Exception as exc:
        error_code, error_msg = _classify_error(exc)
        should_retry, max_attempts, countdown = _get_retry_decision(
            error_code, self.request.retries, self.max_retries
        )
        logger.error(
            f"Discovery run {run_id} failed ({error_code}): {error_msg}",
            extra={**log_extra, 'error_code': error_code},
            exc_info=True,
        )
        release_lease(run, owner)

        if should_retry:
            logger.info(
                f"Retrying discovery run {run_id} in {countdown}s "
                f"(attempt {self.request.retries + 2}/{max_attempts})",
                extra=log_extra,
            )
            raise self.retry(exc=exc, countdown=countdown)

        try:
            transition_run(run, RunStatus.FAILED, error_code=error_code, error_message=error_msg)
            record_event(run, 'fail', error_msg, severity='error', details={'error_code': error_code})
        except (TransitionError, DatabaseError) as fail_exc:
            logger.error(f"Could not mark run {run_id} failed: {fail_exc}", extra=log_extra)
        raise

    release_lease(run, owner)
    run.refresh_from_db()
    logger.info(f"Discovery run {run_id} finished with status {status.value}", extra=log_extra)
    return _result(run)


def _result(run):
    return {
        'success': run.status == 'completed',
        'run_id': str(run.id),
        'status': run.status,
        'repo_pairs_total': run.repo_pairs_total,
        'repo_pairs_checked': run.repo_pairs_checked,
        'weaves_found': run.weaves_found,
        'pairs_skipped': run.pairs_skipped,
    }


@shared_task
def recover_stuck_runs():
    """Re-enqueue active runs whose orchestrator has gone away."""
    from apps.weaves.intake import recover_stuck_runs as recover

    summary = recover()
    if summary['requeued'] or summary['failed']:
        logger.warning(
            f"Stuck-run recovery: requeued={summary['requeued']} failed={summary['failed']}"
        )
    return summary


@shared_task
def intake_heartbeat():
    """Periodic beat proving the intake loop is alive. Read by /livez/."""
    from apps.weaves.intake import record_heartbeat

    record_heartbeat()
    return {'ok': True}
