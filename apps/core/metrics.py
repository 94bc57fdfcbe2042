"""
Prometheus metrics for the Symploke engine.

Metrics included:
- weave_runs_started_total: discovery runs accepted, by trigger
- weave_runs_completed_total: discovery runs reaching a terminal state, by status
- weave_runs_coalesced_total: submissions folded into an already active run
- weave_pairs_checked_total: repo pairs counted as checked, by outcome
- weave_weaves_found_total: weaves persisted, by relationship type
- weave_comparator_duration_seconds: wall time of one comparator attempt
- weave_run_duration_seconds: wall time of an orchestrator pass
- weave_publish_failures_total: progress snapshots that could not be published
- weave_runs_recovered_total: runs re-enqueued by stuck-run recovery

Cardinality Guidelines:
- All labels MUST be low-cardinality (small, bounded set of values)
- ALLOWED label values: status enums, trigger types, relationship types
- FORBIDDEN label values: plexus IDs, run IDs, repo names
- If per-plexus metrics are needed, use structured logging instead

Usage:
    from apps.core.metrics import increment_pairs_checked, observe_comparator_duration

    increment_pairs_checked(outcome='ok')

    with observe_comparator_duration():
        comparator.compare(source_id, target_id)
"""

import time
from contextlib import contextmanager
import logging

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

logger = logging.getLogger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

runs_started_total = Counter(
    'symploke_weave_runs_started_total',
    'Total discovery runs started',
    ['trigger']  # trigger: api/manual/scheduled/recovery
)

runs_completed_total = Counter(
    'symploke_weave_runs_completed_total',
    'Total discovery runs finished',
    ['status']  # status: completed/failed/cancelled
)

runs_coalesced_total = Counter(
    'symploke_weave_runs_coalesced_total',
    'Submissions coalesced into an active discovery run',
)

pairs_checked_total = Counter(
    'symploke_weave_pairs_checked_total',
    'Total repo pairs checked',
    ['outcome']  # outcome: ok/skipped
)

weaves_found_total = Counter(
    'symploke_weave_weaves_found_total',
    'Total weaves persisted',
    ['type']  # relationship type (fixed set)
)

comparator_duration_seconds = Histogram(
    'symploke_weave_comparator_duration_seconds',
    'Duration of a single comparator attempt',
    buckets=[0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0]
)

run_duration_seconds = Histogram(
    'symploke_weave_run_duration_seconds',
    'Duration of a discovery orchestrator pass',
    buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600, 7200]
)

publish_failures_total = Counter(
    'symploke_weave_publish_failures_total',
    'Progress snapshots that failed to publish',
    ['event']
)

runs_recovered_total = Counter(
    'symploke_weave_runs_recovered_total',
    'Discovery runs re-enqueued by stuck-run recovery',
    ['outcome']  # outcome: requeued/failed
)


# ============================================================================
# Helper Functions
# ============================================================================

def increment_runs_started(trigger='api'):
    runs_started_total.labels(trigger=trigger).inc()


def increment_runs_completed(status='completed'):
    runs_completed_total.labels(status=status).inc()


def increment_runs_coalesced():
    runs_coalesced_total.inc()


def increment_pairs_checked(outcome='ok'):
    pairs_checked_total.labels(outcome=outcome).inc()


def increment_weaves_found(weave_type, count=1):
    weaves_found_total.labels(type=weave_type).inc(count)


def observe_run_duration(duration_seconds):
    run_duration_seconds.observe(duration_seconds)


def increment_publish_failures(event='weave:progress'):
    publish_failures_total.labels(event=event).inc()


def increment_runs_recovered(outcome='requeued'):
    runs_recovered_total.labels(outcome=outcome).inc()


@contextmanager
def observe_comparator_duration():
    """Context manager to time one comparator attempt."""
    start = time.time()
    try:
        yield
    finally:
        comparator_duration_seconds.observe(time.time() - start)


def render_latest():
    """Return (payload, content_type) for the /metrics/ endpoint."""
    return generate_latest(), CONTENT_TYPE_LATEST
