"""
Tests for Prometheus metrics - smoke tests.

Tests cover:
- Metric registration
- Counter increments and histogram observations
- No high-cardinality labels
- Exposition output
"""

import pytest
from prometheus_client import REGISTRY

from apps.core import metrics


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


# ============================================================================
# Registration
# ============================================================================

class TestMetricRegistration:
    """All engine metrics are registered with the default registry."""

    @pytest.mark.parametrize('metric', [
        metrics.runs_started_total,
        metrics.runs_completed_total,
        metrics.runs_coalesced_total,
        metrics.pairs_checked_total,
        metrics.weaves_found_total,
        metrics.comparator_duration_seconds,
        metrics.run_duration_seconds,
        metrics.publish_failures_total,
        metrics.runs_recovered_total,
    ])
    def test_registered(self, metric):
        assert metric._name.startswith('symploke_weave_')


# ============================================================================
# Label Cardinality
# ============================================================================

class TestLabelCardinality:
    """Labels stay low-cardinality: no plexus, run or repo ids."""

    FORBIDDEN = {'plexus_id', 'run_id', 'repo_id', 'source_repo', 'target_repo', 'task_id'}

    def test_no_identifier_labels(self):
        for metric in (
            metrics.runs_started_total,
            metrics.runs_completed_total,
            metrics.pairs_checked_total,
            metrics.weaves_found_total,
            metrics.publish_failures_total,
            metrics.runs_recovered_total,
        ):
            assert not set(metric._labelnames) & self.FORBIDDEN


# ============================================================================
# Helpers
# ============================================================================

class TestHelpers:
    """Helper functions update the underlying metrics."""

    def test_runs_started(self):
        before = sample('symploke_weave_runs_started_total', trigger='scheduled')
        metrics.increment_runs_started(trigger='scheduled')
        assert sample('symploke_weave_runs_started_total', trigger='scheduled') == before + 1

    def test_runs_completed(self):
        before = sample('symploke_weave_runs_completed_total', status='cancelled')
        metrics.increment_runs_completed('cancelled')
        assert sample('symploke_weave_runs_completed_total', status='cancelled') == before + 1

    def test_weaves_found_count(self):
        before = sample('symploke_weave_weaves_found_total', type='similar_domain')
        metrics.increment_weaves_found('similar_domain', count=3)
        assert sample('symploke_weave_weaves_found_total', type='similar_domain') == before + 3

    def test_pairs_checked(self):
        before = sample('symploke_weave_pairs_checked_total', outcome='skipped')
        metrics.increment_pairs_checked('skipped')
        assert sample('symploke_weave_pairs_checked_total', outcome='skipped') == before + 1

    def test_comparator_duration_recorded_on_error(self):
        before = sample('symploke_weave_comparator_duration_seconds_count')
        with pytest.raises(RuntimeError):
            with metrics.observe_comparator_duration():
                raise RuntimeError('comparator blew up')
        assert sample('symploke_weave_comparator_duration_seconds_count') == before + 1

    def test_render_latest(self):
        metrics.increment_runs_coalesced()
        payload, content_type = metrics.render_latest()
        assert b'symploke_weave_runs_coalesced_total' in payload
        assert content_type.startswith('text/plain')
