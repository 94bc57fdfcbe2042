"""
Tests for comparators and the discovery settings snapshot.
"""

import pytest

from apps.plexus.models import RepoGlossary
from apps.weaves.comparators import (
    Candidate,
    GlossaryOverlapComparator,
    NullComparator,
    get_comparator,
)
from apps.weaves.config import DiscoveryConfig
from apps.weaves.exceptions import ComparatorError
from apps.weaves.models import WeaveType


# ============================================================================
# Candidates
# ============================================================================

class TestCandidate:

    def test_coerce_dict(self):
        candidate = Candidate.coerce({'type': 'shared_dependency', 'score': '0.7', 'title': 'libfoo'})
        assert candidate.type == 'shared_dependency'
        assert candidate.score == 0.7
        assert candidate.metadata == {}

    def test_coerce_passes_candidates_through(self):
        original = Candidate(type=WeaveType.SIMILAR_DOMAIN, score=1)
        assert Candidate.coerce(original) is original
        assert original.score == 1.0

    @pytest.mark.parametrize('value', [
        {'type': 'unknown', 'score': 0.5},
        {'type': 'similar_domain', 'score': 'high'},
        {'type': 'similar_domain'},
        ('similar_domain', 0.5),
        {'type': 'similar_domain', 'score': float('nan')},
        {'type': 'similar_domain', 'score': 'inf'},
        {'type': 'similar_domain', 'score': 0.5, 'metadata': ['not', 'a', 'mapping']},
    ])
    def test_invalid(self, value):
        with pytest.raises(ComparatorError):
            Candidate.coerce(value)

    @pytest.mark.parametrize('metadata', [
        {'terms': {'lease', 'cursor'}},
        {'ratio': float('nan')},
        {'seen': object()},
    ])
    def test_metadata_must_be_storable(self, metadata):
        with pytest.raises(ComparatorError) as exc_info:
            Candidate.coerce(Candidate(type=WeaveType.SIMILAR_DOMAIN, score=0.8, metadata=metadata))
        assert 'JSON' in str(exc_info.value)

    def test_none_metadata_becomes_empty(self):
        candidate = Candidate.coerce(Candidate(type=WeaveType.SIMILAR_DOMAIN, score=0.8, metadata=None))
        assert candidate.metadata == {}


# ============================================================================
# Comparators
# ============================================================================

class TestNullComparator:

    def test_finds_nothing(self):
        assert NullComparator().compare('a', 'b') == []


@pytest.mark.django_db
class TestGlossaryOverlapComparator:

    def test_scores_shared_terms(self, plexus, repo_ids):
        repos = {str(r.id): r for r in plexus.repos.all()}
        a, b, c = repo_ids
        RepoGlossary.objects.create(repo=repos[a], terms={'Lease': '', 'cursor': '', 'weave': ''})
        RepoGlossary.objects.create(repo=repos[b], terms={'lease': '', 'cursor': '', 'plexus': ''})

        comparator = GlossaryOverlapComparator()
        comparator.prepare(repo_ids)

        [candidate] = comparator.compare(a, b)
        assert candidate.type == WeaveType.GLOSSARY_ALIGNMENT
        assert candidate.score == 0.5
        assert candidate.metadata['shared_terms'] == ['cursor', 'lease']
        assert comparator.compare(a, c) == []

    def test_no_overlap(self, plexus, repo_ids):
        repos = {str(r.id): r for r in plexus.repos.all()}
        a, b, _ = repo_ids
        RepoGlossary.objects.create(repo=repos[a], terms={'alpha': ''})
        RepoGlossary.objects.create(repo=repos[b], terms={'beta': ''})

        comparator = GlossaryOverlapComparator()
        comparator.prepare(repo_ids)
        assert comparator.compare(a, b) == []


def test_get_comparator_default():
    assert isinstance(get_comparator(), NullComparator)


def test_get_comparator_by_path():
    comparator = get_comparator('apps.weaves.comparators.GlossaryOverlapComparator')
    assert isinstance(comparator, GlossaryOverlapComparator)


# ============================================================================
# DiscoveryConfig
# ============================================================================

class TestDiscoveryConfig:

    def test_from_settings(self):
        config = DiscoveryConfig.from_settings()
        assert config.score_threshold == 0.5
        assert config.worker_concurrency == 2
        assert config.comparator_backoff == 0

    def test_overrides_ignore_none(self):
        config = DiscoveryConfig.from_settings(score_threshold=None, worker_concurrency=8)
        assert config.score_threshold == 0.5
        assert config.worker_concurrency == 8

    def test_from_dict_keeps_stored_values(self):
        config = DiscoveryConfig.from_dict({'score_threshold': 0.75, 'unknown_key': 1})
        assert config.score_threshold == 0.75
        assert not hasattr(config, 'unknown_key')

    def test_normalized_clamps(self):
        config = DiscoveryConfig.from_settings(worker_concurrency=0, dispatch_window=1, comparator_max_attempts=0)
        assert config.worker_concurrency == 1
        assert config.comparator_max_attempts == 1
        assert config.dispatch_window >= config.worker_concurrency

    def test_to_dict_round_trip(self):
        config = DiscoveryConfig.from_settings(score_threshold=0.6)
        assert DiscoveryConfig.from_dict(config.to_dict()) == config
