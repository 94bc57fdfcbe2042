"""
Shared fixtures for weave discovery tests.
"""

import pytest

from apps.plexus.models import Plexus, Repo


@pytest.fixture
def make_plexus(db):
    """Factory: create a plexus with `n` repositories."""
    counter = {'value': 0}

    def _make(n=3, name=None):
        counter['value'] += 1
        label = name or f'Plexus {counter["value"]}'
        plexus = Plexus.objects.create(name=label, slug=f'plexus-{counter["value"]}')
        for i in range(n):
            Repo.objects.create(plexus=plexus, name=f'repo-{i}', full_name=f'org/repo-{i}')
        return plexus

    return _make


@pytest.fixture
def plexus(make_plexus):
    """A plexus with three repositories."""
    return make_plexus(3)


@pytest.fixture
def repo_ids(plexus):
    """Canonical (sorted) repo ids of the default plexus."""
    return sorted(plexus.repo_ids())
