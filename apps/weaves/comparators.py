"""
Comparator interface for weave discovery.

A comparator inspects one pair of repositories and returns zero or more
candidate relationships. The discovery engine treats it as a black box: it
may be slow, may fail transiently, and is invoked concurrently from worker
threads, so implementations must not touch the database inside `compare`.
Anything a comparator needs from the database is loaded in `prepare`, which
runs once on the orchestrator thread before dispatch starts.
"""

import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from django.conf import settings
from django.utils.module_loading import import_string

from apps.weaves.exceptions import ComparatorError
from apps.weaves.models import WeaveType

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """A relationship proposed by a comparator for one pair."""
    type: str
    score: float
    title: str = ''
    description: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value) -> 'Candidate':
        """Accept a Candidate or a plain dict and validate it."""
        if isinstance(value, dict):
            value = cls(
                type=value.get('type', ''),
                score=value.get('score'),
                title=value.get('title') or '',
                description=value.get('description') or '',
                metadata=value.get('metadata') or {},
            )
        if not isinstance(value, cls):
            raise ComparatorError(f"Unsupported candidate: {value!r}")
        if value.type not in WeaveType.values:
            raise ComparatorError(f"Unknown weave type: {value.type}")
        try:
            value.score = float(value.score)
        except (TypeError, ValueError):
            raise ComparatorError(f"Invalid score for {value.type}: {value.score!r}")
        if not math.isfinite(value.score):
            raise ComparatorError(f"Non-finite score for {value.type}: {value.score!r}")
        if value.metadata is None:
            value.metadata = {}
        if not isinstance(value.metadata, dict):
            raise ComparatorError(f"Metadata for {value.type} must be a mapping")
        try:
            json.dumps(value.metadata, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise ComparatorError(f"Metadata for {value.type} cannot be stored as JSON: {exc}")
        return value


class BaseComparator(ABC):
    """
    Abstract base class for pair comparators.
    """

    name = 'base'

    def prepare(self, repo_ids: Sequence[str]) -> None:
        """Load whatever the comparator needs for this repo snapshot."""

    @abstractmethod
    def compare(self, source_id: str, target_id: str) -> List[Candidate]:
        """
        Compare two repositories.

        Args:
            source_id: Canonical (smaller) repo id
            target_id: Canonical (larger) repo id

        Returns:
            List of Candidate (or dicts with the same keys). Scores below the
            persistence threshold are filtered by the engine.

        Raises:
            Any exception is treated as a failed attempt and retried.
        """


class NullComparator(BaseComparator):
    """Finds nothing. Default until a real comparator is configured."""

    name = 'null'

    def compare(self, source_id, target_id):
        return []


class GlossaryOverlapComparator(BaseComparator):
    """
    Baseline comparator scoring shared glossary terms.

    Score is the Jaccard index of the two repositories' glossary term sets.
    Repositories without a glossary never match.
    """

    name = 'glossary_overlap'

    def __init__(self):
        self._terms: Dict[str, set] = {}

    def prepare(self, repo_ids):
        from apps.plexus.models import RepoGlossary

        self._terms = {}
        glossaries = RepoGlossary.objects.filter(repo_id__in=list(repo_ids)).values_list('repo_id', 'terms')
        for repo_id, terms in glossaries:
            self._terms[str(repo_id)] = {str(t).strip().lower() for t in (terms or {}) if str(t).strip()}

    def compare(self, source_id, target_id):
        left = self._terms.get(source_id)
        right = self._terms.get(target_id)
        if not left or not right:
            return []

        shared = left & right
        if not shared:
            return []

        score = len(shared) / len(left | right)
        return [Candidate(
            type=WeaveType.GLOSSARY_ALIGNMENT,
            score=round(score, 4),
            title=f"{len(shared)} shared glossary terms",
            metadata={'shared_terms': sorted(shared)[:50]},
        )]


def get_comparator(path: str = None) -> BaseComparator:
    """Instantiate the comparator named by WEAVE_COMPARATOR (or `path`)."""
    path = path or getattr(settings, 'WEAVE_COMPARATOR', 'apps.weaves.comparators.NullComparator')
    comparator_class = import_string(path)
    logger.debug(f"Using comparator {path}")
    return comparator_class()
