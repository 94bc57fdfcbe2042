"""
Tests for pair enumeration.

Tests cover:
- Pair totals for small and degenerate inputs
- Canonical ordering and uniqueness of pairs
- Random access by index
- Resuming from a cursor with out-of-order completions
"""

import pytest

from apps.weaves.enumerator import (
    RepoPair,
    canonical_pair,
    canonical_repo_ids,
    enumerate_pairs,
    pair_at,
    pair_count,
    pending_pairs,
)
from apps.weaves.stores import advance_cursor


def ids(n):
    return [f'r{i:02d}' for i in range(n)]


# ============================================================================
# Totals
# ============================================================================

class TestPairCount:

    @pytest.mark.parametrize('n,expected', [(0, 0), (1, 0), (2, 1), (3, 3), (5, 10), (40, 780)])
    def test_pair_count(self, n, expected):
        assert pair_count(n) == expected

    @pytest.mark.parametrize('n', [0, 1, 2, 3, 7, 12])
    def test_enumeration_matches_count(self, n):
        pairs = list(enumerate_pairs(ids(n)))
        assert len(pairs) == pair_count(n)

    def test_fewer_than_two_repos_yield_nothing(self):
        assert list(enumerate_pairs([])) == []
        assert list(enumerate_pairs(['only'])) == []


# ============================================================================
# Ordering and uniqueness
# ============================================================================

class TestOrdering:

    def test_three_repos_in_lexicographic_order(self):
        pairs = list(enumerate_pairs(['a', 'b', 'c']))
        assert pairs == [
            RepoPair(0, 'a', 'b'),
            RepoPair(1, 'a', 'c'),
            RepoPair(2, 'b', 'c'),
        ]

    def test_source_always_smaller_than_target(self):
        for pair in enumerate_pairs(ids(9)):
            assert pair.source_id < pair.target_id

    def test_no_duplicate_unordered_pairs(self):
        seen = set()
        for pair in enumerate_pairs(ids(9)):
            key = frozenset((pair.source_id, pair.target_id))
            assert key not in seen
            seen.add(key)

    def test_indices_are_contiguous(self):
        assert [p.index for p in enumerate_pairs(ids(6))] == list(range(15))

    def test_canonical_repo_ids_sorts_and_dedupes(self):
        assert canonical_repo_ids(['c', 'a', 'b', 'a']) == ['a', 'b', 'c']

    def test_canonical_repo_ids_stringifies(self):
        import uuid
        value = uuid.uuid4()
        assert canonical_repo_ids([value]) == [str(value)]

    def test_canonical_pair(self):
        assert canonical_pair('b', 'a') == ('a', 'b')
        assert canonical_pair('a', 'b') == ('a', 'b')


# ============================================================================
# Random access and resume
# ============================================================================

class TestResume:

    @pytest.mark.parametrize('n', [2, 3, 4, 5, 11])
    def test_pair_at_matches_enumeration(self, n):
        repo_ids = ids(n)
        for pair in enumerate_pairs(repo_ids):
            assert pair_at(repo_ids, pair.index) == pair

    def test_pair_at_out_of_range(self):
        with pytest.raises(IndexError):
            pair_at(ids(3), 3)
        with pytest.raises(IndexError):
            pair_at(ids(3), -1)

    @pytest.mark.parametrize('start', [0, 1, 4, 9, 14])
    def test_enumerate_from_start_is_suffix(self, start):
        repo_ids = ids(6)
        full = list(enumerate_pairs(repo_ids))
        assert list(enumerate_pairs(repo_ids, start=start)) == full[start:]

    def test_enumerate_past_end_is_empty(self):
        assert list(enumerate_pairs(ids(4), start=6)) == []

    def test_pending_pairs_skips_completed_ahead(self):
        repo_ids = ids(5)
        pending = [p.index for p in pending_pairs(repo_ids, cursor=3, ahead=[4, 7])]
        assert pending == [3, 5, 6, 8, 9]

    def test_cursor_plus_pending_covers_everything_once(self):
        repo_ids = ids(7)
        cursor, ahead = 5, [6, 9, 10]
        pending = [p.index for p in pending_pairs(repo_ids, cursor, ahead)]
        done = set(range(cursor)) | set(ahead)
        assert sorted(done | set(pending)) == list(range(pair_count(7)))
        assert not done & set(pending)


class TestAdvanceCursor:

    def test_in_order_completion_moves_cursor(self):
        assert advance_cursor(0, [], 0) == (1, [])

    def test_out_of_order_completion_waits_in_ahead(self):
        assert advance_cursor(0, [], 2) == (0, [2])

    def test_gap_closing_absorbs_ahead(self):
        cursor, ahead = advance_cursor(0, [], 2)
        cursor, ahead = advance_cursor(cursor, ahead, 1)
        assert (cursor, ahead) == (0, [1, 2])
        assert advance_cursor(cursor, ahead, 0) == (3, [])
