"""
Pair enumeration over a repository snapshot.

Repo ids are canonicalised (string form, de-duplicated, sorted) and the
N*(N-1)/2 unordered pairs are walked in lexicographic order of their
positions: (0,1), (0,2), ..., (0,N-1), (1,2), ... Every pair therefore has a
stable integer index, which is what the run persists as its cursor.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Sequence


@dataclass(frozen=True)
class RepoPair:
    """One unordered pair of repositories with source_id < target_id."""
    index: int
    source_id: str
    target_id: str


def canonical_repo_ids(repo_ids: Iterable) -> List[str]:
    return sorted({str(repo_id) for repo_id in repo_ids})


def pair_count(n: int) -> int:
    """Number of unordered pairs over n repositories."""
    if n < 2:
        return 0
    return n * (n - 1) // 2


def _row_offset(i: int, n: int) -> int:
    # Index of pair (i, i+1)
    return i * (2 * n - i - 1) // 2


def _position(index: int, n: int):
    """Map a pair index to its (i, j) positions without walking the prefix."""
    total = pair_count(n)
    if index < 0 or index >= total:
        raise IndexError(f"Pair index {index} out of range for {n} repos")

    # Closed-form estimate of the row, corrected for integer rounding
    i = n - 2 - (math.isqrt(4 * n * (n - 1) - 8 * index - 7) - 1) // 2
    i = max(0, min(i, n - 2))
    while i > 0 and _row_offset(i, n) > index:
        i -= 1
    while i < n - 2 and _row_offset(i + 1, n) <= index:
        i += 1

    j = index - _row_offset(i, n) + i + 1
    return i, j


def pair_at(repo_ids: Sequence[str], index: int) -> RepoPair:
    """Return the pair at `index` of an already canonical id list."""
    i, j = _position(index, len(repo_ids))
    return RepoPair(index=index, source_id=repo_ids[i], target_id=repo_ids[j])


def enumerate_pairs(repo_ids: Sequence[str], start: int = 0) -> Iterator[RepoPair]:
    """
    Lazily yield every pair of `repo_ids` from position `start` on.

    `repo_ids` must already be canonical; call `canonical_repo_ids` first when
    the input comes from an unordered query.
    """
    n = len(repo_ids)
    total = pair_count(n)
    if start >= total:
        return

    i, j = _position(start, n)
    index = start
    while i < n - 1:
        while j < n:
            yield RepoPair(index=index, source_id=repo_ids[i], target_id=repo_ids[j])
            index += 1
            j += 1
        i += 1
        j = i + 1


def pending_pairs(repo_ids: Sequence[str], cursor: int = 0, ahead: Iterable[int] = ()) -> Iterator[RepoPair]:
    """Pairs from `cursor` on, skipping indices already completed out of order."""
    done = set(ahead)
    for pair in enumerate_pairs(repo_ids, start=cursor):
        if pair.index not in done:
            yield pair


def canonical_pair(repo_a, repo_b):
    """Order two repo ids so the lexicographically smaller one comes first."""
    a, b = str(repo_a), str(repo_b)
    return (a, b) if a < b else (b, a)
