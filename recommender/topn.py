# recommender/topn.py
"""Bounded top-N selection.

Keeps a min-heap of at most ``n`` entries instead of sorting every
candidate: O(M log N) for M candidates. A candidate only evicts the heap
minimum when its score is strictly greater, so among equal scores the
element already held wins. The order of tied items is not defined.
"""

from __future__ import annotations

import heapq
from itertools import count
from typing import Hashable, Iterable, List, Sequence, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)

Scored = Tuple[K, float]


def top_n(scored: Iterable[Scored], n: int) -> List[Scored]:
    """Return the ``n`` best ``(key, score)`` pairs, highest score first."""
    if n <= 0:
        return []

    # (score, seq, key): seq keeps the heap from ever comparing keys
    heap: List[Tuple[float, int, K]] = []
    seq = count()
    for key, score in scored:
        if len(heap) < n:
            heapq.heappush(heap, (score, next(seq), key))
        elif score > heap[0][0]:
            heapq.heapreplace(heap, (score, next(seq), key))

    drained = [heapq.heappop(heap) for _ in range(len(heap))]
    drained.reverse()
    return [(key, score) for score, _, key in drained]


def merge_top_n(partials: Iterable[Sequence[Scored]], n: int) -> List[Scored]:
    """Merge per-partition top-N lists into one global top-N list."""
    return top_n((pair for part in partials for pair in part), n)
