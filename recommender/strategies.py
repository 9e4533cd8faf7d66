# recommender/strategies.py
"""The three scoring modes of the engine.

- known user: dot product of the user vector with each item vector
- similar to recent: cosine similarity to the user's recent items, aggregated
- default: popularity count, for users we know nothing about

Scoring runs on the model's ``ItemMatrix``: each partition of the catalog is
filtered with one candidate mask and scored with one matrix product, then
cut to its own top-N. With ``workers > 1`` the partitions are scored on a
thread pool (numpy releases the GIL inside the products) and the per-partition
results are merged through the bounded heap.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from functools import partial
from typing import AbstractSet, Callable, List, Optional, Sequence, Tuple

import numpy as np

from recommender.filters import candidate_mask
from recommender.model import ItemMatrix
from recommender.schemas import Query
from recommender.topn import merge_top_n, top_n
from recommender.vector_math import cosine_similarity, dot_product

# row slice of the item matrix -> one score per row of the slice
ScoreFn = Callable[[slice], np.ndarray]


class Strategy(str, Enum):
    KNOWN_USER = "known_user"
    SIMILAR_TO_RECENT = "similar_to_recent"
    DEFAULT_POPULARITY = "default_popularity"


# reduce the (rows x recent) similarity matrix along the recent axis
_AGGREGATE = {
    "sum": partial(np.sum, axis=1),
    "mean": partial(np.mean, axis=1),
    "max": partial(np.max, axis=1),
}


def _partitions(size: int, workers: int) -> List[slice]:
    if workers <= 1 or size < 2 * workers:
        return [slice(0, size)]
    bounds = np.linspace(0, size, workers + 1).astype(int)
    return [slice(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:])]


def _score_partition(
    part: slice,
    matrix: ItemMatrix,
    score: ScoreFn,
    n: int,
    categories: Optional[AbstractSet[str]],
    white_list: Optional[AbstractSet[int]],
    black_list: AbstractSet[int],
    needs_features: bool,
    positive_only: bool,
) -> List[Tuple[int, float]]:
    indices = matrix.indices[part]
    keep = candidate_mask(indices, matrix.items[part], categories, white_list, black_list)
    if needs_features:
        keep &= matrix.has_features[part]
    rows = np.flatnonzero(keep)
    if rows.size == 0 or n <= 0:
        return []

    scores = np.asarray(score(part))[rows]
    if positive_only:
        positive = scores > 0
        rows, scores = rows[positive], scores[positive]
    if rows.size > n:
        best = np.argpartition(-scores, n - 1)[:n]
        rows, scores = rows[best], scores[best]
    return top_n(zip(indices[rows].tolist(), scores.tolist()), n)


def score_candidates(
    matrix: ItemMatrix,
    score: ScoreFn,
    n: int,
    categories: Optional[AbstractSet[str]] = None,
    white_list: Optional[AbstractSet[int]] = None,
    black_list: AbstractSet[int] = frozenset(),
    needs_features: bool = True,
    positive_only: bool = True,
    workers: int = 1,
) -> List[Tuple[int, float]]:
    """Score every candidate row and return the top ``n`` (item index, score) pairs."""
    run = partial(
        _score_partition,
        matrix=matrix, score=score, n=n, categories=categories, white_list=white_list,
        black_list=black_list, needs_features=needs_features, positive_only=positive_only,
    )
    parts = _partitions(len(matrix), workers)
    if len(parts) == 1:
        return run(parts[0])

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scoring") as pool:
        partials = list(pool.map(run, parts))
    return merge_top_n(partials, n)


def predict_known_user(
    user_feature: np.ndarray,
    matrix: ItemMatrix,
    query: Query,
    white_list: Optional[AbstractSet[int]],
    black_list: AbstractSet[int],
    workers: int = 1,
) -> List[Tuple[int, float]]:
    """Prediction for a user with a trained feature vector."""
    def score(part: slice) -> np.ndarray:
        return dot_product(matrix.factors[part], user_feature)

    return score_candidates(
        matrix, score, query.num, query.categories, white_list, black_list,
        needs_features=True, positive_only=True, workers=workers,
    )


def predict_similar(
    recent_features: Sequence[np.ndarray],
    matrix: ItemMatrix,
    query: Query,
    white_list: Optional[AbstractSet[int]],
    black_list: AbstractSet[int],
    workers: int = 1,
    aggregation: str = "sum",
) -> List[Tuple[int, float]]:
    """Items similar to what the user recently interacted with."""
    recent = np.vstack(recent_features)
    aggregate = _AGGREGATE[aggregation]

    def score(part: slice) -> np.ndarray:
        return aggregate(cosine_similarity(matrix.factors[part], recent, a_norms=matrix.norms[part]))

    return score_candidates(
        matrix, score, query.num, query.categories, white_list, black_list,
        needs_features=True, positive_only=True, workers=workers,
    )


def predict_default(
    matrix: ItemMatrix,
    query: Query,
    white_list: Optional[AbstractSet[int]],
    black_list: AbstractSet[int],
    workers: int = 1,
) -> List[Tuple[int, float]]:
    """Popularity ranking when nothing is known about the user."""
    def score(part: slice) -> np.ndarray:
        return matrix.counts[part]

    # zero counts stay eligible
    return score_candidates(
        matrix, score, query.num, query.categories, white_list, black_list,
        needs_features=False, positive_only=False, workers=workers,
    )
