# recommender/vector_math.py
"""Similarity primitives over latent feature vectors.

Both functions take single vectors or row-stacked matrices, so the scoring
path can score a whole partition of the catalog with one matrix product.
Inputs are assumed to share the model rank; the model checks the rank of
every vector once at load time, so nothing is re-checked here.
"""

from __future__ import annotations

from typing import Optional, Union

import numpy as np

Scores = Union[float, np.ndarray]


def dot_product(a: np.ndarray, b: np.ndarray) -> Scores:
    """``a . b``; with a 2-d ``a``, the dot product of every row with ``b``."""
    if a.ndim == 1:
        return float(np.dot(a, b))
    return a @ b


def cosine_similarity(a: np.ndarray, b: np.ndarray, a_norms: Optional[np.ndarray] = None) -> Scores:
    """Cosine of the angle between vectors; 0.0 where either norm is 0.

    With 1-d inputs returns a float. With a 2-d ``a`` (n x rank) and/or a
    2-d ``b`` (k x rank) returns the n x k similarity matrix, squeezed along
    any 1-d side. ``a_norms`` skips recomputing the row norms of ``a``.
    """
    a2, b2 = np.atleast_2d(a), np.atleast_2d(b)
    if a_norms is None:
        a_norms = np.linalg.norm(a2, axis=1)
    norms = np.outer(a_norms, np.linalg.norm(b2, axis=1))
    dots = a2 @ b2.T
    sims = np.divide(dots, norms, out=np.zeros_like(dots, dtype=np.float64), where=norms != 0)

    if a.ndim == 1 and b.ndim == 1:
        return float(sims[0, 0])
    if a.ndim == 1:
        return sims[0]
    if b.ndim == 1:
        return sims[:, 0]
    return sims
