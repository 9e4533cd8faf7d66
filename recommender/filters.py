# recommender/filters.py
from __future__ import annotations

from typing import AbstractSet, Optional, Sequence

import numpy as np

from recommender.model import Item


def is_candidate(
    index: int,
    item: Item,
    categories: Optional[AbstractSet[str]],
    white_list: Optional[AbstractSet[int]],
    black_list: AbstractSet[int],
) -> bool:
    """Decide whether an item may appear in a result.

    - a white list, when given, must contain the item
    - the black list never may
    - a category filter, when given, must overlap the item's categories;
      items without category data are dropped under a filter
    """
    if white_list is not None and index not in white_list:
        return False
    if index in black_list:
        return False
    if categories is not None:
        if not item.categories:
            return False
        return not categories.isdisjoint(item.categories)
    return True


def _as_array(indices: AbstractSet[int]) -> np.ndarray:
    return np.fromiter(indices, dtype=np.int64, count=len(indices))


def candidate_mask(
    indices: np.ndarray,
    items: Sequence[Item],
    categories: Optional[AbstractSet[str]],
    white_list: Optional[AbstractSet[int]],
    black_list: AbstractSet[int],
) -> np.ndarray:
    """``is_candidate`` over aligned rows of ``indices`` and ``items``."""
    mask = np.ones(len(indices), dtype=bool)
    if white_list is not None:
        mask &= np.isin(indices, _as_array(white_list))
    if black_list:
        mask &= ~np.isin(indices, _as_array(black_list))
    if categories is not None:
        # only rows that passed the index rules need the per-item check
        for row in np.flatnonzero(mask):
            mask[row] = is_candidate(int(indices[row]), items[row], categories, white_list, black_list)
    return mask
