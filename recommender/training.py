# recommender/training.py
from __future__ import annotations

# ---- put env vars BEFORE any numeric imports (quiet BLAS warnings)
import os
os.environ.setdefault("OPENBLAS_NUM_THREADS", "1")

import logging
from typing import Callable, Dict, Optional, Tuple

import numpy as np
import pandas as pd
from implicit.als import AlternatingLeastSquares
from scipy.sparse import csr_matrix

from recommender.config import AlgorithmParams
from recommender.errors import EmptyModelInputError
from recommender.model import BiMap, ECommModel, Item, ProductModel

logger = logging.getLogger(__name__)

# ratings (U x I CSR), params -> (user_factors U x rank, item_factors I x rank)
Factorizer = Callable[[csr_matrix, AlgorithmParams], Tuple[np.ndarray, np.ndarray]]

USER_COL = "user"
ITEM_COL = "item"


def als_factorize(ratings: csr_matrix, params: AlgorithmParams) -> Tuple[np.ndarray, np.ndarray]:
    """Implicit-feedback ALS via `implicit` (expects a USER x ITEM CSR)."""
    model = AlternatingLeastSquares(
        factors=params.rank,
        iterations=params.num_iterations,
        regularization=params.lambda_,
        alpha=1.0,
        random_state=params.seed,
        use_gpu=False,
    )
    model.fit(ratings, show_progress=False)
    return np.asarray(model.user_factors), np.asarray(model.item_factors)


def _parse_categories(value) -> Optional[Tuple[str, ...]]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    if isinstance(value, str):
        parts = [c.strip() for c in value.split("|") if c.strip()]
        return tuple(parts)
    return tuple(str(c) for c in value)


def gen_ratings(
    view_events: pd.DataFrame,
    user_index: BiMap,
    item_index: BiMap,
) -> csr_matrix:
    """
    Aggregate view events per (user, item) pair into a USER x ITEM count matrix.
    Events on unknown users or items are dropped.
    """
    known = view_events[
        view_events[USER_COL].astype(str).isin(set(user_index))
        & view_events[ITEM_COL].astype(str).isin(set(item_index))
    ]
    dropped = len(view_events) - len(known)
    if dropped:
        logger.warning(f"Dropped {dropped} view events on unknown users or items")

    counts = known.groupby([USER_COL, ITEM_COL]).size().reset_index(name="count")
    rows = counts[USER_COL].map(lambda u: user_index.to_index(str(u))).to_numpy()
    cols = counts[ITEM_COL].map(lambda i: item_index.to_index(str(i))).to_numpy()
    data = counts["count"].astype(np.float32).to_numpy()
    return csr_matrix((data, (rows, cols)), shape=(len(user_index), len(item_index)))


def train_default(like_events: pd.DataFrame, item_index: BiMap) -> Dict[int, int]:
    """Popularity count per item index, from like events."""
    if like_events is None or like_events.empty:
        return {}
    counts = like_events[ITEM_COL].astype(str).value_counts()
    return {item_index.to_index(i): int(c) for i, c in counts.items() if i in item_index}


def train(
    items: pd.DataFrame,
    view_events: pd.DataFrame,
    like_events: Optional[pd.DataFrame] = None,
    params: Optional[AlgorithmParams] = None,
    users: Optional[pd.DataFrame] = None,
    factorize: Factorizer = als_factorize,
) -> ECommModel:
    """
    Build an ECommModel from catalog items and interaction events.

    items: columns `item` and optional `categories` ("a|b" strings or lists)
    view_events / like_events: columns `user`, `item`
    users: optional column `user`; users seen in view events are always included
    """
    params = params or AlgorithmParams()
    like_events = like_events if like_events is not None else pd.DataFrame(columns=[USER_COL, ITEM_COL])

    logger.info(
        f"Item count: {len(items)} View Event count: {len(view_events)} "
        f"Like Event count: {len(like_events)}"
    )
    if view_events.empty:
        raise EmptyModelInputError("view events cannot be empty. Check the event export.")
    if items.empty:
        raise EmptyModelInputError("items cannot be empty. Check the item export.")

    user_ids = pd.concat([
        users[USER_COL] if users is not None else pd.Series(dtype=object),
        view_events[USER_COL],
    ]).astype(str).unique()
    if len(user_ids) == 0:
        raise EmptyModelInputError("users cannot be empty. Check the user export.")

    user_index = BiMap(sorted(user_ids))
    item_index = BiMap(items[ITEM_COL].astype(str))

    ratings = gen_ratings(view_events, user_index, item_index)
    # ALS cannot handle empty training data
    if ratings.nnz == 0:
        raise EmptyModelInputError(
            "ratings cannot be empty. Check that events reference valid user and item IDs."
        )

    user_f, item_f = factorize(ratings, params)
    if user_f.shape[1] != item_f.shape[1]:
        raise ValueError(f"user dim {user_f.shape[1]} != item dim {item_f.shape[1]}")
    rank = int(item_f.shape[1])

    # only rows/columns with at least one rating carry a learned vector
    user_has = np.diff(ratings.indptr) > 0
    item_has = np.asarray((ratings != 0).sum(axis=0)).ravel() > 0

    popular = train_default(like_events, item_index)
    categories = items["categories"] if "categories" in items.columns else [None] * len(items)

    product_models = {}
    for idx, cats in enumerate(categories):
        product_models[idx] = ProductModel(
            item=Item(categories=_parse_categories(cats)),
            features=item_f[idx] if item_has[idx] else None,
            # popularity may not cover every item
            count=popular.get(idx, 0),
        )

    user_features = {u: user_f[u] for u in range(len(user_index)) if user_has[u]}
    trained_users = BiMap(user_index.to_id(u) for u in sorted(user_features))
    user_features = {trained_users.to_index(user_index.to_id(u)): v for u, v in user_features.items()}

    model = ECommModel(
        rank=rank,
        user_features=user_features,
        product_models=product_models,
        user_index=trained_users,
        item_index=item_index,
        meta={
            "iterations": params.num_iterations,
            "regularization": params.lambda_,
            "seed": params.seed,
        },
    )
    logger.info(f"Trained {model}")
    return model
