# recommender/model.py
"""In-memory representation of a trained recommendation model.

The model is built once (by training or by loading artifacts) and shared
read-only between concurrent requests. Feature vectors are frozen numpy
arrays so nothing on the serving path can mutate them in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from recommender.errors import ModelIntegrityError


@dataclass(frozen=True)
class Item:
    """Catalog item metadata. ``categories is None`` means no category data."""
    categories: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.categories is not None and not isinstance(self.categories, tuple):
            object.__setattr__(self, "categories", tuple(self.categories))


@dataclass(frozen=True)
class ProductModel:
    """An item together with its trained vector and popularity count.

    ``features`` is ``None`` when the factorization never saw the item.
    """
    item: Item
    features: Optional[np.ndarray] = None
    count: int = 0


class BiMap:
    """Bidirectional mapping between external string IDs and dense indices."""

    def __init__(self, ids: Iterable[str]):
        self._ids: List[str] = []
        self._index: Dict[str, int] = {}
        for raw in ids:
            key = str(raw)
            if key in self._index:
                raise ValueError(f"Duplicate id {key!r} in BiMap")
            self._index[key] = len(self._ids)
            self._ids.append(key)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def to_index(self, key: str) -> Optional[int]:
        return self._index.get(key)

    def to_id(self, index: int) -> str:
        return self._ids[index]

    def indices(self, keys: Iterable[str]) -> set[int]:
        """Map IDs to indices, dropping IDs the map does not know."""
        return {self._index[k] for k in keys if k in self._index}

    def ids(self) -> List[str]:
        return list(self._ids)


def _frozen(vector: Sequence[float]) -> np.ndarray:
    arr = np.array(vector, dtype=np.float64)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class ItemMatrix:
    """The catalog as row-aligned arrays for vectorized scoring.

    Row ``r`` describes item index ``indices[r]``. Rows of items without a
    trained vector hold zeros in ``factors`` and False in ``has_features``.
    """
    indices: np.ndarray
    items: Tuple[Item, ...]
    factors: np.ndarray
    has_features: np.ndarray
    norms: np.ndarray
    counts: np.ndarray

    def __len__(self) -> int:
        return len(self.indices)

    @classmethod
    def from_product_models(cls, product_models: Mapping[int, ProductModel], rank: int) -> "ItemMatrix":
        keys = sorted(product_models)
        factors = np.zeros((len(keys), rank), dtype=np.float64)
        has_features = np.zeros(len(keys), dtype=bool)
        for row, i in enumerate(keys):
            features = product_models[i].features
            if features is not None:
                factors[row] = features
                has_features[row] = True

        arrays = {
            "indices": np.array(keys, dtype=np.int64),
            "factors": factors,
            "has_features": has_features,
            "norms": np.linalg.norm(factors, axis=1),
            "counts": np.array([product_models[i].count for i in keys], dtype=np.float64),
        }
        for arr in arrays.values():
            arr.setflags(write=False)
        return cls(items=tuple(product_models[i].item for i in keys), **arrays)


@dataclass(frozen=True)
class ECommModel:
    """Trained artifact consumed by the prediction engine.

    Attributes:
        rank: dimensionality shared by every feature vector.
        user_features: user index -> vector, only for users seen in training.
        product_models: item index -> ProductModel, for every catalog item.
        user_index: user ID <-> user index.
        item_index: item ID <-> item index.
        item_matrix: product models as arrays, derived at construction.
    """
    rank: int
    user_features: Mapping[int, np.ndarray]
    product_models: Mapping[int, ProductModel]
    user_index: BiMap
    item_index: BiMap
    meta: Dict[str, object] = field(default_factory=dict)
    item_matrix: ItemMatrix = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.rank <= 0:
            raise ModelIntegrityError(f"rank must be positive, got {self.rank}")

        users = {}
        for u, vec in self.user_features.items():
            users[u] = self._checked(vec, f"user {u}")
        products = {}
        for i, pm in self.product_models.items():
            if pm.features is not None:
                pm = ProductModel(item=pm.item, features=self._checked(pm.features, f"item {i}"), count=pm.count)
            products[i] = pm

        object.__setattr__(self, "user_features", users)
        object.__setattr__(self, "product_models", products)
        object.__setattr__(self, "item_matrix", ItemMatrix.from_product_models(products, self.rank))

    def _checked(self, vector: Sequence[float], owner: str) -> np.ndarray:
        arr = _frozen(vector)
        if arr.ndim != 1 or arr.shape[0] != self.rank:
            raise ModelIntegrityError(
                f"Feature vector of {owner} has shape {arr.shape}, expected ({self.rank},)"
            )
        return arr

    def user_feature(self, user_id: str) -> Optional[np.ndarray]:
        idx = self.user_index.to_index(user_id)
        if idx is None:
            return None
        return self.user_features.get(idx)

    def summary(self) -> Dict[str, int]:
        with_features = sum(1 for pm in self.product_models.values() if pm.features is not None)
        return {
            "rank": self.rank,
            "users": len(self.user_features),
            "items": len(self.product_models),
            "items_with_features": with_features,
        }

    def __str__(self) -> str:
        s = self.summary()
        return (
            f"ECommModel(rank={s['rank']}, users={s['users']}, "
            f"items={s['items']} ({s['items_with_features']} with features))"
        )
