# recommender/factory.py
"""Model artifact I/O and engine construction.

Artifact layout of one model directory:
    user_factors.npy   U x rank, rows aligned with users.json
    users.json         IDs of users that have a trained vector
    item_factors.npy   I x rank, rows aligned with items.json (zeros where absent)
    items.json         [{"id", "categories", "count", "has_features"}, ...]
    meta.json          {"type", "rank", "users", "items", ...}
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from recommender.config import AppConfig
from recommender.engine import PredictionEngine
from recommender.errors import ModelIntegrityError
from recommender.event_store import EventStore, InMemoryEventStore, ParquetEventStore
from recommender.model import BiMap, ECommModel, Item, ProductModel

logger = logging.getLogger(__name__)

MODEL_TYPE = "ECommALS"


def save_model(model: ECommModel, model_dir: Union[str, Path], meta: Optional[Dict[str, Any]] = None) -> Path:
    out = Path(model_dir)
    out.mkdir(parents=True, exist_ok=True)

    trained_users, user_rows = [], []
    for user_id in model.user_index:
        vec = model.user_features.get(model.user_index.to_index(user_id))
        if vec is not None:
            trained_users.append(user_id)
            user_rows.append(vec)
    user_f = np.vstack(user_rows) if user_rows else np.zeros((0, model.rank))

    item_ids = model.item_index.ids()
    item_f = np.zeros((len(item_ids), model.rank))
    items_meta = []
    for row, item_id in enumerate(item_ids):
        pm = model.product_models[model.item_index.to_index(item_id)]
        if pm.features is not None:
            item_f[row] = pm.features
        items_meta.append({
            "id": item_id,
            "categories": list(pm.item.categories) if pm.item.categories is not None else None,
            "count": int(pm.count),
            "has_features": pm.features is not None,
        })

    np.save(out / "user_factors.npy", user_f)
    np.save(out / "item_factors.npy", item_f)
    (out / "users.json").write_text(json.dumps(trained_users))
    (out / "items.json").write_text(json.dumps(items_meta))

    full_meta = {**model.meta, **(meta or {})}
    full_meta.update({
        "type": MODEL_TYPE,
        "rank": int(model.rank),
        **model.summary(),
    })
    (out / "meta.json").write_text(json.dumps(full_meta, indent=2))
    logger.info(f"Saved {model} to {out.resolve()}")
    return out


def load_model(model_dir: Union[str, Path]) -> ECommModel:
    src = Path(model_dir)
    meta = json.loads((src / "meta.json").read_text()) if (src / "meta.json").exists() else {}

    user_f = np.load(src / "user_factors.npy")
    item_f = np.load(src / "item_factors.npy")
    users = json.loads((src / "users.json").read_text())
    items_meta = json.loads((src / "items.json").read_text())

    rank = int(meta.get("rank", item_f.shape[1] if item_f.ndim == 2 else 0))
    if len(users) != user_f.shape[0] or len(items_meta) != item_f.shape[0]:
        raise ModelIntegrityError(
            f"Artifacts in {src} are out of sync: {len(users)} users vs {user_f.shape[0]} rows, "
            f"{len(items_meta)} items vs {item_f.shape[0]} rows"
        )

    user_index = BiMap(users)
    item_index = BiMap(m["id"] for m in items_meta)
    user_features = {row: user_f[row] for row in range(len(users))}
    product_models = {
        row: ProductModel(
            item=Item(categories=m.get("categories")),
            features=item_f[row] if m.get("has_features", True) else None,
            count=int(m.get("count", 0)),
        )
        for row, m in enumerate(items_meta)
    }
    model = ECommModel(
        rank=rank,
        user_features=user_features,
        product_models=product_models,
        user_index=user_index,
        item_index=item_index,
        meta=meta,
    )
    logger.info(f"Loaded {model} from {src}")
    return model


def model_dir_for(config: AppConfig, version: Optional[str] = None) -> Path:
    return Path(config.registry) / (version or config.model_version) / config.model_name


def build_event_store(config: AppConfig) -> EventStore:
    """Parquet snapshots when an events path exists, otherwise an empty in-memory store."""
    path = config.events_path or os.getenv("EVENTS_PATH")
    if path and Path(path).exists():
        return ParquetEventStore(path)
    logger.warning(f"Events path {path!r} not found; serving with an empty in-memory event store")
    return InMemoryEventStore()


def get_engine(
    config: AppConfig,
    store: Optional[EventStore] = None,
    engine_logger: Optional[logging.Logger] = None,
) -> PredictionEngine:
    return PredictionEngine(
        config.algorithm,
        store if store is not None else build_event_store(config),
        logger=engine_logger,
    )
