# scripts/train_als.py
"""Train an ECommModel and write it into the model registry.

Usage example:
    python scripts/train_als.py \
        --items data/items.csv \
        --events data/events.csv \
        --version v0.2

`--items` needs an `item` column and an optional `categories` column
("electronics|phones"). `--events` needs `event`, `user` and `item`
columns; "view" rows train the factorization and "like" rows feed the
popularity fallback.
"""
from __future__ import annotations

import argparse
import json
import subprocess
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from recommender.config import load_config  # noqa: E402
from recommender.factory import model_dir_for, save_model  # noqa: E402
from recommender.logger import get_logger  # noqa: E402
from recommender.training import train  # noqa: E402


def _read_table(path: str) -> pd.DataFrame:
    if path.endswith(".parquet"):
        return pd.read_parquet(path)
    return pd.read_csv(path)


def _git_sha() -> str:
    try:
        return subprocess.check_output(["git", "rev-parse", "HEAD"], text=True).strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Train the e-commerce recommender")
    ap.add_argument("--items", required=True, help="Items CSV/parquet")
    ap.add_argument("--events", required=True, help="Interaction events CSV/parquet")
    ap.add_argument("--config", default=None, help="Config YAML (defaults to config.yaml / RECS_CONFIG)")
    ap.add_argument("--registry", default=None, help="Model registry root (overrides config)")
    ap.add_argument("--version", default=None, help="Version directory name (overrides config)")
    ap.add_argument("--view-event", default="view")
    ap.add_argument("--like-event", default="like")
    return ap.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    cfg = load_config(args.config)
    logger = get_logger("ecomm-recs.train", cfg.log_level)

    items = _read_table(args.items)
    events = _read_table(args.events)
    view_events = events[events["event"] == args.view_event]
    like_events = events[events["event"] == args.like_event]

    model = train(items, view_events, like_events, params=cfg.algorithm)

    if args.registry:
        cfg = replace(cfg, registry=args.registry)
    version = args.version or cfg.model_version
    out = save_model(model, model_dir_for(cfg, version))

    version_meta = {
        "version": version,
        "git_sha": _git_sha(),
        "trained_at": datetime.now(timezone.utc).isoformat(),
        "items_path": args.items,
        "events_path": args.events,
    }
    (out.parent / "meta.json").write_text(json.dumps(version_meta, indent=2))
    logger.info(f"Saved artifacts to: {out.resolve()}")


if __name__ == "__main__":
    main()
