# scripts/import_events.py
"""Append events to the parquet event store read by the service.

Usage examples:
    python scripts/import_events.py --input data/events.csv
    python scripts/import_events.py --unavailable i3,i7

`--input` (CSV, JSON lines or parquet) needs `event`, `entity_type` and
`entity_id` columns; `target_entity_type`, `target_entity_id`,
`properties` (a JSON object string) and `event_time` (ISO-8601, UTC when
no offset is given) are optional. `--unavailable` writes a `$set` event on
the unavailableItems constraint, replacing the previous list.

Each run writes one new snapshot file; the running service picks it up on
its next store read.
"""
from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List

import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from recommender.config import load_config  # noqa: E402
from recommender.constraints import CONSTRAINT_ENTITY_TYPE, SET_EVENT, UNAVAILABLE_ITEMS_ID  # noqa: E402
from recommender.event_store import Event, write_snapshot  # noqa: E402
from recommender.logger import get_logger  # noqa: E402


def _read_table(path: str) -> pd.DataFrame:
    if path.endswith(".parquet"):
        return pd.read_parquet(path)
    if path.endswith(".jsonl") or path.endswith(".json"):
        return pd.read_json(path, lines=True, dtype=False)
    return pd.read_csv(path, dtype=str)


def _optional(row: dict, key: str):
    value = row.get(key)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    return value


def _event_time(value) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.to_pydatetime()


def rows_to_events(df: pd.DataFrame) -> List[Event]:
    missing = {"event", "entity_type", "entity_id"} - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    events = []
    for row in df.to_dict(orient="records"):
        props = _optional(row, "properties")
        if isinstance(props, str):
            props = json.loads(props)
        target_id = _optional(row, "target_entity_id")
        target_type = _optional(row, "target_entity_type")
        events.append(Event(
            event=str(row["event"]),
            entity_type=str(row["entity_type"]),
            entity_id=str(row["entity_id"]),
            target_entity_type=str(target_type) if target_type is not None else None,
            target_entity_id=str(target_id) if target_id is not None else None,
            properties=props or {},
            event_time=_event_time(_optional(row, "event_time")),
        ))
    return events


def unavailable_event(items: List[str]) -> Event:
    return Event(
        event=SET_EVENT,
        entity_type=CONSTRAINT_ENTITY_TYPE,
        entity_id=UNAVAILABLE_ITEMS_ID,
        properties={"items": items},
    )


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Import events into the parquet event store")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--input", help="Events CSV/JSONL/parquet")
    src.add_argument("--unavailable", help="Comma-separated item IDs to mark unavailable ('' clears)")
    ap.add_argument("--config", default=None, help="Config YAML (defaults to config.yaml / RECS_CONFIG)")
    ap.add_argument("--events-path", default=None, help="Event store root (overrides config)")
    ap.add_argument("--app-name", default=None, help="App name (overrides config)")
    return ap.parse_args(argv)


def main(argv=None) -> Path:
    args = parse_args(argv)
    cfg = load_config(args.config)
    logger = get_logger("ecomm-recs.import", cfg.log_level)

    root = args.events_path or cfg.events_path
    if not root:
        raise SystemExit("No events path configured; pass --events-path")
    app_name = args.app_name or cfg.algorithm.app_name

    if args.unavailable is not None:
        items = [i.strip() for i in args.unavailable.split(",") if i.strip()]
        events = [unavailable_event(items)]
    else:
        events = rows_to_events(_read_table(args.input))

    out = write_snapshot(events, root, app_name)
    logger.info(f"Imported {len(events)} events for app {app_name} into {out}")
    return out


if __name__ == "__main__":
    main()
