import json
import subprocess
import sys
from pathlib import Path

import pandas as pd
import pytest

from recommender.event_store import ParquetEventStore
from recommender.factory import load_model
from scripts import import_events, train_als


def test_import_events_help():
    result = subprocess.run(
        [sys.executable, str(Path(__file__).resolve().parents[1] / "scripts" / "import_events.py"), "--help"],
        capture_output=True, text=True
    )
    assert "parquet event store" in result.stdout.lower()


def test_import_events_from_csv(tmp_path):
    src = tmp_path / "events.csv"
    pd.DataFrame([
        {"event": "view", "entity_type": "user", "entity_id": "u1", "target_entity_type": "item",
         "target_entity_id": "i1", "properties": None, "event_time": "2024-01-01T00:00:00"},
        {"event": "view", "entity_type": "user", "entity_id": "u1", "target_entity_type": "item",
         "target_entity_id": "i2", "properties": '{"source": "app"}', "event_time": "2024-01-01T00:00:00.000250"},
    ]).to_csv(src, index=False)

    import_events.main(["--input", str(src), "--events-path", str(tmp_path / "store"), "--app-name", "shop"])

    store = ParquetEventStore(tmp_path / "store")
    events = list(store.find_by_entity(app_name="shop", entity_type="user", entity_id="u1", latest=True))
    assert [e.target_entity_id for e in events] == ["i2", "i1"]
    assert events[0].properties == {"source": "app"}


def test_import_events_rejects_missing_columns(tmp_path):
    src = tmp_path / "events.csv"
    pd.DataFrame([{"event": "view", "entity_id": "u1"}]).to_csv(src, index=False)
    with pytest.raises(ValueError):
        import_events.main(["--input", str(src), "--events-path", str(tmp_path), "--app-name", "shop"])


def test_import_unavailable_items(tmp_path):
    import_events.main(["--unavailable", "i3, i7", "--events-path", str(tmp_path), "--app-name", "shop"])

    store = ParquetEventStore(tmp_path)
    (event,) = store.find_by_entity(app_name="shop", entity_type="constraint", entity_id="unavailableItems")
    assert event.event == "$set"
    assert event.properties == {"items": ["i3", "i7"]}


def test_train_writes_registry_version(tmp_path):
    items = tmp_path / "items.csv"
    events = tmp_path / "events.csv"
    pd.DataFrame({"item": ["i1", "i2", "i3"], "categories": ["a|b", "a", None]}).to_csv(items, index=False)
    pd.DataFrame({
        "event": ["view", "view", "view", "like"],
        "user": ["u1", "u1", "u2", "u2"],
        "item": ["i1", "i2", "i2", "i1"],
    }).to_csv(events, index=False)
    config = tmp_path / "config.yaml"
    config.write_text("base:\n  algorithm:\n    rank: 3\n    num_iterations: 2\n    seed: 1\n")

    train_als.main(["--items", str(items), "--events", str(events), "--config", str(config),
                    "--registry", str(tmp_path / "registry"), "--version", "v7"])

    model = load_model(tmp_path / "registry" / "v7" / "ecomm")
    assert model.rank == 3
    assert model.product_models[0].count == 1
    meta = json.loads((tmp_path / "registry" / "v7" / "meta.json").read_text())
    assert meta["version"] == "v7"
    assert "git_sha" in meta
