# recommender/event_store.py
"""Read side of the event store used for live exclusion constraints.

The engine only ever reads events: a user's seen/recent items and the
latest "unavailable items" constraint. Reads are blocking calls, so
``find_events`` runs them on a worker thread with a deadline and reports
the result as a tagged outcome (success, timeout or failure) instead of
raising, which lets callers branch on timeouts explicitly.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from concurrent import futures
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple, Union

import pandas as pd

from recommender.errors import StoreError
from recommender.schemas import EVENT_SCHEMA, validate_event_record

UTC = timezone.utc
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 0.2

# Shared pool for bounded store reads. A read that overruns its deadline
# keeps its worker until the store returns; the request does not wait for it.
_STORE_POOL = futures.ThreadPoolExecutor(max_workers=16, thread_name_prefix="event-store")


def _to_micros(ts: datetime) -> int:
    # naive timestamps are taken as UTC
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return (ts - EPOCH) // timedelta(microseconds=1)


@dataclass(frozen=True)
class Event:
    event: str
    entity_type: str
    entity_id: str
    target_entity_type: Optional[str] = None
    target_entity_id: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    event_time: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_record(self) -> Dict[str, Any]:
        """Flatten into the Avro/parquet record layout."""
        return {
            "event": self.event,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "target_entity_type": self.target_entity_type,
            "target_entity_id": self.target_entity_id,
            "properties": json.dumps(self.properties, sort_keys=True),
            "event_time": _to_micros(self.event_time),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Event":
        return cls(
            event=record["event"],
            entity_type=record["entity_type"],
            entity_id=record["entity_id"],
            target_entity_type=record.get("target_entity_type"),
            target_entity_id=record.get("target_entity_id"),
            properties=json.loads(record.get("properties") or "{}"),
            event_time=EPOCH + timedelta(microseconds=record["event_time"]),
        )


class EventStore(Protocol):
    def find_by_entity(
        self,
        app_name: str,
        entity_type: str,
        entity_id: str,
        event_names: Optional[Sequence[str]] = None,
        target_entity_type: Optional[str] = None,
        limit: Optional[int] = None,
        latest: bool = False,
    ) -> Iterator[Event]:
        ...


# -------------------------------------------------------------------------
# Tagged outcome of a bounded read
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class StoreSuccess:
    events: List[Event]


@dataclass(frozen=True)
class StoreTimeout:
    timeout: float


@dataclass(frozen=True)
class StoreFailure:
    cause: BaseException


StoreOutcome = Union[StoreSuccess, StoreTimeout, StoreFailure]


def find_events(
    store: EventStore,
    timeout: float = DEFAULT_TIMEOUT_SEC,
    executor: Optional[futures.Executor] = None,
    **query: Any,
) -> StoreOutcome:
    """Run ``store.find_by_entity(**query)`` with a deadline.

    The iterator is drained on the worker thread, so the deadline covers the
    whole read and not only the call that opens it.
    """
    pool = executor or _STORE_POOL
    future = pool.submit(lambda: list(store.find_by_entity(**query)))
    try:
        return StoreSuccess(future.result(timeout=timeout))
    except (futures.TimeoutError, TimeoutError):
        future.cancel()
        return StoreTimeout(timeout)
    except Exception as e:
        return StoreFailure(e)


def _select(
    events: Iterable[Event],
    entity_type: str,
    entity_id: str,
    event_names: Optional[Sequence[str]],
    target_entity_type: Optional[str],
    limit: Optional[int],
    latest: bool,
) -> List[Event]:
    names = set(event_names) if event_names is not None else None
    matched = [
        e for e in events
        if e.entity_type == entity_type
        and e.entity_id == entity_id
        and (names is None or e.event in names)
        and (target_entity_type is None or e.target_entity_type == target_entity_type)
    ]
    matched.sort(key=lambda e: e.event_time, reverse=latest)
    if limit is not None and limit >= 0:
        matched = matched[:limit]
    return matched


class InMemoryEventStore:
    """List-backed store, partitioned by app name."""

    def __init__(self, events: Optional[Dict[str, List[Event]]] = None):
        self._lock = threading.Lock()
        self._events: Dict[str, List[Event]] = {k: list(v) for k, v in (events or {}).items()}

    def insert(self, app_name: str, event: Event) -> None:
        with self._lock:
            self._events.setdefault(app_name, []).append(event)

    def find_by_entity(
        self,
        app_name: str,
        entity_type: str,
        entity_id: str,
        event_names: Optional[Sequence[str]] = None,
        target_entity_type: Optional[str] = None,
        limit: Optional[int] = None,
        latest: bool = False,
    ) -> Iterator[Event]:
        with self._lock:
            snapshot = list(self._events.get(app_name, []))
        return iter(_select(snapshot, entity_type, entity_id, event_names, target_entity_type, limit, latest))


# (path, mtime_ns, size) identifies one version of a snapshot file
FileKey = Tuple[Path, int, int]


class ParquetEventStore:
    """Reads event snapshots from ``<root>/<app_name>/*.parquet``.

    Every read lists the app directory and compares file mtimes and sizes
    with what is cached: new or rewritten files are loaded, deleted files
    are dropped, unchanged files are served from memory. Snapshots written
    while the service runs are visible on the next read. Every row is
    validated against the Avro event schema when its file is loaded.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._lock = threading.Lock()
        self._files: Dict[str, Dict[Path, Tuple[FileKey, List[Event]]]] = {}
        self._merged: Dict[str, List[Event]] = {}

    def _listing(self, app_name: str) -> Dict[Path, FileKey]:
        app_dir = self.root / app_name
        if not app_dir.exists():
            return {}
        listing = {}
        for f in sorted(app_dir.glob("*.parquet")):
            st = f.stat()
            listing[f] = (f, st.st_mtime_ns, st.st_size)
        return listing

    def _load_file(self, path: Path) -> List[Event]:
        df = pd.read_parquet(path)
        df = df.astype(object).where(pd.notna(df), None)

        events: List[Event] = []
        for record in df.to_dict(orient="records"):
            if record.get("event_time") is not None:
                record["event_time"] = int(record["event_time"])
            if not validate_event_record(record):
                raise StoreError(f"Invalid event record in {path}: {record}")
            events.append(Event.from_record(record))
        logger.info(f"Loaded {len(events)} events from {path}")
        return events

    def _events_for(self, app_name: str) -> List[Event]:
        with self._lock:
            cached = self._files.setdefault(app_name, {})
            listing = self._listing(app_name)

            changed = False
            for path in [p for p in cached if p not in listing]:
                del cached[path]
                changed = True
            for path, key in listing.items():
                entry = cached.get(path)
                if entry is None or entry[0] != key:
                    cached[path] = (key, self._load_file(path))
                    changed = True

            if changed or app_name not in self._merged:
                if not listing:
                    logger.warning(f"No event snapshots found under {self.root / app_name}")
                self._merged[app_name] = [e for path in sorted(cached) for e in cached[path][1]]
            return self._merged[app_name]

    def find_by_entity(
        self,
        app_name: str,
        entity_type: str,
        entity_id: str,
        event_names: Optional[Sequence[str]] = None,
        target_entity_type: Optional[str] = None,
        limit: Optional[int] = None,
        latest: bool = False,
    ) -> Iterator[Event]:
        events = self._events_for(app_name)
        return iter(_select(events, entity_type, entity_id, event_names, target_entity_type, limit, latest))


def write_snapshot(events: Iterable[Event], root: Union[str, Path], app_name: str) -> Path:
    """Write events as one parquet snapshot file for ``app_name``."""
    app_dir = Path(root) / app_name
    app_dir.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame([e.to_record() for e in events], columns=[f["name"] for f in EVENT_SCHEMA["fields"]])
    now = datetime.now(UTC)
    output_path = app_dir / f"events_{now.strftime('%Y%m%d_%H%M%S_%f')}_{uuid.uuid4().hex[:8]}.parquet"
    df.to_parquet(output_path, index=False)
    logger.info(f"Wrote {len(df)} events to {output_path}")
    return output_path
