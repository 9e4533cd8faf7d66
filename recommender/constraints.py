# recommender/constraints.py
"""Per-request exclusion and recent-item lookups against the event store.

Every read is bounded by the configured timeout. A timeout degrades the
result to an empty set (fail open); any other store failure, or an event
without a target item, fails the request.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from recommender.config import AlgorithmParams
from recommender.errors import MalformedEventError, StoreError
from recommender.event_store import Event, EventStore, StoreFailure, StoreTimeout, find_events
from recommender.schemas import Query

USER_ENTITY_TYPE = "user"
ITEM_ENTITY_TYPE = "item"
CONSTRAINT_ENTITY_TYPE = "constraint"
UNAVAILABLE_ITEMS_ID = "unavailableItems"
SET_EVENT = "$set"
RECENT_EVENTS_LIMIT = 10


class ConstraintResolver:
    def __init__(
        self,
        store: EventStore,
        params: AlgorithmParams,
        logger: Optional[logging.Logger] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.params = params
        self.logger = logger or logging.getLogger(__name__)
        self.timeout = params.store_timeout if timeout is None else timeout

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _read(self, what: str, **query) -> List[Event]:
        outcome = find_events(self.store, timeout=self.timeout, app_name=self.params.app_name, **query)
        if isinstance(outcome, StoreTimeout):
            self.logger.error(
                f"Timeout when read {what} ({self.timeout * 1000:.0f}ms). Empty list is used."
            )
            return []
        if isinstance(outcome, StoreFailure):
            self.logger.error(f"Error when read {what}: {outcome.cause!r}")
            raise StoreError(f"Error when read {what}: {outcome.cause}") from outcome.cause
        return outcome.events

    def _target_items(self, events: Iterable[Event]) -> Set[str]:
        items = set()
        for event in events:
            if event.target_entity_id is None:
                self.logger.error(f"Can't get targetEntityId of event {event}.")
                raise MalformedEventError(f"Event {event.event!r} of {event.entity_type} "
                                          f"{event.entity_id} has no target entity id")
            items.add(event.target_entity_id)
        return items

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def seen_items(self, query: Query) -> Set[str]:
        """Items the user already interacted with through a "seen" event."""
        events = self._read(
            "seen events",
            entity_type=USER_ENTITY_TYPE,
            entity_id=query.user,
            event_names=list(self.params.seen_events),
            target_entity_type=ITEM_ENTITY_TYPE,
        )
        return self._target_items(events)

    def unavailable_items(self) -> Set[str]:
        """Items listed by the latest ``$set`` on the unavailableItems constraint."""
        events = self._read(
            "set unavailableItems event",
            entity_type=CONSTRAINT_ENTITY_TYPE,
            entity_id=UNAVAILABLE_ITEMS_ID,
            event_names=[SET_EVENT],
            limit=1,
            latest=True,
        )
        if not events:
            return set()
        items = events[0].properties.get("items")
        if not isinstance(items, (list, tuple, set)):
            self.logger.error(f"unavailableItems constraint has no usable 'items' property: {events[0]}")
            raise StoreError("unavailableItems constraint event is missing an 'items' list")
        return {str(i) for i in items}

    def resolve_exclusions(self, query: Query) -> Set[str]:
        """Union of the query black list, seen items and unavailable items."""
        seen = self.seen_items(query) if self.params.unseen_only else set()
        unavailable = self.unavailable_items()
        return set(query.black_list or ()) | seen | unavailable

    def recent_items(self, query: Query) -> Set[str]:
        """Items from the user's latest similar-item events."""
        events = self._read(
            "recent events",
            entity_type=USER_ENTITY_TYPE,
            entity_id=query.user,
            event_names=list(self.params.similar_events),
            target_entity_type=ITEM_ENTITY_TYPE,
            limit=RECENT_EVENTS_LIMIT,
            latest=True,
        )
        return self._target_items(events)
