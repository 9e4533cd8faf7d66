import logging
from dataclasses import replace

import pytest

from recommender.constraints import ConstraintResolver, RECENT_EVENTS_LIMIT
from recommender.errors import MalformedEventError, StoreError
from recommender.event_store import InMemoryEventStore
from recommender.schemas import Query

APP = "ecomm"


@pytest.fixture
def unseen_params(params):
    return replace(params, unseen_only=True)


def _unavailable(event_factory, items, minutes=0):
    return event_factory("$set", "unavailableItems", entity_type="constraint",
                         properties={"items": items}, minutes=minutes)


def test_exclusions_default_to_black_list(store, params):
    resolver = ConstraintResolver(store, params)
    assert resolver.resolve_exclusions(Query(user="u1", num=3, blackList={"i9"})) == {"i9"}
    assert resolver.resolve_exclusions(Query(user="u1", num=3)) == set()


def test_seen_items_only_when_unseen_only(store, params, unseen_params, event_factory):
    store.insert(APP, event_factory("view", "u1", "i1"))
    store.insert(APP, event_factory("buy", "u1", "i2"))
    store.insert(APP, event_factory("like", "u1", "i3"))
    query = Query(user="u1", num=3)

    assert ConstraintResolver(store, params).resolve_exclusions(query) == set()
    assert ConstraintResolver(store, unseen_params).resolve_exclusions(query) == {"i1", "i2"}


def test_latest_unavailable_items_win(store, params, event_factory):
    store.insert(APP, _unavailable(event_factory, ["i1", "i2"], minutes=1))
    store.insert(APP, _unavailable(event_factory, ["i5"], minutes=10))
    resolver = ConstraintResolver(store, params)
    assert resolver.resolve_exclusions(Query(user="u1", num=3, blackList={"i0"})) == {"i0", "i5"}


def test_union_of_all_sources(store, unseen_params, event_factory):
    store.insert(APP, event_factory("view", "u1", "seen"))
    store.insert(APP, _unavailable(event_factory, ["gone"]))
    resolver = ConstraintResolver(store, unseen_params)
    assert resolver.resolve_exclusions(Query(user="u1", num=3, blackList={"black"})) == {"black", "seen", "gone"}


def test_unavailable_without_items_property_is_fatal(store, params, event_factory):
    store.insert(APP, event_factory("$set", "unavailableItems", entity_type="constraint", properties={}))
    with pytest.raises(StoreError):
        ConstraintResolver(store, params).resolve_exclusions(Query(user="u1", num=3))


def test_timeout_fails_open(slow_store, unseen_params, caplog):
    resolver = ConstraintResolver(slow_store, unseen_params, timeout=0.05)
    with caplog.at_level(logging.ERROR):
        result = resolver.resolve_exclusions(Query(user="u1", num=3, blackList={"i1"}))
    assert result == {"i1"}
    assert "Timeout" in caplog.text


def test_store_error_propagates(failing_store, unseen_params):
    resolver = ConstraintResolver(failing_store, unseen_params, timeout=1.0)
    with pytest.raises(StoreError) as exc:
        resolver.resolve_exclusions(Query(user="u1", num=3))
    assert isinstance(exc.value.__cause__, ConnectionError)


def test_store_error_on_unavailable_read_even_without_unseen(failing_store, params):
    with pytest.raises(StoreError):
        ConstraintResolver(failing_store, params, timeout=1.0).resolve_exclusions(Query(user="u1", num=3))


def test_event_without_target_is_malformed(store, unseen_params, event_factory):
    bad = replace(event_factory("view", "u1", "i1"), target_entity_id=None)
    store.insert(APP, bad)
    with pytest.raises(MalformedEventError):
        ConstraintResolver(store, unseen_params).resolve_exclusions(Query(user="u1", num=3))


def test_recent_items_limited_to_latest(store, params, event_factory):
    for k in range(RECENT_EVENTS_LIMIT + 5):
        store.insert(APP, event_factory("view", "u1", f"i{k}", minutes=k))
    store.insert(APP, event_factory("buy", "u1", "bought", minutes=100))
    recent = ConstraintResolver(store, params).recent_items(Query(user="u1", num=3))
    assert recent == {f"i{k}" for k in range(5, RECENT_EVENTS_LIMIT + 5)}


def test_recent_event_without_target_is_malformed(store, params, event_factory):
    store.insert(APP, event_factory("view", "u1", "i1", minutes=1))
    store.insert(APP, replace(event_factory("view", "u1", "i2", minutes=2), target_entity_id=None))
    with pytest.raises(MalformedEventError):
        ConstraintResolver(store, params).recent_items(Query(user="u1", num=3))


def test_recent_items_timeout_is_empty(slow_store, params):
    resolver = ConstraintResolver(slow_store, params, timeout=0.05)
    assert resolver.recent_items(Query(user="u1", num=3)) == set()


def test_recent_items_store_error(failing_store, params):
    with pytest.raises(StoreError):
        ConstraintResolver(failing_store, params, timeout=1.0).recent_items(Query(user="u1", num=3))


def test_default_timeout_comes_from_params(params):
    resolver = ConstraintResolver(InMemoryEventStore(), params)
    assert resolver.timeout == pytest.approx(0.2)
