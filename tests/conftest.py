"""Shared fixtures: a two-item toy model and store helpers."""
import time
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from recommender.config import AlgorithmParams
from recommender.event_store import Event, InMemoryEventStore
from recommender.model import BiMap, ECommModel, Item, ProductModel

APP = "ecomm"
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_event(event, entity_id, target=None, entity_type="user", target_type="item",
               properties=None, minutes=0):
    return Event(
        event=event,
        entity_type=entity_type,
        entity_id=entity_id,
        target_entity_type=target_type if target is not None else None,
        target_entity_id=target,
        properties=properties or {},
        event_time=T0 + timedelta(minutes=minutes),
    )


class SlowStore:
    """Store whose reads take longer than any reasonable timeout."""

    def __init__(self, delay=1.0):
        self.delay = delay

    def find_by_entity(self, **kwargs):
        time.sleep(self.delay)
        return iter([])


class FailingStore:
    def __init__(self, exc=None):
        self.exc = exc or ConnectionError("store unreachable")

    def find_by_entity(self, **kwargs):
        raise self.exc


@pytest.fixture
def params():
    return AlgorithmParams(app_name=APP, unseen_only=False, seen_events=["buy", "view"],
                           similar_events=["view"], rank=2)


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def toy_model():
    """rank=2, u1=[1,0]; i1=[1,0] count 5, i2=[0,1] count 10."""
    return ECommModel(
        rank=2,
        user_features={0: np.array([1.0, 0.0])},
        product_models={
            0: ProductModel(item=Item(), features=np.array([1.0, 0.0]), count=5),
            1: ProductModel(item=Item(), features=np.array([0.0, 1.0]), count=10),
        },
        user_index=BiMap(["u1"]),
        item_index=BiMap(["i1", "i2"]),
    )


@pytest.fixture
def catalog_model():
    """Five items with categories, one without a trained vector."""
    return ECommModel(
        rank=2,
        user_features={0: np.array([1.0, 1.0])},
        product_models={
            0: ProductModel(item=Item(categories=["phones"]), features=np.array([1.0, 0.0]), count=3),
            1: ProductModel(item=Item(categories=["phones", "cases"]), features=np.array([0.8, 0.6]), count=7),
            2: ProductModel(item=Item(categories=["laptops"]), features=np.array([0.0, 1.0]), count=1),
            3: ProductModel(item=Item(), features=np.array([-1.0, -1.0]), count=0),
            4: ProductModel(item=Item(categories=["phones"]), features=None, count=20),
        },
        user_index=BiMap(["alice"]),
        item_index=BiMap(["p1", "p2", "p3", "p4", "p5"]),
    )


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def slow_store():
    return SlowStore(delay=1.0)


@pytest.fixture
def failing_store():
    return FailingStore()
