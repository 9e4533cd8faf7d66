import random

import pytest

from recommender.topn import merge_top_n, top_n


def test_returns_descending_and_bounded():
    scored = [("a", 1.0), ("b", 5.0), ("c", 3.0), ("d", 4.0), ("e", 2.0)]
    assert top_n(scored, 3) == [("b", 5.0), ("d", 4.0), ("c", 3.0)]


def test_n_larger_than_input():
    assert top_n([("a", 1.0), ("b", 2.0)], 10) == [("b", 2.0), ("a", 1.0)]


@pytest.mark.parametrize("n", [0, -1])
def test_non_positive_n_is_empty(n):
    assert top_n([("a", 1.0)], n) == []


def test_empty_input():
    assert top_n([], 5) == []


def test_matches_full_sort_on_random_input():
    """The selection holds exactly the true top-n scores, in order."""
    rng = random.Random(42)
    for _ in range(50):
        m = rng.randint(0, 200)
        n = rng.randint(1, 30)
        scored = [(i, rng.uniform(-10, 10)) for i in range(m)]
        got = top_n(scored, n)
        expected = sorted(scored, key=lambda x: x[1], reverse=True)[:n]
        assert len(got) == min(n, m)
        assert [s for _, s in got] == [s for _, s in expected]
        assert set(got) <= set(scored)


def test_ties_do_not_evict_held_element():
    got = top_n([("first", 1.0), ("second", 1.0)], 1)
    assert got == [("first", 1.0)]


def test_ties_keep_scores_correct():
    scored = [("a", 2.0), ("b", 2.0), ("c", 2.0), ("d", 1.0)]
    got = top_n(scored, 2)
    assert [s for _, s in got] == [2.0, 2.0]
    assert {k for k, _ in got} <= {"a", "b", "c"}


def test_unorderable_keys_are_fine():
    """Keys are never compared, even on tied scores."""
    k1, k2 = object(), object()
    got = top_n([(k1, 1.0), (k2, 1.0)], 2)
    assert {id(k) for k, _ in got} == {id(k1), id(k2)}


def test_merge_partials():
    parts = [[("a", 9.0), ("b", 1.0)], [("c", 5.0)], []]
    assert merge_top_n(parts, 2) == [("a", 9.0), ("c", 5.0)]
