import random
from collections import Counter

import pytest

from turnspit import KeyPool, MissingCredentials, parse_keys


def test_parse_splits_newlines_and_commas():
    assert parse_keys("a, b\nc,,\n  d  ") == ("a", "b", "c", "d")


def test_parse_blank_input_is_empty():
    assert parse_keys("") == ()
    assert parse_keys(None) == ()
    assert parse_keys("   \n, ,") == ()


def test_parse_drops_duplicates_keeping_first():
    assert parse_keys("b\na\nb") == ("b", "a")


def test_coerce_accepts_strings_iterables_and_pools():
    pool = KeyPool.coerce(["a,b", "c"])
    assert pool.keys == ("a", "b", "c")
    assert KeyPool.coerce(pool) is pool
    assert len(KeyPool.coerce(None)) == 0


def test_select_random_on_empty_pool_raises():
    with pytest.raises(MissingCredentials):
        KeyPool().select_random()


def test_exclude_returns_new_pool():
    pool = KeyPool.from_string("a\nb\nc")
    smaller = pool.exclude("b")
    assert smaller.keys == ("a", "c")
    assert pool.keys == ("a", "b", "c")
    assert "b" not in smaller


def test_selection_is_uniform():
    pool = KeyPool.from_string("k0,k1,k2,k3")
    rng = random.Random(1234)
    counts = Counter(pool.select_random(rng) for _ in range(8000))
    assert set(counts) == {"k0", "k1", "k2", "k3"}
    for n in counts.values():
        # expected 2000 each
        assert 1800 < n < 2200  # noqa: PLR2004


def test_from_env(monkeypatch):
    monkeypatch.setenv("GEMINI_KEYS", "g1\ng2")
    pool = KeyPool.from_env(names=["GEMINI_KEYS"])
    assert pool.keys == ("g1", "g2")
